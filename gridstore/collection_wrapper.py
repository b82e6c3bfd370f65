"""Files and chunks collections of one bucket, with lazy index bootstrap."""

from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from common.constants import CHUNKS_INDEX_KEY, FILES_INDEX_KEY, STREAM_WRAPPER_PROTOCOL
from common.logging_config import get_logger
from docstore.collection import Collection, IndexInfo, ReadConcern, WriteConcern
from docstore.database import Database
from gridstore.exceptions import FileNotFoundError as GridFileNotFoundError

logger = get_logger(__name__)


def _normalize_key(key: Sequence[Tuple[str, Any]]) -> List[Tuple[str, float]]:
    return [(name, float(direction)) for name, direction in key]


def index_keys_match(expected: Sequence[Tuple[str, Any]], index: IndexInfo) -> bool:
    """
    Compare an index key pattern ignoring the numeric type of the directions.

    Args:
        expected: Ordered (field, direction) pairs
        index: Existing index description

    Returns:
        True if both name the same fields in the same order and directions
    """
    try:
        return _normalize_key(expected) == _normalize_key(index.key_items())
    except (TypeError, ValueError):
        return False


class CollectionWrapper:
    """
    Owns the "<bucket>.files" and "<bucket>.chunks" collections.

    Indexes are checked before the first insert done through this instance
    and never again.
    """

    def __init__(
        self,
        database: Database,
        bucket_name: str,
        read_concern: Optional[ReadConcern] = None,
        write_concern: Optional[WriteConcern] = None,
    ):
        self._database = database
        self._bucket_name = bucket_name
        self._files = database.get_collection(
            f"{bucket_name}.files", read_concern=read_concern, write_concern=write_concern
        )
        self._chunks = database.get_collection(
            f"{bucket_name}.chunks", read_concern=read_concern, write_concern=write_concern
        )
        self._checked_indexes = False

    @property
    def bucket_name(self) -> str:
        return self._bucket_name

    @property
    def database_name(self) -> str:
        return self._database.name

    @property
    def files_collection(self) -> Collection:
        return self._files

    @property
    def chunks_collection(self) -> Collection:
        return self._chunks

    @property
    def namespace(self) -> str:
        """Path of the files collection, used in error messages."""
        return f"{STREAM_WRAPPER_PROTOCOL}://{self._database.name}/{self._files.name}"

    def delete_chunks_by_file_id(self, file_id: Any) -> int:
        result = self._chunks.delete_many({"files_id": file_id})
        logger.debug(f"Deleted {result.deleted_count} chunks [files_id={file_id!r}]")
        return result.deleted_count

    def delete_file_and_chunks(self, file_id: Any) -> None:
        """
        Delete a file document and its chunks.

        Chunks are deleted even when the file document is missing.

        Raises:
            GridFileNotFoundError: No file document had this id
        """
        result = self._files.delete_one({"_id": file_id})
        self.delete_chunks_by_file_id(file_id)

        if result.deleted_count == 0:
            raise GridFileNotFoundError.by_id(file_id, self.namespace)

    def delete_file_and_chunks_by_filename(self, filename: str) -> int:
        """
        Delete every revision stored under a filename.

        Returns:
            Number of file documents deleted
        """
        file_ids = [file["_id"] for file in self._files.find({"filename": filename}, projection={"_id": 1})]
        if not file_ids:
            return 0

        deleted = self._files.delete_many({"_id": {"$in": file_ids}}).deleted_count
        self._chunks.delete_many({"files_id": {"$in": file_ids}})
        return deleted

    def drop(self) -> None:
        self._files.drop()
        self._chunks.drop()
        self._checked_indexes = False

    def find_chunks_by_file_id(self, file_id: Any, from_n: int = 0) -> Iterator[Dict[str, Any]]:
        """
        Lazily iterate the chunks of a file in ascending n, starting at from_n.

        The iterator is finite and cannot be restarted; call again to re-read.
        """
        return self._chunks.find(
            {"files_id": file_id, "n": {"$gte": from_n}},
            projection={"_id": 0, "n": 1, "data": 1},
            sort=[("n", 1)],
        )

    def find_file_by_filename_and_revision(self, filename: str, revision: int) -> Optional[Dict[str, Any]]:
        """
        Resolve a revision among the files sharing a filename.

        Revision numbers are:
            0 = the original stored file
            1 = the first revision
            2 = the second revision
            ...
           -2 = the second most recent revision
           -1 = the most recent revision
        """
        if revision < 0:
            skip = abs(revision) - 1
            direction = -1
        else:
            skip = revision
            direction = 1

        return self._files.find_one(
            {"filename": filename},
            sort=[("uploadDate", direction)],
            skip=skip,
        )

    def find_file_by_id(self, file_id: Any) -> Optional[Dict[str, Any]]:
        return self._files.find_one({"_id": file_id})

    def find_files(self, filter: Optional[Dict[str, Any]] = None, **options) -> Iterator[Dict[str, Any]]:
        return self._files.find(filter, **options)

    def find_one_file(self, filter: Optional[Dict[str, Any]] = None, **options) -> Optional[Dict[str, Any]]:
        return self._files.find_one(filter, **options)

    def insert_chunk(self, chunk: Dict[str, Any]) -> None:
        self._ensure_indexes()
        self._chunks.insert_one(chunk)

    def insert_chunks(self, chunks: Sequence[Dict[str, Any]]) -> None:
        if not chunks:
            return
        self._ensure_indexes()
        self._chunks.insert_many(chunks)

    def insert_file(self, file: Dict[str, Any]) -> None:
        self._ensure_indexes()
        self._files.insert_one(file)

    def update_filename_for_filename(self, filename: str, new_filename: str) -> int:
        """
        Returns:
            Number of file documents matched
        """
        return self._files.update_many(
            {"filename": filename},
            {"$set": {"filename": new_filename}},
        ).matched_count

    def update_filename_for_id(self, file_id: Any, filename: str) -> int:
        """
        Returns:
            Number of file documents matched (0 or 1)
        """
        return self._files.update_one(
            {"_id": file_id},
            {"$set": {"filename": filename}},
        ).matched_count

    def _ensure_chunks_index(self) -> None:
        for index in self._chunks.list_indexes():
            if index.unique and index_keys_match(CHUNKS_INDEX_KEY, index):
                return
        name = self._chunks.create_index(list(CHUNKS_INDEX_KEY), unique=True)
        logger.info(f"Created index {name} on {self._chunks.name}")

    def _ensure_files_index(self) -> None:
        for index in self._files.list_indexes():
            if index_keys_match(FILES_INDEX_KEY, index):
                return
        name = self._files.create_index(list(FILES_INDEX_KEY))
        logger.info(f"Created index {name} on {self._files.name}")

    def _ensure_indexes(self) -> None:
        """
        Create the files and chunks indexes if an equivalent index is missing.

        Only runs when the files collection is empty: a bucket that already
        holds files was bootstrapped by whoever wrote them.
        """
        if self._checked_indexes:
            return

        self._checked_indexes = True

        if not self._is_files_collection_empty():
            return

        self._ensure_files_index()
        self._ensure_chunks_index()

    def _is_files_collection_empty(self) -> bool:
        return self._files.find_one({}, projection={"_id": 1}) is None
