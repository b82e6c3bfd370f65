"""Bucket: the public entry point for storing and retrieving files in chunks."""

import io
import shutil
from typing import Any, Callable, Dict, Iterator, Optional
from urllib.parse import quote

from common.constants import STREAM_WRAPPER_PROTOCOL
from common.logging_config import get_logger
from docstore.collection import Collection
from docstore.database import Database
from docstore.exceptions import StoreError
from gridstore.codecs import make_decoder
from gridstore.collection_wrapper import CollectionWrapper
from gridstore.exceptions import (
    FileNotFoundError as GridFileNotFoundError,
    InvalidArgumentError,
    StreamError,
)
from gridstore.options import (
    BucketOptions,
    DownloadByNameOptions,
    FindOptions,
    UploadOptions,
    parse_options,
)
from gridstore.readable_stream import ReadableStream
from gridstore.urls import READ_MODES, WRITE_MODES, register_alias, split_path
from gridstore.writable_stream import WritableStream

logger = get_logger(__name__)


def _describe_stream(stream: Any) -> str:
    name = getattr(stream, "name", None)
    if isinstance(name, str):
        return name
    return f"<{type(stream).__name__}>"


def _is_readable_source(source: Any) -> bool:
    if isinstance(source, io.TextIOBase):
        return False
    if not callable(getattr(source, "read", None)):
        return False
    readable = getattr(source, "readable", None)
    return not callable(readable) or bool(readable())


def _is_writable_destination(destination: Any) -> bool:
    if isinstance(destination, io.TextIOBase):
        return False
    if not callable(getattr(destination, "write", None)):
        return False
    writable = getattr(destination, "writable", None)
    return not callable(writable) or bool(writable())


class Bucket:
    """
    Chunked file storage in the "<bucket_name>.files" and
    "<bucket_name>.chunks" collections of a database.

    Options (see BucketOptions): bucket_name, chunk_size_bytes, disable_md5,
    codec, type_map, read_concern, write_concern.
    """

    def __init__(self, database: Database, **options):
        if not isinstance(database, Database):
            raise InvalidArgumentError.invalid_type("database", database, "Database")

        self._options = parse_options(BucketOptions, options)
        self._database = database
        self._collection_wrapper = CollectionWrapper(
            database,
            self._options.bucket_name,
            read_concern=self._options.read_concern,
            write_concern=self._options.write_concern,
        )

    @property
    def bucket_name(self) -> str:
        return self._options.bucket_name

    @property
    def chunk_size_bytes(self) -> int:
        return self._options.chunk_size_bytes

    @property
    def database_name(self) -> str:
        return self._database.name

    @property
    def files_collection(self) -> Collection:
        return self._collection_wrapper.files_collection

    @property
    def chunks_collection(self) -> Collection:
        return self._collection_wrapper.chunks_collection

    @property
    def options(self) -> BucketOptions:
        return self._options

    def delete(self, file_id: Any) -> None:
        """
        Delete a file and its chunks.

        Chunks are removed even if the file document is already gone.

        Raises:
            GridFileNotFoundError: No file document had this id
        """
        self._collection_wrapper.delete_file_and_chunks(file_id)
        logger.info(f"Deleted file [file_id={file_id!r}] from bucket {self.bucket_name}")

    def delete_by_name(self, filename: str) -> None:
        """
        Delete every revision stored under a filename.

        Raises:
            GridFileNotFoundError: No file has this name
        """
        count = self._collection_wrapper.delete_file_and_chunks_by_filename(filename)
        if count == 0:
            raise GridFileNotFoundError.by_filename(filename, self._collection_wrapper.namespace)
        logger.info(f"Deleted {count} revisions of {filename!r} from bucket {self.bucket_name}")

    def download_to_stream(self, file_id: Any, destination: Any) -> None:
        """
        Write the content of a file to a writable destination.

        Raises:
            InvalidArgumentError: destination is not writable
            GridFileNotFoundError: No file has this id
            CorruptFileError: Stored chunks do not match the file document
            StreamError: Reading from the store or writing the destination failed
        """
        if not _is_writable_destination(destination):
            raise InvalidArgumentError.invalid_type("destination", destination, "writable binary stream")

        source = self.open_download_stream(file_id)
        try:
            shutil.copyfileobj(source, destination)
        except (OSError, StoreError) as e:
            logger.error(f"Download of file [file_id={file_id!r}] failed: {e}")
            raise StreamError.download_from_id_failed(
                file_id, self._create_path_for_file(source.get_file()), _describe_stream(destination)
            ) from e
        finally:
            source.close()

    def download_to_stream_by_name(self, filename: str, destination: Any, **options) -> None:
        """
        Write one revision of a named file to a writable destination.

        Options:
            revision: 0 is the oldest, -1 (default) the most recent

        Raises:
            InvalidArgumentError: destination is not writable or bad options
            GridFileNotFoundError: No file with this name and revision
            CorruptFileError: Stored chunks do not match the file document
            StreamError: Reading from the store or writing the destination failed
        """
        if not _is_writable_destination(destination):
            raise InvalidArgumentError.invalid_type("destination", destination, "writable binary stream")

        source = self.open_download_stream_by_name(filename, **options)
        try:
            shutil.copyfileobj(source, destination)
        except (OSError, StoreError) as e:
            logger.error(f"Download of file {filename!r} failed: {e}")
            raise StreamError.download_from_filename_failed(
                filename, self._create_path_for_file(source.get_file()), _describe_stream(destination)
            ) from e
        finally:
            source.close()

    def drop(self) -> None:
        """Drop the files and chunks collections."""
        self._collection_wrapper.drop()
        logger.info(f"Dropped bucket {self.bucket_name}")

    def find(self, filter: Optional[Dict[str, Any]] = None, **options) -> Iterator[Any]:
        """
        Find file documents.

        Options (see FindOptions): projection, sort, skip, limit, codec,
        type_map. codec and type_map default to the bucket's; passing
        codec=None returns plain dicts for this call.
        """
        find_options = parse_options(FindOptions, options)
        decode = self._resolve_decoder(find_options)
        cursor = self._collection_wrapper.find_files(filter, **self._query_options(find_options))
        return (decode(document) for document in cursor)

    def find_one(self, filter: Optional[Dict[str, Any]] = None, **options) -> Optional[Any]:
        """
        Find a single file document, or None.

        Accepts the same options as find() except limit.
        """
        find_options = parse_options(FindOptions, options)
        if "limit" in find_options.model_fields_set:
            raise InvalidArgumentError('The "limit" option is not supported by find_one')
        decode = self._resolve_decoder(find_options)
        query_options = self._query_options(find_options)
        query_options.pop("limit")
        document = self._collection_wrapper.find_one_file(filter, **query_options)
        return None if document is None else decode(document)

    def get_file_document_for_stream(self, stream: Any) -> Any:
        """
        Return the file document of a stream opened by this bucket.

        For an upload that is still in progress the document lacks length,
        uploadDate and md5.

        Raises:
            InvalidArgumentError: The stream was not opened by this bucket
        """
        file = self._get_raw_file_document_for_stream(stream)
        decode = make_decoder(self._options.codec, self._options.type_map)
        return decode(dict(file))

    def get_file_id_for_stream(self, stream: Any) -> Any:
        """
        Return the id of the file behind a stream opened by this bucket.

        Raises:
            InvalidArgumentError: The stream was not opened by this bucket
        """
        file = self._get_raw_file_document_for_stream(stream)
        file_id = file["_id"]
        if isinstance(file_id, dict) and self._options.type_map is not None:
            return self._options.type_map.document(file_id)
        return file_id

    def open_download_stream(self, file_id: Any) -> ReadableStream:
        """
        Open a readable stream for the file with this id.

        Raises:
            GridFileNotFoundError: No file has this id
        """
        file = self._collection_wrapper.find_file_by_id(file_id)
        if file is None:
            logger.warning(f"File not found [file_id={file_id!r}] in bucket {self.bucket_name}")
            raise GridFileNotFoundError.by_id(file_id, self._collection_wrapper.namespace)

        return ReadableStream(self._collection_wrapper, file)

    def open_download_stream_by_name(self, filename: str, **options) -> ReadableStream:
        """
        Open a readable stream for one revision of a named file.

        Options:
            revision: 0 is the oldest, 1 the next, ...; -1 (default) the most
                recent, -2 the one before, ...

        Raises:
            GridFileNotFoundError: No file with this name and revision
        """
        download_options = parse_options(DownloadByNameOptions, options)
        revision = download_options.revision

        file = self._collection_wrapper.find_file_by_filename_and_revision(filename, revision)
        if file is None:
            logger.warning(f"File {filename!r} revision {revision} not found in bucket {self.bucket_name}")
            raise GridFileNotFoundError.by_filename_and_revision(filename, revision, self._collection_wrapper.namespace)

        return ReadableStream(self._collection_wrapper, file)

    def open_upload_stream(self, filename: str, **options) -> WritableStream:
        """
        Open a writable stream for a new file.

        Options (see UploadOptions): file_id, chunk_size_bytes, disable_md5,
        metadata. The file becomes visible once the stream is closed.
        """
        upload_options = parse_options(UploadOptions, options)
        return WritableStream(self._collection_wrapper, filename, **self._upload_stream_options(upload_options))

    def rename(self, file_id: Any, new_filename: str) -> None:
        """
        Change the filename of one file.

        Raises:
            GridFileNotFoundError: No file has this id
        """
        matched = self._collection_wrapper.update_filename_for_id(file_id, new_filename)
        if matched == 0:
            raise GridFileNotFoundError.by_id(file_id, self._collection_wrapper.namespace)
        logger.info(f"Renamed file [file_id={file_id!r}] to {new_filename!r}")

    def rename_by_name(self, filename: str, new_filename: str) -> None:
        """
        Change the filename of every revision of a named file.

        Raises:
            GridFileNotFoundError: No file has this name
        """
        matched = self._collection_wrapper.update_filename_for_filename(filename, new_filename)
        if matched == 0:
            raise GridFileNotFoundError.by_filename(filename, self._collection_wrapper.namespace)
        logger.info(f"Renamed {matched} revisions of {filename!r} to {new_filename!r}")

    def upload_from_stream(self, filename: str, source: Any, **options) -> Any:
        """
        Store the whole content of a readable source as a new file.

        Accepts the same options as open_upload_stream().

        Returns:
            The id of the new file

        Raises:
            InvalidArgumentError: source is not readable or bad options
            StreamError: Reading the source or writing to the store failed
        """
        if not _is_readable_source(source):
            raise InvalidArgumentError.invalid_type("source", source, "readable binary stream")

        destination = self.open_upload_stream(filename, **options)
        path = self._create_path_for_file(destination.get_file())

        try:
            shutil.copyfileobj(source, destination)
        except Exception as e:
            logger.error(f"Upload of {filename!r} failed, aborting: {e}", exc_info=True)
            destination.abort()
            if isinstance(e, (OSError, StoreError)):
                raise StreamError.upload_failed(filename, _describe_stream(source), path) from e
            raise

        try:
            destination.close()
        except (OSError, StoreError) as e:
            raise StreamError.upload_failed(filename, _describe_stream(source), path) from e

        return destination.get_file_id()

    def register_global_alias(self, alias: str) -> None:
        """Make this bucket reachable as gridfs://<alias>/<filename> through gridstore.urls."""
        register_alias(alias, self)

    def resolve_stream_context(self, path: str, mode: str, **options) -> Dict[str, Any]:
        """
        Resolve what opening a gridfs://<alias>/<filename> path in a mode refers to.

        Read modes resolve the file document of the requested revision;
        write modes return the filename and the effective upload options.

        Raises:
            InvalidArgumentError: Malformed path, unsupported mode or bad options
            GridFileNotFoundError: Read mode and no file with this name and revision
        """
        _, filename = split_path(path)

        if mode in READ_MODES:
            download_options = parse_options(DownloadByNameOptions, options)
            file = self._collection_wrapper.find_file_by_filename_and_revision(filename, download_options.revision)
            if file is None:
                raise GridFileNotFoundError.by_filename_and_revision(
                    filename, download_options.revision, self._collection_wrapper.namespace
                )
            return {"collection_wrapper": self._collection_wrapper, "file": file}

        if mode in WRITE_MODES:
            upload_options = parse_options(UploadOptions, options)
            return {
                "collection_wrapper": self._collection_wrapper,
                "filename": filename,
                "options": self._upload_stream_options(upload_options),
            }

        raise InvalidArgumentError(f'Unsupported mode "{mode}", expected one of r, rb, w, wb')

    def _create_path_for_file(self, file: Dict[str, Any]) -> str:
        file_id = file.get("_id")
        return (
            f"{STREAM_WRAPPER_PROTOCOL}://{quote(self.database_name, safe='')}/"
            f"{quote(self.bucket_name, safe='')}.files/{quote(str(file_id), safe='')}"
        )

    def _get_raw_file_document_for_stream(self, stream: Any) -> Dict[str, Any]:
        if isinstance(stream, (ReadableStream, WritableStream)):
            if stream._collection_wrapper is self._collection_wrapper:
                return stream.get_file()
        raise InvalidArgumentError.invalid_type("stream", stream, "stream opened by this bucket")

    def _query_options(self, find_options: FindOptions) -> Dict[str, Any]:
        return {
            "projection": find_options.projection,
            "sort": find_options.sort,
            "skip": find_options.skip,
            "limit": find_options.limit,
        }

    def _upload_stream_options(self, upload_options: UploadOptions) -> Dict[str, Any]:
        chunk_size = upload_options.chunk_size_bytes
        disable_md5 = upload_options.disable_md5
        stream_options = {
            "chunk_size_bytes": self._options.chunk_size_bytes if chunk_size is None else chunk_size,
            "disable_md5": self._options.disable_md5 if disable_md5 is None else disable_md5,
        }
        if upload_options.file_id is not None:
            stream_options["file_id"] = upload_options.file_id
        if upload_options.metadata is not None:
            stream_options["metadata"] = upload_options.metadata
        return stream_options

    def _resolve_decoder(self, find_options: FindOptions) -> Callable[[Dict[str, Any]], Any]:
        explicit = find_options.model_fields_set
        if "codec" in explicit or "type_map" in explicit:
            return make_decoder(find_options.codec, find_options.type_map)
        return make_decoder(self._options.codec, self._options.type_map)
