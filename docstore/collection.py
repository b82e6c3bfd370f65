"""Document collection operations over one SQLite table."""

import itertools
import json
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from common.constants import DEFAULT_STORE_TIMEOUT_SECONDS
from common.logging_config import get_logger
from common.utils import generate_uuid
from docstore.database import INDEX_CATALOG_TABLE, Database, quote_identifier, validate_collection_name
from docstore.encoding import decode_document, encode_document, encode_key
from docstore.exceptions import DuplicateKeyError, IndexConflictError, InvalidQueryError, StoreError
from docstore.query import (
    SortSpec,
    apply_projection,
    apply_update,
    json_path,
    matches,
    normalize_sort,
    sort_documents,
    translate_filter,
    translate_sort,
    validate_filter,
)

logger = get_logger(__name__)

IndexKey = Union[Dict[str, Any], Sequence[Tuple[str, Any]]]


@dataclass(frozen=True)
class ReadConcern:
    """
    Read settings applied to query operations.

    timeout: seconds to wait on a locked database before failing
    """
    timeout: float = DEFAULT_STORE_TIMEOUT_SECONDS


@dataclass(frozen=True)
class WriteConcern:
    """
    Write settings applied to insert, update and delete operations.

    journal: fsync on every commit (PRAGMA synchronous=FULL) instead of NORMAL
    timeout: seconds to wait for the write lock before failing
    """
    journal: bool = True
    timeout: float = DEFAULT_STORE_TIMEOUT_SECONDS

    @property
    def synchronous(self) -> str:
        return "FULL" if self.journal else "NORMAL"


@dataclass(frozen=True)
class IndexInfo:
    name: str
    key: Dict[str, Any] = field(default_factory=dict)
    unique: bool = False

    def key_items(self) -> List[Tuple[str, Any]]:
        return list(self.key.items())


@dataclass(frozen=True)
class InsertOneResult:
    inserted_id: Any


@dataclass(frozen=True)
class InsertManyResult:
    inserted_ids: List[Any]


@dataclass(frozen=True)
class UpdateResult:
    matched_count: int
    modified_count: int


@dataclass(frozen=True)
class DeleteResult:
    deleted_count: int


def index_name_for(keys: List[Tuple[str, Any]]) -> str:
    """Default index name, e.g. [("files_id", 1), ("n", 1)] -> "files_id_1_n_1"."""
    parts = []
    for name, direction in keys:
        if isinstance(direction, float) and direction.is_integer():
            direction = int(direction)
        parts.append(f"{name}_{direction}")
    return "_".join(parts)


def _normalize_index_key(keys: IndexKey) -> List[Tuple[str, Any]]:
    items = list(keys.items()) if isinstance(keys, dict) else [tuple(item) for item in keys]
    if not items:
        raise InvalidQueryError("Index key must name at least one field")
    for name, direction in items:
        if not isinstance(name, str) or not name:
            raise InvalidQueryError(f"Invalid index field: {name!r}")
        if isinstance(direction, bool) or direction not in (1, -1):
            raise InvalidQueryError(f"Index direction for {name!r} must be 1 or -1")
    return items


class Collection:
    """
    A named collection of documents.

    Every operation opens its own connection; find() keeps its connection
    open until the returned iterator is exhausted or closed.
    """

    def __init__(
        self,
        database: Database,
        name: str,
        read_concern: Optional[ReadConcern] = None,
        write_concern: Optional[WriteConcern] = None,
    ):
        validate_collection_name(name)
        self._database = database
        self._name = name
        self._table = quote_identifier(name)
        self._read_concern = read_concern or ReadConcern()
        self._write_concern = write_concern or WriteConcern()

    @property
    def name(self) -> str:
        return self._name

    @property
    def database(self) -> Database:
        return self._database

    @property
    def read_concern(self) -> ReadConcern:
        return self._read_concern

    @property
    def write_concern(self) -> WriteConcern:
        return self._write_concern

    def with_options(
        self,
        read_concern: Optional[ReadConcern] = None,
        write_concern: Optional[WriteConcern] = None,
    ) -> "Collection":
        return Collection(
            self._database,
            self._name,
            read_concern=read_concern or self._read_concern,
            write_concern=write_concern or self._write_concern,
        )

    def _read_connection(self):
        return self._database.connection(timeout=self._read_concern.timeout)

    def _write_connection(self):
        return self._database.connection(
            timeout=self._write_concern.timeout,
            synchronous=self._write_concern.synchronous,
        )

    def _ensure_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {self._table} (
                _id TEXT PRIMARY KEY NOT NULL,
                doc TEXT NOT NULL
            )
        """)

    def _exists(self, conn: sqlite3.Connection) -> bool:
        return self._database.collection_exists(self._name, conn)

    def _prepare_for_insert(self, document: Dict[str, Any]) -> Tuple[Dict[str, Any], str, str]:
        if not isinstance(document, dict):
            raise InvalidQueryError(f"Expected a document, got {type(document).__name__}")
        if "_id" not in document:
            document = {"_id": generate_uuid(), **document}
        return document, encode_key(document["_id"]), encode_document(document)

    def _translate_integrity_error(self, e: sqlite3.IntegrityError) -> StoreError:
        return DuplicateKeyError(f"Duplicate key error in collection {self._name}: {e}")

    def insert_one(self, document: Dict[str, Any]) -> InsertOneResult:
        document, key, text = self._prepare_for_insert(document)
        with self._write_connection() as conn:
            try:
                self._ensure_table(conn)
                conn.execute(f"INSERT INTO {self._table} (_id, doc) VALUES (?, ?)", (key, text))
                conn.commit()
            except sqlite3.IntegrityError as e:
                raise self._translate_integrity_error(e) from e
            except sqlite3.Error as e:
                raise StoreError(f"Insert into {self._name} failed: {e}") from e
        return InsertOneResult(inserted_id=document["_id"])

    def insert_many(self, documents: Sequence[Dict[str, Any]]) -> InsertManyResult:
        prepared = [self._prepare_for_insert(document) for document in documents]
        if not prepared:
            return InsertManyResult(inserted_ids=[])
        with self._write_connection() as conn:
            try:
                self._ensure_table(conn)
                conn.executemany(
                    f"INSERT INTO {self._table} (_id, doc) VALUES (?, ?)",
                    [(key, text) for _, key, text in prepared]
                )
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise self._translate_integrity_error(e) from e
            except sqlite3.Error as e:
                conn.rollback()
                raise StoreError(f"Insert into {self._name} failed: {e}") from e
        return InsertManyResult(inserted_ids=[document["_id"] for document, _, _ in prepared])

    def _iter_rows(
        self,
        conn: sqlite3.Connection,
        query: Dict[str, Any],
        order_by: Optional[str] = None,
    ) -> Iterator[Tuple[int, Dict[str, Any]]]:
        where, params = translate_filter(query)
        sql = f"SELECT rowid, doc FROM {self._table} WHERE {where}"
        if order_by:
            sql += f" ORDER BY {order_by}"
        for row in conn.execute(sql, params):
            document = decode_document(row["doc"])
            if matches(document, query):
                yield row["rowid"], document

    def find(
        self,
        filter: Optional[Dict[str, Any]] = None,
        projection: Optional[Dict[str, Any]] = None,
        sort: Optional[SortSpec] = None,
        skip: int = 0,
        limit: int = 0,
    ) -> Iterator[Dict[str, Any]]:
        """
        Lazily iterate matching documents.

        Validation happens on the call; the returned generator holds a read
        connection until it is exhausted or closed.
        """
        query = validate_filter(filter)
        sort_spec = normalize_sort(sort)
        if skip < 0 or limit < 0:
            raise InvalidQueryError("skip and limit must be non-negative")
        return self._find(query, projection, sort_spec, skip, limit)

    def _find(self, query, projection, sort_spec, skip, limit) -> Iterator[Dict[str, Any]]:
        with self._read_connection() as conn:
            try:
                if not self._exists(conn):
                    return
                order_by = translate_sort(sort_spec)
                rows = (document for _, document in self._iter_rows(conn, query, order_by))
                if order_by is None:
                    rows = iter(sort_documents(rows, sort_spec))
                stop = skip + limit if limit else None
                for document in itertools.islice(rows, skip, stop):
                    yield apply_projection(document, projection)
            except sqlite3.Error as e:
                raise StoreError(f"Query on {self._name} failed: {e}") from e

    def find_one(
        self,
        filter: Optional[Dict[str, Any]] = None,
        projection: Optional[Dict[str, Any]] = None,
        sort: Optional[SortSpec] = None,
        skip: int = 0,
    ) -> Optional[Dict[str, Any]]:
        cursor = self.find(filter, projection=projection, sort=sort, skip=skip, limit=1)
        try:
            return next(cursor, None)
        finally:
            cursor.close()

    def count_documents(self, filter: Optional[Dict[str, Any]] = None) -> int:
        return sum(1 for _ in self.find(filter, projection={"_id": 1}))

    def _update(self, filter, update, many: bool) -> UpdateResult:
        query = validate_filter(filter)
        if not isinstance(update, dict):
            raise InvalidQueryError("Update must be a document")
        matched = modified = 0
        with self._write_connection() as conn:
            try:
                if not self._exists(conn):
                    return UpdateResult(0, 0)
                conn.execute("BEGIN IMMEDIATE")
                targets = list(self._iter_rows(conn, query, "rowid ASC"))
                if not many:
                    targets = targets[:1]
                for rowid, document in targets:
                    matched += 1
                    updated = apply_update(document, update)
                    if updated != document:
                        conn.execute(
                            f"UPDATE {self._table} SET doc = ? WHERE rowid = ?",
                            (encode_document(updated), rowid)
                        )
                        modified += 1
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise self._translate_integrity_error(e) from e
            except sqlite3.Error as e:
                conn.rollback()
                raise StoreError(f"Update on {self._name} failed: {e}") from e
        return UpdateResult(matched_count=matched, modified_count=modified)

    def update_one(self, filter: Dict[str, Any], update: Dict[str, Any]) -> UpdateResult:
        return self._update(filter, update, many=False)

    def update_many(self, filter: Dict[str, Any], update: Dict[str, Any]) -> UpdateResult:
        return self._update(filter, update, many=True)

    def _delete(self, filter, many: bool) -> DeleteResult:
        query = validate_filter(filter)
        with self._write_connection() as conn:
            try:
                if not self._exists(conn):
                    return DeleteResult(0)
                conn.execute("BEGIN IMMEDIATE")
                rowids = [rowid for rowid, _ in self._iter_rows(conn, query, "rowid ASC")]
                if not many:
                    rowids = rowids[:1]
                for rowid in rowids:
                    conn.execute(f"DELETE FROM {self._table} WHERE rowid = ?", (rowid,))
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise StoreError(f"Delete on {self._name} failed: {e}") from e
        return DeleteResult(deleted_count=len(rowids))

    def delete_one(self, filter: Dict[str, Any]) -> DeleteResult:
        return self._delete(filter, many=False)

    def delete_many(self, filter: Dict[str, Any]) -> DeleteResult:
        return self._delete(filter, many=True)

    def create_index(self, keys: IndexKey, unique: bool = False, name: Optional[str] = None) -> str:
        """
        Create an expression index over the given fields.

        Creating an index that already exists with the same name and key is a
        no-op; reusing a name with another key raises IndexConflictError.
        """
        items = _normalize_index_key(keys)
        name = name or index_name_for(items)
        key_text = json.dumps([[field_name, direction] for field_name, direction in items])

        columns = []
        for field_name, direction in items:
            path = json_path(field_name)
            if path is None:
                raise InvalidQueryError(f"Cannot index field {field_name!r}")
            columns.append(f"json_extract(doc, {path}) {'ASC' if direction == 1 else 'DESC'}")

        sql_index = quote_identifier(f"{self._name}.{name}")
        catalog = quote_identifier(INDEX_CATALOG_TABLE)

        with self._write_connection() as conn:
            try:
                self._ensure_table(conn)
                existing = conn.execute(
                    f"SELECT key, is_unique FROM {catalog} WHERE collection = ? AND name = ?",
                    (self._name, name)
                ).fetchone()
                if existing is not None:
                    if json.loads(existing["key"]) != json.loads(key_text) or bool(existing["is_unique"]) != unique:
                        raise IndexConflictError(
                            f"Index {name!r} already exists on {self._name} with different options"
                        )
                    return name
                conn.execute(
                    f"CREATE {'UNIQUE ' if unique else ''}INDEX IF NOT EXISTS {sql_index} "
                    f"ON {self._table} ({', '.join(columns)})"
                )
                conn.execute(
                    f"INSERT OR IGNORE INTO {catalog} (collection, name, key, is_unique) VALUES (?, ?, ?, ?)",
                    (self._name, name, key_text, int(unique))
                )
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise self._translate_integrity_error(e) from e
            except sqlite3.Error as e:
                conn.rollback()
                raise StoreError(f"Creating index {name!r} on {self._name} failed: {e}") from e

        logger.debug(f"Created index {name} on {self._name} (unique={unique})")
        return name

    def list_indexes(self) -> List[IndexInfo]:
        catalog = quote_identifier(INDEX_CATALOG_TABLE)
        with self._read_connection() as conn:
            try:
                if not self._exists(conn):
                    return []
                rows = conn.execute(
                    f"SELECT name, key, is_unique FROM {catalog} WHERE collection = ? ORDER BY rowid",
                    (self._name,)
                ).fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"Listing indexes of {self._name} failed: {e}") from e

        indexes = [IndexInfo(name="_id_", key={"_id": 1})]
        for row in rows:
            indexes.append(IndexInfo(
                name=row["name"],
                key={field_name: direction for field_name, direction in json.loads(row["key"])},
                unique=bool(row["is_unique"]),
            ))
        return indexes

    def drop(self) -> None:
        catalog = quote_identifier(INDEX_CATALOG_TABLE)
        with self._write_connection() as conn:
            try:
                conn.execute(f"DROP TABLE IF EXISTS {self._table}")
                conn.execute(f"DELETE FROM {catalog} WHERE collection = ?", (self._name,))
                conn.commit()
            except sqlite3.Error as e:
                raise StoreError(f"Dropping {self._name} failed: {e}") from e
        logger.debug(f"Dropped collection {self._name}")

    def __repr__(self) -> str:
        return f"Collection(database={self._database.name!r}, name={self._name!r})"
