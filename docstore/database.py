"""SQLite-backed document database: connection management and collection catalog."""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, List, Optional, Union

from common.constants import DEFAULT_STORE_TIMEOUT_SECONDS
from common.logging_config import get_logger
from docstore.exceptions import InvalidQueryError, StoreError

logger = get_logger(__name__)

INDEX_CATALOG_TABLE = "__indexes__"


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def validate_collection_name(name: str) -> None:
    if not isinstance(name, str) or not name:
        raise InvalidQueryError("Collection name must be a non-empty string")
    if name.startswith("__") or name.startswith("sqlite_") or "\x00" in name:
        raise InvalidQueryError(f"Invalid collection name: {name!r}")


class Database:
    """
    A document database stored in one SQLite file.

    Each collection is a table of (_id, doc) rows holding JSON documents;
    secondary indexes are SQLite expression indexes over json_extract and are
    described in the index catalog table.
    """

    def __init__(self, path: Union[str, Path], name: Optional[str] = None):
        self._path = Path(path)
        self._name = name or self._path.stem
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._init_catalog()

    @property
    def name(self) -> str:
        return self._name

    @property
    def path(self) -> Path:
        return self._path

    def _init_catalog(self) -> None:
        with self.connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {quote_identifier(INDEX_CATALOG_TABLE)} (
                    collection TEXT NOT NULL,
                    name TEXT NOT NULL,
                    key TEXT NOT NULL,
                    is_unique INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY(collection, name)
                )
            """)
            conn.commit()

    @contextmanager
    def connection(
        self,
        timeout: float = DEFAULT_STORE_TIMEOUT_SECONDS,
        synchronous: Optional[str] = None,
    ) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        sqlite3 errors raised inside the block are re-raised as StoreError
        subclasses by the callers that know the operation.
        """
        try:
            conn = sqlite3.connect(str(self._path), timeout=timeout, check_same_thread=False)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open database {self._path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            if synchronous is not None:
                conn.execute(f"PRAGMA synchronous={synchronous}")
            yield conn
        finally:
            conn.close()

    def get_collection(self, name: str, read_concern=None, write_concern=None):
        from docstore.collection import Collection

        return Collection(self, name, read_concern=read_concern, write_concern=write_concern)

    def __getitem__(self, name: str):
        return self.get_collection(name)

    def collection_exists(self, name: str, conn: Optional[sqlite3.Connection] = None) -> bool:
        if conn is None:
            with self.connection() as own:
                return self.collection_exists(name, own)
        row = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name = ?",
            (name,)
        ).fetchone()
        return row is not None

    def list_collection_names(self) -> List[str]:
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
            ).fetchall()
        return [
            row["name"] for row in rows
            if not row["name"].startswith("__") and not row["name"].startswith("sqlite_")
        ]

    def drop_collection(self, name: str) -> None:
        self.get_collection(name).drop()

    def __repr__(self) -> str:
        return f"Database(path={str(self._path)!r}, name={self._name!r})"
