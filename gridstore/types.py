"""File and chunk document shapes and the chunking arithmetic shared by both streams."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional


def expected_chunk_count(length: int, chunk_size: int) -> int:
    """
    Number of chunks a file of the given length is split into.

    Args:
        length: File length in bytes
        chunk_size: Bytes per chunk (>= 1)

    Returns:
        ceil(length / chunk_size), 0 for an empty file
    """
    return -(-length // chunk_size)


def expected_chunk_length(length: int, chunk_size: int, n: int) -> int:
    """
    Byte length chunk n must have: chunk_size for every chunk but the last.
    """
    count = expected_chunk_count(length, chunk_size)
    if n < count - 1:
        return chunk_size
    return length - chunk_size * (count - 1)


@dataclass(frozen=True)
class Chunk:
    """
    One stored slice of a file's content.
    """
    files_id: Any
    n: int
    data: bytes

    def to_document(self) -> Dict[str, Any]:
        return {"files_id": self.files_id, "n": self.n, "data": self.data}

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Chunk":
        return cls(files_id=document.get("files_id"), n=document["n"], data=bytes(document["data"]))


@dataclass(frozen=True)
class GridFile:
    """
    Metadata of one stored file.
    """
    id: Any
    length: int
    chunk_size: int
    upload_date: datetime
    filename: str
    metadata: Optional[Dict[str, Any]] = None
    md5: Optional[str] = None

    @property
    def chunk_count(self) -> int:
        return expected_chunk_count(self.length, self.chunk_size)

    def to_document(self) -> Dict[str, Any]:
        document = {
            "_id": self.id,
            "chunkSize": self.chunk_size,
            "filename": self.filename,
            "length": self.length,
            "uploadDate": self.upload_date,
        }
        if self.md5 is not None:
            document["md5"] = self.md5
        if self.metadata is not None:
            document["metadata"] = self.metadata
        return document

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "GridFile":
        return cls(
            id=document.get("_id"),
            length=document.get("length"),
            chunk_size=document.get("chunkSize"),
            upload_date=document.get("uploadDate"),
            filename=document.get("filename"),
            metadata=document.get("metadata"),
            md5=document.get("md5"),
        )
