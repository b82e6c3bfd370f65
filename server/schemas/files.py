"""Pydantic schemas for file endpoints."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class FileDocumentResponse(BaseModel):
    """Response model for a stored file document."""
    file_id: str
    filename: str
    length: int
    chunk_size: int
    upload_date: datetime
    md5: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "FileDocumentResponse":
        return cls(
            file_id=str(document["_id"]),
            filename=document["filename"],
            length=document["length"],
            chunk_size=document["chunkSize"],
            upload_date=document["uploadDate"],
            md5=document.get("md5"),
            metadata=document.get("metadata"),
        )


class UploadFileResponse(BaseModel):
    """Response model for file upload."""
    file_id: str
    filename: str
    length: int


class ListFilesResponse(BaseModel):
    """Response model for file listing."""
    files: List[FileDocumentResponse]


class RenameFileRequest(BaseModel):
    """Request model for renaming one file or every revision of a name."""
    new_filename: str = Field(..., min_length=1)
