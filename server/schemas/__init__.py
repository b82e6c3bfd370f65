"""Pydantic schemas for API requests and responses."""

from server.schemas.common import ErrorResponse
from server.schemas.files import (
    FileDocumentResponse,
    ListFilesResponse,
    RenameFileRequest,
    UploadFileResponse,
)

__all__ = [
    "ErrorResponse",
    "FileDocumentResponse",
    "ListFilesResponse",
    "RenameFileRequest",
    "UploadFileResponse",
]
