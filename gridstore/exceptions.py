"""Custom exception classes for chunked file storage."""

import json
from typing import Any, Optional


def _describe_id(file_id: Any) -> str:
    return json.dumps({"_id": file_id}, default=str)


class GridFSException(Exception):
    """
    Base exception class for all bucket and stream errors.
    """
    pass


class InvalidArgumentError(GridFSException):
    """
    Raised for malformed caller input before any store interaction.
    """

    @classmethod
    def invalid_type(cls, name: str, value: Any, expected: str) -> "InvalidArgumentError":
        return cls(f'Expected "{name}" to have type "{expected}" but found "{type(value).__name__}"')


class FileNotFoundError(GridFSException):
    """
    Raised when no file document matches the requested id, filename or revision.
    """

    @classmethod
    def by_id(cls, file_id: Any, namespace: str) -> "FileNotFoundError":
        return cls(f'File "{_describe_id(file_id)}" not found in "{namespace}"')

    @classmethod
    def by_filename(cls, filename: str, namespace: str) -> "FileNotFoundError":
        return cls(f'File with name "{filename}" not found in "{namespace}"')

    @classmethod
    def by_filename_and_revision(cls, filename: str, revision: int, namespace: str) -> "FileNotFoundError":
        return cls(f'File with name "{filename}" and revision "{revision}" not found in "{namespace}"')


class CorruptFileError(GridFSException):
    """
    Raised when the stored chunk sequence does not match the file document.
    """

    @classmethod
    def missing_chunk(cls, expected_index: int) -> "CorruptFileError":
        return cls(f'Chunk not found for index "{expected_index}"')

    @classmethod
    def unexpected_index(cls, expected_index: int, actual_index: Any) -> "CorruptFileError":
        return cls(f'Expected chunk to have index "{expected_index}" but found "{actual_index}"')

    @classmethod
    def unexpected_size(cls, expected_size: int, actual_size: int) -> "CorruptFileError":
        return cls(f'Expected chunk to have size "{expected_size}" but found "{actual_size}"')

    @classmethod
    def invalid_property_value(cls, name: str, value: Any, expected: str) -> "CorruptFileError":
        return cls(f'Invalid "{name}" value in file document: expected {expected}, found {value!r}')


class StreamError(GridFSException):
    """
    Raised when copying between a caller stream and the bucket fails.

    The underlying failure is chained as __cause__.
    """

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path

    @classmethod
    def download_from_id_failed(cls, file_id: Any, source: str, destination: str) -> "StreamError":
        return cls(
            f'Downloading file from "{source}" to "{destination}" failed. '
            f'GridFS identifier: "{_describe_id(file_id)}"',
            path=source,
        )

    @classmethod
    def download_from_filename_failed(cls, filename: str, source: str, destination: str) -> "StreamError":
        return cls(
            f'Downloading file from "{source}" to "{destination}" failed. GridFS filename: "{filename}"',
            path=source,
        )

    @classmethod
    def upload_failed(cls, filename: str, source: str, destination: str) -> "StreamError":
        return cls(
            f'Uploading file from "{source}" to "{destination}" failed. GridFS filename: "{filename}"',
            path=destination,
        )
