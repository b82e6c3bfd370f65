"""File API routes."""

import json
from typing import Any, Dict, Iterator, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile, status
from fastapi.responses import StreamingResponse

from common.constants import DOWNLOAD_PIECE_SIZE
from gridstore.bucket import Bucket
from gridstore.exceptions import InvalidArgumentError
from gridstore.readable_stream import ReadableStream
from server.dependencies import get_bucket
from server.schemas import (
    ErrorResponse,
    FileDocumentResponse,
    ListFilesResponse,
    RenameFileRequest,
    UploadFileResponse,
)

router = APIRouter(
    prefix="/files",
    tags=["Files"],
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
)


def _parse_metadata(metadata: Optional[str]) -> Optional[Dict[str, Any]]:
    if metadata is None or metadata == "":
        return None
    try:
        value = json.loads(metadata)
    except json.JSONDecodeError as e:
        raise InvalidArgumentError(f'Expected "metadata" to be a JSON object: {e}') from e
    if not isinstance(value, dict):
        raise InvalidArgumentError.invalid_type("metadata", value, "object")
    return value


def _stream_response(stream: ReadableStream) -> StreamingResponse:
    """
    Stream a download in fixed-size pieces.

    The first piece is read before the response starts so that a missing or
    corrupt first chunk still maps to an error status.
    """
    try:
        first_piece = stream.read(DOWNLOAD_PIECE_SIZE)
    except Exception:
        stream.close()
        raise

    def pieces() -> Iterator[bytes]:
        try:
            piece = first_piece
            while piece:
                yield piece
                piece = stream.read(DOWNLOAD_PIECE_SIZE)
        finally:
            stream.close()

    file = stream.get_file()
    return StreamingResponse(
        pieces(),
        media_type="application/octet-stream",
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(file['filename'])}",
            "Content-Length": str(file["length"]),
        },
    )


@router.post("", response_model=UploadFileResponse, status_code=status.HTTP_201_CREATED)
def upload_file(
    file: UploadFile = File(...),
    metadata: Optional[str] = Form(None),
    bucket: Bucket = Depends(get_bucket),
):
    """
    Store an uploaded file as a new revision of its filename.

    Parameters:
        - file: File to upload (multipart/form-data)
        - metadata: Optional JSON object stored with the file

    Returns:
        - file_id, filename and length of the stored file

    Raises:
        - 400: Invalid metadata
        - 500: Upload failed
        - 503: Store unavailable
    """
    filename = file.filename or "upload"
    file_id = bucket.upload_from_stream(filename, file.file, metadata=_parse_metadata(metadata))
    document = bucket.find_one({"_id": file_id}, codec=None)

    return UploadFileResponse(file_id=str(file_id), filename=filename, length=document["length"])


@router.get("", response_model=ListFilesResponse)
def list_files(
    filename: Optional[str] = Query(None, description="Only list revisions of this filename"),
    skip: int = Query(0, ge=0),
    limit: int = Query(0, ge=0, description="0 means no limit"),
    bucket: Bucket = Depends(get_bucket),
):
    """
    List file documents, oldest upload first.
    """
    query = {"filename": filename} if filename is not None else {}
    documents = bucket.find(query, sort=[("uploadDate", 1)], skip=skip, limit=limit, codec=None)

    return ListFilesResponse(files=[FileDocumentResponse.from_document(document) for document in documents])


@router.get("/by-name/{filename:path}/download")
def download_file_by_name(
    filename: str,
    revision: int = Query(-1, description="0 is the oldest revision, -1 the most recent"),
    bucket: Bucket = Depends(get_bucket),
):
    """
    Download one revision of a named file.

    Raises:
        - 404: No file with this name and revision
        - 500: Stored chunks are corrupt
    """
    return _stream_response(bucket.open_download_stream_by_name(filename, revision=revision))


@router.patch("/by-name/{filename:path}", status_code=status.HTTP_204_NO_CONTENT)
def rename_file_by_name(
    filename: str,
    request: RenameFileRequest,
    bucket: Bucket = Depends(get_bucket),
):
    """
    Rename every revision of a filename.
    """
    bucket.rename_by_name(filename, request.new_filename)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/by-name/{filename:path}", status_code=status.HTTP_204_NO_CONTENT)
def delete_file_by_name(filename: str, bucket: Bucket = Depends(get_bucket)):
    """
    Delete every revision of a filename.
    """
    bucket.delete_by_name(filename)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{file_id}", response_model=FileDocumentResponse)
def get_file(file_id: str, bucket: Bucket = Depends(get_bucket)):
    """
    Return the file document for an id.

    Raises:
        - 404: File not found
    """
    with bucket.open_download_stream(file_id) as stream:
        return FileDocumentResponse.from_document(stream.get_file())


@router.get("/{file_id}/download")
def download_file(file_id: str, bucket: Bucket = Depends(get_bucket)):
    """
    Download a file by id.

    Raises:
        - 404: File not found
        - 500: Stored chunks are corrupt
    """
    return _stream_response(bucket.open_download_stream(file_id))


@router.patch("/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
def rename_file(file_id: str, request: RenameFileRequest, bucket: Bucket = Depends(get_bucket)):
    """
    Rename one file.
    """
    bucket.rename(file_id, request.new_filename)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_file(file_id: str, bucket: Bucket = Depends(get_bucket)):
    """
    Delete a file and its chunks.
    """
    bucket.delete(file_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
