"""Writable stream that stores its input as chunk documents plus one file document."""

import atexit
import io
import weakref
from typing import Any, Dict, Optional

from common.checksum import IncrementalChecksumCalculator
from common.constants import DEFAULT_CHUNK_SIZE_BYTES
from common.logging_config import get_logger
from common.utils import generate_uuid, utc_now
from gridstore.collection_wrapper import CollectionWrapper
from gridstore.exceptions import InvalidArgumentError
from gridstore.types import Chunk

logger = get_logger(__name__)

STATE_ACTIVE = "active"
STATE_FINALIZED = "finalized"
STATE_ABORTED = "aborted"

# Active upload sessions; those still open at interpreter exit are finalized by the hook below.
_active_streams: "weakref.WeakSet[WritableStream]" = weakref.WeakSet()


@atexit.register
def _close_active_streams() -> None:
    for stream in list(_active_streams):
        try:
            stream.close()
        except Exception as e:
            logger.error(f"Upload left open at exit could not be stored [file_id={stream.get_file_id()!r}]: {e}")


class WritableStream(io.RawIOBase):
    """
    Upload session for one file.

    Full chunks are inserted as soon as they are buffered; close() flushes the
    remainder and inserts the file document, abort() removes the chunks
    instead. Leaving a ``with`` block through an exception aborts, and a
    stream that is garbage collected while still active is closed, as is one
    still active at interpreter exit.
    """

    # Until __init__ completes the stream is never active, so close() stays a no-op.
    _state = None

    def __init__(
        self,
        collection_wrapper: CollectionWrapper,
        filename: str,
        file_id: Any = None,
        chunk_size_bytes: int = DEFAULT_CHUNK_SIZE_BYTES,
        disable_md5: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        if not isinstance(chunk_size_bytes, int) or isinstance(chunk_size_bytes, bool) or chunk_size_bytes < 1:
            raise InvalidArgumentError(f'Expected "chunk_size_bytes" option to be >= 1, {chunk_size_bytes!r} given')
        if not isinstance(filename, str):
            raise InvalidArgumentError.invalid_type("filename", filename, "str")

        super().__init__()
        self._collection_wrapper = collection_wrapper
        self._chunk_size = chunk_size_bytes
        self._checksum = None if disable_md5 else IncrementalChecksumCalculator("md5")

        self._file: Dict[str, Any] = {
            "_id": generate_uuid() if file_id is None else file_id,
            "chunkSize": chunk_size_bytes,
            "filename": filename,
        }
        if metadata is not None:
            self._file["metadata"] = metadata

        self._buffer = bytearray()
        self._chunk_offset = 0
        self._length = 0
        self._state = STATE_ACTIVE
        _active_streams.add(self)

    def get_file(self) -> Dict[str, Any]:
        return self._file

    def get_file_id(self) -> Any:
        return self._file["_id"]

    @property
    def state(self) -> str:
        return self._state

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    def writable(self) -> bool:
        return True

    def tell(self) -> int:
        """Number of bytes accepted so far."""
        return self._length + len(self._buffer)

    def write(self, data) -> int:
        """
        Buffer data and insert every complete chunk.

        Returns:
            Number of bytes accepted (always all of them)
        """
        if self._state != STATE_ACTIVE or self.closed:
            raise ValueError("I/O operation on closed stream")

        view = memoryview(data).cast("B")
        self._buffer.extend(view)

        while len(self._buffer) >= self._chunk_size:
            chunk = bytes(self._buffer[:self._chunk_size])
            del self._buffer[:self._chunk_size]
            self._insert_chunk(chunk)

        return len(view)

    def close(self) -> None:
        """
        Finalize the upload; a no-op once the stream is closed or aborted.

        If storing the remainder or the file document fails, the chunks
        written so far are removed before the error propagates.
        """
        if self.closed:
            return

        try:
            if self._state == STATE_ACTIVE:
                self._finalize()
        except Exception as e:
            logger.error(f"Finalizing upload failed [file_id={self.get_file_id()!r}]: {e}", exc_info=True)
            self._state = STATE_ABORTED
            self._delete_inserted_chunks()
            raise
        finally:
            _active_streams.discard(self)
            super().close()

    def abort(self) -> None:
        """
        Drop the upload: delete inserted chunks, never store the file document.
        """
        if self.closed or self._state != STATE_ACTIVE:
            return

        self._state = STATE_ABORTED
        try:
            deleted = self._delete_inserted_chunks()
            logger.info(f"Aborted upload, removed {deleted} chunks [file_id={self.get_file_id()!r}]")
        finally:
            _active_streams.discard(self)
            super().close()

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        if exc_type is not None:
            self.abort()
        else:
            self.close()

    def _delete_inserted_chunks(self) -> int:
        # Nothing inserted yet: chunks under this id belong to another file.
        if self._chunk_offset == 0:
            return 0
        return self._collection_wrapper.delete_chunks_by_file_id(self.get_file_id())

    def _finalize(self) -> None:
        if self._buffer:
            chunk = bytes(self._buffer)
            self._buffer.clear()
            self._insert_chunk(chunk)

        self._file["length"] = self._length
        self._file["uploadDate"] = utc_now()
        if self._checksum is not None:
            self._file["md5"] = self._checksum.finalize()

        self._collection_wrapper.insert_file(self._file)
        self._state = STATE_FINALIZED

        logger.info(
            f"Stored file {self._file['filename']!r} [file_id={self.get_file_id()!r}] "
            f"({self._chunk_offset} chunks, {self._length} bytes, "
            f"checksum={self._checksum.algorithm if self._checksum is not None else 'disabled'})"
        )

    def _insert_chunk(self, data: bytes) -> None:
        if self._checksum is not None:
            self._checksum.update(data)

        self._collection_wrapper.insert_chunk(Chunk(self.get_file_id(), self._chunk_offset, data).to_document())

        self._chunk_offset += 1
        self._length += len(data)
