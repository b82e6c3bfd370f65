"""Readable stream over the chunks of one stored file."""

import io
from typing import Any, Dict, Iterator, Optional

from common.logging_config import get_logger
from gridstore.collection_wrapper import CollectionWrapper
from gridstore.exceptions import CorruptFileError
from gridstore.types import expected_chunk_count, expected_chunk_length

logger = get_logger(__name__)


class ReadableStream(io.RawIOBase):
    """
    Pull-based reader for a file document and its chunks.

    Chunks are fetched lazily, in ascending index order, through a single
    store cursor. Each chunk is checked against the index and size the file
    document implies before any of its bytes are returned.
    """

    def __init__(self, collection_wrapper: CollectionWrapper, file: Dict[str, Any]):
        super().__init__()
        self._chunks: Optional[Iterator[Dict[str, Any]]] = None
        self._collection_wrapper = collection_wrapper
        self._file = file

        length = file.get("length")
        chunk_size = file.get("chunkSize")
        if not isinstance(length, int) or isinstance(length, bool) or length < 0:
            raise CorruptFileError.invalid_property_value("length", length, "an integer >= 0")
        if not isinstance(chunk_size, int) or isinstance(chunk_size, bool) or chunk_size < 1:
            raise CorruptFileError.invalid_property_value("chunkSize", chunk_size, "an integer >= 1")

        self._length = length
        self._chunk_size = chunk_size
        self._num_chunks = expected_chunk_count(length, chunk_size)

        self._chunk_offset = 0
        self._buffer = b""
        self._buffer_offset = 0
        self._position = 0

    def get_file(self) -> Dict[str, Any]:
        return self._file

    def get_file_id(self) -> Any:
        return self._file.get("_id")

    @property
    def length(self) -> int:
        return self._length

    def is_eof(self) -> bool:
        return self._position >= self._length

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def tell(self) -> int:
        self._check_open()
        return self._position

    def readinto(self, buffer) -> int:
        """
        Fill the buffer with file content, crossing chunk boundaries as needed.

        Returns:
            Number of bytes written into buffer, 0 at end of file
        """
        self._check_open()
        view = memoryview(buffer).cast("B")
        written = 0

        while written < len(view) and not self.is_eof():
            if self._buffer_offset >= len(self._buffer):
                self._fetch_chunk()

            available = len(self._buffer) - self._buffer_offset
            remaining_in_file = self._length - self._position
            count = min(len(view) - written, available, remaining_in_file)
            view[written:written + count] = self._buffer[self._buffer_offset:self._buffer_offset + count]

            written += count
            self._buffer_offset += count
            self._position += count

        return written

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        """
        Move the read position.

        Seeking inside the buffered chunk only moves the offset; any other
        target restarts the chunk cursor at the chunk holding the position.
        """
        self._check_open()
        if whence == io.SEEK_SET:
            target = offset
        elif whence == io.SEEK_CUR:
            target = self._position + offset
        elif whence == io.SEEK_END:
            target = self._length + offset
        else:
            raise ValueError(f"Invalid whence ({whence})")

        if target < 0:
            raise ValueError(f"Negative seek position {target}")

        self._position = target
        if target >= self._length:
            return target

        chunk_index = target // self._chunk_size
        buffered_index = self._chunk_offset - 1
        if self._buffer and chunk_index == buffered_index:
            self._buffer_offset = target - chunk_index * self._chunk_size
            return target

        self._reset_cursor()
        self._chunk_offset = chunk_index
        self._buffer = b""
        self._buffer_offset = 0
        if target % self._chunk_size:
            self._fetch_chunk()
            self._buffer_offset = target - chunk_index * self._chunk_size
        return target

    def close(self) -> None:
        if not self.closed:
            self._reset_cursor()
        super().close()

    def _check_open(self) -> None:
        if self.closed:
            raise ValueError("I/O operation on closed stream")

    def _reset_cursor(self) -> None:
        if self._chunks is not None:
            self._chunks.close()
            self._chunks = None

    def _fetch_chunk(self) -> None:
        """
        Load the chunk at self._chunk_offset into the buffer.

        Raises:
            CorruptFileError: Chunk missing, out of sequence or of the wrong size
        """
        if self._chunks is None:
            self._chunks = self._collection_wrapper.find_chunks_by_file_id(self.get_file_id(), self._chunk_offset)

        try:
            chunk = next(self._chunks)
        except StopIteration:
            self._reset_cursor()
            raise CorruptFileError.missing_chunk(self._chunk_offset)

        if chunk.get("n") != self._chunk_offset:
            self._reset_cursor()
            raise CorruptFileError.unexpected_index(self._chunk_offset, chunk.get("n"))

        data = chunk.get("data")
        if not isinstance(data, (bytes, bytearray)):
            self._reset_cursor()
            raise CorruptFileError.invalid_property_value("data", type(data).__name__, "binary chunk data")

        expected_size = expected_chunk_length(self._length, self._chunk_size, self._chunk_offset)
        if len(data) != expected_size:
            self._reset_cursor()
            raise CorruptFileError.unexpected_size(expected_size, len(data))

        logger.debug(
            f"Read chunk {self._chunk_offset + 1}/{self._num_chunks} [files_id={self.get_file_id()!r}]"
        )

        self._buffer = bytes(data)
        self._buffer_offset = 0
        self._chunk_offset += 1
