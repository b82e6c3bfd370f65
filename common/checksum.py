"""Incremental content hashing for streamed uploads."""

import hashlib


class IncrementalChecksumCalculator:
    """
    Calculate a content digest incrementally for streaming data.

    Usage:
        calculator = IncrementalChecksumCalculator()
        calculator.update(chunk1)
        calculator.update(chunk2)
        final_checksum = calculator.finalize()
    """

    def __init__(self, algorithm: str = "md5"):
        """
        Initialize a new incremental checksum calculator.

        Args:
            algorithm: hashlib algorithm name (default md5, the GridFS file hash)
        """
        self._algorithm = algorithm
        self._hasher = hashlib.new(algorithm)
        self._finalized = False

    @property
    def algorithm(self) -> str:
        return self._algorithm

    def update(self, data: bytes) -> None:
        """
        Update checksum with new data.

        Args:
            data: Bytes to add to checksum calculation
        """
        if self._finalized:
            raise ValueError("Cannot update after finalization")
        self._hasher.update(data)

    def finalize(self) -> str:
        """
        Finalize checksum calculation and return result.

        Returns:
            Hexadecimal digest of everything passed to update()
        """
        self._finalized = True
        return self._hasher.hexdigest()
