"""Project-wide constants (chunk sizes, bucket defaults, path scheme)."""

DEFAULT_CHUNK_SIZE_BYTES: int = 255 * 1024  # 261120 bytes, fits a chunk document under 256 KiB
DEFAULT_BUCKET_NAME: str = "fs"

STREAM_WRAPPER_PROTOCOL: str = "gridfs"

FILES_INDEX_KEY = (("filename", 1), ("uploadDate", 1))
CHUNKS_INDEX_KEY = (("files_id", 1), ("n", 1))

DEFAULT_DATABASE_PATH: str = "/app/data/gridstore.db"
DEFAULT_STORE_TIMEOUT_SECONDS: float = 5.0

DOWNLOAD_PIECE_SIZE: int = 64 * 1024
