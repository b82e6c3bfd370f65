"""FastAPI dependencies shared by the routes."""

from functools import lru_cache

from common.logging_config import get_logger
from docstore.database import Database
from gridstore.bucket import Bucket
from server.config import BUCKET_NAME, CHUNK_SIZE_BYTES, DATABASE_PATH

logger = get_logger(__name__)


@lru_cache(maxsize=1)
def get_bucket() -> Bucket:
    """
    Bucket served by this process, opened on first use.

    Tests replace it through app.dependency_overrides.
    """
    database = Database(DATABASE_PATH)
    logger.info(f"Opened database {database.path} (bucket={BUCKET_NAME}, chunk_size={CHUNK_SIZE_BYTES})")
    return Bucket(database, bucket_name=BUCKET_NAME, chunk_size_bytes=CHUNK_SIZE_BYTES)
