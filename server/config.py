"""Configuration settings for the file server."""

import os

from common.constants import DEFAULT_BUCKET_NAME, DEFAULT_CHUNK_SIZE_BYTES, DEFAULT_DATABASE_PATH


DATABASE_PATH = os.environ.get("GRIDSTORE_DATABASE_PATH", DEFAULT_DATABASE_PATH)

BUCKET_NAME = os.environ.get("GRIDSTORE_BUCKET_NAME", DEFAULT_BUCKET_NAME)

CHUNK_SIZE_BYTES = int(os.environ.get("GRIDSTORE_CHUNK_SIZE_BYTES", str(DEFAULT_CHUNK_SIZE_BYTES)))

SERVER_HOST = os.environ.get("GRIDSTORE_HOST", "0.0.0.0")

SERVER_PORT = int(os.environ.get("GRIDSTORE_PORT", "8000"))
