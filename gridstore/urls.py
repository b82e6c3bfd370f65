"""
Process-wide gridfs://<alias>/<filename> addressing.

A bucket registers itself under an alias; open_url() then resolves a path
against that bucket and opens a download stream (read modes) or an upload
stream (write modes).
"""

import threading
from typing import TYPE_CHECKING, Any, Dict, Tuple, Union
from urllib.parse import unquote, urlsplit

from common.constants import STREAM_WRAPPER_PROTOCOL
from common.logging_config import get_logger
from gridstore.exceptions import InvalidArgumentError
from gridstore.readable_stream import ReadableStream
from gridstore.writable_stream import WritableStream

if TYPE_CHECKING:
    from gridstore.bucket import Bucket

logger = get_logger(__name__)

READ_MODES = ("r", "rb")
WRITE_MODES = ("w", "wb")

_aliases: Dict[str, "Bucket"] = {}
_aliases_lock = threading.Lock()


def split_path(path: str) -> Tuple[str, str]:
    """
    Split a gridfs://<alias>/<filename> path.

    Returns:
        Tuple of (alias, filename), both percent-decoded

    Raises:
        InvalidArgumentError: Wrong scheme, missing alias or missing filename
    """
    if not isinstance(path, str):
        raise InvalidArgumentError.invalid_type("path", path, "str")

    parts = urlsplit(path)
    if parts.scheme != STREAM_WRAPPER_PROTOCOL or not parts.netloc:
        raise InvalidArgumentError(f'Expected a "{STREAM_WRAPPER_PROTOCOL}://<alias>/<filename>" path, got "{path}"')

    filename = unquote(parts.path[1:])
    if not filename:
        raise InvalidArgumentError(f'Missing filename in path "{path}"')

    return unquote(parts.netloc), filename


def register_alias(alias: str, bucket: "Bucket") -> None:
    """Register (or replace) the bucket reachable under an alias."""
    if not isinstance(alias, str) or not alias or "/" in alias:
        raise InvalidArgumentError(f'Invalid alias "{alias}"')

    with _aliases_lock:
        _aliases[alias] = bucket

    logger.info(f"Registered alias {alias!r} for bucket {bucket.bucket_name} in {bucket.database_name}")


def unregister_alias(alias: str) -> None:
    with _aliases_lock:
        _aliases.pop(alias, None)


def get_bucket(alias: str) -> "Bucket":
    """
    Raises:
        InvalidArgumentError: No bucket is registered under this alias
    """
    with _aliases_lock:
        bucket = _aliases.get(alias)
    if bucket is None:
        raise InvalidArgumentError(f'No bucket registered for alias "{alias}"')
    return bucket


def open_url(path: str, mode: str = "rb", **options: Any) -> Union[ReadableStream, WritableStream]:
    """
    Open a stream for a gridfs://<alias>/<filename> path.

    Args:
        path: Path of a bucket registered with Bucket.register_global_alias()
        mode: "r"/"rb" to download, "w"/"wb" to upload
        options: revision for read modes; upload options for write modes

    Raises:
        InvalidArgumentError: Unknown alias, malformed path or unsupported mode
        gridstore.exceptions.FileNotFoundError: Read mode and no matching file revision
    """
    alias, _ = split_path(path)
    context = get_bucket(alias).resolve_stream_context(path, mode, **options)

    if "file" in context:
        return ReadableStream(context["collection_wrapper"], context["file"])

    return WritableStream(context["collection_wrapper"], context["filename"], **context["options"])
