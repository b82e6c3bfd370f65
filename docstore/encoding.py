"""JSON text encoding of documents, with tagged binary and datetime values."""

import base64
import json
from datetime import datetime, timezone
from typing import Any, Dict

from docstore.exceptions import InvalidDocumentError

DATE_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def encode_value(value: Any) -> Any:
    """
    Convert a Python value into its JSON-compatible stored form.

    bytes-like values become {"$binary": <base64>} and datetimes become
    {"$date": <UTC timestamp>}; the fixed-width timestamp keeps lexical and
    chronological order identical.
    """
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {"$binary": base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return {"$date": value.astimezone(timezone.utc).strftime(DATE_FORMAT)}
    if isinstance(value, dict):
        encoded = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise InvalidDocumentError(f"Document keys must be strings, got {type(key).__name__}")
            encoded[key] = encode_value(item)
        return encoded
    if isinstance(value, (list, tuple)):
        return [encode_value(item) for item in value]
    raise InvalidDocumentError(f"Cannot encode object of type {type(value).__name__}")


def _decode_object(obj: Dict[str, Any]) -> Any:
    if len(obj) == 1:
        if "$binary" in obj:
            return base64.b64decode(obj["$binary"])
        if "$date" in obj:
            return datetime.strptime(obj["$date"], DATE_FORMAT).replace(tzinfo=timezone.utc)
    return obj


def encode_document(document: Dict[str, Any]) -> str:
    if not isinstance(document, dict):
        raise InvalidDocumentError(f"Expected a document, got {type(document).__name__}")
    return json.dumps(encode_value(document), separators=(",", ":"), ensure_ascii=False)


def decode_document(text: str) -> Dict[str, Any]:
    return json.loads(text, object_hook=_decode_object)


def encode_key(value: Any) -> str:
    """Canonical text of an _id value, used as the primary key column."""
    return json.dumps(encode_value(value), separators=(",", ":"), ensure_ascii=False)


def normalize_value(value: Any) -> Any:
    """Round-trip a query value so it compares equal to stored values (naive datetimes become UTC)."""
    return json.loads(json.dumps(encode_value(value)), object_hook=_decode_object)
