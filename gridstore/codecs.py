"""Representation strategies for file documents returned to callers.

The default is the store's native representation: plain dicts. A bucket or a
single find call may instead pick a DocumentCodec (document -> object) or a
TypeMap (callables applied to the root document and to embedded documents).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from gridstore.types import GridFile


class DocumentCodec(ABC):
    """Converts between stored documents and application objects."""

    @abstractmethod
    def decode(self, document: Dict[str, Any]) -> Any:
        ...

    @abstractmethod
    def encode(self, value: Any) -> Dict[str, Any]:
        ...


class GridFileCodec(DocumentCodec):
    """Decodes file documents into GridFile instances."""

    def decode(self, document: Dict[str, Any]) -> GridFile:
        return GridFile.from_document(document)

    def encode(self, value: GridFile) -> Dict[str, Any]:
        return value.to_document()


@dataclass(frozen=True)
class TypeMap:
    """
    Callables building the returned representation.

    root: applied to the top-level document
    document: applied to every embedded document, innermost first
    """
    root: Callable[[Dict[str, Any]], Any] = dict
    document: Callable[[Dict[str, Any]], Any] = dict

    def apply(self, value: Dict[str, Any]) -> Any:
        return self.root({key: self._apply_embedded(item) for key, item in value.items()})

    def _apply_embedded(self, value: Any) -> Any:
        if isinstance(value, dict):
            return self.document({key: self._apply_embedded(item) for key, item in value.items()})
        if isinstance(value, list):
            return [self._apply_embedded(item) for item in value]
        return value


def make_decoder(codec: Optional[DocumentCodec], type_map: Optional[TypeMap]) -> Callable[[Dict[str, Any]], Any]:
    """Decoder for the chosen representation; identity when neither is set."""
    if codec is not None:
        return codec.decode
    if type_map is not None:
        return type_map.apply
    return lambda document: document
