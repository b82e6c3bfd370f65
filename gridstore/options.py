"""Option structs for buckets and bucket operations.

Every recognized option is declared with its type and default; unknown keys
and wrongly typed values are rejected when the options are parsed.
"""

from typing import Annotated, Any, Dict, List, Optional, Tuple, Type, TypeVar, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    StrictBool,
    StrictInt,
    StrictStr,
    ValidationError,
    field_validator,
    model_validator,
)

from common.constants import DEFAULT_BUCKET_NAME, DEFAULT_CHUNK_SIZE_BYTES
from docstore.collection import ReadConcern, WriteConcern
from gridstore.codecs import DocumentCodec, TypeMap
from gridstore.exceptions import InvalidArgumentError

T = TypeVar("T", bound=BaseModel)

SortOption = Union[Dict[str, int], List[Tuple[str, int]]]


def _check_chunk_size(value: int) -> int:
    if value < 1:
        raise ValueError(f'Expected "chunk_size_bytes" option to be >= 1, {value} given')
    return value


ChunkSize = Annotated[StrictInt, AfterValidator(_check_chunk_size)]


class _Options(BaseModel):
    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True, frozen=True)


class _RepresentationOptions(_Options):
    codec: Optional[DocumentCodec] = None
    type_map: Optional[TypeMap] = None

    @model_validator(mode="after")
    def check_representation(self):
        if self.codec is not None and self.type_map is not None:
            raise ValueError('Cannot provide both "codec" and "type_map" options')
        return self


class BucketOptions(_RepresentationOptions):
    """Options applied at bucket construction and inherited by its operations."""
    bucket_name: StrictStr = DEFAULT_BUCKET_NAME
    chunk_size_bytes: ChunkSize = DEFAULT_CHUNK_SIZE_BYTES
    disable_md5: StrictBool = False
    read_concern: Optional[ReadConcern] = None
    write_concern: Optional[WriteConcern] = None

    @field_validator("bucket_name")
    @classmethod
    def check_bucket_name(cls, value: str) -> str:
        if not value:
            raise ValueError('Expected "bucket_name" option to be a non-empty string')
        return value


class UploadOptions(_Options):
    """Per-upload overrides; unset values fall back to the bucket options."""
    file_id: Any = None
    chunk_size_bytes: Optional[ChunkSize] = None
    disable_md5: Optional[StrictBool] = None
    metadata: Optional[Dict[str, Any]] = None


class DownloadByNameOptions(_Options):
    revision: StrictInt = -1


class FindOptions(_RepresentationOptions):
    """
    Options of find/find_one.

    An explicitly passed codec=None (or type_map=None) resets the bucket's
    representation for that call; fields left unset are inherited.
    """
    projection: Optional[Dict[str, Any]] = None
    sort: Optional[SortOption] = None
    skip: StrictInt = 0
    limit: StrictInt = 0

    @field_validator("skip", "limit")
    @classmethod
    def check_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError(f"Expected a non-negative integer, {value} given")
        return value


def _format_validation_error(error: ValidationError) -> str:
    messages = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail["loc"])
        message = detail["msg"]
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        messages.append(f"{location}: {message}" if location else message)
    return "; ".join(messages)


def parse_options(model: Type[T], options: Dict[str, Any]) -> T:
    """
    Validate keyword options into the given options model.

    Raises:
        InvalidArgumentError: Unknown option, wrong type or invalid value
    """
    try:
        return model(**options)
    except ValidationError as e:
        raise InvalidArgumentError(_format_validation_error(e)) from e
