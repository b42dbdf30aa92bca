"""
Structured channel messages.

Text frames carry JSON records; binary frames carry raw chunk bytes with
no envelope. The structured side is a closed set:

    {"type": "file-info", "name": ..., "size": ..., "fileType": ...}
    {"type": "ready"}

Anything else with a string-ish "type" parses to UnknownMessage so the
engine can log and drop it.
"""

import json
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from errors import MalformedMessage
from transfer.models import FileMetadata


class FileInfoMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["file-info"] = "file-info"
    name: str
    size: int = Field(ge=0)
    file_type: str = Field("", alias="fileType")

    @classmethod
    def from_metadata(cls, metadata: FileMetadata) -> "FileInfoMessage":
        return cls(name=metadata.name, size=metadata.size, file_type=metadata.media_type)

    def to_metadata(self) -> FileMetadata:
        return FileMetadata(name=self.name, size=self.size, media_type=self.file_type)


class ReadyMessage(BaseModel):
    type: Literal["ready"] = "ready"


class UnknownMessage(BaseModel):
    type: str
    raw: str


ControlMessage = Annotated[
    Union[FileInfoMessage, ReadyMessage], Field(discriminator="type")
]
_control_adapter = TypeAdapter(ControlMessage)
KNOWN_TYPES = frozenset({"file-info", "ready"})


def parse_control_message(text: str) -> FileInfoMessage | ReadyMessage | UnknownMessage:
    """Parse and validate one text frame. Raises MalformedMessage."""
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedMessage(f"not JSON: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedMessage(f"expected an object, got {type(payload).__name__}")

    kind = payload.get("type")
    if not isinstance(kind, str) or kind not in KNOWN_TYPES:
        return UnknownMessage(type=str(kind), raw=text)
    try:
        return _control_adapter.validate_python(payload)
    except ValidationError as e:
        raise MalformedMessage(f"invalid {kind!r} message: {e}") from e


def encode_control_message(message: FileInfoMessage | ReadyMessage) -> str:
    return json.dumps(message.model_dump(by_alias=True))
