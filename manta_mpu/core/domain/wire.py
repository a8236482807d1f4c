"""
Wire payload models exchanged with the object-storage service.

Field names follow the service's camelCase JSON; Python code uses the
snake_case attributes.
"""

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base model with camelCase aliases."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_json_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")


class OpenSessionRequest(WireModel):
    object_path: str = Field(..., min_length=1)
    durability_level: int = Field(..., gt=0)


class OpenSessionResponse(WireModel):
    id: str = Field(..., min_length=1)
    parts_location: str = Field(..., min_length=1)

    @field_validator("parts_location")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/") or value


class UploadPartResponse(WireModel):
    server_identifier: str = Field(..., min_length=1)
    size_bytes: Optional[int] = Field(default=None, ge=0)
    checksum: Optional[str] = None


class CommitBody(WireModel):
    parts_location: str
    ordered_identifiers: List[str] = Field(..., min_length=1)


class ObjectReferencePayload(WireModel):
    path: str
    content_digest: Optional[str] = None
    size_bytes: Optional[int] = None


class CommitResponse(WireModel):
    object_reference: Optional[Union[ObjectReferencePayload, str]] = None


class AbortBody(WireModel):
    parts_location: str


class SessionStateResponse(WireModel):
    """
    Remote view of a session.

    state is "created" or "finalizing"; once finalizing, result is either
    "committed" or "aborted".
    """
    id: Optional[str] = None
    state: str
    result: Optional[str] = None
    object_reference: Optional[Union[ObjectReferencePayload, str]] = None

    @property
    def is_committed(self) -> bool:
        return self.result == "committed"

    @property
    def is_aborted(self) -> bool:
        return self.result == "aborted"
