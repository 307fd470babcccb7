"""
Pydantic model for MISP attributes

MISP returns most scalar fields as strings but is not consistent about it,
so loose fields are coerced to text and first_seen/last_seen are kept as a
tagged value instead of being assumed to be strings.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator


def _to_text(value: Any) -> str:
    """Coerce a loosely typed scalar to a string, None becomes empty"""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


LooseStr = Annotated[str, BeforeValidator(_to_text)]
LooseBool = Annotated[bool, BeforeValidator(lambda v: False if v is None else v)]


class SeenKind(str, Enum):
    ABSENT = "absent"
    STRING = "string"
    OTHER = "other"


@dataclass(frozen=True)
class SeenValue:
    """
    first_seen / last_seen value as received from MISP

    kind tells whether the field was missing, a string, or something else
    (number, object, ...). raw keeps the original value for logging.
    """
    kind: SeenKind
    raw: Any = None

    @classmethod
    def from_raw(cls, value: Any) -> 'SeenValue':
        if isinstance(value, SeenValue):
            return value
        if value is None:
            return cls(SeenKind.ABSENT)
        if isinstance(value, str):
            return cls(SeenKind.STRING, value)
        return cls(SeenKind.OTHER, value)

    @classmethod
    def absent(cls) -> 'SeenValue':
        return cls(SeenKind.ABSENT)

    @property
    def text(self) -> Optional[str]:
        """The string value, or None unless kind is STRING"""
        return self.raw if self.kind == SeenKind.STRING else None


Seen = Annotated[SeenValue, BeforeValidator(SeenValue.from_raw)]


class MISPEvent(BaseModel):
    """Parent event descriptor embedded in an attribute"""

    org_id: LooseStr = ""
    orgc_id: LooseStr = ""
    id: LooseStr = ""
    info: LooseStr = ""
    uuid: LooseStr = ""
    distribution: LooseStr = ""

    model_config = ConfigDict(extra='allow')


class MISPAttribute(BaseModel):
    """
    Raw indicator as returned by MISP attributes/restSearch

    type and value are required; everything else falls back to an empty
    value when missing.
    """

    id: LooseStr = ""
    event_id: LooseStr = ""
    object_id: LooseStr = ""
    uuid: LooseStr = ""
    category: LooseStr = ""
    type: str = Field(..., min_length=1, description="MISP attribute type, e.g. ip-dst")
    value: str = Field(..., description="The indicator value")
    to_ids: LooseBool = False
    deleted: LooseBool = False
    timestamp: LooseStr = Field(default="", description="Unix epoch seconds as a string")
    first_seen: Seen = Field(default_factory=SeenValue.absent)
    last_seen: Seen = Field(default_factory=SeenValue.absent)
    comment: LooseStr = ""
    event: MISPEvent = Field(default_factory=MISPEvent, alias="Event")

    @field_validator('event', mode='before')
    @classmethod
    def empty_event(cls, v: Any) -> Any:
        return {} if v is None else v

    model_config = ConfigDict(
        extra='allow',  # MISP adds fields between versions
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )
