"""
Pydantic model for Sentinel threat intelligence indicators

Field names follow Python conventions; the model serializes to the camelCase
property names of the Sentinel threatIntelligence API.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel


def format_timestamp(value: datetime) -> str:
    """RFC 3339 in UTC with a Z suffix"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


class ThreatIndicator(BaseModel):
    """
    Translated indicator ready to be created in Sentinel

    display_name is the natural key used to detect indicators that were
    already pushed by an earlier run.
    """

    display_name: str
    pattern: str
    pattern_type: str
    indicator_types: List[str] = Field(default_factory=list)
    threat_types: List[str] = Field(default_factory=list)
    labels: List[str] = Field(default_factory=list)
    description: str = ""
    external_id: str = ""
    revoked: bool = False
    source: Optional[str] = None
    created_by_ref: Optional[str] = None

    created: datetime
    modified: datetime
    last_updated_time_utc: datetime
    valid_from: datetime
    valid_until: datetime

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @field_serializer('created', 'modified', 'last_updated_time_utc', 'valid_from', 'valid_until')
    def _serialize_timestamp(self, value: datetime) -> str:
        return format_timestamp(value)

    @property
    def threat_type(self) -> str:
        return self.threat_types[0] if self.threat_types else "Other"

    def to_sentinel_payload(self) -> Dict[str, Any]:
        """
        Request body for the createIndicator endpoint

        Returns:
            {"kind": "indicator", "properties": {...camelCase fields...}}
        """
        return {
            "kind": "indicator",
            "properties": self.model_dump(by_alias=True, exclude_none=True),
        }
