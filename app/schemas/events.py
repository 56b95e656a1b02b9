from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from fastapi import status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are taken as UTC; aware ones are converted to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Path segments under /events that are routes of their own
RESERVED_EVENT_IDS = frozenset({"stats"})


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class RawEventSchema(CamelModel):
    """One untrusted record as submitted by a client."""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )

    event_id: Optional[str] = Field(None, description="Business identity; generated when absent.")
    user_id: str = Field(..., min_length=1, description="Actor identifier.")
    event_name: str = Field(..., min_length=1, description="Event type, e.g. 'signup'.")
    # Any-typed keys keep whitespace stripping out of the payload
    properties: Optional[Dict[Any, Any]] = Field(None, description="Open payload, never inspected.")
    timestamp: Optional[datetime] = Field(None, description="When the event occurred (ISO-8601 or epoch).")
    session_id: Optional[str] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def blank_timestamp_is_absent(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("event_id", "session_id", mode="after")
    @classmethod
    def empty_string_is_absent(cls, value: Optional[str]) -> Optional[str]:
        return value or None

    @field_validator("event_id", mode="after")
    @classmethod
    def event_id_not_reserved(cls, value: Optional[str]) -> Optional[str]:
        if value in RESERVED_EVENT_IDS:
            raise ValueError(f"'{value}' is a reserved event id")
        return value


class EventCreate(CamelModel):
    """A normalized event ready to be written to the store."""
    event_id: str
    user_id: str
    event_name: str
    properties: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
    session_id: Optional[str] = None
    organization_id: str
    project_id: str
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None

    @field_validator("timestamp", mode="after")
    @classmethod
    def timestamp_in_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class EventSchema(EventCreate):
    """A stored event as returned to clients."""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at", mode="after")
    @classmethod
    def lifecycle_in_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class IngestRequest(BaseModel):
    # Records stay untyped here; each one is validated by the normalizer.
    events: Optional[List[Any]] = None


class IngestStatus(str, Enum):
    CREATED = "created"
    PARTIAL = "partial"


class IngestResult(CamelModel):
    ingested: int
    total: int
    duplicates: int = 0
    events: List[EventCreate] = Field(default_factory=list)

    @property
    def status(self) -> IngestStatus:
        return IngestStatus.PARTIAL if self.duplicates else IngestStatus.CREATED

    @property
    def status_code(self) -> int:
        if self.status is IngestStatus.PARTIAL:
            return status.HTTP_207_MULTI_STATUS
        return status.HTTP_201_CREATED

    @property
    def message(self) -> str:
        if self.status is IngestStatus.PARTIAL:
            return f"{self.ingested} events ingested, {self.duplicates} duplicates ignored"
        return f"{self.ingested} events ingested successfully"


class EventFilters(BaseModel):
    """Optional list filters; all given filters are ANDed."""
    user_id: Optional[str] = None
    event_name: Optional[str] = None
    session_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class Pagination(CamelModel):
    current_page: int
    limit: int
    total_pages: int
    has_next: bool
    has_prev: bool


class EventPage(CamelModel):
    total_count: int
    events: List[EventSchema]
    pagination: Pagination
    message: str = Field("Events fetched successfully", exclude=True)


class EventStats(CamelModel):
    total_events: int = 0
    unique_user_count: int = 0
    unique_event_count: int = 0
    latest_event: Optional[datetime] = None
    oldest_event: Optional[datetime] = None

    @field_validator("latest_event", "oldest_event", mode="after")
    @classmethod
    def bounds_in_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)
