import secrets
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from app.core.exceptions import ValidationError
from app.schemas.events import EventCreate, RawEventSchema
from app.schemas.tenants import RequestMetadata, TenantContext

EVENT_ID_PREFIX = "evt_"

# Wire names used in error messages
_FIELD_NAMES = {
    "event_id": "eventId",
    "user_id": "userId",
    "event_name": "eventName",
    "properties": "properties",
    "timestamp": "timestamp",
    "session_id": "sessionId",
}


def generate_event_id() -> str:
    """Random opaque identity: the prefix plus 128 bits from the OS CSPRNG."""
    return EVENT_ID_PREFIX + secrets.token_hex(16)


def _field_name(error: dict) -> str:
    field = str(error["loc"][0]) if error["loc"] else "event"
    return _FIELD_NAMES.get(field, field)


def _describe(error: PydanticValidationError, index: Optional[int]) -> ValidationError:
    errors = error.errors()
    first = errors[0]
    field = _field_name(first)
    where = f" (event at index {index})" if index is not None else ""

    if first["type"] in ("missing", "string_too_short") or first.get("input") is None:
        message = f"{field} is required for each event{where}"
    else:
        message = f"Invalid {field}{where}: {first['msg']}"

    details = [{"index": index, "field": _field_name(e), "message": e["msg"]} for e in errors]
    return ValidationError(message, errors=details)


def normalize_event(
    raw: Any,
    tenant: TenantContext,
    metadata: Optional[RequestMetadata] = None,
    *,
    index: Optional[int] = None,
) -> EventCreate:
    """
    Validate and canonicalize one raw record into a storable event.

    Tenant ids always come from `tenant`, whatever the record says. Absent
    identities and timestamps are filled in; an unparsable timestamp is rejected.
    """
    where = f" (event at index {index})" if index is not None else ""
    if not isinstance(raw, Mapping):
        raise ValidationError(f"Each event must be a JSON object{where}")

    try:
        parsed = RawEventSchema.model_validate(raw)
    except PydanticValidationError as e:
        raise _describe(e, index) from e

    metadata = metadata or RequestMetadata()

    return EventCreate(
        event_id=parsed.event_id or generate_event_id(),
        user_id=parsed.user_id,
        event_name=parsed.event_name,
        properties=parsed.properties or {},
        timestamp=parsed.timestamp or datetime.now(timezone.utc),
        session_id=parsed.session_id,
        organization_id=tenant.organization_id,
        project_id=tenant.project_id,
        user_agent=metadata.user_agent,
        ip_address=metadata.ip_address,
    )
