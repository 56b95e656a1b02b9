import os

# Must be set before the application settings are first imported
os.environ.setdefault("APP_CONFIG__RATE_LIMIT__ENABLED", "false")

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

import pytest
import pytest_asyncio

from app.core.exceptions import AuthenticationError
from app.db.db_helper import DataBaseHelper
from app.db.event_store import (
    EventCriteria,
    EventStore,
    InsertOutcome,
    InsertResult,
    SqlEventStore,
)
from app.schemas.events import EventCreate, EventSchema, EventStats
from app.schemas.tenants import TenantContext
from app.services.auth_service import TenantResolver

BASE_TIME = datetime(2025, 10, 20, 12, 0, 0, tzinfo=timezone.utc)


class InMemoryEventStore(EventStore):
    """EventStore double keeping rows in insertion order."""

    def __init__(self, fail_reason: Optional[str] = None):
        self.rows: List[Tuple[int, EventSchema]] = []
        self.fail_reason = fail_reason
        self._seq = 0

    def _matches(self, event: EventSchema, c: EventCriteria) -> bool:
        return (
            event.organization_id == c.organization_id
            and event.project_id == c.project_id
            and (c.event_id is None or event.event_id == c.event_id)
            and (c.user_id is None or event.user_id == c.user_id)
            and (c.event_name is None or event.event_name == c.event_name)
            and (c.session_id is None or event.session_id == c.session_id)
            and (c.start is None or event.timestamp >= c.start)
            and (c.end is None or event.timestamp <= c.end)
        )

    def _matching(self, criteria: EventCriteria) -> List[Tuple[int, EventSchema]]:
        return [(seq, event) for seq, event in self.rows if self._matches(event, criteria)]

    async def insert_many(self, events: Sequence[EventCreate]) -> List[InsertResult]:
        results = []
        stored_ids = {event.event_id for _, event in self.rows}
        for event in events:
            if self.fail_reason:
                results.append(InsertResult(event.event_id, InsertOutcome.FAILED, self.fail_reason))
            elif event.event_id in stored_ids:
                results.append(InsertResult(event.event_id, InsertOutcome.DUPLICATE, "duplicate key"))
            else:
                now = datetime.now(timezone.utc)
                self._seq += 1
                self.rows.append((self._seq, EventSchema(**event.model_dump(), created_at=now, updated_at=now)))
                stored_ids.add(event.event_id)
                results.append(InsertResult(event.event_id, InsertOutcome.INSERTED))
        return results

    async def find(self, criteria: EventCriteria, offset: int = 0, limit: Optional[int] = None) -> List[EventSchema]:
        ordered = sorted(self._matching(criteria), key=lambda item: (-item[1].timestamp.timestamp(), item[0]))
        events = [event for _, event in ordered][offset:]
        return events[:limit] if limit is not None else events

    async def count(self, criteria: EventCriteria) -> int:
        return len(self._matching(criteria))

    async def find_one(self, criteria: EventCriteria) -> Optional[EventSchema]:
        matching = self._matching(criteria)
        return matching[0][1] if matching else None

    async def find_one_and_delete(self, criteria: EventCriteria) -> Optional[EventSchema]:
        matching = self._matching(criteria)
        if not matching:
            return None
        self.rows.remove(matching[0])
        return matching[0][1]

    async def aggregate_stats(self, criteria: EventCriteria) -> EventStats:
        events = [event for _, event in self._matching(criteria)]
        if not events:
            return EventStats()
        return EventStats(
            total_events=len(events),
            unique_user_count=len({e.user_id for e in events}),
            unique_event_count=len({e.event_name for e in events}),
            latest_event=max(e.timestamp for e in events),
            oldest_event=min(e.timestamp for e in events),
        )


class StaticTenantResolver(TenantResolver):
    def __init__(self, keys: Dict[str, TenantContext]):
        self.keys = keys

    async def resolve(self, api_key: str) -> TenantContext:
        if api_key not in self.keys:
            raise AuthenticationError("Invalid or inactive API key")
        return self.keys[api_key]


def make_event(tenant: TenantContext, event_id: str, minutes: int = 0, **overrides) -> EventCreate:
    data = dict(
        event_id=event_id,
        user_id="u1",
        event_name="page_view",
        properties={},
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        organization_id=tenant.organization_id,
        project_id=tenant.project_id,
    )
    data.update(overrides)
    return EventCreate(**data)


@pytest.fixture
def tenant() -> TenantContext:
    return TenantContext(organization_id="org_1", project_id="proj_1")


@pytest.fixture
def other_tenant() -> TenantContext:
    return TenantContext(organization_id="org_2", project_id="proj_2")


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def event_factory():
    return make_event


@pytest.fixture
def resolver_factory():
    return StaticTenantResolver


@pytest.fixture
def memory_store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture
def failing_store() -> InMemoryEventStore:
    return InMemoryEventStore(fail_reason="disk full")


@pytest_asyncio.fixture
async def sqlite_db(tmp_path):
    helper = DataBaseHelper(url=f"sqlite+aiosqlite:///{tmp_path / 'events.sqlite'}")
    await helper.create_tables()
    yield helper
    await helper.dispose()


@pytest.fixture
def sql_store(sqlite_db) -> SqlEventStore:
    return SqlEventStore(sqlite_db)
