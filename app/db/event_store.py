"""
Persistence contract for events and its SQLAlchemy implementation.

The engine only ever talks to an `EventStore`; the SQL adapter is the one
place that touches physical storage. Duplicate identities are reported as a
typed per-record outcome, never raised.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional, Sequence

from loguru import logger
from sqlalchemy import delete, distinct, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import StoreError
from app.db.db_helper import DataBaseHelper, db_helper
from app.db.models.event import Event, utcnow
from app.schemas.events import EventCreate, EventSchema, EventStats


class InsertOutcome(str, Enum):
    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    FAILED = "failed"


@dataclass(frozen=True)
class InsertResult:
    event_id: str
    outcome: InsertOutcome
    reason: Optional[str] = None


@dataclass(frozen=True)
class EventCriteria:
    """Store-neutral predicate. Tenant ids are mandatory; every other field narrows further."""
    organization_id: str
    project_id: str
    event_id: Optional[str] = None
    user_id: Optional[str] = None
    event_name: Optional[str] = None
    session_id: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class EventStore(ABC):

    @abstractmethod
    async def insert_many(self, events: Sequence[EventCreate]) -> List[InsertResult]:
        """Unordered best-effort insert; one result per submitted event, in submission order."""

    @abstractmethod
    async def find(self, criteria: EventCriteria, offset: int = 0, limit: Optional[int] = None) -> List[EventSchema]:
        """Matching events, newest first, ties in insertion order."""

    @abstractmethod
    async def count(self, criteria: EventCriteria) -> int:
        ...

    @abstractmethod
    async def find_one(self, criteria: EventCriteria) -> Optional[EventSchema]:
        ...

    @abstractmethod
    async def find_one_and_delete(self, criteria: EventCriteria) -> Optional[EventSchema]:
        ...

    @abstractmethod
    async def aggregate_stats(self, criteria: EventCriteria) -> EventStats:
        ...


def _where_clauses(criteria: EventCriteria) -> list:
    clauses = [
        Event.organization_id == criteria.organization_id,
        Event.project_id == criteria.project_id,
    ]
    if criteria.event_id is not None:
        clauses.append(Event.event_id == criteria.event_id)
    if criteria.user_id is not None:
        clauses.append(Event.user_id == criteria.user_id)
    if criteria.event_name is not None:
        clauses.append(Event.event_name == criteria.event_name)
    if criteria.session_id is not None:
        clauses.append(Event.session_id == criteria.session_id)
    if criteria.start is not None:
        clauses.append(Event.timestamp >= criteria.start)
    if criteria.end is not None:
        clauses.append(Event.timestamp <= criteria.end)
    return clauses


class SqlEventStore(EventStore):
    """EventStore on SQLAlchemy's async engine (PostgreSQL in production, SQLite in tests)."""

    def __init__(self, db: DataBaseHelper = db_helper):
        self.db = db

    def _insert_ignoring_duplicates(self):
        dialect = self.db.dialect_name
        if dialect == "postgresql":
            insert = postgresql.insert
        elif dialect == "sqlite":
            insert = sqlite.insert
        else:
            raise StoreError(f"Unsupported database dialect: {dialect}")
        return insert(Event.__table__).on_conflict_do_nothing(index_elements=["event_id"])

    async def insert_many(self, events: Sequence[EventCreate]) -> List[InsertResult]:
        if not events:
            return []

        now = utcnow()
        rows = [
            dict(event.model_dump(), created_at=now, updated_at=now)
            for event in events
        ]
        stmt = (
            self._insert_ignoring_duplicates()
            .values(rows)
            .returning(Event.event_id)
        )

        try:
            async with self.db.session() as session:
                result = await session.execute(stmt)
                inserted = set(result.scalars().all())
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error executing batch insert of {len(rows)} events: {e}")
            raise StoreError("Error storing events") from e

        logger.info(f"Inserted {len(inserted)} of {len(rows)} events, conflicts ignored.")
        return [
            InsertResult(
                event_id=event.event_id,
                outcome=InsertOutcome.INSERTED if event.event_id in inserted else InsertOutcome.DUPLICATE,
            )
            for event in events
        ]

    async def find(self, criteria: EventCriteria, offset: int = 0, limit: Optional[int] = None) -> List[EventSchema]:
        stmt = (
            select(Event)
            .where(*_where_clauses(criteria))
            .order_by(Event.timestamp.desc(), Event.id.asc())
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        try:
            async with self.db.session() as session:
                result = await session.execute(stmt)
                return [EventSchema.model_validate(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error fetching events: {e}")
            raise StoreError("Error fetching events") from e

    async def count(self, criteria: EventCriteria) -> int:
        stmt = select(func.count()).select_from(Event).where(*_where_clauses(criteria))
        try:
            async with self.db.session() as session:
                return (await session.execute(stmt)).scalar_one()
        except SQLAlchemyError as e:
            logger.error(f"Error counting events: {e}")
            raise StoreError("Error fetching events") from e

    async def find_one(self, criteria: EventCriteria) -> Optional[EventSchema]:
        stmt = select(Event).where(*_where_clauses(criteria)).limit(1)
        try:
            async with self.db.session() as session:
                row = (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error fetching event: {e}")
            raise StoreError("Error fetching event") from e
        return EventSchema.model_validate(row) if row is not None else None

    async def find_one_and_delete(self, criteria: EventCriteria) -> Optional[EventSchema]:
        # Single statement: of two racing deletes only one gets the row back
        target = select(Event.id).where(*_where_clauses(criteria)).limit(1).scalar_subquery()
        stmt = (
            delete(Event)
            .where(Event.id == target)
            .returning(Event)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self.db.session() as session:
                row = (await session.execute(stmt)).scalar_one_or_none()
                if row is None:
                    return None
                deleted = EventSchema.model_validate(row)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error deleting event: {e}")
            raise StoreError("Error deleting event") from e

        logger.info(f"Deleted event {deleted.event_id} of project {deleted.project_id}")
        return deleted

    async def aggregate_stats(self, criteria: EventCriteria) -> EventStats:
        stmt = select(
            func.count(Event.id).label("total_events"),
            func.count(distinct(Event.user_id)).label("unique_user_count"),
            func.count(distinct(Event.event_name)).label("unique_event_count"),
            func.max(Event.timestamp).label("latest_event"),
            func.min(Event.timestamp).label("oldest_event"),
        ).where(*_where_clauses(criteria))

        try:
            async with self.db.session() as session:
                row = (await session.execute(stmt)).one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error aggregating event statistics: {e}")
            raise StoreError("Error fetching event statistics") from e

        if row is None or not row.total_events:
            return EventStats()
        return EventStats.model_validate(row._asdict())
