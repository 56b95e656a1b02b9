from typing import Any, List, Optional, Sequence

from loguru import logger

from app.core.config import settings
from app.core.exceptions import (
    BatchTooLargeError,
    EmptyBatchError,
    StoreError,
)
from app.db.event_store import EventStore, InsertOutcome
from app.schemas.events import EventCreate, IngestResult
from app.schemas.tenants import RequestMetadata, TenantContext
from app.services.auth_service import require_tenant
from app.services.event_normalizer import normalize_event


class EventProcessor:
    """
    Batch ingestion: normalize every record, write the batch once, reconcile outcomes.

    Duplicate identities are dropped, never merged or overwritten: the first
    stored copy of an eventId wins, including against later records of the
    same batch.
    """

    def __init__(self, store: EventStore, max_batch_size: Optional[int] = None):
        self.store = store
        self.max_batch_size = max_batch_size or settings.ingestion.max_batch_size

    def _normalize_batch(
        self,
        raw_events: Sequence[Any],
        tenant: TenantContext,
        metadata: Optional[RequestMetadata],
    ) -> List[EventCreate]:
        # Any invalid record rejects the whole batch before a write is attempted
        return [
            normalize_event(raw, tenant, metadata, index=index)
            for index, raw in enumerate(raw_events)
        ]

    async def ingest(
        self,
        raw_events: Optional[Sequence[Any]],
        tenant: Optional[TenantContext],
        metadata: Optional[RequestMetadata] = None,
    ) -> IngestResult:
        tenant = require_tenant(tenant)

        if not raw_events:
            raise EmptyBatchError()
        if len(raw_events) > self.max_batch_size:
            logger.warning(f"Rejected batch of {len(raw_events)} events for project {tenant.project_id}")
            raise BatchTooLargeError(self.max_batch_size)

        events = self._normalize_batch(raw_events, tenant, metadata)
        total = len(events)

        unique: List[EventCreate] = []
        seen = set()
        for event in events:
            if event.event_id in seen:
                continue
            seen.add(event.event_id)
            unique.append(event)
        in_batch_duplicates = total - len(unique)

        results = await self.store.insert_many(unique)

        failures = [r for r in results if r.outcome is InsertOutcome.FAILED]
        if failures:
            logger.error(
                f"{len(failures)} of {total} events failed to store for project {tenant.project_id}: "
                f"{failures[0].reason}"
            )
            raise StoreError("Error storing events")

        inserted_ids = {r.event_id for r in results if r.outcome is InsertOutcome.INSERTED}
        accepted = [event for event in unique if event.event_id in inserted_ids]
        duplicates = total - len(accepted)

        if duplicates:
            logger.info(
                f"Project {tenant.project_id}: {len(accepted)} of {total} events ingested, "
                f"{duplicates} duplicates ignored ({in_batch_duplicates} within the batch)"
            )
        else:
            logger.info(f"Project {tenant.project_id}: {len(accepted)} events ingested")

        return IngestResult(
            ingested=len(accepted),
            total=total,
            duplicates=duplicates,
            events=accepted,
        )
