import math
from typing import Optional

from loguru import logger

from app.core.config import settings
from app.core.exceptions import NotFoundError
from app.db.event_store import EventCriteria, EventStore
from app.schemas.events import EventFilters, EventPage, EventSchema, Pagination, as_utc
from app.schemas.tenants import TenantContext
from app.services.auth_service import require_tenant


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class QueryService:
    """Tenant-scoped reads and deletes. Out-of-tenant events look exactly like missing ones."""

    def __init__(self, store: EventStore):
        self.store = store

    @staticmethod
    def build_criteria(filters: Optional[EventFilters], tenant: TenantContext) -> EventCriteria:
        filters = filters or EventFilters()
        return EventCriteria(
            organization_id=tenant.organization_id,
            project_id=tenant.project_id,
            user_id=_clean(filters.user_id),
            event_name=_clean(filters.event_name),
            session_id=_clean(filters.session_id),
            start=as_utc(filters.start_date),
            end=as_utc(filters.end_date),
        )

    @staticmethod
    def clamp_page(page: Optional[int], limit: Optional[int]) -> tuple[int, int]:
        page = page if page and page > 0 else 1
        limit = limit if limit and limit > 0 else settings.query.default_limit
        return page, min(limit, settings.query.max_limit)

    async def list_events(
        self,
        filters: Optional[EventFilters],
        tenant: Optional[TenantContext],
        page: Optional[int] = 1,
        limit: Optional[int] = None,
    ) -> EventPage:
        tenant = require_tenant(tenant)
        page, limit = self.clamp_page(page, limit)
        criteria = self.build_criteria(filters, tenant)

        total_count = await self.store.count(criteria)
        events = await self.store.find(criteria, offset=(page - 1) * limit, limit=limit)

        total_pages = math.ceil(total_count / limit)
        logger.debug(f"Project {tenant.project_id}: page {page}/{total_pages} of {total_count} events")

        return EventPage(
            total_count=total_count,
            events=events,
            pagination=Pagination(
                current_page=page,
                limit=limit,
                total_pages=total_pages,
                has_next=page < total_pages,
                has_prev=page > 1,
            ),
            message="No events found" if total_count == 0 else "Events fetched successfully",
        )

    def _by_identity(self, event_id: str, tenant: TenantContext) -> EventCriteria:
        return EventCriteria(
            organization_id=tenant.organization_id,
            project_id=tenant.project_id,
            event_id=event_id,
        )

    async def get_event(self, event_id: str, tenant: Optional[TenantContext]) -> EventSchema:
        tenant = require_tenant(tenant)
        event = await self.store.find_one(self._by_identity(event_id, tenant))
        if event is None:
            raise NotFoundError("Event not found")
        return event

    async def delete_event(self, event_id: str, tenant: Optional[TenantContext]) -> EventSchema:
        tenant = require_tenant(tenant)
        event = await self.store.find_one_and_delete(self._by_identity(event_id, tenant))
        if event is None:
            raise NotFoundError("Event not found or already deleted")
        return event
