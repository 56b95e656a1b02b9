from typing import Optional

from loguru import logger

from app.db.event_store import EventCriteria, EventStore
from app.schemas.events import EventStats
from app.schemas.tenants import TenantContext
from app.services.auth_service import require_tenant


class AnalyticsService:
    def __init__(self, store: EventStore):
        self.store = store

    async def get_stats(self, tenant: Optional[TenantContext]) -> EventStats:
        """
        Summary of a project's events: total count, distinct users and event
        names, newest and oldest timestamps. Recomputed from the store on every
        call; an empty project yields zeros and nulls.
        """
        tenant = require_tenant(tenant)
        stats = await self.store.aggregate_stats(
            EventCriteria(organization_id=tenant.organization_id, project_id=tenant.project_id)
        )
        logger.debug(f"Project {tenant.project_id}: {stats.total_events} events, {stats.unique_user_count} users")
        return stats
