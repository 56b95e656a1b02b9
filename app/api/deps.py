from typing import Annotated

from fastapi import Depends, Request, Response
from fastapi_limiter.depends import RateLimiter

from app.core.config import settings
from app.db.event_store import EventStore, SqlEventStore
from app.schemas.tenants import RequestMetadata
from app.services.analytics_service import AnalyticsService
from app.services.event_processor import EventProcessor
from app.services.query_service import QueryService

_limiter = RateLimiter(times=settings.rate_limit.times, seconds=settings.rate_limit.seconds)


async def rate_limit(request: Request, response: Response) -> None:
    if settings.rate_limit.enabled:
        await _limiter(request, response)


def get_event_store() -> EventStore:
    return SqlEventStore()


EventStoreDep = Annotated[EventStore, Depends(get_event_store)]


def get_event_processor(store: EventStoreDep) -> EventProcessor:
    return EventProcessor(store)


def get_query_service(store: EventStoreDep) -> QueryService:
    return QueryService(store)


def get_analytics_service(store: EventStoreDep) -> AnalyticsService:
    return AnalyticsService(store)


def get_request_metadata(request: Request) -> RequestMetadata:
    return RequestMetadata(
        user_agent=request.headers.get("user-agent") or None,
        ip_address=request.client.host if request.client else None,
    )
