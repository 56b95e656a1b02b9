import time
from datetime import datetime
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query
from loguru import logger
from starlette.responses import JSONResponse

from app.api.deps import (
    get_analytics_service,
    get_event_processor,
    get_query_service,
    get_request_metadata,
    rate_limit,
)
from app.schemas.events import (
    EventFilters,
    EventPage,
    EventSchema,
    EventStats,
    IngestRequest,
    IngestResult,
)
from app.schemas.responses import ApiResponse
from app.schemas.tenants import RequestMetadata, TenantContext
from app.services.analytics_service import AnalyticsService
from app.services.auth_service import get_tenant_context
from app.services.event_processor import EventProcessor
from app.services.query_service import QueryService

events_router = APIRouter(prefix="/events", dependencies=[Depends(rate_limit)])

Tenant = Annotated[TenantContext, Depends(get_tenant_context)]


@events_router.post("", responses={201: {"model": ApiResponse[IngestResult]}, 207: {"model": ApiResponse[IngestResult]}})
async def ingest_events(
    body: IngestRequest,
    tenant: Tenant,
    processor: Annotated[EventProcessor, Depends(get_event_processor)],
    metadata: Annotated[RequestMetadata, Depends(get_request_metadata)],
):
    """Accepts a JSON array of events; 201 when all are stored, 207 when duplicates were ignored."""

    start_time = time.perf_counter()
    result = await processor.ingest(body.events, tenant, metadata)
    elapsed = time.perf_counter() - start_time
    logger.debug(f"Ingested {result.ingested}/{result.total} events in {elapsed:.4f}s")

    content = ApiResponse[IngestResult](status_code=result.status_code, data=result, message=result.message)
    return JSONResponse(
        status_code=result.status_code,
        content=content.model_dump(mode="json", by_alias=True),
    )


@events_router.get("", response_model=ApiResponse[EventPage])
async def list_events(
    tenant: Tenant,
    service: Annotated[QueryService, Depends(get_query_service)],
    user_id: Optional[str] = Query(None, alias="userId"),
    event_name: Optional[str] = Query(None, alias="eventName"),
    session_id: Optional[str] = Query(None, alias="sessionId"),
    start_date: Optional[datetime] = Query(None, alias="startDate", description="Inclusive lower bound (ISO-8601)"),
    end_date: Optional[datetime] = Query(None, alias="endDate", description="Inclusive upper bound (ISO-8601)"),
    page: int = Query(1, description="1-based page number"),
    limit: int = Query(50, description="Page size, capped at 1000"),
):
    """Events of the current project, newest first."""
    filters = EventFilters(
        user_id=user_id,
        event_name=event_name,
        session_id=session_id,
        start_date=start_date,
        end_date=end_date,
    )
    result = await service.list_events(filters, tenant, page=page, limit=limit)
    return ApiResponse[EventPage](status_code=200, data=result, message=result.message)


@events_router.get("/stats", response_model=ApiResponse[EventStats])
async def get_event_stats(
    tenant: Tenant,
    service: Annotated[AnalyticsService, Depends(get_analytics_service)],
):
    stats = await service.get_stats(tenant)
    return ApiResponse[EventStats](status_code=200, data=stats, message="Event statistics fetched successfully")


@events_router.get("/{event_id}", response_model=ApiResponse[EventSchema])
async def get_event(
    event_id: str,
    tenant: Tenant,
    service: Annotated[QueryService, Depends(get_query_service)],
):
    event = await service.get_event(event_id, tenant)
    return ApiResponse[EventSchema](status_code=200, data=event, message="Event fetched successfully")


@events_router.delete("/{event_id}", response_model=ApiResponse[EventSchema])
async def delete_event(
    event_id: str,
    tenant: Tenant,
    service: Annotated[QueryService, Depends(get_query_service)],
):
    event = await service.delete_event(event_id, tenant)
    return ApiResponse[EventSchema](status_code=200, data=event, message="Event deleted successfully")
