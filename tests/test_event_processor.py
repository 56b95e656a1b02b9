from unittest.mock import AsyncMock

import pytest

from app.core.exceptions import (
    AuthenticationError,
    BatchTooLargeError,
    CapacityError,
    EmptyBatchError,
    IngestionError,
    StoreError,
    ValidationError,
)
from app.db.event_store import EventCriteria
from app.schemas.events import IngestStatus
from app.services.event_processor import EventProcessor


def raw_batch(count, prefix="evt_"):
    return [
        {"eventId": f"{prefix}{i}", "userId": f"u{i % 7}", "eventName": "page_view", "properties": {"i": i}}
        for i in range(count)
    ]


def by_id(tenant, event_id):
    return EventCriteria(organization_id=tenant.organization_id, project_id=tenant.project_id, event_id=event_id)


@pytest.mark.asyncio
async def test_unique_batch_is_fully_ingested(memory_store, tenant):
    result = await EventProcessor(memory_store).ingest(raw_batch(25), tenant)

    assert result.ingested == result.total == 25
    assert result.duplicates == 0
    assert result.status is IngestStatus.CREATED
    assert result.status_code == 201
    assert result.message == "25 events ingested successfully"
    for i in range(25):
        assert await memory_store.find_one(by_id(tenant, f"evt_{i}")) is not None


@pytest.mark.asyncio
async def test_reingesting_a_batch_is_idempotent(memory_store, tenant):
    processor = EventProcessor(memory_store)
    await processor.ingest(raw_batch(10), tenant)
    count_before = await memory_store.count(EventCriteria(tenant.organization_id, tenant.project_id))

    result = await processor.ingest(raw_batch(10), tenant)

    assert result.ingested == 0
    assert result.duplicates == result.total == 10
    assert result.status_code == 207
    assert await memory_store.count(EventCriteria(tenant.organization_id, tenant.project_id)) == count_before


@pytest.mark.asyncio
async def test_partial_duplicates_report_207(memory_store, tenant):
    processor = EventProcessor(memory_store)
    await processor.ingest(raw_batch(3), tenant)

    result = await processor.ingest(raw_batch(5), tenant)

    assert (result.ingested, result.total, result.duplicates) == (2, 5, 3)
    assert result.status is IngestStatus.PARTIAL
    assert result.message == "2 events ingested, 3 duplicates ignored"
    assert [e.event_id for e in result.events] == ["evt_3", "evt_4"]


@pytest.mark.asyncio
async def test_duplicates_do_not_overwrite_stored_event(memory_store, tenant):
    processor = EventProcessor(memory_store)
    await processor.ingest([{"eventId": "evt_x", "userId": "u1", "eventName": "signup"}], tenant)

    await processor.ingest([{"eventId": "evt_x", "userId": "u2", "eventName": "logout"}], tenant)

    stored = await memory_store.find_one(by_id(tenant, "evt_x"))
    assert (stored.user_id, stored.event_name) == ("u1", "signup")


@pytest.mark.asyncio
async def test_identical_records_without_ids_are_distinct(memory_store, tenant):
    batch = [{"userId": "u1", "eventName": "signup"}, {"userId": "u1", "eventName": "signup"}]

    result = await EventProcessor(memory_store).ingest(batch, tenant)

    assert result.ingested == 2
    assert result.events[0].event_id != result.events[1].event_id


@pytest.mark.asyncio
async def test_same_event_id_twice_in_one_batch_keeps_first(memory_store, tenant):
    batch = [
        {"eventId": "evt_x", "userId": "u1", "eventName": "signup"},
        {"eventId": "evt_x", "userId": "u2", "eventName": "signup"},
    ]

    result = await EventProcessor(memory_store).ingest(batch, tenant)

    assert (result.ingested, result.total, result.duplicates) == (1, 2, 1)
    assert result.status_code == 207
    assert len(memory_store.rows) == 1
    assert memory_store.rows[0][1].user_id == "u1"


@pytest.mark.asyncio
async def test_oversized_batch_is_rejected_without_writes(memory_store, tenant, mocker):
    spy = mocker.spy(memory_store, "insert_many")

    with pytest.raises(BatchTooLargeError) as exc_info:
        await EventProcessor(memory_store).ingest(raw_batch(1001), tenant)

    assert isinstance(exc_info.value, CapacityError)
    assert exc_info.value.reason == "too_large"
    assert exc_info.value.message == "Maximum 1000 events allowed per request"
    spy.assert_not_called()
    assert memory_store.rows == []


@pytest.mark.asyncio
async def test_batch_of_exactly_max_size_is_accepted(memory_store, tenant):
    result = await EventProcessor(memory_store).ingest(raw_batch(1000), tenant)
    assert result.ingested == 1000


@pytest.mark.asyncio
@pytest.mark.parametrize("batch", [[], None])
async def test_empty_batch_is_rejected(memory_store, tenant, batch):
    with pytest.raises(EmptyBatchError) as exc_info:
        await EventProcessor(memory_store).ingest(batch, tenant)

    assert isinstance(exc_info.value, IngestionError)
    assert isinstance(exc_info.value, ValidationError)
    assert exc_info.value.reason == "empty"


@pytest.mark.asyncio
async def test_one_invalid_record_rejects_whole_batch(memory_store, tenant, mocker):
    spy = mocker.spy(memory_store, "insert_many")
    batch = raw_batch(3)
    batch[1] = {"eventId": "evt_bad", "eventName": "signup"}

    with pytest.raises(ValidationError, match="userId is required for each event"):
        await EventProcessor(memory_store).ingest(batch, tenant)

    spy.assert_not_called()
    assert memory_store.rows == []


@pytest.mark.asyncio
async def test_missing_tenant_fails_before_store(memory_store):
    store = AsyncMock(wraps=memory_store)

    with pytest.raises(AuthenticationError):
        await EventProcessor(store).ingest(raw_batch(1), None)

    store.insert_many.assert_not_called()


@pytest.mark.asyncio
async def test_non_duplicate_store_failure_is_fatal(failing_store, tenant):
    with pytest.raises(StoreError):
        await EventProcessor(failing_store).ingest(raw_batch(2), tenant)


@pytest.mark.asyncio
async def test_store_exception_propagates(tenant):
    store = AsyncMock()
    store.insert_many.side_effect = StoreError("Error storing events")

    with pytest.raises(StoreError, match="Error storing events"):
        await EventProcessor(store).ingest(raw_batch(2), tenant)


@pytest.mark.asyncio
async def test_event_ids_are_global_across_tenants(memory_store, tenant, other_tenant):
    processor = EventProcessor(memory_store)
    await processor.ingest([{"eventId": "evt_shared", "userId": "u1", "eventName": "signup"}], tenant)

    result = await processor.ingest([{"eventId": "evt_shared", "userId": "u9", "eventName": "signup"}], other_tenant)

    assert result.duplicates == 1
    assert await memory_store.find_one(by_id(other_tenant, "evt_shared")) is None
