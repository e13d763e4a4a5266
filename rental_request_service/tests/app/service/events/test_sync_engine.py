import pytest
from unittest.mock import AsyncMock, MagicMock

from rental_request_service.app.config import settings
from rental_request_service.app.models import RequestDB, RequestStatus
from rental_request_service.app.service.events import models as domain_event_models
from rental_request_service.app.service.events.projectors import SyncEngine
from rental_request_service.app.service.exceptions import KafkaProducerError
from rental_request_service.infrastructure.database import read_models
from rental_request_service.infrastructure.database.read_models import MongoNotifier
from rental_request_service.tests.lifecycle_helpers import (
    ADMIN_ID, SECOND_ADMIN_ID, VISITOR_ID, OWNER_ID, LEASE_UNIT_ID, submit, accept, sign_all, validate_payment,
)


def _accepted_event(request) -> domain_event_models.RequestAcceptedEvent:
    return domain_event_models.RequestAcceptedEvent(
        aggregate_id=request.id,
        version=request.version,
        request=request,
        notifications=[
            domain_event_models.NotificationSpec(user_id=VISITOR_ID, category="request", title="Request accepted", body="Accepted."),
            domain_event_models.NotificationSpec(user_id=OWNER_ID, category="contract", title="Application accepted", body="Sign."),
        ],
        thread_message="Request accepted for unit A-101.",
    )


@pytest.mark.asyncio
async def test_global_path_updates_every_view(seeded_db, sync_engine, kafka_producer, engine):
    request = await accept(engine, (await submit(engine)).id)
    await sync_engine.drain()

    path = await sync_engine.synchronize(_accepted_event(request))

    assert path == "global"
    stats = await read_models.get_global_stats(seeded_db)
    assert stats.total == 1
    assert stats.accepted == 1
    assert stats.revenue == 0.0

    unit = await seeded_db.units.find_one({"id": LEASE_UNIT_ID})
    assert unit["request_stats"]["total"] == 1

    conversation = await seeded_db.conversations.find_one({"unit_id": LEASE_UNIT_ID})
    assert set(conversation["participants"]) >= {OWNER_ID, VISITOR_ID, ADMIN_ID, SECOND_ADMIN_ID}

    kafka_producer.produce_message.assert_called()
    _, kwargs = kafka_producer.produce_message.call_args
    assert kwargs["topic"] == settings.SYNC_KAFKA_TOPIC
    assert kwargs["key"] == request.id
    assert kwargs["message"].status == RequestStatus.ACCEPTED.value

@pytest.mark.asyncio
async def test_rerunning_a_sync_does_not_duplicate(seeded_db, sync_engine, engine):
    request = await accept(engine, (await submit(engine)).id)
    await sync_engine.drain()
    event = _accepted_event(request)

    await sync_engine.synchronize(event)
    await sync_engine.synchronize(event)

    assert await seeded_db.notifications.count_documents({"dedupe_key": event.dedupe_key(VISITOR_ID)}) == 1
    assert await seeded_db.messages.count_documents({"dedupe_key": event.dedupe_key("thread")}) == 1
    stats = await read_models.get_global_stats(seeded_db)
    assert stats.total == 1

@pytest.mark.asyncio
async def test_accept_succeeds_when_global_sync_throws_and_fallback_notifies_requester(seeded_db, sync_engine, kafka_producer, engine):
    kafka_producer.produce_message.side_effect = KafkaProducerError("broker unreachable")
    request = await submit(engine)

    accepted = await accept(engine, request.id)
    await sync_engine.drain()

    assert accepted.status == RequestStatus.ACCEPTED.value
    assert await seeded_db.notifications.count_documents({"user_id": VISITOR_ID, "title": "Request accepted"}) == 1
    assert await seeded_db.unread_counters.find_one({"user_id": VISITOR_ID}) is not None

@pytest.mark.asyncio
async def test_fallback_runs_each_view_independently(seeded_db, party_directory, mocker):
    engine = SyncEngine(seeded_db, MongoNotifier(seeded_db), party_directory, kafka_producer=None)
    mocker.patch.object(read_models, "recompute_global_stats", side_effect=RuntimeError("stats store down"))
    snapshot = RequestDB(title="Lease", description="d", type="lease", unit_id=LEASE_UNIT_ID, requester_id=VISITOR_ID)
    await seeded_db.requests.insert_one(snapshot.model_dump())

    path = await engine.synchronize(_accepted_event(snapshot))

    assert path == "failed"
    # The requester feed and the unit views still landed
    assert await seeded_db.notifications.count_documents({"user_id": VISITOR_ID}) == 1
    unit = await seeded_db.units.find_one({"id": LEASE_UNIT_ID})
    assert unit["request_stats"]["total"] == 1

@pytest.mark.asyncio
async def test_fallback_delivers_requester_notice_first(seeded_db, party_directory):
    notifier = AsyncMock()
    delivered = []

    async def notify(**kwargs):
        delivered.append(kwargs["user_id"])
        if kwargs["user_id"] == OWNER_ID:
            raise RuntimeError("owner mailbox full")
        return True

    notifier.notify.side_effect = notify
    engine = SyncEngine(seeded_db, notifier, party_directory, kafka_producer=None)
    snapshot = RequestDB(title="Lease", description="d", type="lease", requester_id=VISITOR_ID)
    event = _accepted_event(snapshot)
    event.notifications.reverse()

    path = await engine.synchronize(event)

    assert path == "failed"
    # global attempt: owner first (fails); fallback: requester first
    assert delivered == [OWNER_ID, VISITOR_ID, OWNER_ID]

@pytest.mark.asyncio
async def test_synchronize_never_raises(seeded_db):
    party_directory = MagicMock()
    party_directory.get_unit = AsyncMock(side_effect=RuntimeError("directory down"))
    party_directory.set_unit_request_stats = AsyncMock(side_effect=RuntimeError("directory down"))
    notifier = AsyncMock()
    notifier.notify.side_effect = RuntimeError("feed down")
    engine = SyncEngine(seeded_db, notifier, party_directory)
    snapshot = RequestDB(title="Lease", description="d", type="lease", unit_id=LEASE_UNIT_ID, requester_id=VISITOR_ID)

    assert await engine.synchronize(_accepted_event(snapshot)) == "failed"

@pytest.mark.asyncio
async def test_revenue_counts_paid_initial_payments(seeded_db, sync_engine, engine):
    request = await accept(engine, (await submit(engine)).id)
    await sign_all(engine, request)
    await validate_payment(engine, request.id)
    await sync_engine.drain()

    stats = await sync_engine.propagate_stats()

    assert stats.revenue == 1200.0
    assert stats.accepted == 1

@pytest.mark.asyncio
async def test_unit_thread_counts_unread_once_per_message(seeded_db, sync_engine, engine):
    request = await accept(engine, (await submit(engine)).id)
    await sync_engine.drain()

    conversation = await seeded_db.conversations.find_one({"unit_id": LEASE_UNIT_ID})
    assert conversation["unread_count"][VISITOR_ID] == 1
    assert await seeded_db.messages.count_documents({"unit_id": LEASE_UNIT_ID, "request_id": request.id}) == 1
