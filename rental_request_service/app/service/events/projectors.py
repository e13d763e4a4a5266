# Synchronization Engine: projects committed request snapshots onto the read models
import asyncio
import logging
import time
from typing import List, Optional, Set

from motor.motor_asyncio import AsyncIOMotorDatabase
from opentelemetry.trace import SpanKind, get_current_span
from opentelemetry.trace.status import StatusCode, Status

from . import models as domain_event_models
from rental_request_service.app.config import settings
from rental_request_service.app.models import RequestStatsDB
from rental_request_service.app.observability import tracer, sync_runs_counter, sync_failures_counter, sync_duration_histogram
from rental_request_service.app.service.exceptions import SyncFailureError
from rental_request_service.app.service.interfaces.notifier import AbstractNotifier
from rental_request_service.app.service.interfaces.party_directory import AbstractPartyDirectory
from rental_request_service.infrastructure.database import read_models as read_model_ops
from rental_request_service.infrastructure.kafka.producer import KafkaProducerService

logger = logging.getLogger(__name__)

THREAD_RECIPIENT = "thread"


# --- Specific Projector Functions ---

async def project_notifications(engine: "SyncEngine", event: domain_event_models.RequestLifecycleEvent):
    for notice in event.notifications:
        await engine.notifier.notify(
            user_id=notice.user_id,
            category=notice.category,
            title=notice.title,
            body=notice.body,
            request_id=event.aggregate_id,
            dedupe_key=event.dedupe_key(notice.user_id),
        )
    logger.info(f"{len(event.notifications)} notification(s) projected for {event.event_type} on request {event.aggregate_id}.")

async def project_requester_notifications_first(engine: "SyncEngine", event: domain_event_models.RequestLifecycleEvent):
    """Fallback flavour: the requester's feed first, then every other recipient on its own."""
    requester_id = event.request.requester_id
    ordered = sorted(event.notifications, key=lambda notice: notice.user_id != requester_id)
    failures = 0
    for notice in ordered:
        try:
            await engine.notifier.notify(
                user_id=notice.user_id,
                category=notice.category,
                title=notice.title,
                body=notice.body,
                request_id=event.aggregate_id,
                dedupe_key=event.dedupe_key(notice.user_id),
            )
        except Exception as e:
            failures += 1
            logger.error(f"Fallback notification to user {notice.user_id} failed for request {event.aggregate_id}: {e}", exc_info=True)
    if failures:
        raise SyncFailureError(f"{failures} notification(s) could not be delivered for request {event.aggregate_id}.")

async def project_unit_thread(engine: "SyncEngine", event: domain_event_models.RequestLifecycleEvent):
    request = event.request
    if not event.thread_message or not request.unit_id:
        return

    unit = await engine.party_directory.get_unit(request.unit_id)
    if unit is None:
        raise SyncFailureError(f"Unit {request.unit_id} of request {request.id} not found; thread not updated.")
    staff = await engine.party_directory.list_staff()
    participants = [unit.owner_id, unit.tenant_id, request.requester_id] + [admin.id for admin in staff]

    conversation = await read_model_ops.get_or_create_unit_conversation(
        engine.db, unit.id, unit.building_id or request.building_id, participants,
    )
    await read_model_ops.post_system_message(
        engine.db,
        conversation,
        content=event.thread_message,
        dedupe_key=event.dedupe_key(THREAD_RECIPIENT),
        request_id=request.id,
        system_message_type=event.event_type,
    )

async def project_global_stats(engine: "SyncEngine", event: domain_event_models.RequestLifecycleEvent):
    await engine.propagate_stats()

async def project_unit_stats(engine: "SyncEngine", event: domain_event_models.RequestLifecycleEvent):
    unit_id = event.request.unit_id
    if not unit_id:
        return
    stats = await read_model_ops.compute_unit_request_stats(engine.db, unit_id)
    await engine.party_directory.set_unit_request_stats(unit_id, stats)
    logger.debug(f"Unit {unit_id} request stats refreshed: total={stats.total}, pending={stats.pending}")

async def publish_sync_event(engine: "SyncEngine", event: domain_event_models.RequestLifecycleEvent):
    if engine.kafka_producer is None:
        logger.debug(f"No Kafka producer configured; sync event for request {event.aggregate_id} not published.")
        return
    request = event.request
    sync_event = domain_event_models.RequestSyncEvent(
        event_type=event.event_type,
        request_id=request.id,
        status=request.status,
        request_type=request.type,
        priority=request.priority,
        version=request.version,
        unit_id=request.unit_id,
        building_id=request.building_id,
        requester_id=request.requester_id,
        assigned_to=request.assigned_to,
    )
    engine.kafka_producer.produce_message(topic=settings.SYNC_KAFKA_TOPIC, message=sync_event, key=request.id)


# --- Projector paths ---
GLOBAL_SYNC_PROJECTORS = [
    project_notifications,
    project_unit_thread,
    project_global_stats,
    project_unit_stats,
    publish_sync_event,
]

FALLBACK_SYNC_PROJECTORS = [
    project_requester_notifications_first,
    project_unit_thread,
    project_unit_stats,
    project_global_stats,
]

async def project_with_tracing(engine: "SyncEngine", projector_func, event: domain_event_models.RequestLifecycleEvent, path: str):
    with tracer.start_as_current_span(f"sync.{path}.{projector_func.__name__}", kind=SpanKind.INTERNAL) as proj_span:
        proj_span.set_attribute("event.id", event.event_id)
        proj_span.set_attribute("event.type", event.event_type)
        proj_span.set_attribute("aggregate.id", event.aggregate_id)
        proj_span.set_attribute("sync.path", path)
        try:
            await projector_func(engine, event)
            proj_span.set_status(Status(StatusCode.OK))
        except Exception as e:
            proj_span.record_exception(e)
            proj_span.set_status(Status(StatusCode.ERROR, description=f"Projector Error: {type(e).__name__}"))
            raise


class SyncEngine:
    """
    Keeps notification feeds, unit threads and statistics consistent with the
    authoritative request state.

    The global path runs every projector in order; if any of them raises, the
    fallback path re-runs each view on its own. Both paths are idempotent:
    feed entries and thread messages are keyed per (request, event, version,
    recipient) and statistics are recomputed from source. Nothing raised here
    ever reaches the lifecycle caller.
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        notifier: AbstractNotifier,
        party_directory: AbstractPartyDirectory,
        kafka_producer: Optional[KafkaProducerService] = None,
    ):
        self.db = db
        self.notifier = notifier
        self.party_directory = party_directory
        self.kafka_producer = kafka_producer
        self._tasks: Set[asyncio.Task] = set()

    def schedule(self, event: domain_event_models.RequestLifecycleEvent) -> asyncio.Task:
        """Runs synchronize() in the background; the caller does not wait for it."""
        task = asyncio.create_task(self.synchronize(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self):
        """Waits for every scheduled synchronization (tests, shutdown)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def propagate_stats(self) -> RequestStatsDB:
        return await read_model_ops.recompute_global_stats(self.db)

    async def synchronize(self, event: domain_event_models.RequestLifecycleEvent) -> str:
        """Returns the path that completed: "global", "fallback" or "failed"."""
        current_span = get_current_span()
        current_span.add_event("SynchronizingRequest", {"event.type": event.event_type, "aggregate.id": event.aggregate_id})
        logger.debug(f"Synchronizing {event.event_type} (ID: {event.event_id}) for request {event.aggregate_id} v{event.version}.")
        start_time = time.monotonic()
        path = await self._synchronize(event)
        sync_duration_histogram.record(time.monotonic() - start_time, attributes={"sync.path": path, "event.type": event.event_type})
        return path

    async def _synchronize(self, event: domain_event_models.RequestLifecycleEvent) -> str:
        try:
            await self._run_global_path(event)
            sync_runs_counter.add(1, {"sync.path": "global"})
            return "global"
        except Exception as e:
            sync_failures_counter.add(1, {"sync.path": "global", "event.type": event.event_type})
            logger.error(
                f"Global sync failed for request {event.aggregate_id} ({event.event_type}): {e}. Running fallback path.",
                exc_info=True,
            )

        failed = await self._run_fallback_path(event)
        sync_runs_counter.add(1, {"sync.path": "fallback"})
        if failed:
            logger.warning(f"Fallback sync for request {event.aggregate_id} left {len(failed)} view(s) stale: {', '.join(failed)}")
            return "failed"
        logger.info(f"Fallback sync completed for request {event.aggregate_id} ({event.event_type}).")
        return "fallback"

    async def _run_global_path(self, event: domain_event_models.RequestLifecycleEvent):
        for projector_func in GLOBAL_SYNC_PROJECTORS:
            await project_with_tracing(self, projector_func, event, "global")
        logger.info(f"Global sync completed for request {event.aggregate_id} ({event.event_type}).")

    async def _run_fallback_path(self, event: domain_event_models.RequestLifecycleEvent) -> List[str]:
        failed = []
        for projector_func in FALLBACK_SYNC_PROJECTORS:
            try:
                await project_with_tracing(self, projector_func, event, "fallback")
            except Exception as e:
                failed.append(projector_func.__name__)
                sync_failures_counter.add(1, {"sync.path": "fallback", "projector.name": projector_func.__name__})
                logger.error(
                    f"Fallback projector {projector_func.__name__} failed for request {event.aggregate_id}: {e}",
                    exc_info=True,
                )
        return failed
