# Functions for Interacting with Read Model Collections
import logging
import datetime
from typing import List, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase

from rental_request_service.app.models import (
    NotificationDB, ConversationDB, MessageDB, RequestStatsDB, UnitRequestStats,
    RequestStatus, RequestPriority,
)
from rental_request_service.app.service.interfaces.notifier import AbstractNotifier
from rental_request_service.infrastructure.database import request_store

logger = logging.getLogger(__name__)

GLOBAL_STATS_ID = "global"
UNIT_CONVERSATION_TYPE = "unit"


class MongoNotifier(AbstractNotifier):
    """Per-user notification feed plus unread counters, deduplicated on dedupe_key."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def notify(
        self,
        user_id: str,
        category: str,
        title: str,
        body: str,
        request_id: Optional[str],
        dedupe_key: str,
    ) -> bool:
        notification = NotificationDB(
            dedupe_key=dedupe_key,
            user_id=user_id,
            category=category,
            title=title,
            body=body,
            request_id=request_id,
        )
        await self.db.notifications.update_one(
            {"dedupe_key": dedupe_key},
            {"$setOnInsert": notification.model_dump()},
            upsert=True,
        )
        if not await _claim_uncounted(self.db.notifications, dedupe_key):
            logger.debug(f"Notification {dedupe_key} already delivered; skipping.")
            return False

        try:
            await self.db.unread_counters.update_one(
                {"user_id": user_id},
                {"$inc": {"notifications": 1}},
                upsert=True,
            )
        except Exception:
            await _release_claim(self.db.notifications, dedupe_key)
            raise
        logger.info(f"Notification '{title}' delivered to user {user_id} (request: {request_id}).")
        return True


async def _claim_uncounted(collection, dedupe_key: str) -> Optional[dict]:
    """Flips `counted` on the entry; returns the entry only for the one caller that flipped it."""
    return await collection.find_one_and_update(
        {"dedupe_key": dedupe_key, "counted": False},
        {"$set": {"counted": True}},
    )


async def _release_claim(collection, dedupe_key: str):
    # Lets a rerun apply the counter write that just failed.
    await collection.update_one({"dedupe_key": dedupe_key}, {"$set": {"counted": False}})


async def list_notifications_for_user(db: AsyncIOMotorDatabase, user_id: str, limit: int = 20, skip: int = 0) -> List[NotificationDB]:
    cursor = db.notifications.find({"user_id": user_id}).sort("created_at", -1).skip(skip).limit(limit)
    docs = await cursor.to_list(length=limit)
    return [NotificationDB(**doc) for doc in docs]


async def get_unread_notification_count(db: AsyncIOMotorDatabase, user_id: str) -> int:
    doc = await db.unread_counters.find_one({"user_id": user_id})
    return int(doc.get("notifications", 0)) if doc else 0


async def get_or_create_unit_conversation(
    db: AsyncIOMotorDatabase,
    unit_id: str,
    building_id: Optional[str],
    participants: List[str],
) -> ConversationDB:
    """Returns the unit's messaging thread, creating it on first use and adding any new participants."""
    conversation = ConversationDB(unit_id=unit_id, building_id=building_id, participants=[])
    seed = conversation.model_dump()
    seed.pop("participants")
    await db.conversations.update_one(
        {"unit_id": unit_id, "type": UNIT_CONVERSATION_TYPE},
        {"$setOnInsert": seed},
        upsert=True,
    )
    participants = [p for p in dict.fromkeys(participants) if p]
    if participants:
        await db.conversations.update_one(
            {"unit_id": unit_id, "type": UNIT_CONVERSATION_TYPE},
            {"$addToSet": {"participants": {"$each": participants}}},
        )
    doc = await db.conversations.find_one({"unit_id": unit_id, "type": UNIT_CONVERSATION_TYPE})
    return ConversationDB(**doc)


async def post_system_message(
    db: AsyncIOMotorDatabase,
    conversation: ConversationDB,
    content: str,
    dedupe_key: str,
    request_id: Optional[str] = None,
    system_message_type: Optional[str] = None,
) -> bool:
    """
    Appends a system message to the thread once per dedupe_key. Unread counters of
    every participant are bumped exactly once per message, including when a rerun
    finds the message stored but its counter write failed.
    """
    message = MessageDB(
        dedupe_key=dedupe_key,
        conversation_id=conversation.id,
        unit_id=conversation.unit_id,
        request_id=request_id,
        content=content,
        system_message_type=system_message_type,
    )
    await db.messages.update_one(
        {"dedupe_key": dedupe_key},
        {"$setOnInsert": message.model_dump()},
        upsert=True,
    )
    stored = await _claim_uncounted(db.messages, dedupe_key)
    if stored is None:
        logger.debug(f"System message {dedupe_key} already posted to conversation {conversation.id}.")
        return False

    update = {"$set": {"last_message_id": stored["id"], "last_message_at": stored["created_at"]}}
    if conversation.participants:
        update["$inc"] = {f"unread_count.{user_id}": 1 for user_id in conversation.participants}
    try:
        await db.conversations.update_one({"id": conversation.id}, update)
    except Exception:
        await _release_claim(db.messages, dedupe_key)
        raise
    logger.info(f"System message posted to conversation {conversation.id} for unit {conversation.unit_id}.")
    return True


async def list_messages_for_unit(db: AsyncIOMotorDatabase, unit_id: str, limit: int = 50) -> List[MessageDB]:
    cursor = db.messages.find({"unit_id": unit_id}).sort("created_at", 1).limit(limit)
    docs = await cursor.to_list(length=limit)
    return [MessageDB(**doc) for doc in docs]


async def recompute_global_stats(db: AsyncIOMotorDatabase) -> RequestStatsDB:
    """Rebuilds the global aggregate from the requests collection; safe to run any number of times."""
    counts = await request_store.count_requests_by_status(db)
    stats = RequestStatsDB(
        id=GLOBAL_STATS_ID,
        total=sum(counts.values()),
        revenue=await request_store.sum_paid_initial_payments(db),
        **counts,
    )
    await db.stats.replace_one({"id": GLOBAL_STATS_ID}, stats.model_dump(), upsert=True)
    logger.info(f"Global request stats recomputed: total={stats.total}, revenue={stats.revenue}")
    return stats


async def get_global_stats(db: AsyncIOMotorDatabase) -> RequestStatsDB:
    doc = await db.stats.find_one({"id": GLOBAL_STATS_ID})
    return RequestStatsDB(**doc) if doc else RequestStatsDB()


async def compute_unit_request_stats(db: AsyncIOMotorDatabase, unit_id: str) -> UnitRequestStats:
    requests = await request_store.list_requests_for_unit(db, unit_id)
    stats = UnitRequestStats(total=len(requests))
    for request in requests:
        if request.status == RequestStatus.PENDING.value:
            stats.pending += 1
        elif request.status == RequestStatus.IN_PROGRESS.value:
            stats.in_progress += 1
        elif request.status == RequestStatus.COMPLETED.value:
            stats.completed += 1
        if request.priority == RequestPriority.URGENT.value:
            stats.urgent += 1
    if requests:
        stats.last_request_at = max(request_store.as_utc(r.created_at) for r in requests)
    return stats
