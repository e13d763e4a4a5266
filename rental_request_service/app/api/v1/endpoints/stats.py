# API Router for read models: statistics, notification feeds
import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List
from pydantic import BaseModel
from motor.motor_asyncio import AsyncIOMotorDatabase

from rental_request_service.app.dependencies.lifecycle import get_current_user_id
from rental_request_service.app.models import RequestStatsDB, NotificationDB
from rental_request_service.infrastructure.database.connection import get_db
from rental_request_service.infrastructure.database import read_models
from rental_request_service.infrastructure.database.party_store import MongoPartyDirectory

logger = logging.getLogger(__name__)
router = APIRouter()

class NotificationFeed(BaseModel):
    unread: int
    items: List[NotificationDB]


@router.get("/stats", response_model=RequestStatsDB, summary="Global request statistics.")
async def get_stats_api(
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    user = await MongoPartyDirectory(db).get_user(user_id)
    if user is None or not user.is_staff:
        raise HTTPException(status_code=403, detail="Statistics are available to staff only.")
    return await read_models.get_global_stats(db)

@router.get("/notifications", response_model=NotificationFeed, summary="The caller's notification feed.")
async def list_notifications_api(
    limit: int = Query(20, ge=1, le=100),
    skip: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    items = await read_models.list_notifications_for_user(db, user_id, limit=limit, skip=skip)
    unread = await read_models.get_unread_notification_count(db, user_id)
    return NotificationFeed(unread=unread, items=items)
