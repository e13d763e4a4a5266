# API Router for Health Checks
from fastapi import APIRouter, Depends
import logging
from motor.motor_asyncio import AsyncIOMotorDatabase

from rental_request_service.infrastructure.database.connection import get_db
from rental_request_service.infrastructure.kafka.producer import kafka_status
from rental_request_service.app.config import settings

logger = logging.getLogger(__name__)
router = APIRouter()

@router.get("/health", tags=["Monitoring"])
async def health_check(db: AsyncIOMotorDatabase = Depends(get_db)):
    """
    Liveness plus dependency view. Kafka only carries sync events, so a
    degraded or disabled publisher leaves the service "ok".
    """
    mongodb_status = "connected"
    try:
        await db.command('ping')
    except Exception as e:
        logger.error(f"MongoDB health check ping failed: {e}")
        mongodb_status = "disconnected"
    status = "ok" if mongodb_status == "connected" else "degraded"
    return {
        "status": status,
        "components": {"mongodb": mongodb_status, "kafka": kafka_status()},
        "service_name": settings.SERVICE_NAME_API,
    }
