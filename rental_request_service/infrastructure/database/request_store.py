# Operations for the authoritative Requests collection
import logging
import datetime
from typing import Any, Dict, List, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase

from rental_request_service.app.models import RequestDB, RequestStatus, InitialPaymentStatus
from rental_request_service.app.models.request_db import TERMINAL_STATUSES
from rental_request_service.app.service.exceptions import ConcurrencyConflictError

logger = logging.getLogger(__name__)
REQUESTS_COLLECTION = "requests"


def as_utc(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    """Mongo hands datetimes back naive; they are stored in UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=datetime.UTC)
    return value


async def insert_request(db: AsyncIOMotorDatabase, request: RequestDB) -> RequestDB:
    await db[REQUESTS_COLLECTION].insert_one(request.model_dump())
    logger.info(f"Request {request.id} (type: {request.type}) inserted with version {request.version}.")
    return request


async def get_request_by_id(db: AsyncIOMotorDatabase, request_id: str) -> Optional[RequestDB]:
    doc = await db[REQUESTS_COLLECTION].find_one({"id": request_id})
    return RequestDB(**doc) if doc else None


async def replace_request_if_version(db: AsyncIOMotorDatabase, request: RequestDB, expected_version: int) -> RequestDB:
    """
    Conditionally replaces the request document. The write only lands if the
    stored version still equals expected_version; the stored version is then
    expected_version + 1.
    """
    request.version = expected_version + 1
    request.updated_at = datetime.datetime.now(datetime.UTC)

    result = await db[REQUESTS_COLLECTION].replace_one(
        {"id": request.id, "version": expected_version},
        request.model_dump(),
    )
    if result.matched_count == 0:
        current = await db[REQUESTS_COLLECTION].find_one({"id": request.id}, {"version": 1})
        actual_version = current.get("version") if current else None
        logger.warning(
            f"Conditional write rejected for request {request.id}: expected version {expected_version}, found {actual_version}."
        )
        raise ConcurrencyConflictError(
            aggregate_id=request.id,
            expected_version=expected_version,
            actual_version=actual_version,
        )
    logger.info(f"Request {request.id} written at version {request.version} (status: {request.status}).")
    return request


async def find_open_duplicate(
    db: AsyncIOMotorDatabase,
    requester_id: str,
    request_type: str,
    unit_id: Optional[str],
    since: datetime.datetime,
) -> Optional[RequestDB]:
    """Most recent non-terminal request of the same requester/type/unit created after `since`."""
    query: Dict[str, Any] = {
        "requester_id": requester_id,
        "type": request_type,
        "unit_id": unit_id,
        "status": {"$nin": list(TERMINAL_STATUSES)},
    }
    cursor = db[REQUESTS_COLLECTION].find(query).sort("created_at", -1)
    async for doc in cursor:
        candidate = RequestDB(**doc)
        if as_utc(candidate.created_at) >= since:
            return candidate
    return None


async def list_requests(
    db: AsyncIOMotorDatabase,
    filters: Optional[Dict[str, Any]] = None,
    limit: int = 50,
    skip: int = 0,
) -> List[RequestDB]:
    cursor = db[REQUESTS_COLLECTION].find(filters or {}).sort("created_at", -1).skip(skip).limit(limit)
    docs = await cursor.to_list(length=limit)
    return [RequestDB(**doc) for doc in docs]


async def count_requests_by_status(db: AsyncIOMotorDatabase, base_query: Optional[Dict[str, Any]] = None) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for status in RequestStatus:
        query = dict(base_query or {})
        query["status"] = status.value
        counts[status.value] = await db[REQUESTS_COLLECTION].count_documents(query)
    return counts


async def sum_paid_initial_payments(db: AsyncIOMotorDatabase) -> float:
    total = 0.0
    cursor = db[REQUESTS_COLLECTION].find(
        {"initial_payment.status": InitialPaymentStatus.PAID.value},
        {"initial_payment": 1},
    )
    async for doc in cursor:
        total += float(doc["initial_payment"].get("amount") or 0.0)
    return round(total, 2)


async def list_requests_for_unit(db: AsyncIOMotorDatabase, unit_id: str) -> List[RequestDB]:
    cursor = db[REQUESTS_COLLECTION].find({"unit_id": unit_id})
    return [RequestDB(**doc) async for doc in cursor]
