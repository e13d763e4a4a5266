import logging
from fastapi import Depends, Header, HTTPException, Request
from motor.motor_asyncio import AsyncIOMotorDatabase

from rental_request_service.app.service.commands.handlers import RequestLifecycleEngine
from rental_request_service.app.service.events.projectors import SyncEngine
from rental_request_service.app.service.interfaces.document_generator import AbstractDocumentGenerator
from rental_request_service.infrastructure.database.connection import get_db
from rental_request_service.infrastructure.database.party_store import MongoPartyDirectory
from rental_request_service.infrastructure.database.payment_ledger_store import MongoPaymentLedger
from rental_request_service.infrastructure.database.read_models import MongoNotifier
from rental_request_service.infrastructure.document_service_client import get_document_generator
from rental_request_service.infrastructure.kafka.producer import get_kafka_producer

logger = logging.getLogger(__name__)


async def get_current_user_id(x_user_id: str = Header(None, alias="X-User-Id")) -> str:
    """Caller identity, set by the authenticating gateway in front of this service."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header.")
    return x_user_id


def build_sync_engine(db: AsyncIOMotorDatabase) -> SyncEngine:
    return SyncEngine(
        db=db,
        notifier=MongoNotifier(db),
        party_directory=MongoPartyDirectory(db),
        kafka_producer=get_kafka_producer(),
    )


async def get_sync_engine(request: Request, db: AsyncIOMotorDatabase = Depends(get_db)) -> SyncEngine:
    """The application-wide sync engine created at startup, or a fresh one bound to db."""
    sync_engine = getattr(request.app.state, "sync_engine", None)
    if sync_engine is None:
        logger.warning("Sync engine not initialized at startup; creating one on demand.")
        sync_engine = build_sync_engine(db)
        request.app.state.sync_engine = sync_engine
    return sync_engine


async def get_lifecycle_engine(
    db: AsyncIOMotorDatabase = Depends(get_db),
    document_generator: AbstractDocumentGenerator = Depends(get_document_generator),
    sync_engine: SyncEngine = Depends(get_sync_engine),
) -> RequestLifecycleEngine:
    return RequestLifecycleEngine(
        db=db,
        party_directory=MongoPartyDirectory(db),
        document_generator=document_generator,
        payment_ledger=MongoPaymentLedger(db),
        sync_engine=sync_engine,
    )
