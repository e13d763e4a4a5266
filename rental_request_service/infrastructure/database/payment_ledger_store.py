# Payment Ledger backed by the payments collection
import logging
import datetime
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorDatabase

from rental_request_service.app.models import PaymentDB
from rental_request_service.app.service.interfaces.payment_ledger import AbstractPaymentLedger
from rental_request_service.app.service.exceptions import NotFoundError

logger = logging.getLogger(__name__)

INITIAL_PAYMENT_KIND = "initial"


class MongoPaymentLedger(AbstractPaymentLedger):
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def record_payment(
        self,
        amount: float,
        payer_id: str,
        recipient_id: Optional[str],
        unit_id: Optional[str],
        request_id: str,
        method: Optional[str],
        payment_type: str,
        building_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> PaymentDB:
        existing = await self.find_by_request(request_id)
        if existing:
            logger.info(f"Ledger entry {existing.id} already recorded for request {request_id}; reusing it.")
            return existing

        payment = PaymentDB(
            request_id=request_id,
            kind=INITIAL_PAYMENT_KIND,
            payment_type=payment_type,
            amount=amount,
            payer_id=payer_id,
            recipient_id=recipient_id,
            unit_id=unit_id,
            building_id=building_id,
            description=description,
            method=method,
        )
        # Upsert keyed on (request_id, kind) so two racing callers end up with one entry
        result = await self.db.payments.update_one(
            {"request_id": request_id, "kind": INITIAL_PAYMENT_KIND},
            {"$setOnInsert": payment.model_dump()},
            upsert=True,
        )
        if result.upserted_id is None:
            return await self.find_by_request(request_id)
        logger.info(f"Ledger entry {payment.id} recorded for request {request_id}: {amount} ({payment_type}).")
        return payment

    async def mark_paid(self, payment_id: str, method: Optional[str], transaction_id: Optional[str]) -> PaymentDB:
        doc = await self.db.payments.find_one({"id": payment_id})
        if not doc:
            raise NotFoundError(f"Payment with ID '{payment_id}' not found.")
        payment = PaymentDB(**doc)
        if payment.status == "paid":
            logger.info(f"Ledger entry {payment_id} already paid; nothing to do.")
            return payment

        now = datetime.datetime.now(datetime.UTC)
        await self.db.payments.update_one(
            {"id": payment_id, "status": {"$ne": "paid"}},
            {"$set": {
                "status": "paid",
                "method": method or payment.method,
                "transaction_id": transaction_id,
                "paid_at": now,
                "updated_at": now,
            }},
        )
        logger.info(f"Ledger entry {payment_id} marked paid (transaction: {transaction_id}).")
        return PaymentDB(**await self.db.payments.find_one({"id": payment_id}))

    async def find_by_request(self, request_id: str) -> Optional[PaymentDB]:
        doc = await self.db.payments.find_one({"request_id": request_id, "kind": INITIAL_PAYMENT_KIND})
        return PaymentDB(**doc) if doc else None
