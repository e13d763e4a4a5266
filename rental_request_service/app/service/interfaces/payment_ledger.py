from abc import ABC, abstractmethod
from typing import Optional

from rental_request_service.app.models import PaymentDB


class AbstractPaymentLedger(ABC):
    @abstractmethod
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
        """
        Records a pending payment tagged with the request id.

        Recording twice for the same request returns the existing entry.
        """
        pass

    @abstractmethod
    async def mark_paid(self, payment_id: str, method: Optional[str], transaction_id: Optional[str]) -> PaymentDB:
        """Marks a ledger entry as paid. Marking an already paid entry is a no-op."""
        pass

    @abstractmethod
    async def find_by_request(self, request_id: str) -> Optional[PaymentDB]:
        pass
