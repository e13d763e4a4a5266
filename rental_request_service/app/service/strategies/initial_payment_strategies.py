import logging
from abc import ABC, abstractmethod
from typing import Optional

from rental_request_service.app.config import settings
from rental_request_service.app.models import RequestType, UnitDB
from rental_request_service.app.service.exceptions import ValidationError

logger = logging.getLogger(__name__)


class InitialPaymentStrategy(ABC):
    @abstractmethod
    def compute_amount(self, unit: UnitDB) -> float:
        """
        Computes the initial payment gating unit assignment.

        Args:
            unit: The unit the request targets.

        Returns:
            The amount, rounded to cents.
        """
        pass


class LeaseInitialPaymentStrategy(InitialPaymentStrategy):
    """First month's rent."""

    def compute_amount(self, unit: UnitDB) -> float:
        if not unit.rent_price or unit.rent_price <= 0:
            raise ValidationError(f"Unit '{unit.id}' has no monthly rent; cannot compute the initial payment for a lease.")
        return round(unit.rent_price, 2)


class PurchaseInitialPaymentStrategy(InitialPaymentStrategy):
    """
    Deposit for a purchase: a share of the sale price, else a number of months
    of rent, else a configured floor.
    """

    def __init__(
        self,
        deposit_rate: Optional[float] = None,
        rent_months: Optional[int] = None,
        minimum_amount: Optional[float] = None,
    ):
        self.deposit_rate = settings.PURCHASE_DEPOSIT_RATE if deposit_rate is None else deposit_rate
        self.rent_months = settings.PURCHASE_RENT_MONTHS_FALLBACK if rent_months is None else rent_months
        self.minimum_amount = settings.PURCHASE_MINIMUM_INITIAL_PAYMENT if minimum_amount is None else minimum_amount

    def compute_amount(self, unit: UnitDB) -> float:
        if unit.sale_price and unit.sale_price > 0:
            return round(unit.sale_price * self.deposit_rate, 2)
        if unit.rent_price and unit.rent_price > 0:
            logger.info(f"Unit {unit.id} has no sale price; using {self.rent_months} months of rent as purchase deposit.")
            return round(unit.rent_price * self.rent_months, 2)
        logger.warning(f"Unit {unit.id} has neither sale price nor rent; using minimum purchase deposit {self.minimum_amount}.")
        return round(self.minimum_amount, 2)


def get_initial_payment_strategy(request_type: str) -> Optional[InitialPaymentStrategy]:
    if request_type == RequestType.LEASE.value:
        return LeaseInitialPaymentStrategy()
    if request_type == RequestType.PURCHASE.value:
        return PurchaseInitialPaymentStrategy()
    # Tickets (maintenance, service, complaint) carry no initial payment
    return None
