import datetime
import uuid
from typing import Optional

from pydantic import BaseModel, Field


class PaymentDB(BaseModel): # Ledger entry
    id: str = Field(default_factory=lambda: str(uuid.uuid4().hex))
    request_id: Optional[str] = None # Traceability back to the originating request
    kind: str = "initial" # initial, rent, ...
    payment_type: str # rent, purchase
    amount: float
    payer_id: str
    recipient_id: Optional[str] = None
    unit_id: Optional[str] = None
    building_id: Optional[str] = None
    description: Optional[str] = None
    status: str = Field(default="pending") # pending, paid
    method: Optional[str] = None
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime.datetime] = None
    created_at: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.UTC))
    updated_at: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.UTC))


class PaymentHandle(BaseModel):
    """What a payer needs to settle the initial payment of a request."""
    payment_id: str
    request_id: str
    amount: float
    status: str
    payer_id: str
    recipient_id: Optional[str] = None


class PaymentStatus(BaseModel):
    request_id: str
    status: str
    amount: Optional[float] = None
    paid_at: Optional[datetime.datetime] = None
    method: Optional[str] = None
    transaction_id: Optional[str] = None
    request_status: str
    request_type: str
