import datetime
import uuid
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class RequestType(str, Enum):
    LEASE = "lease"
    PURCHASE = "purchase"
    MAINTENANCE = "maintenance"
    SERVICE = "service"
    COMPLAINT = "complaint"


class RequestStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RequestPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class DocumentType(str, Enum):
    LEASE = "lease"
    SALE_CONTRACT = "saleContract"
    OTHER = "other"


class InitialPaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


AGREEMENT_REQUEST_TYPES = (RequestType.LEASE.value, RequestType.PURCHASE.value)
TERMINAL_STATUSES = (RequestStatus.COMPLETED.value, RequestStatus.REJECTED.value, RequestStatus.CANCELLED.value)


class StatusHistoryEntry(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    status: RequestStatus
    changed_by: str
    changed_at: datetime.datetime = Field(default_factory=_utcnow)
    comment: Optional[str] = None


class GeneratedDocument(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4().hex))
    doc_type: DocumentType
    filename: str
    storage_locator: str
    signed: bool = False
    signed_by: Optional[str] = None
    signed_at: Optional[datetime.datetime] = None
    generated_at: datetime.datetime = Field(default_factory=_utcnow)


class InitialPayment(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    amount: float
    status: InitialPaymentStatus = InitialPaymentStatus.PENDING
    paid_at: Optional[datetime.datetime] = None
    method: Optional[str] = None
    transaction_id: Optional[str] = None
    payment_id: Optional[str] = None # Ledger record backing this payment


class AdminNote(BaseModel):
    note: str
    added_by: str
    added_at: datetime.datetime = Field(default_factory=_utcnow)


class RequestDB(BaseModel): # Authoritative request record
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4().hex))
    title: str
    description: str
    type: RequestType
    priority: RequestPriority = RequestPriority.MEDIUM
    status: RequestStatus = RequestStatus.PENDING

    unit_id: Optional[str] = None
    building_id: Optional[str] = None
    requester_id: str
    assigned_to: Optional[str] = None

    status_history: List[StatusHistoryEntry] = Field(default_factory=list)
    generated_documents: List[GeneratedDocument] = Field(default_factory=list)
    initial_payment: Optional[InitialPayment] = None

    approved_by: Optional[str] = None
    approved_at: Optional[datetime.datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime.datetime] = None
    rejection_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime.datetime] = None
    completed_at: Optional[datetime.datetime] = None
    admin_notes: List[AdminNote] = Field(default_factory=list)

    version: int = 1 # Optimistic concurrency token, bumped on every conditional write

    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)

    def find_document(self, document_id: str) -> Optional[GeneratedDocument]:
        return next((doc for doc in self.generated_documents if doc.id == document_id), None)

    @property
    def all_documents_signed(self) -> bool:
        return bool(self.generated_documents) and all(doc.signed for doc in self.generated_documents)

    @property
    def is_paid(self) -> bool:
        return self.initial_payment is not None and self.initial_payment.status == InitialPaymentStatus.PAID.value
