# Pydantic models for Domain Events
from pydantic import BaseModel, Field
from typing import List, Optional
import datetime
import uuid

from rental_request_service.app.models import RequestDB

class EventMetaData(BaseModel):
    correlation_id: Optional[str] = None # command_id of the originating command
    actor_id: Optional[str] = None

class NotificationSpec(BaseModel):
    """A single notice to deliver as part of fanning out a lifecycle event."""
    user_id: str
    category: str
    title: str
    body: str

class BaseEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: str # To be overridden by specific events
    aggregate_id: str
    timestamp: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.UTC))
    version: int = 1 # Request version produced by the mutation
    metadata: EventMetaData = Field(default_factory=EventMetaData)

class RequestLifecycleEvent(BaseEvent):
    """Snapshot of a request right after a committed mutation, handed to the sync engine."""
    request: RequestDB
    notifications: List[NotificationSpec] = Field(default_factory=list)
    thread_message: Optional[str] = None # System message for the unit's messaging thread

    def dedupe_key(self, recipient: str) -> str:
        return f"{self.aggregate_id}:{self.event_type}:{self.version}:{recipient}"

class RequestSubmittedEvent(RequestLifecycleEvent):
    event_type: str = "RequestSubmitted"

class RequestAssignedEvent(RequestLifecycleEvent):
    event_type: str = "RequestAssigned"

class RequestAcceptedEvent(RequestLifecycleEvent):
    event_type: str = "RequestAccepted"

class RequestRejectedEvent(RequestLifecycleEvent):
    event_type: str = "RequestRejected"

class RequestCancelledEvent(RequestLifecycleEvent):
    event_type: str = "RequestCancelled"

class AdminNoteAddedEvent(RequestLifecycleEvent):
    event_type: str = "AdminNoteAdded"

class DocumentSignedEvent(RequestLifecycleEvent):
    event_type: str = "DocumentSigned"
    document_id: str

class ReadyForPaymentEvent(RequestLifecycleEvent):
    """Every agreement document is signed; staff can now collect the initial payment."""
    event_type: str = "ReadyForPayment"

class DocumentUnsignedEvent(RequestLifecycleEvent):
    event_type: str = "DocumentUnsigned"
    document_id: str

class InitialPaymentValidatedEvent(RequestLifecycleEvent):
    event_type: str = "InitialPaymentValidated"
    payment_id: Optional[str] = None

class UnitAssignedEvent(RequestLifecycleEvent):
    event_type: str = "UnitAssigned"

class RequestSyncEvent(BaseModel):
    """Payload published to the real-time transport after a global sync."""
    type: str = "REQUEST_SYNC"
    event_type: str
    request_id: str
    status: str
    request_type: str
    priority: str
    version: int
    unit_id: Optional[str] = None
    building_id: Optional[str] = None
    requester_id: str
    assigned_to: Optional[str] = None
    timestamp: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.UTC))
