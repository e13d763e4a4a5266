# Pydantic models for Commands
from pydantic import BaseModel, Field
from typing import Optional
import uuid

from rental_request_service.app.models import RequestType, RequestPriority

class BaseCommand(BaseModel):
    command_id: str = Field(default_factory=lambda: str(uuid.uuid4()))

class SubmitRequestCommand(BaseCommand):
    requester_id: str
    type: RequestType
    description: str
    title: Optional[str] = None
    unit_id: Optional[str] = None
    building_id: Optional[str] = None
    priority: RequestPriority = RequestPriority.MEDIUM

class AcceptRequestCommand(BaseCommand):
    request_id: str
    staff_id: str

class RejectRequestCommand(BaseCommand):
    request_id: str
    staff_id: str
    reason: str

class CancelRequestCommand(BaseCommand):
    request_id: str
    user_id: str
    reason: Optional[str] = None

class AssignRequestCommand(BaseCommand):
    request_id: str
    staff_id: str
    assignee_id: str

class AddAdminNoteCommand(BaseCommand):
    request_id: str
    staff_id: str
    note: str

class SignDocumentCommand(BaseCommand):
    request_id: str
    document_id: str
    signer_id: str

class UnsignDocumentCommand(BaseCommand):
    request_id: str
    document_id: str
    staff_id: str

class InitiateInitialPaymentCommand(BaseCommand):
    request_id: str
    payer_id: str

class ValidateInitialPaymentCommand(BaseCommand):
    request_id: str
    staff_id: str
    method: Optional[str] = None
    transaction_id: Optional[str] = None

class AssignUnitCommand(BaseCommand):
    request_id: str
    staff_id: str
