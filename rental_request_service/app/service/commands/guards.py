# State and invariant checks shared by the lifecycle operations
from typing import Iterable, List, Optional

from rental_request_service.app.models import (
    RequestDB, UserDB, UnitDB, GeneratedDocument, AGREEMENT_REQUEST_TYPES, RequestStatus,
)
from rental_request_service.app.models.request_db import TERMINAL_STATUSES
from rental_request_service.app.service.exceptions import (
    ValidationError, PermissionDeniedError, ConflictError, DocumentNotFoundError, PreconditionFailedError,
)


def ensure_status(request: RequestDB, allowed: Iterable[str], action: str):
    if request.status not in tuple(allowed):
        raise ConflictError(request.id, request.status, action)

def ensure_not_terminal(request: RequestDB, action: str):
    if request.status in TERMINAL_STATUSES:
        raise ConflictError(request.id, request.status, action)

def ensure_agreement_request(request: RequestDB, action: str):
    if request.type not in AGREEMENT_REQUEST_TYPES:
        raise ValidationError(f"Cannot {action} on a {request.type} request; only lease and purchase requests carry agreements.")

def ensure_staff(user: UserDB, action: str):
    if not user.is_staff:
        raise PermissionDeniedError(user.id, action)

def ensure_text(value: Optional[str], field_name: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"'{field_name}' is required and cannot be empty.")
    return value.strip()

def is_party_to_request(user: UserDB, request: RequestDB, unit: Optional[UnitDB]) -> bool:
    """Requester, unit owner or staff."""
    if user.is_staff or user.id == request.requester_id:
        return True
    return unit is not None and unit.owner_id is not None and unit.owner_id == user.id

def ensure_party_to_request(user: UserDB, request: RequestDB, unit: Optional[UnitDB], action: str):
    if not is_party_to_request(user, request, unit):
        raise PermissionDeniedError(user.id, action)

def require_document(request: RequestDB, document_id: str) -> GeneratedDocument:
    document = request.find_document(document_id)
    if document is None:
        raise DocumentNotFoundError(request.id, document_id)
    return document

def unmet_completion_gates(request: RequestDB) -> List[str]:
    unmet = []
    if not request.is_paid:
        unmet.append("initial payment not confirmed")
    if not request.generated_documents:
        unmet.append("no agreement documents generated")
    else:
        unsigned = [doc.id for doc in request.generated_documents if not doc.signed]
        if unsigned:
            unmet.append(f"unsigned document(s) {', '.join(unsigned)}")
    return unmet

def ensure_ready_for_completion(request: RequestDB):
    ensure_status(request, (RequestStatus.ACCEPTED.value,), "assign unit")
    unmet = unmet_completion_gates(request)
    if unmet:
        raise PreconditionFailedError(request.id, unmet)
