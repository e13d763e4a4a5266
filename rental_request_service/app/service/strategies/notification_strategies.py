import logging
from typing import List, Optional, Tuple

from rental_request_service.app.models import RequestDB, UserDB, UnitDB, DocumentType
from rental_request_service.app.service.events.models import NotificationSpec

logger = logging.getLogger(__name__)

FanOut = Tuple[List[NotificationSpec], Optional[str]] # (notices, unit thread message)

_DOC_LABELS = {
    DocumentType.LEASE.value: "lease",
    DocumentType.SALE_CONTRACT.value: "sale contract",
    DocumentType.OTHER.value: "document",
}


def _unit_label(unit: Optional[UnitDB]) -> str:
    return f" for unit {unit.unit_number}" if unit else ""


def _dedupe_recipients(notices: List[NotificationSpec]) -> List[NotificationSpec]:
    seen = set()
    unique = []
    for notice in notices:
        if notice.user_id in seen:
            continue
        seen.add(notice.user_id)
        unique.append(notice)
    return unique


class StandardNotificationStrategy:
    """Builds the notices and thread messages that accompany each lifecycle event."""

    def for_submitted(self, request: RequestDB, requester: UserDB, unit: Optional[UnitDB], staff: List[UserDB]) -> FanOut:
        notices = [
            NotificationSpec(
                user_id=admin.id,
                category="request",
                title="New request received",
                body=f"A new {request.type} request was received from {requester.full_name}{_unit_label(unit)}.",
            )
            for admin in staff
        ]
        return _dedupe_recipients(notices), None

    def for_assigned(self, request: RequestDB, assignee: UserDB) -> FanOut:
        notices = [
            NotificationSpec(
                user_id=assignee.id,
                category="request",
                title="Request assigned to you",
                body=f"Request '{request.title}' has been assigned to you.",
            ),
            NotificationSpec(
                user_id=request.requester_id,
                category="request",
                title="Your request is being processed",
                body=f"Your request '{request.title}' is now being handled by our staff.",
            ),
        ]
        return _dedupe_recipients(notices), None

    def for_accepted(self, request: RequestDB, unit: Optional[UnitDB], owner: Optional[UserDB], requester: UserDB) -> FanOut:
        body = f"Your {request.type} request{_unit_label(unit)} has been accepted."
        if request.generated_documents:
            labels = " and ".join(_DOC_LABELS.get(doc.doc_type, "document") for doc in request.generated_documents)
            body += f" The {labels} is available for signature in your dashboard."
        if request.initial_payment:
            body += f" An initial payment of {request.initial_payment.amount:.2f} $ is required to finalize."
        notices = [
            NotificationSpec(user_id=request.requester_id, category="request", title="Request accepted", body=body)
        ]
        if owner and owner.id != request.requester_id and request.generated_documents:
            pending = len(request.generated_documents)
            notices.append(NotificationSpec(
                user_id=owner.id,
                category="contract",
                title="Application accepted - action required",
                body=(
                    f"The application of {requester.full_name}{_unit_label(unit)} has been accepted. "
                    f"{pending} document(s) await your signature."
                ),
            ))
        thread_message = None
        if unit:
            thread_message = f"Request from {requester.full_name} accepted{_unit_label(unit)}; agreement sent for signature."
        return _dedupe_recipients(notices), thread_message

    def for_rejected(self, request: RequestDB, reason: str) -> FanOut:
        return [
            NotificationSpec(
                user_id=request.requester_id,
                category="request",
                title="Request rejected",
                body=f"Your request '{request.title}' was rejected. Reason: {reason}",
            )
        ], None

    def for_cancelled(self, request: RequestDB, cancelled_by: UserDB, staff: List[UserDB]) -> FanOut:
        recipients = [request.requester_id] + [admin.id for admin in staff]
        notices = [
            NotificationSpec(
                user_id=user_id,
                category="request",
                title="Request cancelled",
                body=f"Request '{request.title}' was cancelled by {cancelled_by.full_name}.",
            )
            for user_id in recipients
            if user_id != cancelled_by.id
        ]
        return _dedupe_recipients(notices), None

    def for_document_signed(
        self,
        request: RequestDB,
        signer: UserDB,
        owner: Optional[UserDB],
        unit: Optional[UnitDB],
        staff: List[UserDB],
    ) -> FanOut:
        notices = [
            NotificationSpec(
                user_id=admin.id,
                category="contract",
                title="Document signed",
                body=f"{signer.full_name} signed a document for request '{request.title}'.",
            )
            for admin in staff
            if admin.id != signer.id
        ]
        if signer.id == request.requester_id and owner:
            # Counterpart: requester signed, owner still has to
            notices.append(NotificationSpec(
                user_id=owner.id,
                category="contract",
                title="Document signed by the applicant",
                body=f"{signer.full_name} signed a document{_unit_label(unit)}. Please sign your part.",
            ))
        elif signer.id != request.requester_id:
            notices.append(NotificationSpec(
                user_id=request.requester_id,
                category="contract",
                title="Document signed by the counterparty",
                body=f"A document{_unit_label(unit)} was signed by {signer.full_name}. Please sign your part.",
            ))
        return _dedupe_recipients(notices), None

    def for_ready_for_payment(self, request: RequestDB, unit: Optional[UnitDB], staff: List[UserDB]) -> FanOut:
        amount = f" of {request.initial_payment.amount:.2f} $" if request.initial_payment else ""
        notices = [
            NotificationSpec(
                user_id=admin.id,
                category="payment",
                title="Ready for payment",
                body=f"All documents of request '{request.title}' are signed. The initial payment{amount} can now be collected.",
            )
            for admin in staff
        ]
        thread_message = f"All agreement documents signed{_unit_label(unit)}." if unit else None
        return _dedupe_recipients(notices), thread_message

    def for_document_unsigned(self, request: RequestDB, document_id: str) -> FanOut:
        return [
            NotificationSpec(
                user_id=request.requester_id,
                category="contract",
                title="Signature withdrawn",
                body=f"A signature on document {document_id} of request '{request.title}' was withdrawn by staff. Please sign again.",
            )
        ], None

    def for_payment_validated(self, request: RequestDB, unit: Optional[UnitDB], staff: List[UserDB]) -> FanOut:
        amount = request.initial_payment.amount if request.initial_payment else 0.0
        notices = [
            NotificationSpec(
                user_id=request.requester_id,
                category="payment",
                title="Initial payment received",
                body=f"Your initial payment of {amount:.2f} $ for request '{request.title}' has been confirmed.",
            )
        ] + [
            NotificationSpec(
                user_id=admin.id,
                category="payment",
                title="Initial payment confirmed",
                body=f"The initial payment of {amount:.2f} $ for request '{request.title}' is confirmed.",
            )
            for admin in staff
        ]
        thread_message = f"Initial payment confirmed{_unit_label(unit)}." if unit else None
        return _dedupe_recipients(notices), thread_message

    def for_unit_assigned(self, request: RequestDB, unit: UnitDB) -> FanOut:
        return [
            NotificationSpec(
                user_id=request.requester_id,
                category="contract",
                title="Unit assigned",
                body=f"Unit {unit.unit_number} is now yours. Your request '{request.title}' is complete.",
            )
        ], f"Contract signed successfully for unit {unit.unit_number}. Welcome!"

    def for_admin_note(self, request: RequestDB) -> FanOut:
        # Internal notes are not fanned out to users
        return [], None


def get_notification_strategy(request: RequestDB) -> StandardNotificationStrategy:
    return StandardNotificationStrategy()
