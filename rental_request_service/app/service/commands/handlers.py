# Request Lifecycle Engine
import contextlib
import datetime
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from opentelemetry.trace.status import StatusCode, Status

from .models import (
    SubmitRequestCommand, AcceptRequestCommand, RejectRequestCommand, CancelRequestCommand,
    AssignRequestCommand, AddAdminNoteCommand, SignDocumentCommand, UnsignDocumentCommand,
    InitiateInitialPaymentCommand, ValidateInitialPaymentCommand, AssignUnitCommand, BaseCommand,
)
from . import guards
from rental_request_service.app.config import settings
from rental_request_service.app.models import (
    RequestDB, RequestType, RequestStatus, InitialPaymentStatus, StatusHistoryEntry, GeneratedDocument,
    InitialPayment, AdminNote, UserDB, UserRole, UnitDB, UnitStatus, BuildingDB, PaymentHandle, PaymentStatus,
    AGREEMENT_REQUEST_TYPES,
)
from rental_request_service.app.observability import tracer, lifecycle_transitions_counter, concurrency_retries_counter
from rental_request_service.app.service.events import models as domain_event_models
from rental_request_service.app.service.events.projectors import SyncEngine
from rental_request_service.app.service.exceptions import (
    ValidationError, PermissionDeniedError, RequestNotFoundError, PartyNotFoundError, ConflictError,
    ConcurrencyConflictError, PreconditionFailedError, DependencyFailureError,
)
from rental_request_service.app.service.interfaces.document_generator import AbstractDocumentGenerator
from rental_request_service.app.service.interfaces.party_directory import AbstractPartyDirectory
from rental_request_service.app.service.interfaces.payment_ledger import AbstractPaymentLedger
from rental_request_service.app.service.strategies.document_strategies import get_document_strategy
from rental_request_service.app.service.strategies.initial_payment_strategies import get_initial_payment_strategy
from rental_request_service.app.service.strategies.notification_strategies import get_notification_strategy, FanOut
from rental_request_service.infrastructure.database import request_store

logger = logging.getLogger(__name__)

# Lease requests from applicants earning less than this multiple of the rent get flagged
LOW_INCOME_RENT_MULTIPLE = 3

PROMOTIONS = {
    RequestType.LEASE.value: (UserRole.VISITOR.value, UserRole.TENANT.value),
    RequestType.PURCHASE.value: (UserRole.VISITOR.value, UserRole.OWNER.value),
}

PAYMENT_TYPES = {
    RequestType.LEASE.value: "rent",
    RequestType.PURCHASE.value: "purchase",
}

Mutation = Callable[[RequestDB], Awaitable[bool]]


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class RequestLifecycleEngine:
    """
    Owns the request state machine.

    Every mutation reads the request, validates it against the fresh state and
    commits with a conditional write on the version token. The request write is
    the only atomic step; role promotion and fan-out happen after it and never
    undo it.
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        party_directory: AbstractPartyDirectory,
        document_generator: AbstractDocumentGenerator,
        payment_ledger: AbstractPaymentLedger,
        sync_engine: SyncEngine,
        max_retries: Optional[int] = None,
    ):
        self.db = db
        self.party_directory = party_directory
        self.document_generator = document_generator
        self.payment_ledger = payment_ledger
        self.sync_engine = sync_engine
        self.max_retries = max_retries or settings.MAX_CONCURRENCY_RETRIES

    # --- Plumbing ---

    @contextlib.contextmanager
    def _operation_span(self, operation: str, command: BaseCommand, request_id: Optional[str] = None):
        with tracer.start_as_current_span(f"lifecycle.{operation}") as span:
            span.set_attribute("command.name", type(command).__name__)
            span.set_attribute("command.id", command.command_id)
            if request_id:
                span.set_attribute("request.id", request_id)
            try:
                yield span
                span.set_status(Status(StatusCode.OK))
            except Exception as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, description=f"{type(e).__name__}: {e}"))
                raise

    async def _load(self, request_id: str) -> RequestDB:
        request = await request_store.get_request_by_id(self.db, request_id)
        if request is None:
            raise RequestNotFoundError(request_id)
        return request

    async def _require_user(self, user_id: str) -> UserDB:
        user = await self.party_directory.get_user(user_id)
        if user is None or not user.is_active:
            raise PermissionDeniedError(user_id, "act on requests (unknown or inactive user)")
        return user

    async def _require_unit(self, unit_id: Optional[str]) -> UnitDB:
        if not unit_id:
            raise ValidationError("A unit is required for lease and purchase requests.")
        unit = await self.party_directory.get_unit(unit_id)
        if unit is None:
            raise PartyNotFoundError("unit", unit_id)
        return unit

    async def _apply(self, request_id: str, action: str, mutate: Mutation) -> Tuple[RequestDB, bool]:
        """
        Read / validate / conditional-replace loop.

        `mutate` validates and changes the freshly loaded request in place and
        returns False when there is nothing to write. On a version mismatch the
        whole cycle is retried against the new state.
        """
        for attempt in range(1, self.max_retries + 1):
            request = await self._load(request_id)
            expected_version = request.version
            changed = await mutate(request)
            if not changed:
                return request, False
            try:
                committed = await request_store.replace_request_if_version(self.db, request, expected_version)
            except ConcurrencyConflictError:
                if attempt >= self.max_retries:
                    logger.error(f"Giving up on '{action}' for request {request_id} after {attempt} version conflicts.")
                    raise
                concurrency_retries_counter.add(1, {"lifecycle.action": action})
                logger.warning(f"Version conflict on '{action}' for request {request_id} (attempt {attempt}); retrying on fresh state.")
                continue
            lifecycle_transitions_counter.add(1, {"lifecycle.action": action, "request.status": committed.status})
            return committed, True
        raise ConcurrencyConflictError(request_id, expected_version)

    def _dispatch(
        self,
        event_cls,
        request: RequestDB,
        command: BaseCommand,
        actor_id: str,
        fan_out: FanOut,
        **extra: Any,
    ) -> domain_event_models.RequestLifecycleEvent:
        notifications, thread_message = fan_out
        event = event_cls(
            aggregate_id=request.id,
            version=request.version,
            request=request.model_copy(deep=True),
            notifications=notifications,
            thread_message=thread_message,
            metadata=domain_event_models.EventMetaData(correlation_id=command.command_id, actor_id=actor_id),
            **extra,
        )
        self.sync_engine.schedule(event)
        logger.debug(f"{event.event_type} scheduled for sync (request {request.id} v{request.version}).")
        return event

    async def _fan_out(self, build: Callable[[], Awaitable[FanOut]], request: RequestDB) -> FanOut:
        """Composes the notices for an event; a failure here only costs the notices."""
        try:
            return await build()
        except Exception as e:
            logger.error(f"Could not compose notifications for request {request.id}: {e}", exc_info=True)
            return [], None

    @staticmethod
    def _history(request: RequestDB, status: str, changed_by: str, comment: Optional[str] = None):
        request.status_history.append(StatusHistoryEntry(status=status, changed_by=changed_by, comment=comment))

    async def _resolve_counterparty(self, unit: UnitDB, building: Optional[BuildingDB]) -> Optional[UserDB]:
        """Unit owner, else the building admin, else the first staff member."""
        for candidate_id in (unit.owner_id, building.admin_id if building else None):
            if candidate_id:
                user = await self.party_directory.get_user(candidate_id)
                if user:
                    return user
        staff = await self.party_directory.list_staff()
        return staff[0] if staff else None

    # --- Submission ---

    async def submit_request(self, command: SubmitRequestCommand) -> RequestDB:
        with self._operation_span("submit_request", command):
            requester = await self._require_user(command.requester_id)
            description = guards.ensure_text(command.description, "description")
            try:
                request_type = RequestType(command.type).value
            except ValueError:
                raise ValidationError(f"Unknown request type '{command.type}'.")

            unit = None
            building_id = command.building_id
            if request_type in AGREEMENT_REQUEST_TYPES:
                unit = await self._require_unit(command.unit_id)
                if unit.status != UnitStatus.AVAILABLE.value:
                    raise ValidationError(f"Unit '{unit.id}' is not available (status '{unit.status}').")
            elif command.unit_id:
                unit = await self.party_directory.get_unit(command.unit_id)
                if unit is None:
                    raise PartyNotFoundError("unit", command.unit_id)
            if unit and not building_id:
                building_id = unit.building_id

            since = _now() - datetime.timedelta(hours=settings.DUPLICATE_REQUEST_WINDOW_HOURS)
            duplicate = await request_store.find_open_duplicate(self.db, requester.id, request_type, command.unit_id, since)
            if duplicate:
                logger.info(f"Duplicate {request_type} submission by {requester.id}; returning open request {duplicate.id}.")
                return duplicate

            unit_label = f" for unit {unit.unit_number}" if unit else ""
            request = RequestDB(
                title=command.title or f"{request_type.capitalize()} request{unit_label}",
                description=description,
                type=request_type,
                priority=command.priority,
                unit_id=command.unit_id,
                building_id=building_id,
                requester_id=requester.id,
            )
            self._history(request, RequestStatus.PENDING.value, requester.id, "Request submitted")
            await request_store.insert_request(self.db, request)
            lifecycle_transitions_counter.add(1, {"lifecycle.action": "submit", "request.status": request.status})

            async def build() -> FanOut:
                staff = await self.party_directory.list_staff()
                return get_notification_strategy(request).for_submitted(request, requester, unit, staff)

            self._dispatch(domain_event_models.RequestSubmittedEvent, request, command, requester.id, await self._fan_out(build, request))
            return request

    # --- Staff triage ---

    async def assign_request(self, command: AssignRequestCommand) -> RequestDB:
        with self._operation_span("assign_request", command, command.request_id):
            staff = await self._require_user(command.staff_id)
            guards.ensure_staff(staff, "assign requests")
            assignee = await self.party_directory.get_user(command.assignee_id)
            if assignee is None or not assignee.is_staff:
                raise ValidationError(f"Assignee '{command.assignee_id}' is not a staff member.")

            async def mutate(request: RequestDB) -> bool:
                guards.ensure_status(request, (RequestStatus.PENDING.value, RequestStatus.IN_PROGRESS.value), "assign")
                if request.assigned_to == assignee.id and request.status == RequestStatus.IN_PROGRESS.value:
                    raise ConflictError(request.id, request.status, "assign", detail=f"Request '{request.id}' is already assigned to '{assignee.id}'.")
                request.assigned_to = assignee.id
                request.status = RequestStatus.IN_PROGRESS.value
                self._history(request, request.status, staff.id, f"Assigned to {assignee.full_name}")
                return True

            request, _ = await self._apply(command.request_id, "assign", mutate)

            async def build() -> FanOut:
                return get_notification_strategy(request).for_assigned(request, assignee)

            self._dispatch(domain_event_models.RequestAssignedEvent, request, command, staff.id, await self._fan_out(build, request))
            return request

    async def add_admin_note(self, command: AddAdminNoteCommand) -> RequestDB:
        with self._operation_span("add_admin_note", command, command.request_id):
            staff = await self._require_user(command.staff_id)
            guards.ensure_staff(staff, "add admin notes")
            note = guards.ensure_text(command.note, "note")

            async def mutate(request: RequestDB) -> bool:
                request.admin_notes.append(AdminNote(note=note, added_by=staff.id))
                return True

            request, _ = await self._apply(command.request_id, "add_note", mutate)

            async def build() -> FanOut:
                return get_notification_strategy(request).for_admin_note(request)

            self._dispatch(domain_event_models.AdminNoteAddedEvent, request, command, staff.id, await self._fan_out(build, request))
            return request

    # --- Decision ---

    async def accept_request(self, command: AcceptRequestCommand) -> RequestDB:
        with self._operation_span("accept_request", command, command.request_id) as span:
            staff = await self._require_user(command.staff_id)
            guards.ensure_staff(staff, "accept requests")
            parties: Dict[str, Any] = {}

            async def mutate(request: RequestDB) -> bool:
                guards.ensure_status(request, (RequestStatus.PENDING.value,), "accept")
                requester = await self.party_directory.get_user(request.requester_id)
                if requester is None:
                    raise PartyNotFoundError("user", request.requester_id)
                parties["requester"] = requester

                if request.type in AGREEMENT_REQUEST_TYPES:
                    unit = await self._require_unit(request.unit_id)
                    building_id = unit.building_id or request.building_id
                    building = await self.party_directory.get_building(building_id) if building_id else None
                    if building is None:
                        raise PartyNotFoundError("building", building_id or "<none>")
                    owner = await self._resolve_counterparty(unit, building)
                    if owner is None:
                        raise ValidationError(f"No counterparty can sign for unit '{unit.id}'.")
                    parties.update(unit=unit, owner=owner)

                    amount = get_initial_payment_strategy(request.type).compute_amount(unit)
                    request.initial_payment = InitialPayment(amount=amount)
                    request.generated_documents = await self._generate_agreements(request, unit, building, requester, owner)

                request.status = RequestStatus.ACCEPTED.value
                request.approved_by = staff.id
                request.approved_at = _now()
                self._history(request, request.status, staff.id, "Request accepted")
                return True

            request, _ = await self._apply(command.request_id, "accept", mutate)
            span.set_attribute("request.documents", len(request.generated_documents))
            logger.info(f"Request {request.id} accepted by {staff.id} with {len(request.generated_documents)} document(s).")

            requester = parties["requester"]
            unit = parties.get("unit")
            if request.type == RequestType.LEASE.value and unit:
                self._warn_on_low_income(request, requester, unit)
            await self._promote_requester(request, requester)

            async def build() -> FanOut:
                return get_notification_strategy(request).for_accepted(request, unit, parties.get("owner"), requester)

            self._dispatch(domain_event_models.RequestAcceptedEvent, request, command, staff.id, await self._fan_out(build, request))
            return request

    async def _generate_agreements(
        self,
        request: RequestDB,
        unit: UnitDB,
        building: BuildingDB,
        requester: UserDB,
        owner: UserDB,
    ) -> List[GeneratedDocument]:
        documents = []
        for kind in get_document_strategy(request.type).required_agreements():
            try:
                agreement = await self.document_generator.generate_agreement(request, unit, building, requester, owner, kind)
            except DependencyFailureError:
                logger.error(f"Document generation failed for request {request.id}; accept aborted.")
                raise
            except Exception as e:
                logger.error(f"Document generation failed for request {request.id}: {e}", exc_info=True)
                raise DependencyFailureError(f"Could not generate the {kind.value} for request '{request.id}': {e}") from e
            documents.append(GeneratedDocument(
                doc_type=agreement.kind,
                filename=agreement.filename,
                storage_locator=agreement.storage_locator,
            ))
        return documents

    def _warn_on_low_income(self, request: RequestDB, requester: UserDB, unit: UnitDB):
        if requester.monthly_income is None or not unit.rent_price:
            return
        if requester.monthly_income < unit.rent_price * LOW_INCOME_RENT_MULTIPLE:
            logger.warning(
                f"Lease request {request.id} accepted for applicant {requester.id} with monthly income "
                f"{requester.monthly_income} below {LOW_INCOME_RENT_MULTIPLE}x rent ({unit.rent_price})."
            )

    async def _promote_requester(self, request: RequestDB, requester: UserDB):
        promotion = PROMOTIONS.get(request.type)
        if not promotion:
            return
        from_role, to_role = promotion
        try:
            await self.party_directory.promote_user_role(requester.id, from_role, to_role)
        except Exception as e:
            logger.warning(f"Role promotion of user {requester.id} to {to_role} failed; request {request.id} stays accepted: {e}", exc_info=True)

    async def reject_request(self, command: RejectRequestCommand) -> RequestDB:
        with self._operation_span("reject_request", command, command.request_id):
            reason = guards.ensure_text(command.reason, "reason")
            staff = await self._require_user(command.staff_id)
            guards.ensure_staff(staff, "reject requests")

            async def mutate(request: RequestDB) -> bool:
                guards.ensure_status(request, (RequestStatus.PENDING.value,), "reject")
                request.status = RequestStatus.REJECTED.value
                request.rejected_by = staff.id
                request.rejected_at = _now()
                request.rejection_reason = reason
                self._history(request, request.status, staff.id, reason)
                return True

            request, _ = await self._apply(command.request_id, "reject", mutate)

            async def build() -> FanOut:
                return get_notification_strategy(request).for_rejected(request, reason)

            self._dispatch(domain_event_models.RequestRejectedEvent, request, command, staff.id, await self._fan_out(build, request))
            return request

    async def cancel_request(self, command: CancelRequestCommand) -> RequestDB:
        with self._operation_span("cancel_request", command, command.request_id):
            user = await self._require_user(command.user_id)

            async def mutate(request: RequestDB) -> bool:
                if not user.is_staff and user.id != request.requester_id:
                    raise PermissionDeniedError(user.id, "cancel this request")
                guards.ensure_not_terminal(request, "cancel")
                voided = len(request.generated_documents)
                # Agreements only live on accepted or completed requests
                request.generated_documents = []
                request.status = RequestStatus.CANCELLED.value
                request.cancelled_by = user.id
                request.cancelled_at = _now()
                comment = command.reason or "Request cancelled"
                if voided:
                    comment += f" ({voided} agreement document(s) voided)"
                self._history(request, request.status, user.id, comment)
                return True

            request, _ = await self._apply(command.request_id, "cancel", mutate)

            async def build() -> FanOut:
                staff = await self.party_directory.list_staff()
                return get_notification_strategy(request).for_cancelled(request, user, staff)

            self._dispatch(domain_event_models.RequestCancelledEvent, request, command, user.id, await self._fan_out(build, request))
            return request

    # --- Signatures ---

    async def sign_document(self, command: SignDocumentCommand) -> RequestDB:
        with self._operation_span("sign_document", command, command.request_id):
            signer = await self._require_user(command.signer_id)
            context: Dict[str, Any] = {}

            async def mutate(request: RequestDB) -> bool:
                unit = await self.party_directory.get_unit(request.unit_id) if request.unit_id else None
                context["unit"] = unit
                guards.ensure_party_to_request(signer, request, unit, "sign documents of this request")
                guards.ensure_status(request, (RequestStatus.ACCEPTED.value,), "sign a document of")
                document = guards.require_document(request, command.document_id)
                if document.signed:
                    raise ConflictError(
                        request.id, request.status, "sign",
                        detail=f"Document '{document.id}' of request '{request.id}' is already signed.",
                    )
                document.signed = True
                document.signed_by = signer.id
                document.signed_at = _now()
                return True

            request, _ = await self._apply(command.request_id, "sign", mutate)
            unit = context.get("unit")
            logger.info(f"Document {command.document_id} of request {request.id} signed by {signer.id}.")

            async def build_signed() -> FanOut:
                owner = await self.party_directory.get_user(unit.owner_id) if unit and unit.owner_id else None
                staff = await self.party_directory.list_staff()
                return get_notification_strategy(request).for_document_signed(request, signer, owner, unit, staff)

            self._dispatch(
                domain_event_models.DocumentSignedEvent, request, command, signer.id,
                await self._fan_out(build_signed, request), document_id=command.document_id,
            )

            if request.all_documents_signed:
                async def build_ready() -> FanOut:
                    staff = await self.party_directory.list_staff()
                    return get_notification_strategy(request).for_ready_for_payment(request, unit, staff)

                logger.info(f"All documents of request {request.id} signed; ready for payment.")
                self._dispatch(domain_event_models.ReadyForPaymentEvent, request, command, signer.id, await self._fan_out(build_ready, request))
            return request

    async def unsign_document(self, command: UnsignDocumentCommand) -> RequestDB:
        with self._operation_span("unsign_document", command, command.request_id):
            staff = await self._require_user(command.staff_id)
            guards.ensure_staff(staff, "withdraw signatures")

            async def mutate(request: RequestDB) -> bool:
                guards.ensure_status(request, (RequestStatus.ACCEPTED.value,), "unsign a document of")
                document = guards.require_document(request, command.document_id)
                if not document.signed:
                    raise ConflictError(
                        request.id, request.status, "unsign",
                        detail=f"Document '{document.id}' of request '{request.id}' is not signed.",
                    )
                document.signed = False
                document.signed_by = None
                document.signed_at = None
                return True

            request, _ = await self._apply(command.request_id, "unsign", mutate)

            async def build() -> FanOut:
                return get_notification_strategy(request).for_document_unsigned(request, command.document_id)

            self._dispatch(
                domain_event_models.DocumentUnsignedEvent, request, command, staff.id,
                await self._fan_out(build, request), document_id=command.document_id,
            )
            return request

    # --- Initial payment ---

    async def _ledger_entry_for(self, request: RequestDB, unit: Optional[UnitDB], method: Optional[str] = None):
        recipient = None
        if unit:
            building = await self.party_directory.get_building(unit.building_id) if unit.building_id else None
            counterparty = await self._resolve_counterparty(unit, building)
            recipient = counterparty.id if counterparty else None
        return await self.payment_ledger.record_payment(
            amount=request.initial_payment.amount,
            payer_id=request.requester_id,
            recipient_id=recipient,
            unit_id=request.unit_id,
            request_id=request.id,
            method=method,
            payment_type=PAYMENT_TYPES.get(request.type, request.type),
            building_id=request.building_id,
            description=f"Initial payment for request '{request.title}'",
        )

    async def initiate_initial_payment(self, command: InitiateInitialPaymentCommand) -> PaymentHandle:
        with self._operation_span("initiate_initial_payment", command, command.request_id):
            payer = await self._require_user(command.payer_id)
            request = await self._load(command.request_id)
            unit = await self.party_directory.get_unit(request.unit_id) if request.unit_id else None
            guards.ensure_party_to_request(payer, request, unit, "pay for this request")
            guards.ensure_status(request, (RequestStatus.ACCEPTED.value,), "initiate the initial payment of")
            if request.initial_payment is None:
                raise PreconditionFailedError(request.id, ["no initial payment required"])
            if request.is_paid:
                raise ConflictError(
                    request.id, request.status, "initiate payment",
                    detail=f"The initial payment of request '{request.id}' is already paid.",
                )

            payment = await self._ledger_entry_for(request, unit)

            async def mutate(fresh: RequestDB) -> bool:
                if fresh.initial_payment is None or fresh.initial_payment.payment_id == payment.id:
                    return False
                fresh.initial_payment.payment_id = payment.id
                return True

            await self._apply(request.id, "initiate_payment", mutate)
            logger.info(f"Initial payment {payment.id} initiated for request {request.id} by {payer.id}: {payment.amount}.")
            return PaymentHandle(
                payment_id=payment.id,
                request_id=request.id,
                amount=payment.amount,
                status=payment.status,
                payer_id=payment.payer_id,
                recipient_id=payment.recipient_id,
            )

    async def validate_initial_payment(self, command: ValidateInitialPaymentCommand) -> RequestDB:
        with self._operation_span("validate_initial_payment", command, command.request_id):
            staff = await self._require_user(command.staff_id)
            guards.ensure_staff(staff, "validate payments")
            context: Dict[str, Any] = {}

            async def mutate(request: RequestDB) -> bool:
                guards.ensure_status(request, (RequestStatus.ACCEPTED.value,), "validate the payment of")
                if request.initial_payment is None:
                    raise PreconditionFailedError(request.id, ["no initial payment to validate"])
                if request.is_paid:
                    paid_with = request.initial_payment.transaction_id
                    if command.transaction_id and paid_with and command.transaction_id != paid_with:
                        raise ConflictError(
                            request.id, request.status, "validate payment",
                            detail=f"The initial payment of request '{request.id}' was already validated with transaction '{paid_with}'.",
                        )
                    logger.info(f"Initial payment of request {request.id} already validated; nothing to do.")
                    return False

                unit = await self.party_directory.get_unit(request.unit_id) if request.unit_id else None
                payment = await self._ledger_entry_for(request, unit, command.method)
                context["payment_id"] = payment.id
                context["unit"] = unit

                request.initial_payment.status = InitialPaymentStatus.PAID.value
                request.initial_payment.paid_at = _now()
                request.initial_payment.method = command.method
                request.initial_payment.transaction_id = command.transaction_id
                request.initial_payment.payment_id = payment.id
                return True

            request, changed = await self._apply(command.request_id, "validate_payment", mutate)
            # The ledger only follows a committed request.
            await self._settle_ledger(request)
            if not changed:
                return request

            async def build() -> FanOut:
                staff_members = await self.party_directory.list_staff()
                return get_notification_strategy(request).for_payment_validated(request, context.get("unit"), staff_members)

            self._dispatch(
                domain_event_models.InitialPaymentValidatedEvent, request, command, staff.id,
                await self._fan_out(build, request), payment_id=context.get("payment_id"),
            )
            return request

    async def get_payment_status(self, request_id: str, user_id: str) -> PaymentStatus:
        user = await self._require_user(user_id)
        request = await self._load(request_id)
        unit = await self.party_directory.get_unit(request.unit_id) if request.unit_id else None
        is_occupant = unit is not None and unit.tenant_id == user.id
        if not (guards.is_party_to_request(user, request, unit) or is_occupant):
            raise PermissionDeniedError(user.id, "read the payment status of this request")

        if request.initial_payment is None:
            return PaymentStatus(request_id=request.id, status="not_required", request_status=request.status, request_type=request.type)

        if request.is_paid:
            await self._settle_ledger(request)
        else:
            request = await self._reconcile_payment(request)

        payment = request.initial_payment
        return PaymentStatus(
            request_id=request.id,
            status=payment.status,
            amount=payment.amount,
            paid_at=payment.paid_at,
            method=payment.method,
            transaction_id=payment.transaction_id,
            request_status=request.status,
            request_type=request.type,
        )

    async def _settle_ledger(self, request: RequestDB):
        """Marks the ledger entry of a paid request as paid if it is still pending."""
        payment = request.initial_payment
        if payment is None or not request.is_paid or not payment.payment_id:
            return
        try:
            await self.payment_ledger.mark_paid(payment.payment_id, payment.method, payment.transaction_id)
        except Exception as e:
            logger.error(
                f"Ledger entry {payment.payment_id} of paid request {request.id} could not be marked paid; "
                f"it is settled on the next payment status read: {e}",
                exc_info=True,
            )

    async def _reconcile_payment(self, request: RequestDB) -> RequestDB:
        """Applies a ledger-side confirmation the request has not seen yet. Only accepted requests take it."""
        if request.status != RequestStatus.ACCEPTED.value:
            return request
        ledger_entry = await self.payment_ledger.find_by_request(request.id)
        if ledger_entry is None or ledger_entry.status != InitialPaymentStatus.PAID.value:
            return request

        async def mutate(fresh: RequestDB) -> bool:
            if fresh.status != RequestStatus.ACCEPTED.value or fresh.initial_payment is None or fresh.is_paid:
                return False
            fresh.initial_payment.status = InitialPaymentStatus.PAID.value
            fresh.initial_payment.paid_at = ledger_entry.paid_at or _now()
            fresh.initial_payment.method = ledger_entry.method
            fresh.initial_payment.transaction_id = ledger_entry.transaction_id
            fresh.initial_payment.payment_id = ledger_entry.id
            return True

        reconciled, changed = await self._apply(request.id, "reconcile_payment", mutate)
        if changed:
            logger.info(f"Initial payment of request {request.id} reconciled from ledger entry {ledger_entry.id}.")
        return reconciled

    # --- Completion ---

    async def assign_unit(self, command: AssignUnitCommand) -> RequestDB:
        with self._operation_span("assign_unit", command, command.request_id):
            staff = await self._require_user(command.staff_id)
            guards.ensure_staff(staff, "assign units")
            snapshot: Dict[str, RequestDB] = {}

            async def mutate(request: RequestDB) -> bool:
                guards.ensure_agreement_request(request, "assign a unit")
                guards.ensure_ready_for_completion(request)
                snapshot["before"] = request.model_copy(deep=True)
                request.status = RequestStatus.COMPLETED.value
                request.completed_at = _now()
                self._history(request, request.status, staff.id, "Unit assigned")
                return True

            request, _ = await self._apply(command.request_id, "assign_unit", mutate)

            try:
                unit = await self.party_directory.assign_unit_occupancy(request.unit_id, request.type, request.requester_id)
            except Exception as e:
                logger.error(f"Unit occupancy update failed for request {request.id}; reverting completion: {e}", exc_info=True)
                await self._revert_completion(request, snapshot["before"])
                raise DependencyFailureError(f"Could not assign unit '{request.unit_id}' for request '{request.id}': {e}") from e

            logger.info(f"Unit {unit.id} assigned to {request.requester_id}; request {request.id} completed.")

            async def build() -> FanOut:
                return get_notification_strategy(request).for_unit_assigned(request, unit)

            self._dispatch(domain_event_models.UnitAssignedEvent, request, command, staff.id, await self._fan_out(build, request))
            return request

    async def _revert_completion(self, completed: RequestDB, before: RequestDB):
        before.status_history.append(StatusHistoryEntry(
            status=before.status, changed_by=completed.status_history[-1].changed_by, comment="Unit assignment reverted",
        ))
        try:
            await request_store.replace_request_if_version(self.db, before, completed.version)
        except ConcurrencyConflictError:
            logger.error(f"Could not revert completion of request {completed.id}: it changed concurrently.")

    # --- Queries ---

    async def get_request(self, request_id: str, user_id: str) -> RequestDB:
        user = await self._require_user(user_id)
        request = await self._load(request_id)
        unit = await self.party_directory.get_unit(request.unit_id) if request.unit_id else None
        guards.ensure_party_to_request(user, request, unit, "view this request")
        return request

    async def list_requests(
        self,
        user_id: str,
        status: Optional[str] = None,
        request_type: Optional[str] = None,
        unit_id: Optional[str] = None,
        limit: int = 50,
        skip: int = 0,
    ) -> List[RequestDB]:
        user = await self._require_user(user_id)
        filters: Dict[str, Any] = {}
        if not user.is_staff:
            filters["requester_id"] = user.id
        if status:
            filters["status"] = status
        if request_type:
            filters["type"] = request_type
        if unit_id:
            filters["unit_id"] = unit_id
        return await request_store.list_requests(self.db, filters, limit=limit, skip=skip)
