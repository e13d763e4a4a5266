"""
Custom exceptions for the Rental Request service.

Everything except SyncFailureError is surfaced synchronously to the caller and
leaves no partial mutation behind. SyncFailureError is raised inside the
synchronization engine and never escapes it.
"""

class BaseRequestLifecycleError(Exception):
    """Base class for exceptions in this module."""
    pass

class ValidationError(BaseRequestLifecycleError):
    """Raised for malformed input (missing reason, unknown request type, ...)."""
    pass

class PermissionDeniedError(BaseRequestLifecycleError):
    """Raised when the caller lacks the role or ownership an operation needs."""
    def __init__(self, user_id: str, attempted_action: str):
        self.user_id = user_id
        self.attempted_action = attempted_action
        super().__init__(f"User '{user_id}' is not allowed to {attempted_action}.")

class NotFoundError(BaseRequestLifecycleError):
    pass

class RequestNotFoundError(NotFoundError):
    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Request with ID '{request_id}' not found.")

class DocumentNotFoundError(NotFoundError):
    """Raised when a generated document is not attached to the request."""
    def __init__(self, request_id: str, document_id: str):
        self.request_id = request_id
        self.document_id = document_id
        super().__init__(f"Document '{document_id}' not found on request '{request_id}'.")

class PartyNotFoundError(NotFoundError):
    """Raised when a user, unit or building cannot be resolved."""
    def __init__(self, party_type: str, party_id: str):
        self.party_type = party_type
        self.party_id = party_id
        super().__init__(f"{party_type.capitalize()} with ID '{party_id}' not found.")

class ConflictError(BaseRequestLifecycleError):
    """Raised when an operation was already processed or is invalid for the current state."""
    def __init__(self, request_id: str, current_state: str, attempted_action: str, detail: str = None):
        self.request_id = request_id
        self.current_state = current_state
        self.attempted_action = attempted_action
        message = detail or f"Cannot {attempted_action} request '{request_id}': already processed (status '{current_state}')."
        super().__init__(message)

class ConcurrencyConflictError(ConflictError):
    """Raised when a version conflict is detected during a conditional update."""
    def __init__(self, aggregate_id: str, expected_version: int, actual_version: int = None):
        self.aggregate_id = aggregate_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            request_id=aggregate_id,
            current_state="unknown",
            attempted_action="update",
            detail=(
                f"Concurrency conflict for request '{aggregate_id}'. "
                f"Expected version {expected_version}, but found {actual_version}."
            ),
        )

class PreconditionFailedError(BaseRequestLifecycleError):
    """Raised when a gate is not satisfied yet (payment not confirmed, documents unsigned)."""
    def __init__(self, request_id: str, unmet: list):
        self.request_id = request_id
        self.unmet = list(unmet)
        super().__init__(f"Request '{request_id}' is not ready yet: {', '.join(self.unmet)}.")

class DependencyFailureError(BaseRequestLifecycleError):
    """Raised when a collaborator required by the transaction fails (document generation)."""
    pass

class SyncFailureError(BaseRequestLifecycleError):
    """Raised by a synchronization path; caught at the sync engine boundary."""
    pass

class KafkaProducerError(BaseRequestLifecycleError):
    """Raised when there's an issue with Kafka message production."""
    pass
