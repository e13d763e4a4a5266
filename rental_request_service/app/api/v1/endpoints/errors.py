# Maps lifecycle exceptions to HTTP errors
import logging
from fastapi import HTTPException

from rental_request_service.app.service.exceptions import (
    BaseRequestLifecycleError, ValidationError, PermissionDeniedError, NotFoundError,
    ConflictError, PreconditionFailedError, DependencyFailureError,
)

logger = logging.getLogger(__name__)

STATUS_CODES = [
    (ValidationError, 400),
    (PermissionDeniedError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (PreconditionFailedError, 412),
    (DependencyFailureError, 502),
]


def to_http_exception(error: BaseRequestLifecycleError, action: str) -> HTTPException:
    for error_type, status_code in STATUS_CODES:
        if isinstance(error, error_type):
            logger.warning(f"{type(error).__name__} while {action}: {error}")
            return HTTPException(status_code=status_code, detail=str(error))
    logger.error(f"Unmapped lifecycle error while {action}: {error}", exc_info=True)
    return HTTPException(status_code=500, detail=f"Failed while {action}.")
