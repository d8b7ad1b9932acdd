"""Turn failures into the orchestrator's terminal error vocabulary.

Matching is structural on Failure.kind. Transient partial-batch failures
never get here; they are retried by the mitigator until the ceiling and only
their exhaustion is reported, with a message specific to attach or detach.
"""

from __future__ import annotations

import logging

from .models import ErrorKind, Outcome
from .remote import Failure, FailureKind, RemoteCallError

logger = logging.getLogger(__name__)

ATTACH_EXHAUSTED_MESSAGE = "Target(s) failed to create/update"
DETACH_EXHAUSTED_MESSAGE = "Target(s) failed to be removed"

# Documented mapping, one entry per failure category
ERROR_KINDS: dict[FailureKind, ErrorKind] = {
    FailureKind.CONCURRENT_MODIFICATION: ErrorKind.CONFLICT,
    FailureKind.LIMIT_EXCEEDED: ErrorKind.LIMIT_EXCEEDED,
    FailureKind.INVALID_PATTERN: ErrorKind.INVALID_REQUEST,
    FailureKind.INTERNAL_ERROR: ErrorKind.INTERNAL_FAILURE,
    FailureKind.NOT_FOUND: ErrorKind.NOT_FOUND,
    FailureKind.ALREADY_EXISTS: ErrorKind.ALREADY_EXISTS,
    FailureKind.BATCH_EXHAUSTED_ATTACH: ErrorKind.INTERNAL_FAILURE,
    FailureKind.BATCH_EXHAUSTED_DETACH: ErrorKind.INTERNAL_FAILURE,
    FailureKind.SERVICE_ERROR: ErrorKind.GENERAL_SERVICE_FAILURE,
    FailureKind.UNEXPECTED: ErrorKind.INTERNAL_FAILURE,
}


def failure_from_exception(exc: Exception) -> Failure:
    """Extract the Failure carried by ``exc``, or wrap a non-remote error."""
    if isinstance(exc, RemoteCallError):
        return exc.failure
    return Failure(
        kind=FailureKind.UNEXPECTED,
        message=str(exc) or type(exc).__name__,
        code=type(exc).__name__,
    )


def classify(failure: Failure) -> Outcome:
    """Map a failure to a FAILED outcome.

    The outcome's message is the failure's own text (or the fixed exhaustion
    message), never a traceback.
    """
    match failure.kind:
        case FailureKind.BATCH_EXHAUSTED_ATTACH:
            message = ATTACH_EXHAUSTED_MESSAGE
        case FailureKind.BATCH_EXHAUSTED_DETACH:
            message = DETACH_EXHAUSTED_MESSAGE
        case _:
            message = failure.message

    error_kind = ERROR_KINDS.get(failure.kind, ErrorKind.GENERAL_SERVICE_FAILURE)

    logger.error(
        "Operation failed: %s",
        failure,
        extra={
            "error_kind": error_kind.value,
            "failure_kind": failure.kind.value,
            "error_code": failure.code,
            "operation": failure.operation,
        },
    )
    return Outcome.failed(error_kind, message)


def handle_error(exc: Exception) -> Outcome:
    """Classify an exception raised while handling a request."""
    failure = failure_from_exception(exc)
    if failure.kind == FailureKind.UNEXPECTED:
        logger.exception("Unexpected error while handling request", extra={"error": str(exc)})
    else:
        logger.debug("Remote call failed", exc_info=exc)
    return classify(failure)
