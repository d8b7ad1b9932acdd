"""Boundary between the engine and the remote rules control plane.

Every remote call either returns its raw response or raises RemoteCallError
carrying a Failure tagged with one FailureKind from a closed set. The
classifier in errors.py matches on that tag, never on exception types.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from .models import BatchMutationResponse, ResourceIdentity, ResourceModel, TargetEntry


class FailureKind(str, Enum):
    """Failure categories produced at the collaborator boundary."""

    CONCURRENT_MODIFICATION = "concurrentModification"
    LIMIT_EXCEEDED = "limitExceeded"
    INVALID_PATTERN = "invalidPattern"
    INTERNAL_ERROR = "internalError"
    NOT_FOUND = "notFound"
    ALREADY_EXISTS = "alreadyExists"
    BATCH_EXHAUSTED_ATTACH = "batchExhaustedAttach"
    BATCH_EXHAUSTED_DETACH = "batchExhaustedDetach"
    SERVICE_ERROR = "serviceError"
    UNEXPECTED = "unexpected"


# Remote error codes with a dedicated category. Anything else reported by the
# service, including a response without error details, is SERVICE_ERROR.
ERROR_CODE_KINDS: dict[str, FailureKind] = {
    "ConcurrentModificationException": FailureKind.CONCURRENT_MODIFICATION,
    "LimitExceededException": FailureKind.LIMIT_EXCEEDED,
    "InvalidEventPatternException": FailureKind.INVALID_PATTERN,
    "InternalException": FailureKind.INTERNAL_ERROR,
    "ResourceNotFoundException": FailureKind.NOT_FOUND,
    "ResourceAlreadyExistsException": FailureKind.ALREADY_EXISTS,
}


def kind_for_error_code(code: str | None) -> FailureKind:
    """Map a remote error code to its failure category."""
    if not code:
        return FailureKind.SERVICE_ERROR
    return ERROR_CODE_KINDS.get(code, FailureKind.SERVICE_ERROR)


@dataclass(frozen=True)
class Failure:
    """A classified failure of a remote call or of the engine itself."""

    kind: FailureKind
    message: str
    code: str = ""
    operation: str = ""

    def __str__(self) -> str:
        prefix = f"{self.operation}: " if self.operation else ""
        code = f" ({self.code})" if self.code else ""
        return f"{prefix}{self.message}{code}"


class RemoteCallError(Exception):
    """Raised by a RuleClient when a remote call fails."""

    def __init__(self, failure: Failure) -> None:
        super().__init__(str(failure))
        self.failure = failure

    @property
    def kind(self) -> FailureKind:
        return self.failure.kind


class RuleClient(Protocol):
    """Remote operations the engine depends on.

    Implementations raise RemoteCallError for every failure; ``describe_rule``
    and ``list_targets`` raise it with NOT_FOUND when the rule does not exist.
    """

    def put_rule(self, identity: ResourceIdentity, definition: ResourceModel) -> dict[str, Any]:
        ...

    def delete_rule(self, identity: ResourceIdentity) -> dict[str, Any]:
        ...

    def describe_rule(self, identity: ResourceIdentity) -> dict[str, Any]:
        ...

    def put_targets(
        self, identity: ResourceIdentity, entries: list[TargetEntry]
    ) -> BatchMutationResponse:
        ...

    def remove_targets(
        self, identity: ResourceIdentity, entry_ids: list[str]
    ) -> BatchMutationResponse:
        ...

    def list_targets(self, identity: ResourceIdentity) -> list[TargetEntry]:
        ...

    def list_rules(
        self,
        name_prefix: str | None = None,
        event_bus_name: str | None = None,
        next_token: str | None = None,
    ) -> tuple[list[dict[str, Any]], str | None]:
        ...
