"""Convergence checks for each mutating operation.

Per operation the state moves through

    NOT_STARTED -> FIRST_RESPONSE_OBSERVED -> (RETRYING)* -> STABILIZED
                                                          -> PERMANENTLY_FAILED

The first response of a batch call is seeded into ProgressState once; each
later check inspects the latest stored response and may trigger one retry
through the BatchRetryMitigator. Checks are deterministic: the same progress
state and the same remote responses always give the same result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from .config import MAX_RETRIES_ON_PUT_TARGETS, MAX_RETRIES_ON_REMOVE_TARGETS
from .mitigator import BatchKind, BatchRetryMitigator, MitigationStatus
from .models import (
    TARGET_TYPE_NAME,
    TYPE_NAME,
    BatchMutationResponse,
    ProgressState,
    ResourceModel,
    TargetEntry,
)
from .remote import Failure, FailureKind, RemoteCallError, RuleClient

logger = logging.getLogger(__name__)


class StabilizationStatus(str, Enum):
    """Result of one stabilization check."""

    STABILIZED = "stabilized"
    PENDING = "pending"
    FAILED = "failed"


@dataclass(frozen=True)
class StabilizationResult:
    """Outcome of a check; ``failure`` is set only when FAILED."""

    status: StabilizationStatus
    failure: Failure | None = None

    @property
    def stabilized(self) -> bool:
        return self.status == StabilizationStatus.STABILIZED

    @classmethod
    def of(cls, stabilized: bool) -> StabilizationResult:
        if stabilized:
            return cls(StabilizationStatus.STABILIZED)
        return cls(StabilizationStatus.PENDING)

    @classmethod
    def failed(cls, failure: Failure) -> StabilizationResult:
        return cls(StabilizationStatus.FAILED, failure)


EXHAUSTED_FAILURES: dict[BatchKind, Failure] = {
    BatchKind.ATTACH: Failure(
        kind=FailureKind.BATCH_EXHAUSTED_ATTACH,
        message=f"PutTargets still has failed entries after {MAX_RETRIES_ON_PUT_TARGETS} retries",
        code="FailedEntries (put)",
        operation="PutTargets",
    ),
    BatchKind.DETACH: Failure(
        kind=FailureKind.BATCH_EXHAUSTED_DETACH,
        message=(
            f"RemoveTargets still has failed entries after {MAX_RETRIES_ON_REMOVE_TARGETS} retries"
        ),
        code="FailedEntries (remove)",
        operation="RemoveTargets",
    ),
}


def attach_mitigator(client: RuleClient, model: ResourceModel) -> BatchRetryMitigator[TargetEntry]:
    """Mitigator retrying failed PutTargets entries for ``model``'s rule."""
    return BatchRetryMitigator(
        BatchKind.ATTACH,
        lambda entries: client.put_targets(model.identity, entries),
        ceiling=MAX_RETRIES_ON_PUT_TARGETS,
    )


def detach_mitigator(client: RuleClient, model: ResourceModel) -> BatchRetryMitigator[str]:
    """Mitigator retrying failed RemoveTargets ids for ``model``'s rule."""
    return BatchRetryMitigator(
        BatchKind.DETACH,
        lambda entry_ids: client.remove_targets(model.identity, entry_ids),
        ceiling=MAX_RETRIES_ON_REMOVE_TARGETS,
    )


def stabilize_put_rule(client: RuleClient, model: ResourceModel) -> StabilizationResult:
    """Check that an upserted rule is visible on re-read.

    A missing rule is expected replication lag, never an error, and has no
    retry ceiling. Other read failures propagate.
    """
    try:
        client.describe_rule(model.identity)
        stabilized = True
    except RemoteCallError as e:
        if e.kind != FailureKind.NOT_FOUND:
            raise
        stabilized = False

    logger.info(
        "%s [%s] has been stabilized: %s",
        TYPE_NAME,
        model.identity,
        stabilized,
        extra={"rule": str(model.identity), "stabilized": stabilized},
    )
    return StabilizationResult.of(stabilized)


def stabilize_put_targets(
    initial_response: BatchMutationResponse | None,
    client: RuleClient,
    model: ResourceModel,
    state: ProgressState,
) -> StabilizationResult:
    """Check the attach batch and retry its failed entries when allowed.

    Args:
        initial_response: Response of the first PutTargets call. Only used
            the first time, to seed ``state.last_attach_response``.
        client: Client used for retries.
        model: Desired model; its targets form the original request.
        state: Progress state, updated in place.
    """
    if not model.targets:
        return StabilizationResult.of(True)

    if state.last_attach_response is None:
        state.last_attach_response = initial_response
    if state.last_attach_response is None:
        # Targets were requested but no response was ever observed
        raise ValueError("PutTargets response is missing from progress state")

    requested = {target.id: target for target in model.targets}
    result = attach_mitigator(client, model).mitigate(
        requested, state.last_attach_response, state.attach_retry_count
    )
    state.last_attach_response = result.response
    state.attach_retry_count = result.retry_count

    logger.info(
        "%s [%s] have been stabilized: %s",
        TARGET_TYPE_NAME,
        len(model.targets),
        result.stabilized,
        extra={
            "rule": str(model.identity),
            "status": result.status.value,
            "retry_count": result.retry_count,
        },
    )

    if result.status == MitigationStatus.EXHAUSTED:
        return StabilizationResult.failed(EXHAUSTED_FAILURES[BatchKind.ATTACH])
    return StabilizationResult.of(result.stabilized)


def stabilize_remove_targets(
    initial_response: BatchMutationResponse | None,
    client: RuleClient,
    model: ResourceModel,
    state: ProgressState,
    target_ids: list[str],
) -> StabilizationResult:
    """Check the detach batch and retry its failed ids when allowed.

    An empty ``target_ids`` is trivially stable and no call is ever issued.
    """
    if not target_ids:
        logger.info(
            "%s %s delete has stabilized: True",
            TARGET_TYPE_NAME,
            target_ids,
            extra={"rule": str(model.identity)},
        )
        return StabilizationResult.of(True)

    if state.last_detach_response is None:
        state.last_detach_response = initial_response
    if state.last_detach_response is None:
        raise ValueError("RemoveTargets response is missing from progress state")

    requested = {target_id: target_id for target_id in target_ids}
    result = detach_mitigator(client, model).mitigate(
        requested, state.last_detach_response, state.detach_retry_count
    )
    state.last_detach_response = result.response
    state.detach_retry_count = result.retry_count

    logger.info(
        "%s %s delete has stabilized: %s",
        TARGET_TYPE_NAME,
        target_ids,
        result.stabilized,
        extra={
            "rule": str(model.identity),
            "status": result.status.value,
            "retry_count": result.retry_count,
        },
    )

    if result.status == MitigationStatus.EXHAUSTED:
        logger.error("Failed to remove Targets.", extra={"rule": str(model.identity)})
        return StabilizationResult.failed(EXHAUSTED_FAILURES[BatchKind.DETACH])
    return StabilizationResult.of(result.stabilized)
