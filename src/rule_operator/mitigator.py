"""Bounded retry of the failed subset of a batch mutation.

The remote API may accept an attach or detach batch yet reject some of its
entries. The mitigator re-issues a request made of exactly the rejected
entries, at most ``ceiling`` times per reconciliation, and reports the
outcome as an explicit status rather than an exception:

    STABILIZED  the last response has no failed entries; no call was made
    RETRIED     a retry was issued; the caller must re-check its response later
    EXHAUSTED   failures remain after ``ceiling`` retries; no call was made

Retry counts and responses live in the caller's ProgressState, so the
decision is a pure function of that state and the remote responses.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from .models import BatchMutationResponse

logger = logging.getLogger(__name__)

E = TypeVar("E")


class BatchKind(str, Enum):
    """Which batch mutation a mitigator retries."""

    ATTACH = "attach"
    DETACH = "detach"


class MitigationStatus(str, Enum):
    """Outcome of one mitigation check."""

    STABILIZED = "stabilized"
    RETRIED = "retried"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class MitigationResult:
    """Result of a mitigation check.

    ``response`` is the response the next check must inspect (the retry's
    response after RETRIED, otherwise the one passed in).
    """

    status: MitigationStatus
    response: BatchMutationResponse
    retry_count: int

    @property
    def stabilized(self) -> bool:
        return self.status == MitigationStatus.STABILIZED


class BatchRetryMitigator(Generic[E]):
    """Retries the failed entries of one kind of batch mutation.

    Args:
        kind: Batch kind, used for logging and exhaustion reporting.
        issue: Sends a batch request with the given entries and returns the
            remote response. Remote failures propagate to the caller.
        ceiling: Maximum number of retries before declaring exhaustion.
    """

    def __init__(
        self,
        kind: BatchKind,
        issue: Callable[[list[E]], BatchMutationResponse],
        ceiling: int,
    ) -> None:
        if ceiling < 0:
            raise ValueError(f"ceiling must be non-negative: {ceiling}")
        self._kind = kind
        self._issue = issue
        self._ceiling = ceiling

    @property
    def kind(self) -> BatchKind:
        return self._kind

    @property
    def ceiling(self) -> int:
        return self._ceiling

    def build_retry_request(
        self, requested: Mapping[str, E], response: BatchMutationResponse
    ) -> list[E]:
        """Select the originally requested entries that failed.

        Ids are deduplicated and kept in failed-entry order.

        Raises:
            ValueError: If a failed id was not part of the original request.
        """
        entries: list[E] = []
        seen: set[str] = set()
        for entry_id in response.failed_entry_ids:
            if entry_id in seen:
                continue
            if entry_id not in requested:
                raise ValueError(
                    f"{self._kind.value} response reports failed entry '{entry_id}' "
                    f"that was not part of the request"
                )
            seen.add(entry_id)
            entries.append(requested[entry_id])
        return entries

    def mitigate(
        self,
        requested: Mapping[str, E],
        last_response: BatchMutationResponse,
        retry_count: int,
    ) -> MitigationResult:
        """Check ``last_response`` and retry its failed entries if allowed.

        Args:
            requested: The original request's entries keyed by entry id.
            last_response: Response of the initial call or of the last retry.
            retry_count: Retries already issued in this reconciliation.
        """
        if not last_response.has_failures:
            return MitigationResult(MitigationStatus.STABILIZED, last_response, retry_count)

        for failed_entry in last_response.failed_entries:
            logger.warning(
                failed_entry.error_message or "Entry failed without an error message",
                extra={
                    "batch_kind": self._kind.value,
                    "entry_id": failed_entry.entry_id,
                    "error_code": failed_entry.error_code,
                },
            )

        if retry_count >= self._ceiling:
            logger.error(
                "Batch %s still has failed entries after %s retries",
                self._kind.value,
                retry_count,
                extra={
                    "batch_kind": self._kind.value,
                    "failed_count": len(last_response.failed_entries),
                    "retry_count": retry_count,
                },
            )
            return MitigationResult(MitigationStatus.EXHAUSTED, last_response, retry_count)

        retry_entries = self.build_retry_request(requested, last_response)
        logger.info(
            "Batch %s has %s failed entries. Retrying...",
            self._kind.value,
            len(last_response.failed_entries),
            extra={
                "batch_kind": self._kind.value,
                "attempt": retry_count + 1,
                "max_attempts": self._ceiling,
            },
        )

        response = self._issue(retry_entries)
        return MitigationResult(MitigationStatus.RETRIED, response, retry_count + 1)
