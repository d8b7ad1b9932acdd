"""Propagation delay between a mutation and the checks that depend on it.

The remote control plane replicates changes with some lag. Before polling
resumes at a checkpoint, the reconciliation is suspended once for a fixed
delay. The highest consumed checkpoint is kept in ProgressState, so no
matter how often the orchestrator re-invokes, each checkpoint waits exactly
once, and distinct checkpoints in one operation each get their own wait.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .config import PROPAGATION_DELAY_SECONDS
from .models import Outcome, ProgressState, ResourceModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GateDecision:
    should_wait: bool
    watermark: int


def propagation_gate(checkpoint: int, watermark: int) -> GateDecision:
    """Decide whether ``checkpoint`` still needs its delay.

    Args:
        checkpoint: 1-based number of the delay within the operation.
        watermark: Highest checkpoint already consumed.
    """
    if watermark < checkpoint:
        return GateDecision(should_wait=True, watermark=checkpoint)
    return GateDecision(should_wait=False, watermark=watermark)


def delayed_progress(
    state: ProgressState,
    model: ResourceModel | None,
    checkpoint: int,
    delay_seconds: int = PROPAGATION_DELAY_SECONDS,
) -> Outcome | None:
    """Apply the gate to ``state``.

    Returns an IN_PROGRESS outcome asking for a re-invocation after
    ``delay_seconds`` the first time a checkpoint is reached, and None once it
    has been consumed.
    """
    decision = propagation_gate(checkpoint, state.propagation_delay_watermark)
    state.propagation_delay_watermark = decision.watermark
    if not decision.should_wait:
        return None

    logger.info(
        "Waiting %ss for propagation before checkpoint %s",
        delay_seconds,
        checkpoint,
        extra={"checkpoint": checkpoint, "delay_seconds": delay_seconds},
    )
    return Outcome.in_progress(state, delay_seconds, model)
