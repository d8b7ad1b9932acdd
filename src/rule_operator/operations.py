"""Thin wrappers around each remote mutation and read.

Each wrapper issues exactly one remote call, logs one line naming the rule
and the outcome, and returns the raw response. Failures propagate untouched;
interpreting them is the job of stabilization.py and errors.py.
"""

from __future__ import annotations

import logging
from typing import Any

from .models import TARGET_TYPE_NAME, TYPE_NAME, BatchMutationResponse, ResourceModel, TargetEntry
from .remote import RuleClient

logger = logging.getLogger(__name__)


def put_rule(client: RuleClient, model: ResourceModel) -> dict[str, Any]:
    response = client.put_rule(model.identity, model)
    logger.info(
        "%s [%s] has successfully been updated.",
        TYPE_NAME,
        model.identity,
        extra={"rule": str(model.identity), "rule_arn": response.get("RuleArn")},
    )
    return response


def delete_rule(client: RuleClient, model: ResourceModel) -> dict[str, Any]:
    response = client.delete_rule(model.identity)
    logger.info(
        "%s [%s] successfully deleted.",
        TYPE_NAME,
        model.identity,
        extra={"rule": str(model.identity)},
    )
    return response


def describe_rule(client: RuleClient, model: ResourceModel) -> dict[str, Any]:
    response = client.describe_rule(model.identity)
    logger.info(
        "%s [%s] has successfully been read.",
        TYPE_NAME,
        model.identity,
        extra={"rule": str(model.identity)},
    )
    return response


def put_targets(
    client: RuleClient, model: ResourceModel, entries: list[TargetEntry]
) -> BatchMutationResponse | None:
    """Attach ``entries`` to the rule.

    Returns None without calling the remote API when there is nothing to
    attach, so a zero-length request can never produce a failure.
    """
    if not entries:
        return None

    response = client.put_targets(model.identity, entries)
    logger.info(
        "%s [%s] has successfully been updated.",
        TARGET_TYPE_NAME,
        len(entries),
        extra={
            "rule": str(model.identity),
            "requested": len(entries),
            "failed": len(response.failed_entries),
        },
    )
    return response


def remove_targets(
    client: RuleClient, model: ResourceModel, entry_ids: list[str]
) -> BatchMutationResponse | None:
    """Detach the targets with ``entry_ids``; no call when the list is empty."""
    if not entry_ids:
        return None

    response = client.remove_targets(model.identity, entry_ids)
    logger.info(
        "%s %s has successfully been deleted.",
        TARGET_TYPE_NAME,
        entry_ids,
        extra={
            "rule": str(model.identity),
            "requested": len(entry_ids),
            "failed": len(response.failed_entries),
        },
    )
    return response


def list_targets(client: RuleClient, model: ResourceModel) -> list[TargetEntry]:
    targets = client.list_targets(model.identity)
    logger.info(
        "%s [%s] successfully read.",
        TARGET_TYPE_NAME,
        len(targets),
        extra={"rule": str(model.identity), "target_count": len(targets)},
    )
    return targets
