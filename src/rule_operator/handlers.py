"""Create / Read / Update / Delete / List handlers for the rule resource.

The orchestrator calls ``reconcile`` with the desired model and the progress
state returned by the previous call (None on the first call). Each call
resumes at the first step not recorded in ``ProgressState.completed_steps``
and runs until it either finishes or has to wait, in which case it returns
IN_PROGRESS and control goes back to the orchestrator. Steps already done
are never re-issued.

Ordering within an operation: the rule mutation comes before any target
mutation, and attaching targets comes before detaching any, so a rule is
never left without targets in between.
"""

from __future__ import annotations

import logging
from enum import Enum

from . import operations
from .config import PROPAGATION_DELAY_SECONDS, Config
from .delay import delayed_progress
from .errors import classify, handle_error
from .models import TYPE_NAME, ErrorKind, Outcome, ProgressState, ResourceModel, Step
from .remote import Failure, FailureKind, RemoteCallError, RuleClient
from .stabilization import (
    StabilizationResult,
    StabilizationStatus,
    stabilize_put_rule,
    stabilize_put_targets,
    stabilize_remove_targets,
)

logger = logging.getLogger(__name__)

# Delay checkpoints within create/update
CHECKPOINT_BEFORE_TARGETS = 1
CHECKPOINT_BEFORE_READ = 2


class Action(str, Enum):
    """Lifecycle actions the orchestrator can request."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    LIST = "list"


class BaseHandler:
    """Shared steps of the rule lifecycle handlers."""

    action: Action

    def __init__(self, client: RuleClient, config: Config) -> None:
        self._client = client
        self._config = config

    def handle(self, model: ResourceModel, state: ProgressState) -> Outcome:
        """Run the handler, turning every exception into a FAILED outcome."""
        logger.info(
            "Handling %s request for %s [%s]",
            self.action.value,
            TYPE_NAME,
            model.identity,
            extra={
                "action": self.action.value,
                "rule": str(model.identity),
                "completed_steps": [step.value for step in state.completed_steps],
            },
        )
        try:
            return self._handle(model, state)
        except Exception as e:
            return handle_error(e)

    def _handle(self, model: ResourceModel, state: ProgressState) -> Outcome:
        raise NotImplementedError("Subclasses must implement _handle")

    # -------------------------------------------------------------------------
    # Steps. Each returns an Outcome to stop this invocation, or None to go on.
    # -------------------------------------------------------------------------

    def _pending(self, state: ProgressState, model: ResourceModel) -> Outcome:
        return Outcome.in_progress(state, self._config.stabilization_interval_seconds, model)

    def _resolve(
        self,
        result: StabilizationResult,
        state: ProgressState,
        model: ResourceModel,
        step: Step,
    ) -> Outcome | None:
        match result.status:
            case StabilizationStatus.STABILIZED:
                state.mark_done(step)
                return None
            case StabilizationStatus.FAILED:
                assert result.failure is not None
                return classify(result.failure)
            case _:
                return self._pending(state, model)

    def _validate_definition(self, model: ResourceModel) -> Outcome | None:
        if model.has_trigger:
            return None
        return classify(
            Failure(
                kind=FailureKind.INVALID_PATTERN,
                message=(
                    f"{TYPE_NAME} [{model.identity}] requires an eventPattern "
                    f"or a scheduleExpression"
                ),
                operation=self.action.value,
            )
        )

    def _rule_exists(self, model: ResourceModel) -> bool:
        try:
            operations.describe_rule(self._client, model)
        except RemoteCallError as e:
            if e.kind == FailureKind.NOT_FOUND:
                return False
            raise
        return True

    def _upsert_rule(self, model: ResourceModel, state: ProgressState) -> Outcome | None:
        if not state.is_done(Step.RULE_PUT):
            operations.put_rule(self._client, model)
            state.mark_done(Step.RULE_PUT)

        if state.is_done(Step.RULE_STABILIZED):
            return None
        result = stabilize_put_rule(self._client, model)
        return self._resolve(result, state, model, Step.RULE_STABILIZED)

    def _attach_targets(self, model: ResourceModel, state: ProgressState) -> Outcome | None:
        response = None
        if not state.is_done(Step.TARGETS_PUT):
            response = operations.put_targets(self._client, model, model.targets or [])
            state.mark_done(Step.TARGETS_PUT)

        if state.is_done(Step.TARGETS_STABILIZED):
            return None
        result = stabilize_put_targets(response, self._client, model, state)
        return self._resolve(result, state, model, Step.TARGETS_STABILIZED)

    def _list_targets_to_remove(
        self, model: ResourceModel, state: ProgressState, keep: set[str]
    ) -> None:
        """Record, once, the attached target ids that are not in ``keep``."""
        if state.is_done(Step.TARGETS_LISTED):
            return
        attached = operations.list_targets(self._client, model)
        state.target_ids_to_remove = [target.id for target in attached if target.id not in keep]
        state.mark_done(Step.TARGETS_LISTED)

    def _detach_targets(self, model: ResourceModel, state: ProgressState) -> Outcome | None:
        target_ids = list(state.target_ids_to_remove or [])

        response = None
        if not state.is_done(Step.TARGETS_REMOVED):
            response = operations.remove_targets(self._client, model, target_ids)
            state.mark_done(Step.TARGETS_REMOVED)

        if state.is_done(Step.REMOVAL_STABILIZED):
            return None
        result = stabilize_remove_targets(response, self._client, model, state, target_ids)
        return self._resolve(result, state, model, Step.REMOVAL_STABILIZED)

    def _read_back(self, model: ResourceModel) -> ResourceModel:
        rule = operations.describe_rule(self._client, model)
        targets = operations.list_targets(self._client, model)
        return ResourceModel.from_remote(rule, targets)


class CreateHandler(BaseHandler):
    """Create a rule that must not exist yet, then attach its targets."""

    action = Action.CREATE

    def _handle(self, model: ResourceModel, state: ProgressState) -> Outcome:
        if not state.is_done(Step.PRECHECK):
            invalid = self._validate_definition(model)
            if invalid is not None:
                return invalid
            if self._rule_exists(model):
                return classify(
                    Failure(
                        kind=FailureKind.ALREADY_EXISTS,
                        message=f"{TYPE_NAME} [{model.identity}] already exists",
                        operation=self.action.value,
                    )
                )
            state.mark_done(Step.PRECHECK)

        for step in (
            lambda: self._upsert_rule(model, state),
            lambda: delayed_progress(
                state, model, CHECKPOINT_BEFORE_TARGETS, PROPAGATION_DELAY_SECONDS
            ),
            lambda: self._attach_targets(model, state),
            lambda: delayed_progress(
                state, model, CHECKPOINT_BEFORE_READ, PROPAGATION_DELAY_SECONDS
            ),
        ):
            outcome = step()
            if outcome is not None:
                return outcome

        return Outcome.success(self._read_back(model))


class UpdateHandler(BaseHandler):
    """Update an existing rule, attach desired targets, detach the rest."""

    action = Action.UPDATE

    def _handle(self, model: ResourceModel, state: ProgressState) -> Outcome:
        if not state.is_done(Step.PRECHECK):
            invalid = self._validate_definition(model)
            if invalid is not None:
                return invalid
            # Raises NOT_FOUND for a missing rule
            operations.describe_rule(self._client, model)
            state.mark_done(Step.PRECHECK)

        for step in (
            lambda: self._upsert_rule(model, state),
            lambda: delayed_progress(
                state, model, CHECKPOINT_BEFORE_TARGETS, PROPAGATION_DELAY_SECONDS
            ),
            lambda: self._list_targets_to_remove(model, state, set(model.target_ids())),
            lambda: self._attach_targets(model, state),
            lambda: self._detach_targets(model, state),
            lambda: delayed_progress(
                state, model, CHECKPOINT_BEFORE_READ, PROPAGATION_DELAY_SECONDS
            ),
        ):
            outcome = step()
            if outcome is not None:
                return outcome

        return Outcome.success(self._read_back(model))


class DeleteHandler(BaseHandler):
    """Detach every target, then delete the rule."""

    action = Action.DELETE

    def _handle(self, model: ResourceModel, state: ProgressState) -> Outcome:
        # A missing rule surfaces here as NOT_FOUND
        self._list_targets_to_remove(model, state, keep=set())

        outcome = self._detach_targets(model, state)
        if outcome is not None:
            return outcome

        if not state.is_done(Step.RULE_DELETED):
            operations.delete_rule(self._client, model)
            state.mark_done(Step.RULE_DELETED)

        return Outcome.success()


class ReadHandler(BaseHandler):
    """Read the rule and its attached targets."""

    action = Action.READ

    def _handle(self, model: ResourceModel, state: ProgressState) -> Outcome:
        return Outcome.success(self._read_back(model))


HANDLERS: dict[Action, type[BaseHandler]] = {
    Action.CREATE: CreateHandler,
    Action.READ: ReadHandler,
    Action.UPDATE: UpdateHandler,
    Action.DELETE: DeleteHandler,
}


def list_rules(
    client: RuleClient,
    *,
    event_bus_name: str | None = None,
    name_prefix: str | None = None,
    next_token: str | None = None,
) -> Outcome:
    """List one page of rules, without their targets."""
    try:
        rules, next_token = client.list_rules(
            name_prefix=name_prefix, event_bus_name=event_bus_name, next_token=next_token
        )
        models = [ResourceModel.from_remote(rule) for rule in rules]
    except Exception as e:
        return handle_error(e)

    logger.info(
        "%s listed %s rules",
        TYPE_NAME,
        len(models),
        extra={"count": len(models), "has_more": next_token is not None},
    )
    return Outcome.success_list(models, next_token)


def reconcile(
    action: Action,
    desired_model: ResourceModel | None,
    progress_state: ProgressState | None = None,
    *,
    client: RuleClient,
    config: Config,
    next_token: str | None = None,
    event_bus_name: str | None = None,
    name_prefix: str | None = None,
) -> Outcome:
    """Run one invocation of ``action`` for ``desired_model``.

    Args:
        action: Lifecycle action requested by the orchestrator.
        desired_model: Desired state (for read/delete only the identity
            matters). Not used by LIST and may be None there.
        progress_state: State returned by the previous invocation; None on the
            first call of a reconciliation. Mutated in place.
        client: Remote rules client.
        config: Operator configuration.
        next_token: Pagination token, only used by LIST.
        event_bus_name: Event bus to list rules from, only used by LIST.
        name_prefix: Rule name prefix filter, only used by LIST.

    Returns:
        SUCCESS, IN_PROGRESS (with the state to persist and the delay before
        the next call) or FAILED (with a stable error kind).
    """
    if action == Action.LIST:
        return list_rules(
            client, event_bus_name=event_bus_name, name_prefix=name_prefix, next_token=next_token
        )

    if desired_model is None:
        return Outcome.failed(
            ErrorKind.INVALID_REQUEST, f"{action.value} requires a desired resource model"
        )

    state = progress_state if progress_state is not None else ProgressState()
    outcome = HANDLERS[action](client, config).handle(desired_model, state)

    logger.info(
        "%s %s finished with status %s",
        TYPE_NAME,
        action.value,
        outcome.status.value,
        extra={
            "action": action.value,
            "rule": str(desired_model.identity),
            "status": outcome.status.value,
            "resume_after_seconds": outcome.resume_after_seconds,
            "error_kind": outcome.error_kind.value if outcome.error_kind else None,
        },
    )
    return outcome
