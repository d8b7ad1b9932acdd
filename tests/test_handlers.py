"""Integration tests for the lifecycle handlers, driven across invocations.

Each test plays the orchestrator: it persists the returned progress state
(through its JSON form) and re-invokes until a terminal status.
"""

from __future__ import annotations

import pytest
from events_mock import MockEventsClient

from rule_operator.config import Config
from rule_operator.handlers import Action, reconcile
from rule_operator.models import ErrorKind, OperationStatus, Outcome, ProgressState, ResourceModel
from rule_operator.remote import FailureKind


def drive(
    action: Action,
    model: ResourceModel,
    client: MockEventsClient,
    config: Config,
    max_invocations: int = 20,
) -> tuple[list[Outcome], ProgressState]:
    """Re-invoke until terminal; returns all outcomes and the last persisted state."""
    outcomes: list[Outcome] = []
    state = ProgressState()
    for _ in range(max_invocations):
        outcome = reconcile(action, model, state, client=client, config=config)
        outcomes.append(outcome)
        if outcome.is_terminal:
            return outcomes, state
        assert outcome.progress_state is not None
        state = ProgressState.model_validate(outcome.progress_state.to_dict())
    pytest.fail(f"{action.value} did not finish within {max_invocations} invocations")


def delays(outcomes: list[Outcome]) -> list[int]:
    return [o.resume_after_seconds for o in outcomes if not o.is_terminal]


class TestCreate:
    """Tests for the create handler."""

    def test_happy_path(
        self, client: MockEventsClient, config: Config, rule_model: ResourceModel
    ) -> None:
        """Test that create waits at both checkpoints, then reads back."""
        outcomes, _ = drive(Action.CREATE, rule_model, client, config)

        final = outcomes[-1]
        assert final.status == OperationStatus.SUCCESS
        assert delays(outcomes) == [30, 30]
        assert final.resource_model is not None
        assert final.resource_model.arn is not None
        assert sorted(final.resource_model.target_ids()) == ["t1", "t2", "t3"]
        assert client.call_count("put_rule") == 1
        assert client.call_count("put_targets") == 1

    def test_partial_attach_failure_recovers(
        self, client: MockEventsClient, config: Config, rule_model: ResourceModel
    ) -> None:
        """Test that one failed target is retried alone, once."""
        client.fail_put_targets("t2", times=1)

        outcomes, state = drive(Action.CREATE, rule_model, client, config)

        assert outcomes[-1].status == OperationStatus.SUCCESS
        assert client.call_count("put_targets") == 2
        assert client.requests.count(("put_targets", ["t2"])) == 1
        assert state.attach_retry_count == 1
        assert delays(outcomes) == [30, 5, 30]
        assert set(client.store.get("nightly-report").targets) == {"t1", "t2", "t3"}

    def test_attach_exhaustion(
        self, client: MockEventsClient, config: Config, rule_model: ResourceModel
    ) -> None:
        client.fail_put_targets("t2", times=100)

        outcomes, state = drive(Action.CREATE, rule_model, client, config)

        final = outcomes[-1]
        assert final.status == OperationStatus.FAILED
        assert final.error_kind == ErrorKind.INTERNAL_FAILURE
        assert final.message == "Target(s) failed to create/update"
        assert client.call_count("put_targets") == 6
        assert state.attach_retry_count == 5

    def test_rule_visibility_lag_is_pending(
        self, client: MockEventsClient, config: Config, rule_model: ResourceModel
    ) -> None:
        """Test that a rule not yet readable is polled, never re-put."""
        client.lag_rule_visibility(reads=2)

        outcomes, _ = drive(Action.CREATE, rule_model, client, config)

        assert outcomes[-1].status == OperationStatus.SUCCESS
        assert delays(outcomes) == [5, 5, 30, 30]
        assert client.call_count("put_rule") == 1

    def test_already_exists(
        self, client: MockEventsClient, config: Config, rule_model: ResourceModel
    ) -> None:
        client.seed_rule(rule_model.name, ScheduleExpression="rate(1 hour)")

        outcome = reconcile(Action.CREATE, rule_model, client=client, config=config)

        assert outcome.status == OperationStatus.FAILED
        assert outcome.error_kind == ErrorKind.ALREADY_EXISTS
        assert client.call_count("put_rule") == 0

    def test_requires_trigger(self, client: MockEventsClient, config: Config) -> None:
        model = ResourceModel(name="no-trigger")

        outcome = reconcile(Action.CREATE, model, client=client, config=config)

        assert outcome.error_kind == ErrorKind.INVALID_REQUEST
        assert client.calls.total() == 0

    def test_no_targets(self, client: MockEventsClient, config: Config) -> None:
        model = ResourceModel(name="bare", event_pattern={"source": ["aws.ec2"]})

        outcomes, _ = drive(Action.CREATE, model, client, config)

        assert outcomes[-1].status == OperationStatus.SUCCESS
        assert client.call_count("put_targets") == 0

    def test_remote_conflict(
        self, client: MockEventsClient, config: Config, rule_model: ResourceModel
    ) -> None:
        client.raise_on(
            "put_rule",
            FailureKind.CONCURRENT_MODIFICATION,
            message="Rule is being modified",
            code="ConcurrentModificationException",
        )

        outcome = reconcile(Action.CREATE, rule_model, client=client, config=config)

        assert outcome.status == OperationStatus.FAILED
        assert outcome.error_kind == ErrorKind.CONFLICT
        assert outcome.message == "Rule is being modified"

    def test_unexpected_exception_is_internal_failure(
        self,
        client: MockEventsClient,
        config: Config,
        rule_model: ResourceModel,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def broken(*args: object) -> None:
            raise KeyError("Name")

        monkeypatch.setattr(client, "describe_rule", broken)

        outcome = reconcile(Action.CREATE, rule_model, client=client, config=config)

        assert outcome.status == OperationStatus.FAILED
        assert outcome.error_kind == ErrorKind.INTERNAL_FAILURE


class TestUpdate:
    """Tests for the update handler."""

    def test_attaches_desired_and_detaches_stale(
        self, client: MockEventsClient, config: Config, rule_model: ResourceModel
    ) -> None:
        client.seed_rule(
            rule_model.name,
            targets=[{"Id": "t1", "Arn": "arn:old"}, {"Id": "stale", "Arn": "arn:stale"}],
            ScheduleExpression="rate(1 hour)",
        )

        outcomes, _ = drive(Action.UPDATE, rule_model, client, config)

        assert outcomes[-1].status == OperationStatus.SUCCESS
        rule = client.store.get(rule_model.name)
        assert set(rule.targets) == {"t1", "t2", "t3"}
        assert rule.attributes["ScheduleExpression"] == "rate(1 day)"

        methods = [method for method, _ in client.requests]
        assert methods.index("put_rule") < methods.index("put_targets")
        assert methods.index("put_targets") < methods.index("remove_targets")
        assert ("remove_targets", ["stale"]) in client.requests

    def test_missing_rule_is_not_found(
        self, client: MockEventsClient, config: Config, rule_model: ResourceModel
    ) -> None:
        outcome = reconcile(Action.UPDATE, rule_model, client=client, config=config)

        assert outcome.status == OperationStatus.FAILED
        assert outcome.error_kind == ErrorKind.NOT_FOUND
        assert client.call_count("put_rule") == 0

    def test_resume_does_not_repeat_mutations(
        self, client: MockEventsClient, config: Config, rule_model: ResourceModel
    ) -> None:
        client.seed_rule(rule_model.name, targets=[{"Id": "stale", "Arn": "arn:stale"}])
        client.fail_remove_targets("stale", times=2)

        outcomes, state = drive(Action.UPDATE, rule_model, client, config)

        assert outcomes[-1].status == OperationStatus.SUCCESS
        assert client.call_count("put_rule") == 1
        assert client.call_count("put_targets") == 1
        assert client.call_count("list_targets") == 2  # stale-target listing + read-back
        assert client.call_count("remove_targets") == 3
        assert state.detach_retry_count == 2


class TestDelete:
    """Tests for the delete handler."""

    def test_happy_path(
        self, client: MockEventsClient, config: Config, rule_model: ResourceModel
    ) -> None:
        client.seed_rule(
            rule_model.name, targets=[{"Id": "a", "Arn": "arn:a"}, {"Id": "b", "Arn": "arn:b"}]
        )

        outcome = reconcile(Action.DELETE, rule_model, client=client, config=config)

        assert outcome.status == OperationStatus.SUCCESS
        assert outcome.resource_model is None
        assert len(client.store) == 0
        assert client.requests.index(("remove_targets", ["a", "b"])) < client.requests.index(
            ("delete_rule", rule_model.name)
        )

    def test_detach_exhaustion(
        self, client: MockEventsClient, config: Config, rule_model: ResourceModel
    ) -> None:
        """Test that persistently failing removals give up after five retries."""
        client.seed_rule(
            rule_model.name, targets=[{"Id": "a", "Arn": "arn:a"}, {"Id": "b", "Arn": "arn:b"}]
        )
        client.fail_remove_targets("a", "b", times=100)

        outcomes, state = drive(Action.DELETE, rule_model, client, config)

        final = outcomes[-1]
        assert final.status == OperationStatus.FAILED
        assert final.error_kind == ErrorKind.INTERNAL_FAILURE
        assert final.message == "Target(s) failed to be removed"
        assert client.call_count("remove_targets") == 6
        assert client.call_count("delete_rule") == 0
        assert state.detach_retry_count == 5
        assert len(outcomes) == 6

    def test_missing_rule_is_not_found(
        self, client: MockEventsClient, config: Config, rule_model: ResourceModel
    ) -> None:
        outcome = reconcile(Action.DELETE, rule_model, client=client, config=config)

        assert outcome.error_kind == ErrorKind.NOT_FOUND


class TestReadAndList:
    """Tests for read and list."""

    def test_read(self, client: MockEventsClient, config: Config) -> None:
        client.seed_rule(
            "r1",
            targets=[{"Id": "a", "Arn": "arn:a", "Input": "{}"}],
            EventPattern='{"source": ["aws.s3"]}',
            State="ENABLED",
        )

        outcome = reconcile(Action.READ, ResourceModel(name="r1"), client=client, config=config)

        assert outcome.status == OperationStatus.SUCCESS
        model = outcome.resource_model
        assert model is not None
        assert model.event_pattern == {"source": ["aws.s3"]}
        assert model.targets is not None and model.targets[0].input == "{}"

    def test_read_missing(self, client: MockEventsClient, config: Config) -> None:
        outcome = reconcile(Action.READ, ResourceModel(name="r1"), client=client, config=config)

        assert outcome.error_kind == ErrorKind.NOT_FOUND

    def test_list_pages(self, config: Config) -> None:
        client = MockEventsClient(page_size=2)
        for name in ("a", "b", "c"):
            client.seed_rule(name, ScheduleExpression="rate(1 day)")

        first = reconcile(Action.LIST, None, client=client, config=config)
        second = reconcile(
            Action.LIST,
            None,
            client=client,
            config=config,
            next_token=first.next_token,
        )

        assert [m.name for m in first.resource_models or []] == ["a", "b"]
        assert first.next_token is not None
        assert [m.name for m in second.resource_models or []] == ["c"]
        assert second.next_token is None

    def test_list_filters_by_bus_and_prefix(
        self, client: MockEventsClient, config: Config
    ) -> None:
        client.seed_rule("nightly-a", event_bus_name="orders", ScheduleExpression="rate(1 day)")
        client.seed_rule("weekly-b", event_bus_name="orders", ScheduleExpression="rate(7 days)")
        client.seed_rule("nightly-c", ScheduleExpression="rate(1 day)")

        outcome = reconcile(
            Action.LIST,
            None,
            client=client,
            config=config,
            event_bus_name="orders",
            name_prefix="nightly-",
        )

        assert outcome.status == OperationStatus.SUCCESS
        assert [m.name for m in outcome.resource_models or []] == ["nightly-a"]

    def test_lifecycle_action_requires_model(
        self, client: MockEventsClient, config: Config
    ) -> None:
        outcome = reconcile(Action.READ, None, client=client, config=config)

        assert outcome.status == OperationStatus.FAILED
        assert outcome.error_kind == ErrorKind.INVALID_REQUEST
        assert client.calls.total() == 0
