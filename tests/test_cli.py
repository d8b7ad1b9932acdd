"""Tests for the ruleop CLI."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner
from events_mock import MockEventsClient

from rule_operator.cli import EXIT_FAILED, EXIT_IN_PROGRESS, EXIT_SUCCESS, cli

ENV = {"AWS_REGION": "us-east-1", "ENABLE_JSON_LOGGING": "false"}

RULE_YAML = """
name: nightly-report
scheduleExpression: rate(1 day)
targets:
  - id: t1
    arn: arn:aws:sqs:us-east-1:123456789012:reports
"""


@pytest.fixture(autouse=True)
def no_logging_setup() -> Generator[None, None, None]:
    with patch("rule_operator.cli.setup_logging"):
        yield


@pytest.fixture
def mock_client() -> Generator[MockEventsClient, None, None]:
    client = MockEventsClient()
    with patch("rule_operator.cli.EventsRuleClient.from_config", return_value=client):
        yield client


@pytest.fixture
def rule_file(tmp_path: Path) -> Path:
    path = tmp_path / "rule.yaml"
    path.write_text(RULE_YAML)
    return path


class TestValidate:
    """Tests for the validate command."""

    def test_valid(self, rule_file: Path) -> None:
        result = CliRunner().invoke(cli, ["validate", str(rule_file)])

        assert result.exit_code == 0
        assert "nightly-report is valid (1 targets)" in result.output

    def test_no_trigger(self, tmp_path: Path) -> None:
        path = tmp_path / "rule.yaml"
        path.write_text("name: idle\n")

        result = CliRunner().invoke(cli, ["validate", str(path)])

        assert result.exit_code == 1
        assert "scheduleExpression" in result.output

    def test_invalid_model(self, tmp_path: Path) -> None:
        path = tmp_path / "rule.yaml"
        path.write_text("name: 'bad name'\nscheduleExpression: rate(1 day)\n")

        result = CliRunner().invoke(cli, ["validate", str(path)])

        assert result.exit_code == 1
        assert "Validation failed" in result.output


class TestReconcile:
    """Tests for the reconcile command."""

    def test_state_file_carries_progress(
        self, mock_client: MockEventsClient, rule_file: Path, tmp_path: Path
    ) -> None:
        state_file = tmp_path / "state.json"
        runner = CliRunner()
        args = ["reconcile", "create", str(rule_file), "--state", str(state_file)]

        codes = []
        for _ in range(5):
            result = runner.invoke(cli, args, env=ENV)
            codes.append(result.exit_code)
            if result.exit_code != EXIT_IN_PROGRESS:
                break
            assert state_file.exists()

        assert codes == [EXIT_IN_PROGRESS, EXIT_IN_PROGRESS, EXIT_SUCCESS]
        assert '"status": "SUCCESS"' in result.output
        assert not state_file.exists()
        assert mock_client.call_count("put_rule") == 1

    def test_failure_exit_code(
        self, mock_client: MockEventsClient, rule_file: Path
    ) -> None:
        mock_client.seed_rule("nightly-report")

        result = CliRunner().invoke(cli, ["reconcile", "create", str(rule_file)], env=ENV)

        assert result.exit_code == EXIT_FAILED
        assert '"errorKind": "AlreadyExists"' in result.output

    def test_configuration_error(self, rule_file: Path) -> None:
        env = {"AWS_REGION": "", "AWS_DEFAULT_REGION": ""}

        result = CliRunner().invoke(cli, ["reconcile", "create", str(rule_file)], env=env)

        assert result.exit_code == 1
        assert "AWS_REGION" in result.output


class TestDrive:
    """Tests for the drive command."""

    def test_drives_to_success(self, mock_client: MockEventsClient, rule_file: Path) -> None:
        with patch("rule_operator.cli.time.sleep") as sleep:
            result = CliRunner().invoke(cli, ["drive", "create", str(rule_file)], env=ENV)

        assert result.exit_code == EXIT_SUCCESS
        assert [call.args[0] for call in sleep.call_args_list] == [30, 30]

    def test_no_wait(self, mock_client: MockEventsClient, rule_file: Path) -> None:
        with patch("rule_operator.cli.time.sleep") as sleep:
            result = CliRunner().invoke(
                cli, ["drive", "create", str(rule_file), "--no-wait"], env=ENV
            )

        assert result.exit_code == EXIT_SUCCESS
        sleep.assert_not_called()

    def test_gives_up_after_max_invocations(
        self, mock_client: MockEventsClient, rule_file: Path
    ) -> None:
        result = CliRunner().invoke(
            cli,
            ["drive", "create", str(rule_file), "--no-wait", "--max-invocations", "1"],
            env=ENV,
        )

        assert result.exit_code == EXIT_IN_PROGRESS
        assert "Still in progress after 1 invocations" in result.output

    def test_delete_exhaustion(self, mock_client: MockEventsClient, rule_file: Path) -> None:
        mock_client.seed_rule("nightly-report", targets=[{"Id": "a", "Arn": "arn:a"}])
        mock_client.fail_remove_targets("a", times=100)

        result = CliRunner().invoke(
            cli, ["drive", "delete", str(rule_file), "--no-wait"], env=ENV
        )

        assert result.exit_code == EXIT_FAILED
        assert "Target(s) failed to be removed" in result.output
        assert mock_client.call_count("remove_targets") == 6


class TestReadAndList:
    """Tests for the read and list commands."""

    def test_read_missing(self, mock_client: MockEventsClient) -> None:
        result = CliRunner().invoke(cli, ["read", "nightly-report"], env=ENV)

        assert result.exit_code == EXIT_FAILED
        assert '"errorKind": "NotFound"' in result.output

    def test_read_invalid_name(self, mock_client: MockEventsClient) -> None:
        result = CliRunner().invoke(cli, ["read", "bad name"], env=ENV)

        assert result.exit_code == 1
        assert mock_client.calls.total() == 0

    def test_list(self, mock_client: MockEventsClient) -> None:
        mock_client.seed_rule("nightly-a", ScheduleExpression="rate(1 day)")
        mock_client.seed_rule("weekly-b", ScheduleExpression="rate(7 days)")

        result = CliRunner().invoke(cli, ["list", "--prefix", "nightly-"], env=ENV)

        assert result.exit_code == EXIT_SUCCESS
        assert "nightly-a" in result.output
        assert "weekly-b" not in result.output
