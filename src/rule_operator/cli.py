"""Events Rule Operator CLI (ruleop).

Runs the reconciliation engine from a shell, either one invocation at a time
with the progress state kept in a file, or as a local orchestrator that
re-invokes until a terminal status.

Usage:
    ruleop validate rule.yaml                      # Validate a desired model
    ruleop reconcile create rule.yaml --state s.json
    ruleop drive update rule.yaml                  # Loop until SUCCESS/FAILED
    ruleop read nightly-report                     # Show a rule and its targets
    ruleop list --prefix nightly-                  # List rules
"""

from __future__ import annotations

import json
import time
from pathlib import Path

import click

from .client import EventsRuleClient
from .config import Config, ConfigurationError
from .handlers import Action, list_rules, reconcile
from .main import setup_logging
from .models import OperationStatus, Outcome, ProgressState, ResourceModel
from .spec_loader import SpecLoadError, load_model, load_state, save_state

# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILED = 1
EXIT_IN_PROGRESS = 3

# Local orchestrator bounds
DEFAULT_MAX_INVOCATIONS = 100
MAX_INVOCATIONS_LIMIT = 1000

ACTIONS = [a.value for a in Action if a != Action.LIST]


def load_config() -> Config:
    """Load configuration and set up logging.

    Raises:
        click.ClickException: If configuration is invalid.
    """
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e
    setup_logging(config.enable_json_logging, config.log_level)
    return config


def load_desired_model(path: Path) -> ResourceModel:
    try:
        return load_model(path)
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e


def echo_outcome(outcome: Outcome) -> None:
    click.echo(json.dumps(outcome.to_dict(), indent=2))


def exit_code(outcome: Outcome) -> int:
    match outcome.status:
        case OperationStatus.SUCCESS:
            return EXIT_SUCCESS
        case OperationStatus.IN_PROGRESS:
            return EXIT_IN_PROGRESS
        case _:
            return EXIT_FAILED


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="ruleop")
def cli() -> None:
    """Events Rule Operator CLI (ruleop).

    Reconciles an event rule and its targets against the rules API.

    \b
    Configuration comes from the environment:
        AWS_REGION, EVENTS_ENDPOINT_URL, STABILIZATION_INTERVAL,
        ENABLE_JSON_LOGGING, LOG_LEVEL
    """
    pass


@cli.command()
@click.argument("model_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def validate(model_file: Path) -> None:
    """Validate a desired model file without calling the API."""
    model = load_desired_model(model_file)
    if not model.has_trigger:
        raise click.ClickException("Rule requires an eventPattern or a scheduleExpression")
    click.secho(
        f"✓ {model.identity} is valid ({len(model.targets or [])} targets)", fg="green"
    )


@cli.command(name="reconcile")
@click.argument("action", type=click.Choice(ACTIONS))
@click.argument("model_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--state",
    "state_file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Progress state from the previous invocation (read if present).",
)
@click.option(
    "--state-out",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Where to write the progress state (default: --state).",
)
def reconcile_command(
    action: str, model_file: Path, state_file: Path | None, state_out: Path | None
) -> None:
    """Run a single invocation of ACTION for the rule in MODEL_FILE.

    Exit code is 0 on SUCCESS, 1 on FAILED and 3 on IN_PROGRESS, in which
    case the progress state is written for the next invocation.
    """
    config = load_config()
    model = load_desired_model(model_file)

    state: ProgressState | None = None
    if state_file is not None and state_file.exists():
        try:
            state = load_state(state_file)
        except SpecLoadError as e:
            raise click.ClickException(str(e)) from e

    client = EventsRuleClient.from_config(config)
    outcome = reconcile(Action(action), model, state, client=client, config=config)

    target = state_out or state_file
    if target is not None:
        try:
            save_state(target, outcome.progress_state if not outcome.is_terminal else None)
        except SpecLoadError as e:
            raise click.ClickException(str(e)) from e

    echo_outcome(outcome)
    raise SystemExit(exit_code(outcome))


@cli.command()
@click.argument("action", type=click.Choice(ACTIONS))
@click.argument("model_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--max-invocations",
    type=click.IntRange(1, MAX_INVOCATIONS_LIMIT),
    default=DEFAULT_MAX_INVOCATIONS,
    show_default=True,
    help="Give up after this many invocations.",
)
@click.option("--no-wait", is_flag=True, help="Do not sleep between invocations.")
def drive(action: str, model_file: Path, max_invocations: int, no_wait: bool) -> None:
    """Re-invoke ACTION until it reaches a terminal status.

    Acts as a minimal local orchestrator: the progress state returned by each
    invocation is passed to the next one after the requested delay.
    """
    config = load_config()
    model = load_desired_model(model_file)
    client = EventsRuleClient.from_config(config)

    state: ProgressState | None = None
    outcome: Outcome | None = None
    for invocation in range(1, max_invocations + 1):
        outcome = reconcile(Action(action), model, state, client=client, config=config)
        if outcome.is_terminal:
            break
        state = outcome.progress_state
        click.echo(
            f"[{invocation}] {outcome.status.value}, "
            f"resuming in {outcome.resume_after_seconds}s",
            err=True,
        )
        if not no_wait:
            time.sleep(outcome.resume_after_seconds)

    assert outcome is not None
    if not outcome.is_terminal:
        click.secho(f"Still in progress after {max_invocations} invocations", fg="yellow", err=True)
    echo_outcome(outcome)
    raise SystemExit(exit_code(outcome))


@cli.command()
@click.argument("name")
@click.option("--event-bus", default=None, help="Event bus name (default bus if omitted).")
def read(name: str, event_bus: str | None) -> None:
    """Show rule NAME and its attached targets."""
    config = load_config()
    try:
        model = ResourceModel(name=name, event_bus_name=event_bus)
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    client = EventsRuleClient.from_config(config)
    outcome = reconcile(Action.READ, model, client=client, config=config)
    echo_outcome(outcome)
    raise SystemExit(exit_code(outcome))


@cli.command(name="list")
@click.option("--prefix", default=None, help="Only rules whose name starts with this.")
@click.option("--event-bus", default=None, help="Event bus name (default bus if omitted).")
@click.option("--next-token", default=None, help="Token from a previous page.")
def list_command(prefix: str | None, event_bus: str | None, next_token: str | None) -> None:
    """List rules, one page at a time."""
    config = load_config()
    client = EventsRuleClient.from_config(config)
    outcome = list_rules(
        client, event_bus_name=event_bus, name_prefix=prefix, next_token=next_token
    )
    echo_outcome(outcome)
    raise SystemExit(exit_code(outcome))


def main() -> None:
    """Entry point for the ruleop console script."""
    cli()
