"""Orchestrator-facing entry point for the Events Rule Operator.

The orchestrator invokes ``handler`` with the requested action, the desired
model and the progress state returned by the previous invocation
(``callbackContext``), persists whatever state comes back and re-invokes
after ``resumeAfterSeconds`` until the status is terminal. No resource is
held between invocations.

Event shape:
    {
        "action": "create" | "read" | "update" | "delete" | "list",
        "desiredResourceState": {...},
        "callbackContext": {...} | null,
        "nextToken": "..." | null
    }

For "list", ``desiredResourceState`` is optional and only its
``eventBusName`` and ``namePrefix`` filters are read.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from .client import EventsRuleClient
from .config import Config, ConfigurationError
from .handlers import Action, reconcile
from .models import ErrorKind, Outcome
from .remote import RuleClient
from .spec_loader import SpecLoadError, parse_model, parse_state

# LogRecord attributes that are not user-supplied ``extra`` fields
_RESERVED_LOG_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_LOG_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(json_logs: bool = True, level: str = "INFO") -> None:
    """Configure root logging; JSON on stdout for production."""
    handler = logging.StreamHandler(sys.stdout)
    if json_logs:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    # Reduce noise from the AWS SDK
    for noisy in ("boto3", "botocore", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def handle_event(
    event: dict[str, Any],
    client: RuleClient,
    config: Config,
) -> dict[str, Any]:
    """Run one invocation described by ``event`` against ``client``."""
    logger = logging.getLogger(__name__)

    try:
        action = Action(str(event.get("action", "")).lower())
    except ValueError:
        valid = [a.value for a in Action]
        message = f"action must be one of {valid}: {event.get('action')}"
        logger.error("Invalid request", extra={"error": message})
        return Outcome.failed(ErrorKind.INVALID_REQUEST, message).to_dict()

    if action == Action.LIST:
        # Listing needs no rule, only optional filters
        filters = event.get("desiredResourceState") or {}
        if not isinstance(filters, dict):
            message = "desiredResourceState must be a mapping for list"
            logger.error("Invalid request", extra={"error": message})
            return Outcome.failed(ErrorKind.INVALID_REQUEST, message).to_dict()
        return reconcile(
            action,
            None,
            client=client,
            config=config,
            next_token=event.get("nextToken"),
            event_bus_name=filters.get("eventBusName"),
            name_prefix=filters.get("namePrefix"),
        ).to_dict()

    try:
        model = parse_model(event.get("desiredResourceState"), "desiredResourceState")
        state = parse_state(event.get("callbackContext"), "callbackContext")
    except SpecLoadError as e:
        logger.error("Invalid request", extra={"error": str(e)})
        return Outcome.failed(ErrorKind.INVALID_REQUEST, str(e)).to_dict()

    outcome = reconcile(action, model, state, client=client, config=config)
    return outcome.to_dict()


def handler(event: dict[str, Any], context: Any = None) -> dict[str, Any]:
    """Serverless entry point. Never raises; failures come back as FAILED."""
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        setup_logging()
        logging.getLogger(__name__).error("Configuration error", extra={"error": str(e)})
        return Outcome.failed(ErrorKind.INTERNAL_FAILURE, str(e)).to_dict()

    setup_logging(config.enable_json_logging, config.log_level)
    return handle_event(event, EventsRuleClient.from_config(config), config)


def run() -> None:
    """Read one event as JSON from stdin and print the outcome as JSON."""
    try:
        event = json.load(sys.stdin)
    except json.JSONDecodeError as e:
        print(json.dumps({"status": "FAILED", "errorKind": "InvalidRequest", "message": str(e)}))
        sys.exit(1)

    result = handler(event)
    print(json.dumps(result))
    sys.exit(1 if result.get("status") == "FAILED" else 0)


if __name__ == "__main__":
    run()
