"""RuleClient implementation backed by the boto3 ``events`` client.

Translates models into request payloads and every botocore failure into a
RemoteCallError tagged at the boundary. Transport-level retries (throttling,
dropped connections) are left to botocore's standard retry mode; partial
batch failures are handled by the engine.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError, ParamValidationError

from .config import Config
from .models import BatchMutationResponse, ResourceIdentity, ResourceModel, TargetEntry
from .remote import Failure, FailureKind, RemoteCallError, kind_for_error_code

logger = logging.getLogger(__name__)

SERVICE_NAME = "events"

# Upper bound on ListTargetsByRule pages followed for one rule
MAX_TARGET_PAGES = 100


@contextmanager
def translate_errors(operation: str) -> Generator[None, None, None]:
    """Convert botocore exceptions raised in the block into RemoteCallError."""
    try:
        yield
    except ClientError as e:
        error = e.response.get("Error", {})
        code = error.get("Code", "")
        message = error.get("Message") or str(e)
        raise RemoteCallError(
            Failure(
                kind=kind_for_error_code(code),
                message=message,
                code=code,
                operation=operation,
            )
        ) from e
    except ParamValidationError as e:
        # Rejected client-side before sending: the definition is malformed
        raise RemoteCallError(
            Failure(
                kind=FailureKind.INVALID_PATTERN,
                message=str(e),
                code=type(e).__name__,
                operation=operation,
            )
        ) from e
    except BotoCoreError as e:
        raise RemoteCallError(
            Failure(
                kind=FailureKind.SERVICE_ERROR,
                message=str(e),
                code=type(e).__name__,
                operation=operation,
            )
        ) from e


def _with_bus(params: dict[str, Any], identity: ResourceIdentity) -> dict[str, Any]:
    if identity.event_bus_name:
        params["EventBusName"] = identity.event_bus_name
    return params


def build_put_rule_request(identity: ResourceIdentity, definition: ResourceModel) -> dict[str, Any]:
    """Translate the desired model into PutRule parameters."""
    params: dict[str, Any] = {"Name": identity.name}
    if definition.event_pattern:
        params["EventPattern"] = json.dumps(definition.event_pattern, sort_keys=True)
    if definition.schedule_expression:
        params["ScheduleExpression"] = definition.schedule_expression
    if definition.state is not None:
        params["State"] = definition.state.value
    if definition.description is not None:
        params["Description"] = definition.description
    if definition.role_arn is not None:
        params["RoleArn"] = definition.role_arn
    return _with_bus(params, identity)


class EventsRuleClient:
    """Remote rule operations over boto3.

    Usage:
        client = EventsRuleClient.from_config(Config.from_env())
        client.describe_rule(ResourceIdentity(name="nightly-report"))
    """

    def __init__(self, events_client: Any) -> None:
        """Wrap an existing boto3 ``events`` client."""
        self._client = events_client

    @classmethod
    def from_config(cls, config: Config) -> EventsRuleClient:
        """Create the underlying boto3 client with timeouts and bounded retries."""
        boto_config = BotoConfig(
            connect_timeout=config.connect_timeout_seconds,
            read_timeout=config.read_timeout_seconds,
            retries={"max_attempts": config.sdk_max_attempts, "mode": "standard"},
        )
        events_client = boto3.client(
            SERVICE_NAME,
            region_name=config.region,
            endpoint_url=config.endpoint_url,
            config=boto_config,
        )
        return cls(events_client)

    def put_rule(self, identity: ResourceIdentity, definition: ResourceModel) -> dict[str, Any]:
        with translate_errors("PutRule"):
            return self._client.put_rule(**build_put_rule_request(identity, definition))

    def delete_rule(self, identity: ResourceIdentity) -> dict[str, Any]:
        with translate_errors("DeleteRule"):
            return self._client.delete_rule(**_with_bus({"Name": identity.name}, identity))

    def describe_rule(self, identity: ResourceIdentity) -> dict[str, Any]:
        with translate_errors("DescribeRule"):
            return self._client.describe_rule(**_with_bus({"Name": identity.name}, identity))

    def put_targets(
        self, identity: ResourceIdentity, entries: list[TargetEntry]
    ) -> BatchMutationResponse:
        params = _with_bus(
            {"Rule": identity.name, "Targets": [entry.to_request() for entry in entries]},
            identity,
        )
        with translate_errors("PutTargets"):
            response = self._client.put_targets(**params)
        return BatchMutationResponse.from_remote(response, requested=len(entries))

    def remove_targets(
        self, identity: ResourceIdentity, entry_ids: list[str]
    ) -> BatchMutationResponse:
        params = _with_bus({"Rule": identity.name, "Ids": list(entry_ids)}, identity)
        with translate_errors("RemoveTargets"):
            response = self._client.remove_targets(**params)
        return BatchMutationResponse.from_remote(response, requested=len(entry_ids))

    def list_targets(self, identity: ResourceIdentity) -> list[TargetEntry]:
        targets: list[TargetEntry] = []
        next_token: str | None = None

        for _ in range(MAX_TARGET_PAGES):
            params = _with_bus({"Rule": identity.name}, identity)
            if next_token:
                params["NextToken"] = next_token
            with translate_errors("ListTargetsByRule"):
                response = self._client.list_targets_by_rule(**params)
            targets.extend(TargetEntry.from_remote(t) for t in response.get("Targets") or [])
            next_token = response.get("NextToken")
            if not next_token:
                return targets

        raise RemoteCallError(
            Failure(
                kind=FailureKind.SERVICE_ERROR,
                message=f"ListTargetsByRule returned more than {MAX_TARGET_PAGES} pages",
                operation="ListTargetsByRule",
            )
        )

    def list_rules(
        self,
        name_prefix: str | None = None,
        event_bus_name: str | None = None,
        next_token: str | None = None,
    ) -> tuple[list[dict[str, Any]], str | None]:
        params: dict[str, Any] = {}
        if name_prefix:
            params["NamePrefix"] = name_prefix
        if event_bus_name:
            params["EventBusName"] = event_bus_name
        if next_token:
            params["NextToken"] = next_token
        with translate_errors("ListRules"):
            response = self._client.list_rules(**params)
        return list(response.get("Rules") or []), response.get("NextToken")
