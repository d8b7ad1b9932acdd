"""Pydantic models for the rule resource, batch responses and progress state.

These models provide:
1. Type-safe parsing of the desired model (YAML/JSON, camelCase keys)
2. Validation at the boundary (fail fast, fail loudly)
3. A JSON-serializable progress record the orchestrator persists between
   invocations
"""

from __future__ import annotations

import json
import re
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .config import MAX_RULE_NAME_LENGTH, MAX_TARGET_ID_LENGTH, MAX_TARGETS_PER_RULE

RULE_NAME_PATTERN = r"^[\.\-_A-Za-z0-9]+$"
TARGET_ID_PATTERN = r"^[\.\-_A-Za-z0-9]+$"

TYPE_NAME = "AWS::Events::Rule"
TARGET_TYPE_NAME = "AWS::Events::Target"


def _to_remote_key(key: str) -> str:
    """Convert a camelCase field name to the remote API's PascalCase."""
    return key[:1].upper() + key[1:]


def _to_model_key(key: str) -> str:
    return key[:1].lower() + key[1:]


# =============================================================================
# Identity and Targets
# =============================================================================


class ResourceIdentity(BaseModel):
    """Stable identifier of a rule. Every remote request is built from it."""

    model_config = ConfigDict(frozen=True)

    name: Annotated[str, Field(min_length=1, max_length=MAX_RULE_NAME_LENGTH)]
    event_bus_name: str | None = None

    def __str__(self) -> str:
        if self.event_bus_name and self.event_bus_name != "default":
            return f"{self.event_bus_name}|{self.name}"
        return self.name


class TargetEntry(BaseModel):
    """A destination attached to a rule.

    Only ``id`` and ``arn`` are interpreted. Routing fields such as
    ``inputTransformer`` or ``sqsParameters`` are kept as extra fields and
    forwarded verbatim (first letter upper-cased) to the remote API.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: Annotated[str, Field(min_length=1, max_length=MAX_TARGET_ID_LENGTH)]
    arn: Annotated[str, Field(min_length=1)]
    role_arn: str | None = Field(None, alias="roleArn")
    input: str | None = None
    input_path: str | None = Field(None, alias="inputPath")

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not re.match(TARGET_ID_PATTERN, v):
            raise ValueError(f"target id must match {TARGET_ID_PATTERN}")
        return v

    def to_request(self) -> dict[str, Any]:
        """Build the remote request entry for this target."""
        entry: dict[str, Any] = {"Id": self.id, "Arn": self.arn}
        if self.role_arn is not None:
            entry["RoleArn"] = self.role_arn
        if self.input is not None:
            entry["Input"] = self.input
        if self.input_path is not None:
            entry["InputPath"] = self.input_path
        for key, value in (self.model_extra or {}).items():
            if value is not None:
                entry[_to_remote_key(key)] = value
        return entry

    @classmethod
    def from_remote(cls, data: dict[str, Any]) -> TargetEntry:
        """Build a target from a remote ListTargetsByRule entry."""
        return cls.model_validate({_to_model_key(key): value for key, value in data.items()})


# =============================================================================
# Resource Model
# =============================================================================


class RuleState(str, Enum):
    """Rule states accepted by the remote API."""

    ENABLED = "ENABLED"
    DISABLED = "DISABLED"
    ENABLED_WITH_ALL_CLOUDTRAIL_MANAGEMENT_EVENTS = "ENABLED_WITH_ALL_CLOUDTRAIL_MANAGEMENT_EVENTS"


class ResourceModel(BaseModel):
    """Desired (or observed) state of a rule and the targets it owns.

    ``targets`` describes the subset the caller wants present. ``None`` means
    the caller does not manage targets at all, which differs from an empty
    list only for the attach phase.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: Annotated[str, Field(min_length=1, max_length=MAX_RULE_NAME_LENGTH)]
    arn: str | None = None
    description: str | None = Field(None, max_length=512)
    event_bus_name: str | None = Field(None, alias="eventBusName")
    event_pattern: dict[str, Any] | None = Field(None, alias="eventPattern")
    schedule_expression: str | None = Field(None, alias="scheduleExpression")
    state: RuleState | None = None
    role_arn: str | None = Field(None, alias="roleArn")
    targets: list[TargetEntry] | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not re.match(RULE_NAME_PATTERN, v):
            raise ValueError(f"name must match {RULE_NAME_PATTERN}")
        return v

    @field_validator("event_pattern", mode="before")
    @classmethod
    def parse_event_pattern(cls, v: Any) -> Any:
        # The remote API returns the pattern as a JSON string
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError as e:
                raise ValueError(f"eventPattern is not valid JSON: {e}") from e
        return v

    @model_validator(mode="after")
    def validate_targets(self) -> ResourceModel:
        if self.targets is None:
            return self
        ids = [target.id for target in self.targets]
        duplicates = sorted({target_id for target_id in ids if ids.count(target_id) > 1})
        if duplicates:
            raise ValueError(f"target ids must be unique within a rule: {duplicates}")
        if len(self.targets) > MAX_TARGETS_PER_RULE:
            raise ValueError(f"a rule can have at most {MAX_TARGETS_PER_RULE} targets")
        return self

    @property
    def identity(self) -> ResourceIdentity:
        return ResourceIdentity(name=self.name, event_bus_name=self.event_bus_name)

    @property
    def has_trigger(self) -> bool:
        """Whether the rule can fire at all (pattern or schedule)."""
        return bool(self.event_pattern) or bool(self.schedule_expression)

    def target_ids(self) -> list[str]:
        return [target.id for target in self.targets or []]

    @classmethod
    def from_remote(
        cls, rule: dict[str, Any], targets: list[TargetEntry] | None = None
    ) -> ResourceModel:
        """Build a model from a DescribeRule / ListRules entry."""
        return cls.model_validate(
            {
                "name": rule["Name"],
                "arn": rule.get("Arn"),
                "description": rule.get("Description"),
                "eventBusName": rule.get("EventBusName"),
                "eventPattern": rule.get("EventPattern"),
                "scheduleExpression": rule.get("ScheduleExpression"),
                "state": rule.get("State"),
                "roleArn": rule.get("RoleArn"),
                "targets": targets,
            }
        )


# =============================================================================
# Batch Mutation Responses
# =============================================================================


class FailedEntry(BaseModel):
    """One entry of a batch mutation that the remote system rejected."""

    model_config = ConfigDict(populate_by_name=True)

    entry_id: str = Field(alias="entryId")
    error_code: str = Field("", alias="errorCode")
    error_message: str = Field("", alias="errorMessage")


class BatchMutationResponse(BaseModel):
    """Per-entry outcome of an attach or detach call.

    ``failed_entries`` is empty iff the batch fully succeeded. Every failed
    ``entry_id`` was present in the request that produced the response.
    """

    model_config = ConfigDict(populate_by_name=True)

    succeeded_count: int = Field(0, alias="succeededCount", ge=0)
    failed_entries: list[FailedEntry] = Field(default_factory=list, alias="failedEntries")

    @property
    def has_failures(self) -> bool:
        return len(self.failed_entries) > 0

    @property
    def failed_entry_ids(self) -> list[str]:
        return [entry.entry_id for entry in self.failed_entries]

    @classmethod
    def from_remote(cls, data: dict[str, Any], requested: int) -> BatchMutationResponse:
        """Build from a PutTargets / RemoveTargets response."""
        failed = [
            FailedEntry(
                entry_id=entry.get("TargetId", ""),
                error_code=entry.get("ErrorCode", ""),
                error_message=entry.get("ErrorMessage", ""),
            )
            for entry in data.get("FailedEntries") or []
        ]
        return cls(succeeded_count=max(requested - len(failed), 0), failed_entries=failed)


# =============================================================================
# Progress State
# =============================================================================


class Step(str, Enum):
    """Lifecycle steps recorded once completed, so re-invocations never repeat them."""

    PRECHECK = "precheck"
    RULE_PUT = "rulePut"
    RULE_STABILIZED = "ruleStabilized"
    TARGETS_LISTED = "targetsListed"
    TARGETS_PUT = "targetsPut"
    TARGETS_STABILIZED = "targetsStabilized"
    TARGETS_REMOVED = "targetsRemoved"
    REMOVAL_STABILIZED = "removalStabilized"
    RULE_DELETED = "ruleDeleted"


class ProgressState(BaseModel):
    """Progress carried by the orchestrator across invocations.

    Created empty at the start of a reconciliation, mutated in place by the
    engine only, and discarded once a terminal status is reported.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    attach_retry_count: int = Field(0, alias="attachRetryCount", ge=0)
    detach_retry_count: int = Field(0, alias="detachRetryCount", ge=0)
    last_attach_response: BatchMutationResponse | None = Field(None, alias="lastAttachResponse")
    last_detach_response: BatchMutationResponse | None = Field(None, alias="lastDetachResponse")
    propagation_delay_watermark: int = Field(0, alias="propagationDelayWatermark", ge=0)

    completed_steps: list[Step] = Field(default_factory=list, alias="completedSteps")
    target_ids_to_remove: list[str] | None = Field(None, alias="targetIdsToRemove")

    def is_done(self, step: Step) -> bool:
        return step in self.completed_steps

    def mark_done(self, step: Step) -> None:
        if step not in self.completed_steps:
            self.completed_steps.append(step)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# =============================================================================
# Outcome
# =============================================================================


class OperationStatus(str, Enum):
    """Status reported to the orchestrator."""

    SUCCESS = "SUCCESS"
    IN_PROGRESS = "IN_PROGRESS"
    FAILED = "FAILED"


class ErrorKind(str, Enum):
    """Stable, caller-programmable error kinds for terminal failures."""

    CONFLICT = "Conflict"
    LIMIT_EXCEEDED = "LimitExceeded"
    INVALID_REQUEST = "InvalidRequest"
    INTERNAL_FAILURE = "InternalFailure"
    NOT_FOUND = "NotFound"
    ALREADY_EXISTS = "AlreadyExists"
    GENERAL_SERVICE_FAILURE = "GeneralServiceFailure"


class Outcome(BaseModel):
    """Result of one invocation.

    SUCCESS and FAILED are terminal. IN_PROGRESS asks the orchestrator to
    persist ``progress_state`` and re-invoke after ``resume_after_seconds``.
    """

    model_config = ConfigDict(populate_by_name=True)

    status: OperationStatus
    resume_after_seconds: int = Field(0, alias="resumeAfterSeconds", ge=0)
    progress_state: ProgressState | None = Field(None, alias="progressState")
    resource_model: ResourceModel | None = Field(None, alias="resourceModel")
    resource_models: list[ResourceModel] | None = Field(None, alias="resourceModels")
    next_token: str | None = Field(None, alias="nextToken")
    error_kind: ErrorKind | None = Field(None, alias="errorKind")
    message: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status != OperationStatus.IN_PROGRESS

    @classmethod
    def success(cls, model: ResourceModel | None = None) -> Outcome:
        return cls(status=OperationStatus.SUCCESS, resource_model=model)

    @classmethod
    def success_list(cls, models: list[ResourceModel], next_token: str | None) -> Outcome:
        return cls(status=OperationStatus.SUCCESS, resource_models=models, next_token=next_token)

    @classmethod
    def in_progress(
        cls,
        state: ProgressState,
        resume_after_seconds: int,
        model: ResourceModel | None = None,
    ) -> Outcome:
        return cls(
            status=OperationStatus.IN_PROGRESS,
            resume_after_seconds=resume_after_seconds,
            progress_state=state,
            resource_model=model,
        )

    @classmethod
    def failed(cls, error_kind: ErrorKind, message: str) -> Outcome:
        return cls(status=OperationStatus.FAILED, error_kind=error_kind, message=message)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)
