"""Loading of desired-model and progress-state documents with validation.

All file operations enforce a size limit. Desired models may be YAML or
JSON, flat or wrapped Kubernetes-style (apiVersion/kind/spec).
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ValidationError

from .config import MAX_SPEC_FILE_SIZE_BYTES
from .models import ProgressState, ResourceModel

logger = logging.getLogger(__name__)


class SpecLoadError(Exception):
    """Raised when a document cannot be loaded or fails validation."""

    pass


def _read_document(path: Path) -> Any:
    if not path.exists():
        raise SpecLoadError(f"File not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat file {path}: {e}") from e

    if file_size > MAX_SPEC_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"File exceeds maximum size of {MAX_SPEC_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read file {path}: {e}") from e

    # JSON is a subset of YAML, so one parser covers both
    try:
        return yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML/JSON in {path}: {e}") from e


def _validate(model_class: type[BaseModel], data: Any, source: str) -> Any:
    try:
        return model_class.model_validate(data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")
        error_list = "\n".join(errors)
        raise SpecLoadError(f"Validation failed for {source}:\n{error_list}") from e


def parse_model(data: Any, source: str = "<input>") -> ResourceModel:
    """Validate a desired model given as a mapping."""
    if not isinstance(data, dict):
        raise SpecLoadError(f"Desired model must be a mapping: {source}")

    if "apiVersion" in data and "spec" in data:
        spec_data = data.get("spec", {})
        if not isinstance(spec_data, dict):
            raise SpecLoadError(f"Spec section must be a mapping: {source}")
        metadata = data.get("metadata") or {}
        # metadata.name names the rule when the spec section has no name
        if isinstance(metadata, dict) and "name" not in spec_data and metadata.get("name"):
            spec_data = {**spec_data, "name": metadata["name"]}
    else:
        spec_data = data

    return _validate(ResourceModel, spec_data, source)


def load_model(path: Path) -> ResourceModel:
    """Load and validate a desired model from a YAML or JSON file.

    Raises:
        SpecLoadError: If the file cannot be read or fails validation.
    """
    model = parse_model(_read_document(path), str(path))
    logger.info("Loaded desired model for rule '%s' from %s", model.name, path)
    return model


def parse_state(data: Any, source: str = "<input>") -> ProgressState:
    """Validate a persisted progress state; None or empty means a fresh state."""
    if not data:
        return ProgressState()
    if not isinstance(data, dict):
        raise SpecLoadError(f"Progress state must be a mapping: {source}")
    return _validate(ProgressState, data, source)


def load_state(path: Path) -> ProgressState:
    """Load a progress state persisted by a previous invocation."""
    return parse_state(_read_document(path), str(path))


def save_state(path: Path, state: ProgressState | None) -> None:
    """Persist ``state`` as JSON, or remove the file once the state is discarded."""
    if state is None:
        path.unlink(missing_ok=True)
        return
    try:
        path.write_text(json.dumps(state.to_dict(), indent=2) + "\n", encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to write progress state {path}: {e}") from e
