"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for events_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from events_mock import MockEventsClient  # noqa: E402
from rule_operator.config import Config  # noqa: E402
from rule_operator.models import ResourceModel  # noqa: E402


@pytest.fixture
def config() -> Config:
    return Config(region="us-east-1", stabilization_interval_seconds=5)


@pytest.fixture
def client() -> MockEventsClient:
    return MockEventsClient()


@pytest.fixture
def rule_model() -> ResourceModel:
    """A scheduled rule with three targets."""
    return ResourceModel.model_validate(
        {
            "name": "nightly-report",
            "scheduleExpression": "rate(1 day)",
            "state": "ENABLED",
            "targets": [
                {"id": "t1", "arn": "arn:aws:lambda:us-east-1:123456789012:function:report"},
                {"id": "t2", "arn": "arn:aws:sqs:us-east-1:123456789012:reports"},
                {"id": "t3", "arn": "arn:aws:sns:us-east-1:123456789012:alerts"},
            ],
        }
    )
