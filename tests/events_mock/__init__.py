"""In-memory rules API mock for engine and handler tests.

Key Features:
- In-memory rules and targets keyed by (event bus, rule name)
- Partial batch failures injected per target id for a number of calls
- Replication lag: a freshly put rule stays invisible for N reads
- Error injection per operation, tagged with a FailureKind
- Call counters for asserting how many remote requests were issued

Usage:
    client = MockEventsClient()
    client.fail_put_targets("t2", times=1)

    outcome = reconcile(Action.CREATE, model, client=client, config=config)
    assert client.call_count("put_targets") == 1
"""

from .client import MockEventsClient
from .state import MockRule, MockRuleStore

__all__ = [
    "MockEventsClient",
    "MockRule",
    "MockRuleStore",
]
