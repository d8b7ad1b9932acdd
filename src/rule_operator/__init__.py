"""Events Rule Operator - resumable reconciliation of event rules and their targets."""

__version__ = "0.1.0"
