"""Decision logging."""

from routewise.observability.decision_log import (
    DecisionLog,
    DecisionSink,
    InMemoryDecisionSink,
    JSONLDecisionSink,
    read_decisions,
)

__all__ = [
    "DecisionLog",
    "DecisionSink",
    "InMemoryDecisionSink",
    "JSONLDecisionSink",
    "read_decisions",
]
