"""Core types, errors, and configuration."""

from routewise.core.config import Settings, get_settings, reload_settings
from routewise.core.errors import (
    Cancelled,
    ClassificationError,
    ClassificationTimeout,
    ConfigError,
    DecisionNotFound,
    ExecutorError,
    NoEligibleCandidates,
    OutcomeAlreadyRecorded,
    PolicyUnavailable,
    RoutingError,
    ScoringDataMissing,
)
from routewise.core.models import (
    CandidateScore,
    Classification,
    DecisionRecord,
    Executor,
    ExecutorDescriptor,
    Model,
    Outcome,
    Policy,
    QueryFeatures,
    RoutingDecision,
)

__all__ = [
    "Settings",
    "get_settings",
    "reload_settings",
    "RoutingError",
    "ConfigError",
    "ClassificationError",
    "ClassificationTimeout",
    "PolicyUnavailable",
    "NoEligibleCandidates",
    "ScoringDataMissing",
    "Cancelled",
    "ExecutorError",
    "DecisionNotFound",
    "OutcomeAlreadyRecorded",
    "CandidateScore",
    "Classification",
    "DecisionRecord",
    "Executor",
    "ExecutorDescriptor",
    "Model",
    "Outcome",
    "Policy",
    "QueryFeatures",
    "RoutingDecision",
]
