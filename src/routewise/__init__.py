"""
Routewise - LLM Request Router

Classifies each prompt, looks up the operator policy for its task,
and picks the live candidate model with the best predicted success per
unit cost. Routewise only decides; the caller executes the request.
"""

__version__ = "0.3.0"

# routing must load before scoring: the scoring modules read feature dimensions
from routewise.routing import Router, FeatureExtractor, TaskClassifier
from routewise.core.models import (
    CandidateScore,
    Classification,
    Model,
    Outcome,
    Policy,
    QueryFeatures,
    RoutingDecision,
)
from routewise.core.errors import Cancelled, NoEligibleCandidates, RoutingError

__all__ = [
    "Router",
    "FeatureExtractor",
    "TaskClassifier",
    "CandidateScore",
    "Classification",
    "Model",
    "Outcome",
    "Policy",
    "QueryFeatures",
    "RoutingDecision",
    "Cancelled",
    "NoEligibleCandidates",
    "RoutingError",
]
