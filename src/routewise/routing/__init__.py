"""Request routing: features, classification, and the router."""

from routewise.routing.features import FEATURE_DIMENSIONS, FeatureExtractor, feature_vector
from routewise.routing.classifier import (
    ClassifierBackend,
    HeuristicClassifierBackend,
    HTTPClassifierBackend,
    TaskClassifier,
)
from routewise.routing.router import Router, build_router

__all__ = [
    "FEATURE_DIMENSIONS",
    "FeatureExtractor",
    "feature_vector",
    "ClassifierBackend",
    "HeuristicClassifierBackend",
    "HTTPClassifierBackend",
    "TaskClassifier",
    "Router",
    "build_router",
]
