"""
Error taxonomy for Routewise.

Component-local failures (classifier timeouts, missing ability data, probe
failures) are absorbed into degraded results. Pool-level failures are raised
to the caller as typed errors.
"""

from __future__ import annotations

from typing import Any


class RoutingError(Exception):
    """Base exception for routing errors."""

    def __init__(
        self,
        message: str,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.retryable = retryable
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class ConfigError(RoutingError):
    """Raised for malformed registrations, policies, or checkpoints."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, retryable=False, details={"field": field} if field else None)
        self.field = field


class ClassificationError(RoutingError):
    """Raised when the classifier fails or returns a malformed response."""

    def __init__(self, message: str, raw: Any = None, reason: str = "malformed_response"):
        super().__init__(message, retryable=True)
        self.raw = raw
        self.reason = reason


class ClassificationTimeout(ClassificationError):
    """Raised when the classifier exceeds its time bound."""

    def __init__(self, message: str, timeout: float | None = None):
        super().__init__(message, reason="timeout")
        self.timeout = timeout
        self.details = {"timeout": timeout}


class PolicyUnavailable(RoutingError):
    """Raised when the policy store is unreachable and nothing was ever cached."""

    def __init__(self, message: str):
        super().__init__(message, retryable=True)


class NoEligibleCandidates(RoutingError):
    """Raised when no live, non-excluded candidate remains for a request."""

    def __init__(
        self,
        message: str,
        reason: str = "no_live_candidates",
        policy_candidates: list[str] | None = None,
        excluded: list[str] | None = None,
    ):
        super().__init__(
            message,
            retryable=True,
            details={
                "reason": reason,
                "policy_candidates": policy_candidates or [],
                "excluded": excluded or [],
            },
        )
        self.reason = reason
        self.policy_candidates = policy_candidates or []
        self.excluded = excluded or []


class ScoringDataMissing(RoutingError):
    """Raised when a model has no ability vector in the loaded checkpoint."""

    def __init__(self, model_id: str):
        super().__init__(f"No ability vector for model '{model_id}'", details={"model_id": model_id})
        self.model_id = model_id


class Cancelled(RoutingError):
    """Raised when a routing request is cancelled or its deadline passes."""

    def __init__(self, message: str, stage: str | None = None):
        super().__init__(message, retryable=False, details={"stage": stage})
        self.stage = stage


class ExecutorError(RoutingError):
    """Raised by executor adapters when a probe call fails."""

    def __init__(self, message: str, executor_id: str | None = None):
        super().__init__(message, retryable=True, details={"executor_id": executor_id})
        self.executor_id = executor_id


class DecisionNotFound(RoutingError):
    """Raised when an outcome is reported for an unknown decision."""

    def __init__(self, decision_id: str):
        super().__init__(f"Unknown decision '{decision_id}'", details={"decision_id": decision_id})
        self.decision_id = decision_id


class OutcomeAlreadyRecorded(RoutingError):
    """Raised when an outcome is reported twice for the same decision."""

    def __init__(self, decision_id: str):
        super().__init__(
            f"Outcome already recorded for decision '{decision_id}'",
            details={"decision_id": decision_id},
        )
        self.decision_id = decision_id
