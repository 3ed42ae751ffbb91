"""
Core data models for Routewise.

Defines the executor, model, policy, classification, and decision types
shared by the registry, scoring engine, router, and decision log.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

WILDCARD = "*"


class TransportKind(str, Enum):
    """Transports an executor can be probed over."""

    HTTP = "http"
    CLI = "cli"
    STATIC = "static"


class Liveness(str, Enum):
    """Liveness state of an executor."""

    UNKNOWN = "unknown"  # Registered, not yet probed
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class Model(BaseModel):
    """A model exposed by an executor."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    id: str = Field(..., min_length=1)
    executor_id: str = ""
    display_name: str | None = None
    cost_per_million: float = Field(default=0.0, ge=0.0)
    context_window: int = Field(default=0, ge=0)
    tags: tuple[str, ...] = ()
    healthy: bool = True

    @property
    def name(self) -> str:
        """Human-readable model name."""
        return self.display_name or self.id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "executor_id": self.executor_id,
            "display_name": self.name,
            "cost_per_million": self.cost_per_million,
            "context_window": self.context_window,
            "tags": list(self.tags),
            "healthy": self.healthy,
        }


class ExecutorDescriptor(BaseModel):
    """Registration payload for an executor."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    transport: TransportKind
    base_url: str | None = None
    list_command: list[str] = Field(default_factory=list)
    health_command: list[str] = Field(default_factory=list)
    headers: dict[str, str] = Field(default_factory=dict)
    capabilities: list[str] = Field(default_factory=list)
    models: list[Model] = Field(default_factory=list)
    model_overrides: dict[str, dict[str, Any]] = Field(default_factory=dict)
    timeout: float | None = Field(default=None, gt=0)
    healthy: bool = True

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Executor id must not be blank")
        return v


@dataclass
class Executor:
    """A registered backend. Mutated only by the registry's probe."""

    id: str
    transport: TransportKind
    capabilities: tuple[str, ...] = ()
    liveness: Liveness = Liveness.UNKNOWN
    last_probed: datetime | None = None
    unhealthy_since: datetime | None = None
    models: tuple[Model, ...] = ()
    last_error: str | None = None

    @property
    def is_healthy(self) -> bool:
        return self.liveness == Liveness.HEALTHY

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "transport": self.transport.value,
            "capabilities": list(self.capabilities),
            "liveness": self.liveness.value,
            "last_probed": self.last_probed.isoformat() if self.last_probed else None,
            "unhealthy_since": self.unhealthy_since.isoformat() if self.unhealthy_since else None,
            "models": [m.to_dict() for m in self.models],
            "last_error": self.last_error,
        }


class Policy(BaseModel):
    """Operator-managed mapping from (domain, action) to preferred models."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    domain: str = Field(..., min_length=1)
    action: str = Field(default=WILDCARD, min_length=1)
    models: tuple[str, ...] = ()
    priority: int = 0

    @field_validator("domain", "action")
    @classmethod
    def normalize_key(cls, v: str) -> str:
        return v.strip().lower()

    @property
    def key(self) -> tuple[str, str]:
        return (self.domain, self.action)

    @property
    def specificity(self) -> str:
        if self.domain == WILDCARD:
            return "default"
        if self.action == WILDCARD:
            return "domain"
        return "exact"

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "action": self.action,
            "models": list(self.models),
            "priority": self.priority,
        }


@dataclass(frozen=True)
class Classification:
    """Domain/action label for a request."""

    domain: str
    action: str
    confidence: float
    reasoning: str = ""
    fallback: bool = False
    fallback_reason: str | None = None
    latency_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "action": self.action,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "fallback": self.fallback,
            "fallback_reason": self.fallback_reason,
            "latency_ms": self.latency_ms,
        }


@dataclass(frozen=True)
class QueryFeatures:
    """Difficulty features derived from a prompt and its recent turns."""

    token_estimate: int
    complexity: float
    has_code: bool
    code_lines: int
    domain_keywords: frozenset[str]
    needs_tools: bool
    conversation_depth: int
    ambiguity: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "token_estimate": self.token_estimate,
            "complexity": self.complexity,
            "has_code": self.has_code,
            "code_lines": self.code_lines,
            "domain_keywords": sorted(self.domain_keywords),
            "needs_tools": self.needs_tools,
            "conversation_depth": self.conversation_depth,
            "ambiguity": self.ambiguity,
        }


@dataclass(frozen=True)
class CandidateScore:
    """Scoring result for one candidate model."""

    model_id: str
    executor_id: str
    probability: float
    score: float
    cost_per_million: float
    policy_rank: int
    ability_missing: bool = False
    explanation: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "model_id": self.model_id,
            "executor_id": self.executor_id,
            "probability": self.probability,
            "score": self.score,
            "cost_per_million": self.cost_per_million,
            "policy_rank": self.policy_rank,
            "ability_missing": self.ability_missing,
            "explanation": self.explanation,
        }


@dataclass(frozen=True)
class RoutingDecision:
    """Result of routing one request. The caller executes the backend call."""

    decision_id: str
    request_id: str
    selected: CandidateScore
    candidates: tuple[CandidateScore, ...]
    classification: Classification
    features: QueryFeatures
    policy_key: tuple[str, str] | None
    excluded: frozenset[str] = frozenset()
    attempt: int = 1
    latency_ms: float = 0.0
    reasoning: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def selected_model(self) -> str:
        return self.selected.model_id

    @property
    def confidence(self) -> float:
        return self.classification.confidence

    def remaining(self) -> list[CandidateScore]:
        """Ranked candidates that are neither excluded nor selected."""
        return [
            c for c in self.candidates
            if c.model_id not in self.excluded and c.model_id != self.selected_model
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision_id": self.decision_id,
            "request_id": self.request_id,
            "selected_model": self.selected_model,
            "executor_id": self.selected.executor_id,
            "candidates": [c.to_dict() for c in self.candidates],
            "classification": self.classification.to_dict(),
            "features": self.features.to_dict(),
            "policy": list(self.policy_key) if self.policy_key else None,
            "excluded": sorted(self.excluded),
            "attempt": self.attempt,
            "latency_ms": self.latency_ms,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "created_at": self.created_at.isoformat(),
        }


class Outcome(BaseModel):
    """Real-world result of executing a decision, back-filled later."""

    model_config = ConfigDict(frozen=True)

    success: bool
    latency_ms: float | None = Field(default=None, ge=0.0)
    error: str | None = None
    quality_score: float | None = Field(default=None, ge=0.0, le=1.0)
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class DecisionRecord:
    """Append-only log entry of a routing decision."""

    decision_id: str
    request_id: str
    prompt: str
    context_turns: int
    classification: Classification
    features: QueryFeatures
    candidates: tuple[CandidateScore, ...]
    selected_model: str
    excluded: frozenset[str]
    attempt: int
    started_at: datetime
    decided_at: datetime
    checkpoint_version: str | None = None

    @classmethod
    def from_decision(
        cls,
        decision: RoutingDecision,
        prompt: str,
        context_turns: int,
        started_at: datetime,
        checkpoint_version: str | None = None,
    ) -> "DecisionRecord":
        return cls(
            decision_id=decision.decision_id,
            request_id=decision.request_id,
            prompt=prompt,
            context_turns=context_turns,
            classification=decision.classification,
            features=decision.features,
            candidates=decision.candidates,
            selected_model=decision.selected_model,
            excluded=decision.excluded,
            attempt=decision.attempt,
            started_at=started_at,
            decided_at=decision.created_at,
            checkpoint_version=checkpoint_version,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision_id": self.decision_id,
            "request_id": self.request_id,
            "prompt": self.prompt,
            "context_turns": self.context_turns,
            "classification": self.classification.to_dict(),
            "features": self.features.to_dict(),
            "candidates": [c.to_dict() for c in self.candidates],
            "selected_model": self.selected_model,
            "excluded": sorted(self.excluded),
            "attempt": self.attempt,
            "started_at": self.started_at.isoformat(),
            "decided_at": self.decided_at.isoformat(),
            "checkpoint_version": self.checkpoint_version,
        }
