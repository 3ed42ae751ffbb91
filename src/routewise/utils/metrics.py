"""
Metrics collection for Routewise.

Provides in-process counters for routing outcomes.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any


@dataclass
class ModelSelectionMetrics:
    """Aggregated selection metrics for a model."""

    selections: int = 0
    fallback_selections: int = 0
    total_score: float = 0.0

    @property
    def avg_score(self) -> float:
        if self.selections == 0:
            return 0.0
        return self.total_score / self.selections


@dataclass
class RouteEvent:
    """A single routing outcome kept in recent history."""

    timestamp: datetime
    outcome: str
    model: str | None
    latency_ms: float
    classification_fallback: bool = False


class RouterMetrics:
    """
    Thread-safe metrics collector for routing decisions.

    Counts decisions, terminal errors, and classifier fallbacks, and keeps
    per-model selection totals.
    """

    def __init__(self, max_history: int = 1000):
        self._lock = Lock()
        self._max_history = max_history
        self._events: list[RouteEvent] = []
        self._models: dict[str, ModelSelectionMetrics] = defaultdict(ModelSelectionMetrics)
        self._counters: dict[str, int] = defaultdict(int)
        self._total_latency_ms = 0.0
        self._start_time = datetime.now(timezone.utc)

    def record_decision(
        self,
        model: str,
        score: float,
        latency_ms: float,
        attempt: int = 1,
        classification_fallback: bool = False,
    ) -> None:
        """Record a successful routing decision."""
        with self._lock:
            self._counters["decisions"] += 1
            if attempt > 1:
                self._counters["fallback_selections"] += 1
            if classification_fallback:
                self._counters["classification_fallbacks"] += 1
            self._total_latency_ms += latency_ms

            mm = self._models[model]
            mm.selections += 1
            mm.total_score += score
            if attempt > 1:
                mm.fallback_selections += 1

            self._add_event(RouteEvent(
                timestamp=datetime.now(timezone.utc),
                outcome="selected",
                model=model,
                latency_ms=latency_ms,
                classification_fallback=classification_fallback,
            ))

    def record_failure(self, outcome: str, latency_ms: float = 0.0) -> None:
        """Record a routing request that ended in a typed error."""
        with self._lock:
            self._counters[outcome] += 1
            self._add_event(RouteEvent(
                timestamp=datetime.now(timezone.utc),
                outcome=outcome,
                model=None,
                latency_ms=latency_ms,
            ))

    def increment(self, counter: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[counter] += amount

    def _add_event(self, event: RouteEvent) -> None:
        self._events.append(event)
        if len(self._events) > self._max_history:
            self._events = self._events[-self._max_history:]

    def get_summary(self) -> dict[str, Any]:
        """Get metrics summary."""
        with self._lock:
            decisions = self._counters.get("decisions", 0)
            uptime = (datetime.now(timezone.utc) - self._start_time).total_seconds()
            return {
                "uptime_seconds": uptime,
                "decisions": decisions,
                "avg_latency_ms": self._total_latency_ms / decisions if decisions else 0.0,
                "counters": dict(self._counters),
                "models": {
                    name: {
                        "selections": mm.selections,
                        "fallback_selections": mm.fallback_selections,
                        "avg_score": mm.avg_score,
                    }
                    for name, mm in self._models.items()
                },
            }

    def get_recent(self, limit: int = 100) -> list[dict[str, Any]]:
        """Get recent routing outcomes."""
        with self._lock:
            return [
                {
                    "timestamp": e.timestamp.isoformat(),
                    "outcome": e.outcome,
                    "model": e.model,
                    "latency_ms": e.latency_ms,
                    "classification_fallback": e.classification_fallback,
                }
                for e in self._events[-limit:]
            ]

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self._events.clear()
            self._models.clear()
            self._counters.clear()
            self._total_latency_ms = 0.0
            self._start_time = datetime.now(timezone.utc)
