"""
Request router.

Turns one prompt into one routing decision:

    classify -> look up policy -> merge with live registry snapshot
             -> score -> select -> log -> return

The Router never calls a backend; the caller executes the decision and,
if the chosen model fails, asks select() for the next-ranked candidate.
A Router holds no per-request state, so any number of route() calls may
run concurrently on one instance.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Iterable, Sequence, TypeVar

import structlog

from routewise.core.errors import (
    Cancelled,
    ClassificationError,
    ClassificationTimeout,
    NoEligibleCandidates,
    PolicyUnavailable,
)
from routewise.core.models import (
    CandidateScore,
    Classification,
    DecisionRecord,
    Outcome,
    Policy,
    RoutingDecision,
)
from routewise.observability.decision_log import DecisionLog
from routewise.policy.store import PolicyStore
from routewise.registry.executors import ExecutorRegistry, RegistrySnapshot
from routewise.routing.classifier import TaskClassifier
from routewise.routing.features import ContextTurn, FeatureExtractor
from routewise.scoring.engine import Candidate, ScoringEngine
from routewise.utils.logging import RequestLogger
from routewise.utils.metrics import RouterMetrics

logger = structlog.get_logger()

T = TypeVar("T")


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:16]}"


class Router:
    """
    Routes requests to the best live candidate model.

    Example:
        router = Router.from_settings(get_settings())
        await router.start()
        decision = await router.route("Write a Python function to sort a list")
        decision.selected_model
        # on failure of the chosen model:
        retry = await router.select(decision, excluded_model_ids={decision.selected_model})
    """

    def __init__(
        self,
        registry: ExecutorRegistry,
        policies: PolicyStore,
        classifier: TaskClassifier,
        scoring: ScoringEngine,
        decision_log: DecisionLog | None = None,
        features: FeatureExtractor | None = None,
        metrics: RouterMetrics | None = None,
        default_deadline: float | None = None,
    ):
        self.registry = registry
        self.policies = policies
        self.classifier = classifier
        self.scoring = scoring
        self.decision_log = decision_log
        self.features = features or FeatureExtractor()
        self.metrics = metrics or RouterMetrics()
        self.default_deadline = default_deadline

    @classmethod
    def from_settings(cls, settings: Any) -> "Router":
        """Build a fully wired Router from Settings."""
        return cls(
            registry=ExecutorRegistry.from_settings(settings.registry),
            policies=PolicyStore.from_settings(settings.policy),
            classifier=TaskClassifier.from_settings(settings.classifier),
            scoring=ScoringEngine.from_settings(settings.scoring),
            decision_log=DecisionLog.from_settings(settings.decisions),
            features=FeatureExtractor(max_context_turns=settings.router.max_context_turns),
            default_deadline=settings.router.default_deadline,
        )

    async def start(self) -> None:
        """Probe once, then start background probing and decision-log draining."""
        # New executors carry no models until their first probe
        await self.registry.probe_all()
        await self.registry.start()
        if self.decision_log is not None:
            await self.decision_log.start()

    async def close(self) -> None:
        await self.registry.stop()
        if self.decision_log is not None:
            await self.decision_log.close()
        await self.classifier.close()
        await self.policies.close()

    async def route(
        self,
        prompt: str,
        context: Sequence[ContextTurn] | None = None,
        excluded_model_ids: Iterable[str] | None = None,
        deadline: float | None = None,
        cancel_event: asyncio.Event | None = None,
        request_id: str | None = None,
    ) -> RoutingDecision:
        """
        Route a request.

        Args:
            prompt: The user prompt
            context: Recent conversation turns, oldest first
            excluded_model_ids: Models that must not be chosen
            deadline: Seconds allowed for the whole call
            cancel_event: Set by the caller to abandon the request
            request_id: Correlation id; generated if omitted

        Returns:
            RoutingDecision with the ranked candidates and the selection

        Raises:
            NoEligibleCandidates: If no live, non-excluded candidate remains
            Cancelled: If the deadline passes or cancel_event is set while
                waiting on the classifier or the policy store
        """
        request_id = request_id or _new_id("req")
        context = list(context or [])
        excluded = frozenset(excluded_model_ids or ())
        deadline = deadline if deadline is not None else self.default_deadline
        until = asyncio.get_running_loop().time() + deadline if deadline is not None else None

        started_at = datetime.now(timezone.utc)
        start = time.perf_counter()

        with RequestLogger(logger, "route", request_id=request_id):
            try:
                features = self.features.extract(prompt, context)
                classification = await self._classify(prompt, context, until, cancel_event)
                policy = await self._lookup_policy(classification, until, cancel_event)
                snapshot = self.registry.snapshot()
                candidates = self._merge(policy, snapshot, excluded)

                if not candidates:
                    raise NoEligibleCandidates(
                        f"No live candidate for {classification.domain}/{classification.action}",
                        reason="no_policy" if policy is None else "no_live_candidates",
                        policy_candidates=list(policy.models) if policy else [],
                        excluded=sorted(excluded),
                    )

                ranked = self.scoring.score(candidates, features, classification)
            except NoEligibleCandidates as e:
                self.metrics.record_failure("no_eligible_candidates", (time.perf_counter() - start) * 1000)
                logger.warning("No eligible candidates", reason=e.reason, excluded=e.excluded)
                raise
            except Cancelled as e:
                self.metrics.record_failure("cancelled", (time.perf_counter() - start) * 1000)
                logger.info("Route cancelled", stage=e.stage)
                raise

            decision = RoutingDecision(
                decision_id=_new_id("dec"),
                request_id=request_id,
                selected=ranked[0],
                candidates=tuple(ranked),
                classification=classification,
                features=features,
                policy_key=policy.key if policy else None,
                excluded=excluded,
                attempt=1,
                latency_ms=(time.perf_counter() - start) * 1000,
                reasoning=self._reasoning(classification, ranked, ranked[0], excluded),
            )
            self._record(decision, prompt, len(context), started_at)

            logger.info(
                "Route selected",
                model=decision.selected_model,
                executor=decision.selected.executor_id,
                score=decision.selected.score,
                domain=classification.domain,
                action=classification.action,
                classification_fallback=classification.fallback,
                candidates=len(ranked),
                latency_ms=round(decision.latency_ms, 3),
            )
            return decision

    async def select(
        self,
        decision: RoutingDecision,
        excluded_model_ids: Iterable[str] | None = None,
    ) -> RoutingDecision:
        """
        Pick the next-ranked candidate of an earlier decision.

        Reuses the earlier classification, features, and scores. Exclusions
        accumulate: anything excluded for this request stays excluded.
        Candidates that have gone unhealthy since are skipped.

        Raises:
            NoEligibleCandidates: If every ranked candidate is excluded or down
        """
        started_at = datetime.now(timezone.utc)
        start = time.perf_counter()
        excluded = decision.excluded | frozenset(excluded_model_ids or ())
        snapshot = self.registry.snapshot()

        remaining = [c for c in decision.candidates if c.model_id not in excluded]
        live = [c for c in remaining if c.model_id in snapshot]

        if not live:
            self.metrics.record_failure("no_eligible_candidates")
            raise NoEligibleCandidates(
                f"No candidate left for request {decision.request_id}",
                reason="all_candidates_excluded" if not remaining else "no_live_candidates",
                policy_candidates=[c.model_id for c in decision.candidates],
                excluded=sorted(excluded),
            )

        selected = live[0]
        fallback = RoutingDecision(
            decision_id=_new_id("dec"),
            request_id=decision.request_id,
            selected=selected,
            candidates=decision.candidates,
            classification=decision.classification,
            features=decision.features,
            policy_key=decision.policy_key,
            excluded=excluded,
            attempt=decision.attempt + 1,
            latency_ms=(time.perf_counter() - start) * 1000,
            reasoning=self._reasoning(decision.classification, live, selected, excluded),
        )
        # Fallback records refer to the original prompt by request id
        self._record(fallback, "", decision.features.conversation_depth, started_at)

        logger.info(
            "Fallback selected",
            request_id=decision.request_id,
            model=selected.model_id,
            attempt=fallback.attempt,
            excluded=sorted(excluded),
        )
        return fallback

    def record_outcome(self, decision_id: str, outcome: Outcome) -> bool:
        """Back-fill the real-world outcome of a decision (exactly once)."""
        if self.decision_log is None:
            return False
        return self.decision_log.record_outcome(decision_id, outcome)

    # Pipeline stages

    async def _classify(
        self,
        prompt: str,
        context: list[ContextTurn],
        until: float | None,
        cancel_event: asyncio.Event | None,
    ) -> Classification:
        try:
            return await self._bounded(
                self.classifier.classify(prompt, context), "classify", until, cancel_event
            )
        except ClassificationTimeout as e:
            logger.warning("Classifier timed out, using fallback", timeout=e.timeout)
            return self.classifier.fallback("timeout")
        except ClassificationError as e:
            logger.warning("Classifier failed, using fallback", error=e.message, reason=e.reason)
            return self.classifier.fallback(e.reason)

    async def _lookup_policy(
        self,
        classification: Classification,
        until: float | None,
        cancel_event: asyncio.Event | None,
    ) -> Policy | None:
        try:
            return await self._bounded(
                self.policies.match(classification.domain, classification.action),
                "policy",
                until,
                cancel_event,
            )
        except PolicyUnavailable as e:
            raise NoEligibleCandidates(
                f"Policies unavailable: {e.message}",
                reason="policy_unavailable",
            ) from e

    def _merge(
        self,
        policy: Policy | None,
        snapshot: RegistrySnapshot,
        excluded: frozenset[str],
    ) -> list[Candidate]:
        """Policy candidates that are live and not excluded, in policy order."""
        if policy is None:
            return []

        candidates: list[Candidate] = []
        seen: set[str] = set()
        for rank, model_id in enumerate(policy.models):
            if model_id in seen or model_id in excluded:
                continue
            seen.add(model_id)
            model = snapshot.find(model_id)
            if model is None:
                logger.debug("Policy candidate not live", model=model_id, snapshot=snapshot.version)
                continue
            candidates.append(Candidate(model=model, policy_rank=rank))
        return candidates

    async def _bounded(
        self,
        awaitable: Awaitable[T],
        stage: str,
        until: float | None,
        cancel_event: asyncio.Event | None,
    ) -> T:
        """
        Await a network-bound sub-call against the deadline and cancel signal.

        On either firing, the sub-call is cancelled and Cancelled raised.
        """
        loop = asyncio.get_running_loop()
        task = asyncio.ensure_future(awaitable)
        if (cancel_event is not None and cancel_event.is_set()) or (
            until is not None and loop.time() >= until
        ):
            task.cancel()
            raise Cancelled(f"Request cancelled before {stage}", stage=stage)

        waiters: set[asyncio.Future[Any]] = {task}
        cancel_waiter: asyncio.Task[Any] | None = None
        if cancel_event is not None:
            cancel_waiter = asyncio.create_task(cancel_event.wait())
            waiters.add(cancel_waiter)

        timeout = None if until is None else max(0.0, until - loop.time())
        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        reason = "cancelled" if cancel_event is not None and cancel_event.is_set() else "deadline exceeded"
        raise Cancelled(f"Request {reason} during {stage}", stage=stage)

    def _record(
        self,
        decision: RoutingDecision,
        prompt: str,
        context_turns: int,
        started_at: datetime,
    ) -> None:
        self.metrics.record_decision(
            model=decision.selected_model,
            score=decision.selected.score,
            latency_ms=decision.latency_ms,
            attempt=decision.attempt,
            classification_fallback=decision.classification.fallback,
        )
        if self.decision_log is None:
            return

        record = DecisionRecord.from_decision(
            decision,
            prompt=prompt,
            context_turns=context_turns,
            started_at=started_at,
            checkpoint_version=self.scoring.checkpoint_version,
        )
        self.decision_log.append(record)

    @staticmethod
    def _reasoning(
        classification: Classification,
        ranked: Sequence[CandidateScore],
        selected: CandidateScore,
        excluded: frozenset[str],
    ) -> str:
        label = f"{classification.domain}/{classification.action}"
        if classification.fallback:
            label += f" [fallback: {classification.fallback_reason}]"
        compared = " vs ".join(
            f"{c.model_id} score={c.score:.4f} (p={c.probability:.4f}, ${c.cost_per_million:.2f}/M)"
            for c in ranked
        )
        text = (
            f"Selected {selected.model_id} for {label} "
            f"(confidence {classification.confidence:.2f}): {compared}"
        )
        if excluded:
            text += f"; excluded {', '.join(sorted(excluded))}"
        return text


def build_router(settings: Any = None) -> Router:
    """Build a Router from settings, defaulting to the cached environment settings."""
    if settings is None:
        from routewise.core.config import get_settings

        settings = get_settings()
    return Router.from_settings(settings)
