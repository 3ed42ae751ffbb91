"""
Task classification for routing.

Labels a request with a (domain, action) pair. The label normally comes
from an external small classification model over HTTP; a local keyword
classifier is available when no endpoint is configured. Every call is
bounded by a timeout, and the Router substitutes a fallback label when a
call times out or returns garbage.
"""

from __future__ import annotations

import asyncio
import re
import time
from abc import ABC, abstractmethod
from typing import Any, Sequence

import httpx
import structlog
from pydantic import BaseModel, Field, ValidationError

from routewise.core.errors import ClassificationError, ClassificationTimeout
from routewise.core.models import Classification
from routewise.routing.features import ContextTurn, turn_text

logger = structlog.get_logger()


class ClassifierResponse(BaseModel):
    """Expected response body of the classification model."""

    domain: str = Field(..., min_length=1)
    action: str = Field(..., min_length=1)
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str = ""


class ClassifierBackend(ABC):
    """Something that can label a prompt."""

    @abstractmethod
    async def classify(
        self,
        prompt: str,
        context: Sequence[ContextTurn],
    ) -> ClassifierResponse:
        """Return a raw label for the prompt."""
        ...

    async def close(self) -> None:
        return None


class HTTPClassifierBackend(ClassifierBackend):
    """
    Client for an external classification model.

    POSTs {"prompt": ..., "context": [...]} and expects
    {"domain", "action", "confidence", "reasoning"} back.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._endpoint = endpoint
        self._api_key = api_key
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
            self._client = httpx.AsyncClient(headers=headers)
        return self._client

    async def classify(
        self,
        prompt: str,
        context: Sequence[ContextTurn],
    ) -> ClassifierResponse:
        client = await self._get_client()
        try:
            response = await client.post(
                self._endpoint,
                json={"prompt": prompt, "context": [turn_text(t) for t in context]},
            )
            response.raise_for_status()
            payload: Any = response.json()
        except httpx.TimeoutException as e:
            raise ClassificationTimeout(f"Classifier request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ClassificationError(f"Classifier request failed: {e}") from e
        except ValueError as e:
            raise ClassificationError("Classifier response is not JSON") from e

        try:
            return ClassifierResponse.model_validate(payload)
        except ValidationError as e:
            raise ClassificationError(f"Malformed classifier response: {e}", raw=payload) from e

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class HeuristicClassifierBackend(ClassifierBackend):
    """
    Local keyword and pattern classifier.

    No API calls. Each label scores keyword hits (0.3 each) and pattern
    hits (0.7 each), scaled by a per-label weight; confidence is the
    winner's share of the total.

    Example:
        backend = HeuristicClassifierBackend()
        result = await backend.classify("Write a Python function to sort a list", [])
        result.domain, result.action  # ("programming", "code-generation")
    """

    LABELS: dict[tuple[str, str], dict[str, Any]] = {
        ("programming", "debugging"): {
            "keywords": [
                "debug", "bug", "error", "exception", "traceback", "stack trace",
                "crash", "fails", "failing", "broken", "not working", "segfault",
            ],
            "patterns": [
                r"Traceback \(most recent call last\)",
                r"\w+Error:",
                r"why\s+(does|is)\s+(my|this)\s+(code|function|test)",
                r"fix\s+(this|the|my)\s+(bug|error|code)",
            ],
            "weight": 1.3,
        },
        ("programming", "code-generation"): {
            "keywords": [
                "code", "function", "class", "method", "implement", "script",
                "algorithm", "api", "endpoint", "python", "javascript",
                "typescript", "java", "rust", "golang", "sql", "refactor",
                "unit test",
            ],
            "patterns": [
                r"```\w*\n",
                r"def\s+\w+",
                r"function\s+\w+",
                r"class\s+\w+",
                r"(write|create|implement|build)\s+(a|an|the)\s+\w*\s*(function|class|script|program|api|module)",
            ],
            "weight": 1.2,
        },
        ("math", "problem-solving"): {
            "keywords": [
                "calculate", "compute", "solve", "equation", "formula",
                "algebra", "calculus", "probability", "derivative", "integral",
                "matrix", "theorem", "proof",
            ],
            "patterns": [
                r"\d+\s*[\+\-\*\/\^]\s*\d+",
                r"solve\s+(for|the)",
                r"prove\s+that",
            ],
            "weight": 1.1,
        },
        ("writing", "creative"): {
            "keywords": [
                "story", "poem", "creative", "imagine", "fiction", "narrative",
                "character", "plot", "dialogue", "novel", "slogan", "tagline",
            ],
            "patterns": [
                r"write\s+(a|an)\s+(story|poem|essay|article|song)",
                r"imagine\s+",
            ],
            "weight": 1.0,
        },
        ("analysis", "comparison"): {
            "keywords": [
                "analyze", "analysis", "evaluate", "assess", "compare",
                "contrast", "pros", "cons", "advantages", "disadvantages",
                "trade-off", "tradeoff",
            ],
            "patterns": [
                r"compare\s+(and\s+)?contrast",
                r"what\s+are\s+the\s+(pros|cons|advantages|disadvantages)",
                r"\bvs\.?\b",
            ],
            "weight": 1.0,
        },
        ("summarization", "summarize"): {
            "keywords": [
                "summarize", "summarise", "summary", "tldr", "key points",
                "main points", "recap", "overview",
            ],
            "patterns": [
                r"summari[sz]e\s+(this|the|these)",
                r"give\s+(me\s+)?a\s+summary",
            ],
            "weight": 1.0,
        },
        ("language", "translation"): {
            "keywords": [
                "translate", "translation", "in spanish", "in french",
                "in german", "in chinese", "in japanese", "localize",
            ],
            "patterns": [
                r"translate\s+(this|the|these|from|to|into)",
                r"(from|to|into)\s+(english|spanish|french|german|chinese|japanese)",
            ],
            "weight": 1.3,
        },
        ("general", "conversation"): {
            "keywords": [
                "hello", "hi", "hey", "how are you", "thanks", "thank you",
            ],
            "patterns": [
                r"^(hi|hello|hey|thanks|thank\s+you)\b",
                r"how\s+are\s+you",
            ],
            "weight": 0.8,
        },
    }

    def __init__(self, default: tuple[str, str] = ("general", "general")):
        self._default = default
        self._compiled: dict[tuple[str, str], list[re.Pattern[str]]] = {
            label: [re.compile(p, re.IGNORECASE) for p in config["patterns"]]
            for label, config in self.LABELS.items()
        }
        self._keyword_patterns: dict[tuple[str, str], list[re.Pattern[str]]] = {
            label: [
                re.compile(r"\b" + re.escape(k) + r"\b", re.IGNORECASE)
                for k in config["keywords"]
            ]
            for label, config in self.LABELS.items()
        }

    async def classify(
        self,
        prompt: str,
        context: Sequence[ContextTurn],
    ) -> ClassifierResponse:
        scores: dict[tuple[str, str], float] = {}
        signals: dict[tuple[str, str], tuple[int, int]] = {}

        for label, config in self.LABELS.items():
            keyword_count = sum(1 for p in self._keyword_patterns[label] if p.search(prompt))
            pattern_count = sum(1 for p in self._compiled[label] if p.search(prompt))
            scores[label] = (keyword_count * 0.3 + pattern_count * 0.7) * config["weight"]
            signals[label] = (keyword_count, pattern_count)

        total = sum(scores.values())
        if total == 0:
            domain, action = self._default
            return ClassifierResponse(
                domain=domain,
                action=action,
                confidence=0.5,
                reasoning="no task signals detected",
            )

        # Highest score wins; label order breaks ties deterministically
        best = max(self.LABELS, key=lambda label: scores[label])
        keywords, patterns = signals[best]
        return ClassifierResponse(
            domain=best[0],
            action=best[1],
            confidence=round(scores[best] / total, 6),
            reasoning=f"{keywords} keyword and {patterns} pattern matches",
        )


class TaskClassifier:
    """
    Bounded client around a classifier backend.

    Raises ClassificationTimeout when the backend exceeds `timeout` and
    ClassificationError on malformed output; `fallback()` builds the label
    the Router uses instead.
    """

    def __init__(
        self,
        backend: ClassifierBackend | None = None,
        timeout: float = 0.3,
        fallback_domain: str = "general",
        fallback_action: str = "general",
        fallback_confidence: float = 0.0,
    ):
        self.backend = backend or HeuristicClassifierBackend(default=(fallback_domain, fallback_action))
        self.timeout = timeout
        self._fallback_domain = fallback_domain
        self._fallback_action = fallback_action
        self._fallback_confidence = fallback_confidence

    @classmethod
    def from_settings(cls, settings: Any) -> "TaskClassifier":
        backend: ClassifierBackend
        if settings.endpoint:
            backend = HTTPClassifierBackend(
                endpoint=settings.endpoint,
                api_key=settings.api_key.get_secret_value() if settings.api_key else None,
            )
        else:
            backend = HeuristicClassifierBackend(
                default=(settings.fallback_domain, settings.fallback_action)
            )
        return cls(
            backend=backend,
            timeout=settings.timeout,
            fallback_domain=settings.fallback_domain,
            fallback_action=settings.fallback_action,
            fallback_confidence=settings.fallback_confidence,
        )

    async def classify(
        self,
        prompt: str,
        context: Sequence[ContextTurn] | None = None,
    ) -> Classification:
        """
        Classify a prompt.

        Raises:
            ClassificationTimeout: If the backend exceeds the timeout
            ClassificationError: If the backend fails or its output is malformed
        """
        start = time.perf_counter()
        try:
            result = await asyncio.wait_for(
                self.backend.classify(prompt, list(context or [])),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise ClassificationTimeout(
                f"Classifier exceeded {self.timeout}s", timeout=self.timeout
            ) from e
        except ClassificationError:
            raise
        except Exception as e:
            logger.warning("Classifier backend raised", error=str(e), error_type=type(e).__name__)
            raise ClassificationError(f"Classifier backend failed: {e}", reason="backend_error") from e

        if not isinstance(result, ClassifierResponse):
            try:
                result = ClassifierResponse.model_validate(result)
            except ValidationError as e:
                raise ClassificationError(f"Malformed classifier response: {e}", raw=result) from e

        return Classification(
            domain=result.domain.strip().lower(),
            action=result.action.strip().lower(),
            confidence=result.confidence,
            reasoning=result.reasoning,
            latency_ms=(time.perf_counter() - start) * 1000,
        )

    def fallback(self, reason: str) -> Classification:
        """The configured label to use when classification fails."""
        return Classification(
            domain=self._fallback_domain,
            action=self._fallback_action,
            confidence=self._fallback_confidence,
            reasoning=f"fallback classification ({reason})",
            fallback=True,
            fallback_reason=reason,
        )

    async def close(self) -> None:
        await self.backend.close()
