"""
Difficulty feature extraction.

Pure, local transform from a prompt (plus a bounded window of recent turns)
to QueryFeatures. No network I/O, no randomness: identical input always
yields identical output, so it is safe on the hot path.
"""

from __future__ import annotations

import math
import re
from typing import Any, Mapping, Sequence

import numpy as np

from routewise.core.models import QueryFeatures

# Order of the normalized feature vector consumed by difficulty mappings
FEATURE_DIMENSIONS: tuple[str, ...] = (
    "length",
    "complexity",
    "code",
    "tools",
    "depth",
    "ambiguity",
)

# Normalization scales
LENGTH_SCALE_TOKENS = 32_000
CODE_LINES_SCALE = 50
DEPTH_SCALE = 20

ContextTurn = str | Mapping[str, Any]

CODE_FENCE = re.compile(r"```[^\n]*\n(.*?)(?:```|$)", re.DOTALL)

CODE_LINE = re.compile(
    r"^\s*(def\s+\w+|class\s+\w+|import\s+\w+|from\s+\w+\s+import|"
    r"function\s+\w+|const\s+\w+\s*=|let\s+\w+\s*=|var\s+\w+\s*=|"
    r"public\s+|private\s+|#include|fn\s+\w+|func\s+\w+|"
    r"return\b|if\s*\(.*\)\s*\{|for\s*\(.*\)\s*\{|\}\s*$|.*;\s*$)"
)

REASONING_MARKERS = re.compile(
    r"\b(prove|analy[sz]e|compare|explain\s+why|reason|debug|trade-?offs?|"
    r"pros?\s+(?:and|&)\s+cons?|justify|evaluate|critique|assess|"
    r"root\s+cause|deep\s+dive|architecture|design\s+pattern|"
    r"step\s+by\s+step|optimi[sz]e|derive)\b",
    re.IGNORECASE,
)

CONSTRAINT_MARKERS = re.compile(
    r"\b(must|should|require[sd]?|constraint|without|exactly|at\s+least|"
    r"at\s+most|no\s+more\s+than|ensure|make\s+sure)\b",
    re.IGNORECASE,
)

TOOL_MARKERS = re.compile(
    r"\b(run|execute|search\s+(?:the\s+)?(?:web|internet|online)|browse|"
    r"look\s+up|fetch|download|read\s+(?:the\s+)?file|write\s+(?:to\s+)?(?:the\s+)?file|"
    r"open\s+(?:the\s+)?file|call\s+(?:the\s+)?api|query\s+(?:the\s+)?database|"
    r"terminal|shell|bash|command\s+line|install|deploy|curl|git\s+\w+)\b",
    re.IGNORECASE,
)

VAGUE_MARKERS = re.compile(
    r"\b(something|somehow|stuff|things?|whatever|maybe|kind\s+of|sort\s+of|"
    r"etc|and\s+so\s+on|some\s+way|better|improve|fix\s+it|make\s+it\s+work)\b",
    re.IGNORECASE,
)

DANGLING_REFERENCE = re.compile(r"\b(it|this|that|these|those|them|above|previous)\b", re.IGNORECASE)

DOMAIN_KEYWORDS: dict[str, tuple[str, ...]] = {
    "programming": (
        "code", "function", "class", "method", "implement", "debug", "bug",
        "exception", "compile", "script", "algorithm", "api", "endpoint",
        "python", "javascript", "typescript", "java", "rust", "golang",
        "refactor", "unit test", "stack trace", "sql", "regex",
    ),
    "math": (
        "calculate", "equation", "formula", "integral", "derivative",
        "matrix", "vector", "probability", "statistics", "theorem", "proof",
        "algebra", "calculus", "geometry",
    ),
    "writing": (
        "story", "poem", "essay", "blog", "article", "narrative", "character",
        "slogan", "tagline", "rewrite", "proofread", "tone",
    ),
    "analysis": (
        "analyze", "analyse", "evaluate", "assess", "compare", "contrast",
        "pros", "cons", "swot", "insights", "trade-off", "tradeoff",
    ),
    "data": (
        "dataset", "csv", "dataframe", "pandas", "spreadsheet", "etl",
        "pipeline", "schema", "json", "aggregate",
    ),
    "language": (
        "translate", "translation", "spanish", "french", "german", "chinese",
        "japanese", "localize", "grammar",
    ),
    "summarization": (
        "summarize", "summarise", "summary", "tldr", "key points", "recap",
        "overview",
    ),
    "finance": (
        "revenue", "profit", "invoice", "budget", "stock", "portfolio",
        "interest rate", "valuation",
    ),
    "legal": ("contract", "clause", "liability", "compliance", "gdpr", "lawsuit"),
    "medical": ("symptom", "diagnosis", "dosage", "patient", "clinical", "treatment"),
}


def turn_text(turn: ContextTurn) -> str:
    if isinstance(turn, Mapping):
        content = turn.get("content", "")
        return content if isinstance(content, str) else str(content)
    return str(turn)


def feature_vector(features: QueryFeatures) -> np.ndarray:
    """Normalize features into [0, 1] values ordered by FEATURE_DIMENSIONS."""
    length = min(1.0, math.log1p(features.token_estimate) / math.log1p(LENGTH_SCALE_TOKENS))
    code = 0.0
    if features.has_code:
        code = 0.5 + 0.5 * min(1.0, features.code_lines / CODE_LINES_SCALE)
    values = [
        length,
        features.complexity,
        code,
        1.0 if features.needs_tools else 0.0,
        min(1.0, features.conversation_depth / DEPTH_SCALE),
        features.ambiguity,
    ]
    return np.asarray(values, dtype=np.float64)


class FeatureExtractor:
    """
    Computes difficulty features for a prompt.

    Example:
        extractor = FeatureExtractor()
        features = extractor.extract("Write a Python function to sort a list")
        features.has_code  # False
        extractor.vector(features)  # numpy array over FEATURE_DIMENSIONS
    """

    def __init__(self, max_context_turns: int = 6):
        self.max_context_turns = max_context_turns
        self._domain_patterns: dict[str, re.Pattern[str]] = {
            domain: re.compile(
                r"\b(" + "|".join(re.escape(k) for k in keywords) + r")\b",
                re.IGNORECASE,
            )
            for domain, keywords in DOMAIN_KEYWORDS.items()
        }

    def extract(
        self,
        prompt: str,
        context: Sequence[ContextTurn] | None = None,
    ) -> QueryFeatures:
        """
        Extract features from a prompt and its recent conversation turns.

        Args:
            prompt: The current user prompt
            context: Earlier turns, oldest first (strings or role/content mappings)

        Returns:
            QueryFeatures for the request
        """
        context = list(context or [])
        recent = context[-self.max_context_turns:] if self.max_context_turns else []
        recent_text = "\n".join(turn_text(t) for t in recent)

        code_lines = self._count_code_lines(prompt)
        return QueryFeatures(
            token_estimate=self._estimate_tokens(prompt, recent_text),
            complexity=self._complexity(prompt, code_lines),
            has_code=code_lines > 0,
            code_lines=code_lines,
            domain_keywords=self._domains(prompt),
            needs_tools=bool(TOOL_MARKERS.search(prompt)),
            conversation_depth=len(context),
            ambiguity=self._ambiguity(prompt, has_context=bool(recent)),
        )

    def vector(self, features: QueryFeatures) -> np.ndarray:
        """Normalize features into a vector ordered by FEATURE_DIMENSIONS."""
        return feature_vector(features)

    def _estimate_tokens(self, prompt: str, recent_text: str) -> int:
        # Rough estimate: 1 token ≈ 4 characters
        return (len(prompt) + len(recent_text)) // 4 + 1

    def _count_code_lines(self, text: str) -> int:
        fenced = CODE_FENCE.findall(text)
        if fenced:
            return sum(
                1 for block in fenced for line in block.splitlines() if line.strip()
            )
        return sum(1 for line in text.splitlines() if line.strip() and CODE_LINE.match(line))

    def _domains(self, text: str) -> frozenset[str]:
        return frozenset(
            domain for domain, pattern in self._domain_patterns.items()
            if pattern.search(text)
        )

    def _complexity(self, text: str, code_lines: int) -> float:
        """Complexity in [0, 1] from length, reasoning, constraints, and code."""
        words = len(text.split())
        questions = text.count("?")

        score = 0.0
        score += 0.25 * min(1.0, words / 300)
        score += 0.30 * min(1.0, len(REASONING_MARKERS.findall(text)) / 3)
        score += 0.15 * min(1.0, len(CONSTRAINT_MARKERS.findall(text)) / 4)
        score += 0.20 * min(1.0, code_lines / 30)
        score += 0.10 * min(1.0, max(0, questions - 1) / 3)
        return round(min(1.0, score), 6)

    def _ambiguity(self, text: str, has_context: bool) -> float:
        """Ambiguity in [0, 1]: short, vague, or referring to missing context."""
        stripped = text.strip()
        if not stripped:
            return 1.0

        words = len(stripped.split())
        score = 0.0
        if words < 4:
            score += 0.4
        elif words < 10:
            score += 0.2

        score += 0.3 * min(1.0, len(VAGUE_MARKERS.findall(stripped)) / 2)

        if not has_context and DANGLING_REFERENCE.search(stripped) and words < 25:
            score += 0.3

        return round(min(1.0, score), 6)
