"""
Cost-quality scoring engine.

For each live candidate:

    p     = sigmoid(discrimination · (ability - difficulty) - penalty)
    score = p / cost(cost_per_million)

where `penalty` applies only when the checkpoint has no ability vector for
the model (it is scored against a zero vector, never dropped) and
`cost(c) = max(overhead + sensitivity * c, epsilon)`. With the default
overhead of 1.0 a free model's score equals its success probability.

Ranking is by score descending, then policy rank, then model id.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import numpy as np
import structlog

from routewise.core.errors import ConfigError, ScoringDataMissing
from routewise.core.models import CandidateScore, Classification, Model, QueryFeatures
from routewise.routing.features import feature_vector
from routewise.scoring.ability import AbilityCheckpoint, AbilityStore
from routewise.scoring.difficulty import DifficultyMapping, LinearDifficultyMapping

logger = structlog.get_logger()

# Keeps p strictly inside (0, 1) even when the logit saturates
PROBABILITY_FLOOR = 1e-12


def sigmoid(x: float) -> float:
    """Numerically stable logistic function."""
    if x >= 0:
        z = math.exp(-x)
        return 1.0 / (1.0 + z)
    z = math.exp(x)
    return z / (1.0 + z)


@dataclass(frozen=True)
class CostModel:
    """Monotonic cost divisor applied to success probability."""

    sensitivity: float = 0.1
    overhead: float = 1.0
    epsilon: float = 1e-9

    def __call__(self, cost_per_million: float) -> float:
        return max(self.overhead + self.sensitivity * max(cost_per_million, 0.0), self.epsilon)


@dataclass(frozen=True)
class Candidate:
    """A live model under consideration, with its position in the policy list."""

    model: Model
    policy_rank: int


class ScoringEngine:
    """
    Ranks candidates by predicted success per unit cost.

    The difficulty mapping is pluggable; by default it is derived from the
    active checkpoint (its own weights, or identity over the feature
    dimensions).
    """

    def __init__(
        self,
        abilities: AbilityStore | None = None,
        cost_model: CostModel | None = None,
        missing_ability_penalty: float = 1.0,
        mapping: DifficultyMapping | None = None,
        vectorize: Callable[[QueryFeatures], np.ndarray] = feature_vector,
    ):
        self._abilities = abilities or AbilityStore()
        self._cost_model = cost_model or CostModel()
        self._missing_penalty = missing_ability_penalty
        self._mapping = mapping
        self._vectorize = vectorize
        self._derived: tuple[AbilityCheckpoint, DifficultyMapping] | None = None

        # Fail at construction, not on the first request
        self._mapping_for(self._abilities.checkpoint)

    @classmethod
    def from_settings(cls, settings: Any) -> "ScoringEngine":
        return cls(
            abilities=AbilityStore.from_path(settings.checkpoint_path),
            cost_model=CostModel(
                sensitivity=settings.cost_sensitivity,
                overhead=settings.cost_overhead,
                epsilon=settings.cost_epsilon,
            ),
            missing_ability_penalty=settings.missing_ability_penalty,
        )

    @property
    def abilities(self) -> AbilityStore:
        return self._abilities

    @property
    def checkpoint_version(self) -> str:
        return self._abilities.version

    def _mapping_for(self, checkpoint: AbilityCheckpoint) -> DifficultyMapping:
        """
        Difficulty mapping for a checkpoint.

        Raises:
            ConfigError: If the mapping's output does not match the checkpoint
        """
        derived = self._derived
        # Keyed on identity: a retrained checkpoint may reuse its version string
        if derived is not None and derived[0] is checkpoint:
            return derived[1]

        mapping = self._mapping or LinearDifficultyMapping.from_checkpoint(checkpoint)
        if mapping.output_size != checkpoint.size:
            raise ConfigError(
                f"Difficulty mapping yields {mapping.output_size} dimensions, "
                f"checkpoint '{checkpoint.version}' has {checkpoint.size}",
                field="dimensions",
            )
        self._derived = (checkpoint, mapping)
        return mapping

    def reload_checkpoint(self, path: str | Path | None = None) -> AbilityCheckpoint:
        """
        Swap in a new ability checkpoint.

        Raises:
            ConfigError: If the checkpoint is malformed or incompatible; the
                active checkpoint is left in place
        """
        return self._abilities.reload(path, validate=self._mapping_for)

    def score(
        self,
        candidates: list[Candidate],
        features: QueryFeatures,
        classification: Classification,
    ) -> list[CandidateScore]:
        """
        Score and rank candidates.

        Args:
            candidates: Live candidates only
            features: Features of the request
            classification: Label of the request, cited in explanations

        Returns:
            CandidateScores, best first
        """
        checkpoint = self._abilities.checkpoint
        mapping = self._mapping_for(checkpoint)
        difficulty = mapping(self._vectorize(features))
        label = f"{classification.domain}/{classification.action}"

        scored: list[CandidateScore] = []
        for candidate in candidates:
            model = candidate.model
            missing = False
            try:
                ability = checkpoint.ability(model.id)
            except ScoringDataMissing:
                missing = True
                ability = checkpoint.zero()
                logger.warning(
                    "Ability vector missing, applying penalty",
                    model=model.id,
                    checkpoint=checkpoint.version,
                    penalty=self._missing_penalty,
                )

            logit = float(np.dot(checkpoint.discrimination, ability - difficulty))
            if missing:
                logit -= self._missing_penalty
            probability = min(max(sigmoid(logit), PROBABILITY_FLOOR), 1.0 - PROBABILITY_FLOOR)
            divisor = self._cost_model(model.cost_per_million)
            weighted = probability / divisor

            explanation = (
                f"{model.id} for {label} (confidence {classification.confidence:.2f}): "
                f"p={probability:.4f}, cost=${model.cost_per_million:.2f}/M, "
                f"divisor={divisor:.4f}, score={weighted:.4f}"
            )
            if missing:
                explanation += f"; no ability data, penalty {self._missing_penalty:g}"

            scored.append(CandidateScore(
                model_id=model.id,
                executor_id=model.executor_id,
                probability=probability,
                score=weighted,
                cost_per_million=model.cost_per_million,
                policy_rank=candidate.policy_rank,
                ability_missing=missing,
                explanation=explanation,
            ))

        scored.sort(key=lambda s: (-s.score, s.policy_rank, s.model_id))
        return scored
