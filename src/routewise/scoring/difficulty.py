"""
Difficulty mappings.

A difficulty mapping turns the normalized feature vector of a request into
a difficulty vector in the same latent space as the model ability vectors.
The scoring engine only relies on the DifficultyMapping interface, so the
mapping can be replaced without touching the scoring formula.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np

from routewise.core.errors import ConfigError
from routewise.routing.features import FEATURE_DIMENSIONS
from routewise.scoring.ability import AbilityCheckpoint


class DifficultyMapping(ABC):
    """Maps a feature vector to a difficulty vector."""

    @property
    @abstractmethod
    def output_size(self) -> int:
        ...

    @abstractmethod
    def __call__(self, features: np.ndarray) -> np.ndarray:
        ...


class LinearDifficultyMapping(DifficultyMapping):
    """
    difficulty = W @ features + b

    W has one row per latent dimension and one column per feature
    dimension. The identity mapping treats each normalized feature as the
    difficulty along the dimension of the same name.
    """

    def __init__(self, weights: np.ndarray, bias: np.ndarray | None = None):
        weights = np.asarray(weights, dtype=np.float64)
        if weights.ndim != 2 or weights.shape[1] != len(FEATURE_DIMENSIONS):
            raise ConfigError(
                f"Difficulty weights must have {len(FEATURE_DIMENSIONS)} columns, got shape {weights.shape}",
                field="difficulty_weights",
            )
        if bias is None:
            bias = np.zeros(weights.shape[0])
        bias = np.asarray(bias, dtype=np.float64)
        if bias.shape != (weights.shape[0],):
            raise ConfigError("Difficulty bias does not match weight rows", field="difficulty_bias")
        self._weights = weights
        self._bias = bias

    @classmethod
    def identity(cls) -> "LinearDifficultyMapping":
        return cls(np.eye(len(FEATURE_DIMENSIONS)))

    @classmethod
    def from_checkpoint(cls, checkpoint: AbilityCheckpoint) -> "LinearDifficultyMapping":
        """
        Use the checkpoint's own W and b when it ships them, else identity.

        Raises:
            ConfigError: If the checkpoint has no weights and its dimensions
                differ from the feature dimensions
        """
        if checkpoint.difficulty_weights is not None:
            return cls(checkpoint.difficulty_weights, checkpoint.difficulty_bias)
        if checkpoint.size != len(FEATURE_DIMENSIONS):
            raise ConfigError(
                f"Checkpoint '{checkpoint.version}' has {checkpoint.size} dimensions but no "
                f"difficulty weights to map {len(FEATURE_DIMENSIONS)} features onto them",
                field="difficulty_weights",
            )
        return cls(np.eye(len(FEATURE_DIMENSIONS)), checkpoint.difficulty_bias)

    @property
    def output_size(self) -> int:
        return self._weights.shape[0]

    def __call__(self, features: np.ndarray) -> np.ndarray:
        return self._weights @ features + self._bias
