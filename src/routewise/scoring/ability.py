"""
Model ability checkpoints.

A checkpoint is an external, versioned, read-only artifact holding one
latent ability vector per model id plus per-dimension discrimination
weights. It is loaded at startup and replaced wholesale on reload; the
scoring path only ever reads it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import numpy as np
import structlog

from routewise.core.errors import ConfigError, ScoringDataMissing
from routewise.routing.features import FEATURE_DIMENSIONS

logger = structlog.get_logger()


def _frozen(values: Any, name: str) -> np.ndarray:
    try:
        array = np.array(values, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Checkpoint field '{name}' is not numeric", field=name) from e
    if not np.all(np.isfinite(array)):
        raise ConfigError(f"Checkpoint field '{name}' contains non-finite values", field=name)
    array.setflags(write=False)
    return array


@dataclass(frozen=True)
class AbilityCheckpoint:
    """Per-model ability vectors and the shared discrimination weights."""

    version: str
    dimensions: tuple[str, ...]
    discrimination: np.ndarray
    abilities: dict[str, np.ndarray]
    difficulty_weights: np.ndarray | None = None
    difficulty_bias: np.ndarray | None = None

    def __post_init__(self) -> None:
        size = len(self.dimensions)
        if size == 0:
            raise ConfigError("Checkpoint declares no dimensions", field="dimensions")
        if self.discrimination.shape != (size,):
            raise ConfigError(
                f"Discrimination has shape {self.discrimination.shape}, expected ({size},)",
                field="discrimination",
            )
        for model_id, vector in self.abilities.items():
            if vector.shape != (size,):
                raise ConfigError(
                    f"Ability vector for '{model_id}' has shape {vector.shape}, expected ({size},)",
                    field=f"abilities.{model_id}",
                )
        if self.difficulty_weights is not None and (
            self.difficulty_weights.ndim != 2 or self.difficulty_weights.shape[0] != size
        ):
            raise ConfigError(
                f"Difficulty weights must have {size} rows", field="difficulty_weights"
            )
        if self.difficulty_bias is not None and self.difficulty_bias.shape != (size,):
            raise ConfigError(f"Difficulty bias must have shape ({size},)", field="difficulty_bias")

    @property
    def size(self) -> int:
        return len(self.dimensions)

    def ability(self, model_id: str) -> np.ndarray:
        """
        Ability vector for a model.

        Raises:
            ScoringDataMissing: If the checkpoint has no vector for the model
        """
        vector = self.abilities.get(model_id)
        if vector is None:
            raise ScoringDataMissing(model_id)
        return vector

    def zero(self) -> np.ndarray:
        return np.zeros(self.size, dtype=np.float64)

    @classmethod
    def empty(cls, version: str = "builtin") -> "AbilityCheckpoint":
        """A checkpoint over the raw feature dimensions with no model data."""
        return cls(
            version=version,
            dimensions=FEATURE_DIMENSIONS,
            discrimination=_frozen(np.ones(len(FEATURE_DIMENSIONS)), "discrimination"),
            abilities={},
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AbilityCheckpoint":
        """
        Build a checkpoint from a mapping.

        Expected shape:
            {"version": "2025-01", "dimensions": [...],
             "discrimination": [...], "abilities": {"model-id": [...]},
             "difficulty_weights": [[...]], "difficulty_bias": [...]}
        """
        if not isinstance(data, dict) or "abilities" not in data:
            raise ConfigError("Checkpoint must be a mapping with 'abilities'", field="abilities")

        dimensions = tuple(data.get("dimensions") or FEATURE_DIMENSIONS)
        discrimination = data.get("discrimination")
        if discrimination is None:
            discrimination = np.ones(len(dimensions))

        raw_abilities = data["abilities"]
        if not isinstance(raw_abilities, dict):
            raise ConfigError("Checkpoint 'abilities' must map model ids to vectors", field="abilities")

        weights = data.get("difficulty_weights")
        bias = data.get("difficulty_bias")
        return cls(
            version=str(data.get("version", "unversioned")),
            dimensions=dimensions,
            discrimination=_frozen(discrimination, "discrimination"),
            abilities={
                str(model_id): _frozen(vector, f"abilities.{model_id}")
                for model_id, vector in raw_abilities.items()
            },
            difficulty_weights=_frozen(weights, "difficulty_weights") if weights is not None else None,
            difficulty_bias=_frozen(bias, "difficulty_bias") if bias is not None else None,
        )


def load_checkpoint(path: str | Path) -> AbilityCheckpoint:
    """
    Load a checkpoint from JSON or NumPy .npz.

    The .npz layout stores `model_ids` (n,), `abilities` (n, d),
    `discrimination` (d,) and optionally `dimensions`, `version`,
    `difficulty_weights` and `difficulty_bias`.

    Raises:
        ConfigError: If the file is missing or malformed
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Checkpoint not found: {path}", field="checkpoint_path")

    if path.suffix.lower() == ".npz":
        try:
            with np.load(path, allow_pickle=False) as archive:
                model_ids = [str(m) for m in archive["model_ids"]]
                matrix = archive["abilities"]
                data: dict[str, Any] = {
                    "version": str(archive["version"]) if "version" in archive else path.stem,
                    "abilities": {m: matrix[i] for i, m in enumerate(model_ids)},
                    "discrimination": archive["discrimination"] if "discrimination" in archive else None,
                    "dimensions": [str(d) for d in archive["dimensions"]] if "dimensions" in archive else None,
                    "difficulty_weights": archive["difficulty_weights"] if "difficulty_weights" in archive else None,
                    "difficulty_bias": archive["difficulty_bias"] if "difficulty_bias" in archive else None,
                }
        except (KeyError, ValueError, OSError) as e:
            raise ConfigError(f"Malformed checkpoint archive {path}: {e}", field="checkpoint_path") from e
        if data["discrimination"] is None:
            data.pop("discrimination")
        return AbilityCheckpoint.from_dict(data)

    try:
        data = json.loads(path.read_text())
    except (OSError, ValueError) as e:
        raise ConfigError(f"Malformed checkpoint {path}: {e}", field="checkpoint_path") from e
    return AbilityCheckpoint.from_dict(data)


class AbilityStore:
    """
    Holder for the active checkpoint.

    reload() builds the new checkpoint completely before swapping the
    reference, so a scoring pass sees either the old or the new one.
    """

    def __init__(self, checkpoint: AbilityCheckpoint | None = None, path: str | Path | None = None):
        self._checkpoint = checkpoint or AbilityCheckpoint.empty()
        self._path = Path(path) if path else None

    @classmethod
    def from_path(cls, path: str | Path | None) -> "AbilityStore":
        if path is None:
            logger.warning("No ability checkpoint configured, every model scores as missing")
            return cls()
        return cls(load_checkpoint(path), path=path)

    @property
    def checkpoint(self) -> AbilityCheckpoint:
        return self._checkpoint

    @property
    def version(self) -> str:
        return self._checkpoint.version

    def reload(
        self,
        path: str | Path | None = None,
        validate: Callable[[AbilityCheckpoint], Any] | None = None,
    ) -> AbilityCheckpoint:
        """
        Load a checkpoint and make it active.

        `validate` runs against the new checkpoint before the swap.

        Raises:
            ConfigError: If the checkpoint is malformed; the old one stays active
        """
        path = Path(path) if path else self._path
        if path is None:
            raise ConfigError("No checkpoint path to reload from", field="checkpoint_path")
        checkpoint = load_checkpoint(path)
        if validate is not None:
            validate(checkpoint)
        previous = self._checkpoint.version
        self._checkpoint = checkpoint
        self._path = path
        logger.info(
            "Ability checkpoint loaded",
            version=checkpoint.version,
            previous_version=previous,
            models=len(checkpoint.abilities),
        )
        return checkpoint

    def swap(self, checkpoint: AbilityCheckpoint) -> None:
        self._checkpoint = checkpoint
