"""Candidate scoring."""

from routewise.scoring.ability import AbilityCheckpoint, AbilityStore, load_checkpoint
from routewise.scoring.difficulty import DifficultyMapping, LinearDifficultyMapping
from routewise.scoring.engine import Candidate, CostModel, ScoringEngine, sigmoid

__all__ = [
    "AbilityCheckpoint",
    "AbilityStore",
    "load_checkpoint",
    "DifficultyMapping",
    "LinearDifficultyMapping",
    "Candidate",
    "CostModel",
    "ScoringEngine",
    "sigmoid",
]
