"""
Base adapter interface for executors.

The registry depends only on the two-method probe contract below. Each
transport (HTTP, CLI subprocess, static declaration) implements it in its
own adapter.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import structlog
from pydantic import ValidationError

from routewise.core.errors import ExecutorError
from routewise.core.models import ExecutorDescriptor, Model, TransportKind

logger = structlog.get_logger()


class ExecutorAdapter(ABC):
    """
    Abstract base class for executor adapters.

    All adapter implementations must implement:
    - list_models(): Current models exposed by the executor
    - health_check(): Liveness of the executor
    """

    transport: TransportKind

    def __init__(self, descriptor: ExecutorDescriptor):
        self.descriptor = descriptor

    @property
    def executor_id(self) -> str:
        return self.descriptor.id

    @abstractmethod
    async def list_models(self) -> list[Model]:
        """
        Query the models currently exposed by the executor.

        Raises:
            ExecutorError: If the executor cannot be queried
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Return True if the executor is live."""
        ...

    async def close(self) -> None:
        """Release transport resources."""
        return None

    def _build_models(self, raw_models: list[Any]) -> list[Model]:
        """Validate raw model entries, apply overrides, and stamp ownership."""
        models: list[Model] = []
        for raw in raw_models:
            if isinstance(raw, str):
                raw = {"id": raw}
            if isinstance(raw, Model):
                raw = raw.model_dump()
            if not isinstance(raw, dict):
                raise ExecutorError(
                    f"Malformed model entry from executor '{self.executor_id}': {raw!r}",
                    executor_id=self.executor_id,
                )

            data = {**raw, **self.descriptor.model_overrides.get(raw.get("id", ""), {})}
            data["executor_id"] = self.executor_id
            try:
                models.append(Model.model_validate(data))
            except ValidationError as e:
                raise ExecutorError(
                    f"Invalid model entry from executor '{self.executor_id}': {e}",
                    executor_id=self.executor_id,
                ) from e
        return models
