"""Executor adapter for backends declared entirely in configuration."""

from __future__ import annotations

from routewise.core.models import ExecutorDescriptor, Model, TransportKind
from routewise.executors.base import ExecutorAdapter


class StaticExecutorAdapter(ExecutorAdapter):
    """
    Adapter whose models come from the descriptor itself.

    Useful for backends that cannot be queried (or for tests). Health is
    whatever the descriptor declares and can be flipped at runtime with
    set_healthy().
    """

    transport = TransportKind.STATIC

    def __init__(self, descriptor: ExecutorDescriptor):
        super().__init__(descriptor)
        self._healthy = descriptor.healthy
        self._models = self._build_models(list(descriptor.models))

    def set_healthy(self, healthy: bool) -> None:
        self._healthy = healthy

    def set_models(self, models: list[Model | dict]) -> None:
        self._models = self._build_models(list(models))

    async def list_models(self) -> list[Model]:
        return list(self._models)

    async def health_check(self) -> bool:
        return self._healthy
