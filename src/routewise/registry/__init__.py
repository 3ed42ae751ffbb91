"""Executor registry."""

from routewise.registry.executors import ExecutorRegistry, RegistrySnapshot

__all__ = ["ExecutorRegistry", "RegistrySnapshot"]
