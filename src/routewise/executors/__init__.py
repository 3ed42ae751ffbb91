"""Executor adapters, one per transport."""

from __future__ import annotations

from routewise.core.errors import ConfigError
from routewise.core.models import ExecutorDescriptor, TransportKind
from routewise.executors.base import ExecutorAdapter
from routewise.executors.cli import CLIExecutorAdapter
from routewise.executors.http import HTTPExecutorAdapter
from routewise.executors.static import StaticExecutorAdapter

ADAPTERS: dict[TransportKind, type[ExecutorAdapter]] = {
    TransportKind.HTTP: HTTPExecutorAdapter,
    TransportKind.CLI: CLIExecutorAdapter,
    TransportKind.STATIC: StaticExecutorAdapter,
}


def create_adapter(descriptor: ExecutorDescriptor) -> ExecutorAdapter:
    """
    Create the adapter for a descriptor's transport.

    Raises:
        ConfigError: If the descriptor lacks what its transport needs
    """
    if descriptor.transport == TransportKind.HTTP and not descriptor.base_url:
        raise ConfigError(
            f"HTTP executor '{descriptor.id}' requires base_url", field="base_url"
        )
    if descriptor.transport == TransportKind.CLI and not descriptor.list_command:
        raise ConfigError(
            f"CLI executor '{descriptor.id}' requires list_command", field="list_command"
        )

    adapter_cls = ADAPTERS.get(descriptor.transport)
    if adapter_cls is None:
        raise ConfigError(
            f"Unsupported transport '{descriptor.transport}'", field="transport"
        )
    return adapter_cls(descriptor)


__all__ = [
    "ADAPTERS",
    "ExecutorAdapter",
    "HTTPExecutorAdapter",
    "CLIExecutorAdapter",
    "StaticExecutorAdapter",
    "create_adapter",
]
