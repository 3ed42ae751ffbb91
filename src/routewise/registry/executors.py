"""
Executor registry.

Tracks registered executors and the models they expose. A background task
probes every executor on an interval; request handlers only ever read the
latest immutable RegistrySnapshot, which is swapped in as a whole after
each probe, so readers never wait on the prober.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable

import structlog
from pydantic import ValidationError

from routewise.core.errors import ConfigError, ExecutorError
from routewise.core.models import (
    Executor,
    ExecutorDescriptor,
    Liveness,
    Model,
)
from routewise.executors import ExecutorAdapter, create_adapter

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RegistrySnapshot:
    """Immutable view of the currently healthy models."""

    version: int
    models: tuple[Model, ...]
    taken_at: datetime
    _index: dict[str, Model] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        index: dict[str, Model] = {}
        for model in self.models:
            current = index.get(model.id)
            # Prefer the cheapest offer, then the lexically first executor
            if current is None or (model.cost_per_million, model.executor_id) < (
                current.cost_per_million,
                current.executor_id,
            ):
                index[model.id] = model
        object.__setattr__(self, "_index", index)

    def find(self, model_id: str) -> Model | None:
        """Return the preferred healthy offer of a model, if any."""
        return self._index.get(model_id)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._index

    @property
    def model_ids(self) -> frozenset[str]:
        return frozenset(self._index)

    def __len__(self) -> int:
        return len(self._index)


@dataclass
class _Entry:
    adapter: ExecutorAdapter
    executor: Executor


class ExecutorRegistry:
    """
    Live set of executors and their models.

    Features:
    - Registration with descriptor validation
    - Periodic background probing with bounded timeouts
    - Grace period before evicting unreachable executors
    - Lock-free snapshot reads for the request path
    """

    def __init__(
        self,
        probe_interval: float = 5.0,
        probe_timeout: float = 2.0,
        eviction_grace: float = 60.0,
        adapter_factory: Callable[[ExecutorDescriptor], ExecutorAdapter] = create_adapter,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._probe_interval = probe_interval
        self._probe_timeout = probe_timeout
        self._eviction_grace = eviction_grace
        self._adapter_factory = adapter_factory
        self._clock = clock

        # Replaced wholesale on every change, never mutated in place
        self._entries: dict[str, _Entry] = {}
        self._snapshot = RegistrySnapshot(version=0, models=(), taken_at=clock())

        self._retired: list[ExecutorAdapter] = []
        self._write_lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(cls, settings: Any) -> "ExecutorRegistry":
        """Build a registry from RegistrySettings, registering its executors."""
        registry = cls(
            probe_interval=settings.probe_interval,
            probe_timeout=settings.probe_timeout,
            eviction_grace=settings.eviction_grace,
        )
        for descriptor in settings.executors:
            try:
                registry.register(descriptor)
            except ConfigError as e:
                logger.error("Skipping malformed executor", error=e.message, descriptor=descriptor)
        return registry

    # Registration

    def register(self, descriptor: ExecutorDescriptor | dict[str, Any]) -> Executor:
        """
        Add or update an executor.

        Raises:
            ConfigError: If the descriptor is malformed
        """
        if not isinstance(descriptor, ExecutorDescriptor):
            try:
                descriptor = ExecutorDescriptor.model_validate(descriptor)
            except ValidationError as e:
                bad_field = ".".join(str(p) for p in e.errors()[0]["loc"]) if e.errors() else None
                raise ConfigError(f"Malformed executor descriptor: {e}", field=bad_field) from e

        try:
            adapter = self._adapter_factory(descriptor)
        except ExecutorError as e:
            raise ConfigError(
                f"Malformed executor '{descriptor.id}': {e.message}", field="models"
            ) from e
        previous = self._entries.get(descriptor.id)

        if previous is not None:
            self._retired.append(previous.adapter)
            executor = replace(
                previous.executor,
                transport=descriptor.transport,
                capabilities=tuple(descriptor.capabilities),
            )
        else:
            executor = Executor(
                id=descriptor.id,
                transport=descriptor.transport,
                capabilities=tuple(descriptor.capabilities),
            )

        entries = dict(self._entries)
        entries[descriptor.id] = _Entry(adapter=adapter, executor=executor)
        self._entries = entries
        self._publish()

        logger.info(
            "Executor registered",
            executor=descriptor.id,
            transport=descriptor.transport.value,
            updated=previous is not None,
        )
        return executor

    def deregister(self, executor_id: str) -> bool:
        """Remove an executor. Returns False if it was not registered."""
        if executor_id not in self._entries:
            return False
        entries = dict(self._entries)
        removed = entries.pop(executor_id)
        self._entries = entries
        self._retired.append(removed.adapter)
        self._publish()
        logger.info("Executor deregistered", executor=executor_id)
        return True

    # Reads

    def snapshot(self) -> RegistrySnapshot:
        """Current immutable view of healthy models."""
        return self._snapshot

    def get_executor(self, executor_id: str) -> Executor | None:
        entry = self._entries.get(executor_id)
        return entry.executor if entry else None

    def executors(self) -> list[Executor]:
        return [entry.executor for _, entry in sorted(self._entries.items())]

    def stats(self) -> dict[str, Any]:
        executors = self.executors()
        return {
            "executors": len(executors),
            "healthy_executors": sum(1 for e in executors if e.is_healthy),
            "live_models": len(self._snapshot),
            "snapshot_version": self._snapshot.version,
            "snapshot_taken_at": self._snapshot.taken_at.isoformat(),
        }

    # Probing

    async def probe(self, executor_id: str) -> Executor | None:
        """
        Probe one executor and fold the result into the next snapshot.

        Failures only mark the executor unhealthy; they never raise.
        Returns None if the executor is not (or no longer) registered.
        """
        entry = self._entries.get(executor_id)
        if entry is None:
            return None

        models: list[Model] | None = None
        error: str | None = None
        try:
            models = await asyncio.wait_for(
                self._query(entry.adapter), timeout=self._probe_timeout
            )
        except asyncio.TimeoutError:
            error = f"probe timed out after {self._probe_timeout}s"
        except ExecutorError as e:
            error = e.message
        except Exception as e:
            logger.exception("Executor probe crashed", executor=executor_id)
            error = f"{type(e).__name__}: {e}"

        async with self._write_lock:
            current = self._entries.get(executor_id)
            if current is None or current.adapter is not entry.adapter:
                # Deregistered or replaced while probing
                return current.executor if current else None

            now = self._clock()
            if models is not None:
                executor = replace(
                    current.executor,
                    liveness=Liveness.HEALTHY,
                    last_probed=now,
                    unhealthy_since=None,
                    models=tuple(models),
                    last_error=None,
                )
            else:
                executor = self._mark_unhealthy(current.executor, now, error)
                if self._grace_expired(executor, now):
                    self._evict(executor_id, executor)
                    return None

            entries = dict(self._entries)
            entries[executor_id] = _Entry(adapter=current.adapter, executor=executor)
            self._entries = entries
            self._publish()
            return executor

    async def probe_all(self) -> None:
        """Probe every registered executor concurrently, then close retired adapters."""
        ids = list(self._entries)
        if ids:
            await asyncio.gather(*(self.probe(executor_id) for executor_id in ids))
        await self._close_retired()

    async def _close_retired(self) -> None:
        retired, self._retired = self._retired, []
        for adapter in retired:
            try:
                await adapter.close()
            except Exception:
                logger.exception("Failed to close retired adapter", executor=adapter.executor_id)

    async def _query(self, adapter: ExecutorAdapter) -> list[Model] | None:
        if not await adapter.health_check():
            raise ExecutorError("health check failed", executor_id=adapter.executor_id)
        return await adapter.list_models()

    def _mark_unhealthy(self, executor: Executor, now: datetime, error: str | None) -> Executor:
        if executor.liveness != Liveness.UNHEALTHY:
            logger.warning("Executor unhealthy", executor=executor.id, error=error)
        # Keep the last-known model list, with health cleared
        return replace(
            executor,
            liveness=Liveness.UNHEALTHY,
            last_probed=now,
            unhealthy_since=executor.unhealthy_since or now,
            models=tuple(m.model_copy(update={"healthy": False}) for m in executor.models),
            last_error=error,
        )

    def _grace_expired(self, executor: Executor, now: datetime) -> bool:
        if executor.unhealthy_since is None:
            return False
        return (now - executor.unhealthy_since).total_seconds() >= self._eviction_grace

    def _evict(self, executor_id: str, executor: Executor) -> None:
        entries = dict(self._entries)
        removed = entries.pop(executor_id)
        self._entries = entries
        self._retired.append(removed.adapter)
        self._publish()
        logger.warning(
            "Executor evicted after grace period",
            executor=executor_id,
            unhealthy_since=executor.unhealthy_since.isoformat() if executor.unhealthy_since else None,
            grace_seconds=self._eviction_grace,
        )

    def _publish(self) -> None:
        """Swap in a new snapshot built from the current entries."""
        models = tuple(
            sorted(
                (
                    model
                    for entry in self._entries.values()
                    if entry.executor.is_healthy
                    for model in entry.executor.models
                    if model.healthy
                ),
                key=lambda m: (m.id, m.executor_id),
            )
        )
        self._snapshot = RegistrySnapshot(
            version=self._snapshot.version + 1,
            models=models,
            taken_at=self._clock(),
        )

    # Background loop

    async def _run(self) -> None:
        while True:
            try:
                await self.probe_all()
            except Exception:
                logger.exception("Probe cycle failed")
            await asyncio.sleep(self._probe_interval)

    async def start(self) -> None:
        """Start periodic probing in the background."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="routewise-registry-probe")
            logger.info("Registry probing started", interval=self._probe_interval)

    async def stop(self) -> None:
        """Stop probing and release adapter resources."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        await self._close_retired()
        for entry in self._entries.values():
            await entry.adapter.close()

    async def __aenter__(self) -> "ExecutorRegistry":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()
