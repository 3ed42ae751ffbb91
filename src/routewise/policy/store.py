"""
Policy store.

Read-mostly mapping from (domain, action) to an ordered candidate list,
backed by a PolicyBackend and fronted by a bounded-TTL in-memory cache.
The cached table is an immutable value replaced as a whole, so readers
holding a fresh table never wait on a refresh.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

from routewise.core.errors import ConfigError, PolicyUnavailable
from routewise.core.models import WILDCARD, Policy
from routewise.policy.backends import (
    FilePolicyBackend,
    HTTPPolicyBackend,
    InMemoryPolicyBackend,
    PolicyBackend,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class PolicyTable:
    """An immutable, fully loaded set of policies."""

    policies: dict[tuple[str, str], Policy]
    loaded_at: float
    version: int = 0

    def match(self, domain: str, action: str) -> Policy | None:
        """Most specific policy: exact, then domain wildcard, then global default."""
        domain = domain.lower()
        action = action.lower()
        for key in ((domain, action), (domain, WILDCARD), (WILDCARD, WILDCARD)):
            policy = self.policies.get(key)
            if policy is not None:
                return policy
        return None


@dataclass
class _RefreshState:
    task: asyncio.Task[PolicyTable] | None = None
    next_refresh: float = 0.0
    failures: int = field(default=0)


class PolicyStore:
    """
    Cached policy lookups.

    Features:
    - Most-specific-match resolution with "*" wildcards
    - TTL cache with single-flight refresh
    - Stale serving when the backend is unavailable
    - Write-through CRUD for operator tooling
    """

    STALE_RETRY_SECONDS = 5.0

    def __init__(
        self,
        backend: PolicyBackend,
        cache_ttl: float = 30.0,
        fetch_timeout: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._backend = backend
        self._cache_ttl = cache_ttl
        self._fetch_timeout = fetch_timeout
        self._clock = clock
        self._table: PolicyTable | None = None
        self._refresh = _RefreshState()

    @classmethod
    def from_settings(cls, settings: Any) -> "PolicyStore":
        backend: PolicyBackend
        if settings.is_remote:
            backend = HTTPPolicyBackend(settings.source)
        elif settings.source:
            backend = FilePolicyBackend(settings.source)
        else:
            backend = InMemoryPolicyBackend(settings.policies)
        return cls(
            backend=backend,
            cache_ttl=settings.cache_ttl,
            fetch_timeout=settings.fetch_timeout,
        )

    @property
    def backend(self) -> PolicyBackend:
        return self._backend

    async def get_candidates(self, domain: str, action: str) -> list[str]:
        """
        Ordered candidate model ids for (domain, action).

        Raises:
            PolicyUnavailable: If nothing was ever loaded and the backend is down
        """
        policy = await self.match(domain, action)
        return list(policy.models) if policy else []

    async def match(self, domain: str, action: str) -> Policy | None:
        """The most specific policy for (domain, action), or None."""
        table = await self._current_table()
        return table.match(domain, action)

    async def list_policies(self) -> list[Policy]:
        table = await self._current_table()
        return sorted(table.policies.values(), key=lambda p: (-p.priority, p.domain, p.action))

    def invalidate(self) -> None:
        """Force a refetch on the next lookup. The stale table stays as a fallback."""
        self._refresh.next_refresh = 0.0

    async def upsert(self, policy: Policy | dict[str, Any]) -> Policy:
        if not isinstance(policy, Policy):
            try:
                policy = Policy.model_validate(policy)
            except ValueError as e:
                raise ConfigError(f"Malformed policy: {e}", field="policy") from e
        await self._backend.upsert(policy)
        self.invalidate()
        logger.info("Policy saved", domain=policy.domain, action=policy.action, models=list(policy.models))
        return policy

    async def delete(self, domain: str, action: str) -> bool:
        removed = await self._backend.delete(domain, action)
        self.invalidate()
        if removed:
            logger.info("Policy deleted", domain=domain, action=action)
        return removed

    async def close(self) -> None:
        await self._backend.close()

    async def _current_table(self) -> PolicyTable:
        table = self._table
        if table is not None and self._clock() < self._refresh.next_refresh:
            return table

        if self._refresh.task is None or self._refresh.task.done():
            self._refresh.task = asyncio.create_task(self._load())
        # Shielded so one caller's cancellation does not abort the shared fetch
        return await asyncio.shield(self._refresh.task)

    async def _load(self) -> PolicyTable:
        try:
            policies = await asyncio.wait_for(self._backend.load_all(), timeout=self._fetch_timeout)
        except asyncio.TimeoutError:
            return self._serve_stale(f"policy fetch timed out after {self._fetch_timeout}s")
        except (PolicyUnavailable, ConfigError) as e:
            return self._serve_stale(e.message)
        except Exception as e:
            return self._serve_stale(f"{type(e).__name__}: {e}")

        now = self._clock()
        version = self._table.version + 1 if self._table else 1
        table = PolicyTable(
            policies={p.key: p for p in policies},
            loaded_at=now,
            version=version,
        )
        self._table = table
        self._refresh.next_refresh = now + self._cache_ttl
        self._refresh.failures = 0
        logger.debug("Policies loaded", count=len(policies), version=version)
        return table

    def _serve_stale(self, reason: str) -> PolicyTable:
        self._refresh.failures += 1
        if self._table is None:
            logger.error("Policy store unavailable with no cached policies", reason=reason)
            raise PolicyUnavailable(f"Policy store unavailable: {reason}")

        # Back off before trying the backend again
        self._refresh.next_refresh = self._clock() + min(self._cache_ttl, self.STALE_RETRY_SECONDS)
        logger.warning(
            "Serving stale policies",
            reason=reason,
            version=self._table.version,
            failures=self._refresh.failures,
        )
        return self._table
