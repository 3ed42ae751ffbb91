"""
Policy backends.

A backend is the authoritative store of operator-managed policies. The
PolicyStore fronts one with an in-memory cache; backends are only touched
on cache refresh and by operator CRUD.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterable

import httpx
import structlog
from pydantic import ValidationError

from routewise.core.errors import ConfigError, PolicyUnavailable
from routewise.core.models import Policy
from routewise.utils.retry import RetryConfig, call_with_retry

logger = structlog.get_logger()


def parse_policies(raw: Any) -> list[Policy]:
    """
    Validate a policy document.

    Accepts a list of policy mappings or {"policies": [...]}.

    Raises:
        ConfigError: If any entry is malformed or a (domain, action) repeats
    """
    if isinstance(raw, dict):
        raw = raw.get("policies", [])
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ConfigError("Policy document must be a list of policies", field="policies")

    policies: list[Policy] = []
    seen: set[tuple[str, str]] = set()
    for i, entry in enumerate(raw):
        if isinstance(entry, Policy):
            policy = entry
        else:
            try:
                policy = Policy.model_validate(entry)
            except ValidationError as e:
                raise ConfigError(f"Malformed policy #{i}: {e}", field=f"policies.{i}") from e
        if policy.key in seen:
            raise ConfigError(
                f"Duplicate policy for {policy.domain}/{policy.action}", field=f"policies.{i}"
            )
        seen.add(policy.key)
        policies.append(policy)
    return policies


class PolicyBackend(ABC):
    """Authoritative policy storage."""

    @abstractmethod
    async def load_all(self) -> list[Policy]:
        """
        Load every policy.

        Raises:
            PolicyUnavailable: If the store cannot be reached
        """
        ...

    @abstractmethod
    async def upsert(self, policy: Policy) -> None:
        """Create or replace the policy for policy.key."""
        ...

    @abstractmethod
    async def delete(self, domain: str, action: str) -> bool:
        """Delete a policy. Returns False if none existed."""
        ...

    async def close(self) -> None:
        return None


class InMemoryPolicyBackend(PolicyBackend):
    """Policies held in process, from inline configuration or tests."""

    def __init__(self, policies: Iterable[Policy | dict[str, Any]] | None = None):
        self._policies: dict[tuple[str, str], Policy] = {
            p.key: p for p in parse_policies(list(policies or []))
        }

    async def load_all(self) -> list[Policy]:
        return list(self._policies.values())

    async def upsert(self, policy: Policy) -> None:
        self._policies[policy.key] = policy

    async def delete(self, domain: str, action: str) -> bool:
        return self._policies.pop((domain.lower(), action.lower()), None) is not None


class FilePolicyBackend(PolicyBackend):
    """
    Policies stored in a YAML or JSON document.

    The file is re-read on every load so operators can edit it in place.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _read(self) -> list[Policy]:
        try:
            text = self.path.read_text()
        except OSError as e:
            raise PolicyUnavailable(f"Cannot read policy file {self.path}: {e}") from e

        import yaml

        try:
            if self.path.suffix.lower() == ".json":
                data = json.loads(text) if text.strip() else []
            else:
                data = yaml.safe_load(text)
        except (ValueError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot parse policy file {self.path}: {e}", field="policies") from e
        return parse_policies(data)

    def _write(self, policies: list[Policy]) -> None:
        document = {"policies": [p.to_dict() for p in policies]}
        if self.path.suffix.lower() == ".json":
            text = json.dumps(document, indent=2)
        else:
            import yaml

            text = yaml.safe_dump(document, sort_keys=False)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(text)
        tmp.replace(self.path)

    async def load_all(self) -> list[Policy]:
        return await asyncio.to_thread(self._read)

    async def upsert(self, policy: Policy) -> None:
        policies = {p.key: p for p in await self._load_for_write()}
        policies[policy.key] = policy
        await asyncio.to_thread(self._write, list(policies.values()))

    async def delete(self, domain: str, action: str) -> bool:
        policies = {p.key: p for p in await self._load_for_write()}
        removed = policies.pop((domain.lower(), action.lower()), None)
        if removed is not None:
            await asyncio.to_thread(self._write, list(policies.values()))
        return removed is not None

    async def _load_for_write(self) -> list[Policy]:
        if not self.path.exists():
            return []
        return await self.load_all()


class HTTPPolicyBackend(PolicyBackend):
    """
    Policies served by a remote policy service.

    GET {base_url}/policies lists policies; PUT and DELETE on
    {base_url}/policies/{domain}/{action} manage them. CRUD calls retry
    with backoff; loads do not, since the cache already bounds them.
    """

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
        retry: RetryConfig | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._headers = headers or {}
        self._client = client
        self._owns_client = client is None
        self._retry = retry or RetryConfig()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(headers=self._headers, timeout=10.0)
        return self._client

    async def load_all(self) -> list[Policy]:
        client = await self._get_client()
        try:
            response = await client.get(f"{self._base_url}/policies")
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise PolicyUnavailable(f"Policy service unavailable: {e}") from e
        except ValueError as e:
            raise PolicyUnavailable("Policy service returned invalid JSON") from e
        return parse_policies(data)

    async def upsert(self, policy: Policy) -> None:
        async def _put() -> None:
            client = await self._get_client()
            response = await client.put(
                f"{self._base_url}/policies/{policy.domain}/{policy.action}",
                json=policy.to_dict(),
            )
            response.raise_for_status()

        await call_with_retry(_put, self._retry, "policy.upsert")

    async def delete(self, domain: str, action: str) -> bool:
        async def _delete() -> bool:
            client = await self._get_client()
            response = await client.delete(f"{self._base_url}/policies/{domain}/{action}")
            if response.status_code == 404:
                return False
            response.raise_for_status()
            return True

        return await call_with_retry(_delete, self._retry, "policy.delete")

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
