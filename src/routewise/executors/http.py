"""
Executor adapter for HTTP backends.

Speaks the OpenAI-compatible model listing (`GET /v1/models`) plus a
plain `GET /health` liveness endpoint.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from routewise.core.errors import ExecutorError
from routewise.core.models import ExecutorDescriptor, Model, TransportKind
from routewise.executors.base import ExecutorAdapter

logger = structlog.get_logger()


class HTTPExecutorAdapter(ExecutorAdapter):
    """Adapter for executors reachable over HTTP."""

    transport = TransportKind.HTTP

    HEALTH_PATH = "/health"
    MODELS_PATH = "/v1/models"

    def __init__(
        self,
        descriptor: ExecutorDescriptor,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(descriptor)
        self._base_url = (descriptor.base_url or "").rstrip("/")
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=self.descriptor.headers,
                timeout=self.descriptor.timeout or 10.0,
            )
        return self._client

    async def health_check(self) -> bool:
        client = await self._get_client()
        try:
            response = await client.get(f"{self._base_url}{self.HEALTH_PATH}")
        except httpx.HTTPError as e:
            logger.debug("Health check failed", executor=self.executor_id, error=str(e))
            return False
        return response.status_code == 200

    async def list_models(self) -> list[Model]:
        client = await self._get_client()
        try:
            response = await client.get(f"{self._base_url}{self.MODELS_PATH}")
            response.raise_for_status()
            payload: Any = response.json()
        except httpx.HTTPError as e:
            raise ExecutorError(
                f"Model listing failed for '{self.executor_id}': {e}",
                executor_id=self.executor_id,
            ) from e
        except ValueError as e:
            raise ExecutorError(
                f"Model listing from '{self.executor_id}' is not JSON",
                executor_id=self.executor_id,
            ) from e

        if isinstance(payload, dict):
            payload = payload.get("data", payload.get("models"))
        if not isinstance(payload, list):
            raise ExecutorError(
                f"Unexpected model listing shape from '{self.executor_id}'",
                executor_id=self.executor_id,
            )
        return self._build_models(payload)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
