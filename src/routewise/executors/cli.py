"""
Executor adapter for CLI backends.

The descriptor supplies two argv lists: `health_command` (exit status 0
means healthy) and `list_command` (prints a JSON list of models on stdout).
"""

from __future__ import annotations

import asyncio
import json

import structlog

from routewise.core.errors import ExecutorError
from routewise.core.models import Model, TransportKind
from routewise.executors.base import ExecutorAdapter

logger = structlog.get_logger()


class CLIExecutorAdapter(ExecutorAdapter):
    """Adapter for executors driven through a local command line tool."""

    transport = TransportKind.CLI

    async def _run(self, argv: list[str]) -> tuple[int, bytes, bytes]:
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ExecutorError(
                f"Cannot start '{argv[0]}' for executor '{self.executor_id}': {e}",
                executor_id=self.executor_id,
            ) from e

        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            # Probe timeouts cancel us; do not leave the child running
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise
        return process.returncode or 0, stdout, stderr

    async def health_check(self) -> bool:
        argv = self.descriptor.health_command or self.descriptor.list_command
        try:
            returncode, _, stderr = await self._run(argv)
        except ExecutorError as e:
            logger.debug("Health check failed", executor=self.executor_id, error=str(e))
            return False
        if returncode != 0:
            logger.debug(
                "Health command exited non-zero",
                executor=self.executor_id,
                returncode=returncode,
                stderr=stderr.decode(errors="replace")[:200],
            )
        return returncode == 0

    async def list_models(self) -> list[Model]:
        returncode, stdout, stderr = await self._run(self.descriptor.list_command)
        if returncode != 0:
            raise ExecutorError(
                f"List command for '{self.executor_id}' exited {returncode}: "
                f"{stderr.decode(errors='replace')[:200]}",
                executor_id=self.executor_id,
            )
        try:
            payload = json.loads(stdout.decode() or "[]")
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ExecutorError(
                f"List command for '{self.executor_id}' did not print JSON",
                executor_id=self.executor_id,
            ) from e

        if isinstance(payload, dict):
            payload = payload.get("models", payload.get("data"))
        if not isinstance(payload, list):
            raise ExecutorError(
                f"Unexpected model listing shape from '{self.executor_id}'",
                executor_id=self.executor_id,
            )
        return self._build_models(payload)
