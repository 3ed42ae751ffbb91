"""
Decision log.

Append-only record of routing decisions for offline analysis and
retraining. append() never blocks the caller: records go into a bounded
in-memory queue that a background task drains into a sink. When the queue
is full, or the sink fails, records are dropped and counted rather than
retried inline.

Outcomes are appended as separate entries keyed by decision id, so a
written record is never modified. Each decision accepts exactly one
outcome.
"""

from __future__ import annotations

import asyncio
import json
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from pathlib import Path
from typing import Any, Iterator

import structlog

from routewise.core.errors import DecisionNotFound, OutcomeAlreadyRecorded
from routewise.core.models import DecisionRecord, Outcome

logger = structlog.get_logger()

ENTRY_DECISION = "decision"
ENTRY_OUTCOME = "outcome"


def _entry(kind: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {"kind": kind, **payload}


class DecisionSink(ABC):
    """Destination for serialized log entries."""

    @abstractmethod
    async def write(self, entries: list[dict[str, Any]]) -> None:
        """Persist a batch of entries. Each entry must be written whole."""
        ...

    async def close(self) -> None:
        return None


class InMemoryDecisionSink(DecisionSink):
    """Keeps entries in a list. For tests and single-process tooling."""

    def __init__(self) -> None:
        self.entries: list[dict[str, Any]] = []

    async def write(self, entries: list[dict[str, Any]]) -> None:
        self.entries.extend(entries)

    def decisions(self) -> list[dict[str, Any]]:
        return [e for e in self.entries if e["kind"] == ENTRY_DECISION]

    def outcomes(self) -> list[dict[str, Any]]:
        return [e for e in self.entries if e["kind"] == ENTRY_OUTCOME]


class JSONLDecisionSink(DecisionSink):
    """
    Appends one JSON object per line to a file.

    Writes happen in a worker thread; a lock keeps each batch contiguous
    so no line is ever interleaved with another.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _append(self, lines: str) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(lines)
                f.flush()

    async def write(self, entries: list[dict[str, Any]]) -> None:
        lines = "".join(json.dumps(e, default=str) + "\n" for e in entries)
        await asyncio.to_thread(self._append, lines)


class DecisionLog:
    """
    Fire-and-forget decision recorder.

    Usage:
        log = DecisionLog(JSONLDecisionSink("decisions.jsonl"))
        await log.start()
        log.append(record)
        log.record_outcome(record.decision_id, Outcome(success=True))
        await log.close()
    """

    BATCH_SIZE = 256

    def __init__(
        self,
        sink: DecisionSink | None = None,
        max_buffer: int = 10_000,
        max_tracked_decisions: int = 100_000,
        enabled: bool = True,
    ):
        self._sink = sink or InMemoryDecisionSink()
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=max_buffer)
        self._enabled = enabled
        self._max_tracked = max_tracked_decisions
        # decision id -> whether an outcome was recorded
        self._tracked: OrderedDict[str, bool] = OrderedDict()
        self._task: asyncio.Task[None] | None = None
        self.dropped = 0
        self.written = 0

    @classmethod
    def from_settings(cls, settings: Any) -> "DecisionLog":
        sink: DecisionSink = JSONLDecisionSink(settings.path) if settings.path else InMemoryDecisionSink()
        return cls(
            sink=sink,
            max_buffer=settings.max_buffer,
            max_tracked_decisions=settings.max_tracked_decisions,
            enabled=settings.enabled,
        )

    @property
    def sink(self) -> DecisionSink:
        return self._sink

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def append(self, record: DecisionRecord) -> bool:
        """
        Queue a decision record. Never blocks.

        Returns False if the record was dropped.
        """
        if not self._enabled:
            return False
        self._track(record.decision_id)
        # Serialized up front so the queued entry is complete and immutable
        return self._enqueue(_entry(ENTRY_DECISION, record.to_dict()))

    def record_outcome(self, decision_id: str, outcome: Outcome) -> bool:
        """
        Queue the outcome of a decision. Never blocks.

        Raises:
            DecisionNotFound: If the decision is unknown to this log
            OutcomeAlreadyRecorded: If an outcome was already recorded
        """
        if decision_id not in self._tracked:
            raise DecisionNotFound(decision_id)
        if self._tracked[decision_id]:
            raise OutcomeAlreadyRecorded(decision_id)
        self._tracked[decision_id] = True

        payload = {"decision_id": decision_id, **outcome.model_dump(mode="json")}
        return self._enqueue(_entry(ENTRY_OUTCOME, payload))

    def _track(self, decision_id: str) -> None:
        self._tracked[decision_id] = False
        while len(self._tracked) > self._max_tracked:
            self._tracked.popitem(last=False)

    def _enqueue(self, entry: dict[str, Any]) -> bool:
        try:
            self._queue.put_nowait(entry)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Decision log buffer full, dropping entry",
                kind=entry["kind"],
                decision_id=entry.get("decision_id"),
                dropped=self.dropped,
            )
            return False
        return True

    async def _drain_once(self) -> int:
        batch = [await self._queue.get()]
        while len(batch) < self.BATCH_SIZE and not self._queue.empty():
            batch.append(self._queue.get_nowait())
        try:
            await self._sink.write(batch)
            self.written += len(batch)
        except Exception as e:
            self.dropped += len(batch)
            logger.warning(
                "Decision sink write failed, dropping batch",
                error=str(e),
                batch=len(batch),
                dropped=self.dropped,
            )
        finally:
            for _ in batch:
                self._queue.task_done()
        return len(batch)

    async def _run(self) -> None:
        while True:
            await self._drain_once()

    async def start(self) -> None:
        """Start draining in the background."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="routewise-decision-log")

    async def flush(self) -> None:
        """Write everything queued so far."""
        if self._task is not None and not self._task.done():
            await self._queue.join()
            return
        while not self._queue.empty():
            await self._drain_once()

    async def close(self) -> None:
        """Flush, stop the drain task, and close the sink."""
        await self.flush()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self._sink.close()


def read_decisions(path: str | Path) -> Iterator[dict[str, Any]]:
    """
    Replay a JSONL decision log, merging each outcome into its decision.

    Decisions are yielded in file order with an "outcome" key (None if no
    outcome was recorded). Unparseable lines are skipped.
    """
    decisions: dict[str, dict[str, Any]] = {}
    order: list[str] = []
    with open(path, encoding="utf-8") as f:
        for line_number, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Skipping unreadable decision log line", path=str(path), line=line_number)
                continue

            kind = entry.pop("kind", ENTRY_DECISION)
            decision_id = entry.get("decision_id")
            if kind == ENTRY_DECISION and decision_id:
                entry["outcome"] = None
                decisions[decision_id] = entry
                order.append(decision_id)
            elif kind == ENTRY_OUTCOME and decision_id in decisions:
                if decisions[decision_id]["outcome"] is None:
                    entry.pop("decision_id")
                    decisions[decision_id]["outcome"] = entry

    for decision_id in order:
        yield decisions[decision_id]
