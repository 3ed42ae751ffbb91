"""Tests for the decision log."""

import asyncio
import json
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from routewise.core.errors import DecisionNotFound, OutcomeAlreadyRecorded
from routewise.core.models import (
    CandidateScore,
    Classification,
    DecisionRecord,
    Outcome,
    QueryFeatures,
)
from routewise.observability import (
    DecisionLog,
    DecisionSink,
    InMemoryDecisionSink,
    JSONLDecisionSink,
    read_decisions,
)


def record(decision_id: str = "dec-1", attempt: int = 1) -> DecisionRecord:
    selected = CandidateScore(
        model_id="claude",
        executor_id="anthropic",
        probability=0.8,
        score=0.6,
        cost_per_million=3.0,
        policy_rank=0,
    )
    now = datetime.now(timezone.utc)
    return DecisionRecord(
        decision_id=decision_id,
        request_id="req-1",
        prompt="Write a sort function",
        context_turns=0,
        classification=Classification("programming", "code-generation", 0.9),
        features=QueryFeatures(
            token_estimate=6,
            complexity=0.1,
            has_code=False,
            code_lines=0,
            domain_keywords=frozenset({"programming"}),
            needs_tools=False,
            conversation_depth=0,
            ambiguity=0.2,
        ),
        candidates=(selected,),
        selected_model="claude",
        excluded=frozenset(),
        attempt=attempt,
        started_at=now,
        decided_at=now,
        checkpoint_version="v1",
    )


class FailingSink(DecisionSink):
    def __init__(self):
        self.calls = 0

    async def write(self, entries):
        self.calls += 1
        raise OSError("disk full")


class BlockingSink(InMemoryDecisionSink):
    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def write(self, entries):
        await self.release.wait()
        await super().write(entries)


class TestDecisionLog:
    """Tests for DecisionLog."""

    @pytest.mark.asyncio
    async def test_append_and_flush(self):
        log = DecisionLog()
        assert log.append(record()) is True
        assert log.pending == 1

        await log.flush()

        entries = log.sink.decisions()
        assert len(entries) == 1
        assert entries[0]["decision_id"] == "dec-1"
        assert entries[0]["classification"]["domain"] == "programming"
        assert entries[0]["checkpoint_version"] == "v1"
        assert log.written == 1

    @pytest.mark.asyncio
    async def test_background_drain(self):
        log = DecisionLog()
        await log.start()
        try:
            for i in range(5):
                log.append(record(f"dec-{i}"))
            await log.flush()
            assert [e["decision_id"] for e in log.sink.decisions()] == [f"dec-{i}" for i in range(5)]
        finally:
            await log.close()

    @pytest.mark.asyncio
    async def test_full_buffer_drops_and_counts(self):
        log = DecisionLog(max_buffer=2)
        results = [log.append(record(f"dec-{i}")) for i in range(4)]

        assert results == [True, True, False, False]
        assert log.dropped == 2
        await log.flush()
        assert len(log.sink.decisions()) == 2

    @pytest.mark.asyncio
    async def test_append_does_not_wait_for_slow_sink(self):
        sink = BlockingSink()
        log = DecisionLog(sink=sink)
        await log.start()

        log.append(record("dec-a"))
        await asyncio.sleep(0)
        # Sink is blocked; appends still return immediately
        assert log.append(record("dec-b")) is True

        sink.release.set()
        await log.close()
        assert len(sink.decisions()) == 2

    @pytest.mark.asyncio
    async def test_sink_failure_drops_batch(self):
        sink = FailingSink()
        log = DecisionLog(sink=sink)
        log.append(record("dec-1"))
        log.append(record("dec-2"))

        await log.flush()

        assert sink.calls == 1
        assert log.dropped == 2
        assert log.written == 0
        assert log.pending == 0

    @pytest.mark.asyncio
    async def test_outcome_recorded_once(self):
        log = DecisionLog()
        log.append(record())

        assert log.record_outcome("dec-1", Outcome(success=True, latency_ms=120.0)) is True
        with pytest.raises(OutcomeAlreadyRecorded):
            log.record_outcome("dec-1", Outcome(success=False))

        await log.flush()
        outcomes = log.sink.outcomes()
        assert len(outcomes) == 1
        assert outcomes[0]["decision_id"] == "dec-1"
        assert outcomes[0]["success"] is True
        # The decision entry itself is never rewritten
        assert "success" not in log.sink.decisions()[0]

    def test_outcome_for_unknown_decision(self):
        log = DecisionLog()
        with pytest.raises(DecisionNotFound):
            log.record_outcome("dec-missing", Outcome(success=True))

    def test_tracking_is_bounded(self):
        log = DecisionLog(max_tracked_decisions=2)
        for i in range(3):
            log.append(record(f"dec-{i}"))

        with pytest.raises(DecisionNotFound):
            log.record_outcome("dec-0", Outcome(success=True))
        assert log.record_outcome("dec-2", Outcome(success=True)) is True

    def test_disabled(self):
        log = DecisionLog(enabled=False)
        assert log.append(record()) is False
        assert log.pending == 0

    def test_from_settings(self, tmp_path):
        settings = SimpleNamespace(
            path=str(tmp_path / "log.jsonl"),
            max_buffer=10,
            max_tracked_decisions=10,
            enabled=True,
        )
        log = DecisionLog.from_settings(settings)
        assert isinstance(log.sink, JSONLDecisionSink)

        settings.path = None
        assert isinstance(DecisionLog.from_settings(settings).sink, InMemoryDecisionSink)


class TestJSONLDecisionSink:
    """Tests for the JSONL sink and replay."""

    @pytest.mark.asyncio
    async def test_write_and_read_back(self, tmp_path):
        path = tmp_path / "logs" / "decisions.jsonl"
        log = DecisionLog(sink=JSONLDecisionSink(path))
        log.append(record("dec-1"))
        log.append(record("dec-2", attempt=2))
        log.record_outcome("dec-2", Outcome(success=False, error="rate limited"))
        await log.close()

        lines = path.read_text().splitlines()
        assert len(lines) == 3
        assert all(json.loads(line)["kind"] in ("decision", "outcome") for line in lines)

        replayed = list(read_decisions(path))
        assert [d["decision_id"] for d in replayed] == ["dec-1", "dec-2"]
        assert replayed[0]["outcome"] is None
        assert replayed[1]["outcome"]["success"] is False
        assert replayed[1]["outcome"]["error"] == "rate limited"
        assert replayed[1]["attempt"] == 2

    def test_read_skips_unreadable_lines(self, tmp_path):
        path = tmp_path / "decisions.jsonl"
        path.write_text(
            json.dumps({"kind": "decision", "decision_id": "dec-1", "prompt": "hi"}) + "\n"
            "{truncated\n"
            "\n"
            + json.dumps({"kind": "outcome", "decision_id": "dec-1", "success": True}) + "\n"
            + json.dumps({"kind": "outcome", "decision_id": "dec-1", "success": False}) + "\n"
        )

        replayed = list(read_decisions(path))
        assert len(replayed) == 1
        assert replayed[0]["outcome"] == {"success": True}
