"""Tests for utility modules."""

import pytest
import httpx
import structlog

from routewise.utils.logging import PROMPT_PREVIEW_CHARS, RequestLogger, setup_logging, shorten_prompts
from routewise.utils.metrics import RouterMetrics
from routewise.utils.retry import RetryConfig, call_with_retry, calculate_delay, with_retry


class TestRouterMetrics:
    """Tests for RouterMetrics class."""

    def test_record_decision(self):
        metrics = RouterMetrics()
        metrics.record_decision(model="claude", score=0.5, latency_ms=2.0)

        summary = metrics.get_summary()
        assert summary["decisions"] == 1
        assert summary["models"]["claude"]["selections"] == 1
        assert summary["models"]["claude"]["avg_score"] == 0.5

    def test_fallback_selection_counted(self):
        metrics = RouterMetrics()
        metrics.record_decision("claude", 0.5, 1.0)
        metrics.record_decision("gpt-4", 0.4, 1.0, attempt=2)

        summary = metrics.get_summary()
        assert summary["counters"]["fallback_selections"] == 1
        assert summary["models"]["gpt-4"]["fallback_selections"] == 1

    def test_classification_fallback_counted(self):
        metrics = RouterMetrics()
        metrics.record_decision("claude", 0.5, 1.0, classification_fallback=True)

        assert metrics.get_summary()["counters"]["classification_fallbacks"] == 1

    def test_record_failure(self):
        metrics = RouterMetrics()
        metrics.record_failure("no_eligible_candidates")
        metrics.record_failure("cancelled", latency_ms=50.0)

        summary = metrics.get_summary()
        assert summary["decisions"] == 0
        assert summary["counters"]["no_eligible_candidates"] == 1
        assert summary["counters"]["cancelled"] == 1

    def test_average_latency(self):
        metrics = RouterMetrics()
        metrics.record_decision("a", 0.1, 10.0)
        metrics.record_decision("a", 0.1, 30.0)

        assert metrics.get_summary()["avg_latency_ms"] == 20.0

    def test_recent_events(self):
        metrics = RouterMetrics()
        for i in range(5):
            metrics.record_decision("claude", 0.5, float(i))

        recent = metrics.get_recent(limit=3)
        assert len(recent) == 3
        assert recent[-1]["latency_ms"] == 4.0

    def test_history_bounded(self):
        metrics = RouterMetrics(max_history=10)
        for _ in range(25):
            metrics.record_decision("claude", 0.5, 1.0)

        assert len(metrics.get_recent(limit=100)) == 10

    def test_reset(self):
        metrics = RouterMetrics()
        metrics.record_decision("claude", 0.5, 1.0)
        metrics.reset()

        summary = metrics.get_summary()
        assert summary["decisions"] == 0
        assert summary["models"] == {}


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_default_values(self):
        config = RetryConfig()
        assert config.max_retries == 3
        assert config.base_delay == 0.5
        assert config.exponential_base == 2.0
        assert config.jitter is True
        assert httpx.TransportError in config.retryable_exceptions


class TestCalculateDelay:
    """Tests for delay calculation."""

    def test_exponential_backoff(self):
        config = RetryConfig(base_delay=1.0, exponential_base=2.0, jitter=False)

        assert calculate_delay(0, config) == 1.0
        assert calculate_delay(1, config) == 2.0
        assert calculate_delay(2, config) == 4.0

    def test_max_delay_cap(self):
        config = RetryConfig(base_delay=10.0, max_delay=30.0, jitter=False)

        assert calculate_delay(5, config) == 30.0

    def test_jitter_stays_in_range(self):
        config = RetryConfig(base_delay=1.0, jitter=True)

        for _ in range(20):
            assert 1.0 <= calculate_delay(1, config) <= 3.0


class TestWithRetry:
    """Tests for with_retry decorator."""

    @pytest.mark.asyncio
    async def test_success_on_first_try(self):
        call_count = 0

        @with_retry(RetryConfig(max_retries=3))
        async def successful_func():
            nonlocal call_count
            call_count += 1
            return "success"

        assert await successful_func() == "success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_retry_on_transport_error(self):
        call_count = 0

        @with_retry(RetryConfig(max_retries=3, base_delay=0.01))
        async def flaky_func():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise httpx.ConnectError("connection refused")
            return "success"

        assert await flaky_func() == "success"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_max_retries_exceeded(self):
        @with_retry(RetryConfig(max_retries=2, base_delay=0.01))
        async def always_fails():
            raise httpx.ConnectError("connection refused")

        with pytest.raises(httpx.ConnectError):
            await always_fails()

    @pytest.mark.asyncio
    async def test_non_retryable_exception(self):
        call_count = 0

        @with_retry(RetryConfig(max_retries=3))
        async def raises_value_error():
            nonlocal call_count
            call_count += 1
            raise ValueError("Not retryable")

        with pytest.raises(ValueError):
            await raises_value_error()

        assert call_count == 1

    @pytest.mark.asyncio
    async def test_retries_service_unavailable(self):
        request = httpx.Request("PUT", "http://policies.test/policies/a/b")
        statuses = [503, 200]

        async def put():
            response = httpx.Response(statuses.pop(0), request=request)
            response.raise_for_status()
            return response.status_code

        config = RetryConfig(max_retries=2, base_delay=0.001)
        assert await call_with_retry(put, config, "policy.upsert") == 200
        assert statuses == []

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        request = httpx.Request("PUT", "http://policies.test/policies/a/b")
        calls = 0

        async def put():
            nonlocal calls
            calls += 1
            httpx.Response(400, request=request).raise_for_status()

        with pytest.raises(httpx.HTTPStatusError):
            await call_with_retry(put, RetryConfig(base_delay=0.001), "policy.upsert")
        assert calls == 1


class TestRequestLogger:
    """Tests for RequestLogger."""

    def test_binds_and_restores_context(self):
        setup_logging(level="DEBUG", json_format=True)
        logger = structlog.get_logger()

        with RequestLogger(logger, "route", request_id="req-1"):
            assert structlog.contextvars.get_contextvars()["request_id"] == "req-1"

        assert "request_id" not in structlog.contextvars.get_contextvars()

    def test_context_restored_after_error(self):
        logger = structlog.get_logger()

        with pytest.raises(RuntimeError):
            with RequestLogger(logger, "route", request_id="req-2"):
                raise RuntimeError("boom")

        assert "request_id" not in structlog.contextvars.get_contextvars()

    def test_elapsed(self):
        logger = structlog.get_logger()
        with RequestLogger(logger, "select") as request_logger:
            assert request_logger.elapsed_ms >= 0.0


class TestShortenPrompts:
    """Tests for the prompt-shortening processor."""

    def test_long_prompt_truncated(self):
        event = shorten_prompts(None, "info", {"event": "x", "prompt": "a" * 500})
        assert event["prompt"].startswith("a" * PROMPT_PREVIEW_CHARS)
        assert event["prompt"].endswith("(500 chars)")

    def test_short_prompt_untouched(self):
        event = shorten_prompts(None, "info", {"event": "x", "prompt": "hello"})
        assert event["prompt"] == "hello"
