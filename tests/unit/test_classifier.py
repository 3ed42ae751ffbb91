"""Tests for task classification."""

import asyncio
import json
from types import SimpleNamespace

import httpx
import pytest

from routewise.core.errors import ClassificationError, ClassificationTimeout
from routewise.routing.classifier import (
    ClassifierBackend,
    ClassifierResponse,
    HeuristicClassifierBackend,
    HTTPClassifierBackend,
    TaskClassifier,
)


class StubBackend(ClassifierBackend):
    def __init__(self, result=None, delay: float = 0.0):
        self.result = result
        self.delay = delay
        self.calls = 0

    async def classify(self, prompt, context):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.result


class RaisingBackend(ClassifierBackend):
    def __init__(self, error: BaseException):
        self.error = error

    async def classify(self, prompt, context):
        raise self.error


class TestHeuristicClassifierBackend:
    """Tests for the local keyword classifier."""

    def setup_method(self):
        self.backend = HeuristicClassifierBackend()

    @pytest.mark.asyncio
    async def test_code_generation(self):
        result = await self.backend.classify("Write a Python function to sort a list", [])
        assert (result.domain, result.action) == ("programming", "code-generation")
        assert result.confidence > 0.5

    @pytest.mark.asyncio
    async def test_debugging(self):
        result = await self.backend.classify("Why does my code throw KeyError: 'x'?", [])
        assert (result.domain, result.action) == ("programming", "debugging")

    @pytest.mark.asyncio
    async def test_translation(self):
        result = await self.backend.classify("Translate this paragraph into French", [])
        assert (result.domain, result.action) == ("language", "translation")

    @pytest.mark.asyncio
    async def test_greeting(self):
        result = await self.backend.classify("hello there", [])
        assert (result.domain, result.action) == ("general", "conversation")

    @pytest.mark.asyncio
    async def test_no_signals_uses_default(self):
        backend = HeuristicClassifierBackend(default=("misc", "unknown"))
        result = await backend.classify("qwerty asdf", [])
        assert (result.domain, result.action) == ("misc", "unknown")
        assert result.confidence == 0.5

    @pytest.mark.asyncio
    async def test_deterministic(self):
        prompt = "Compare and contrast these two sorting algorithms"
        first = await self.backend.classify(prompt, [])
        second = await self.backend.classify(prompt, [])
        assert first == second


class TestHTTPClassifierBackend:
    """Tests for the HTTP classifier client."""

    @staticmethod
    def backend(handler) -> HTTPClassifierBackend:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return HTTPClassifierBackend("http://classifier.test/classify", client=client)

    @pytest.mark.asyncio
    async def test_request_and_response(self):
        seen = {}

        def handler(request):
            seen.update(json.loads(request.content))
            return httpx.Response(200, json={
                "domain": "programming",
                "action": "code-generation",
                "confidence": 0.92,
                "reasoning": "asks for a function",
            })

        result = await self.backend(handler).classify(
            "Write a function", ["earlier", {"role": "user", "content": "hi"}]
        )
        assert seen == {"prompt": "Write a function", "context": ["earlier", "hi"]}
        assert result.confidence == 0.92

    @pytest.mark.asyncio
    async def test_confidence_out_of_range(self):
        backend = self.backend(lambda request: httpx.Response(
            200, json={"domain": "x", "action": "y", "confidence": 1.7}
        ))
        with pytest.raises(ClassificationError):
            await backend.classify("hi", [])

    @pytest.mark.asyncio
    async def test_not_json(self):
        backend = self.backend(lambda request: httpx.Response(200, text="ok"))
        with pytest.raises(ClassificationError):
            await backend.classify("hi", [])

    @pytest.mark.asyncio
    async def test_server_error(self):
        backend = self.backend(lambda request: httpx.Response(502))
        with pytest.raises(ClassificationError):
            await backend.classify("hi", [])

    @pytest.mark.asyncio
    async def test_transport_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(ClassificationTimeout):
            await self.backend(handler).classify("hi", [])


class TestTaskClassifier:
    """Tests for TaskClassifier."""

    @pytest.mark.asyncio
    async def test_normalizes_label(self):
        backend = StubBackend(ClassifierResponse(domain=" Programming", action="Debugging ", confidence=0.8))
        result = await TaskClassifier(backend).classify("fix my bug")
        assert (result.domain, result.action) == ("programming", "debugging")
        assert result.fallback is False
        assert result.latency_ms >= 0

    @pytest.mark.asyncio
    async def test_timeout(self):
        classifier = TaskClassifier(StubBackend(delay=1.0), timeout=0.02)
        with pytest.raises(ClassificationTimeout) as exc_info:
            await classifier.classify("hi")
        assert exc_info.value.timeout == 0.02

    @pytest.mark.asyncio
    async def test_malformed_raw_result(self):
        classifier = TaskClassifier(StubBackend({"domain": "programming"}))
        with pytest.raises(ClassificationError):
            await classifier.classify("hi")

    @pytest.mark.asyncio
    async def test_unexpected_backend_error_wrapped(self):
        classifier = TaskClassifier(RaisingBackend(RuntimeError("backend bug")))
        with pytest.raises(ClassificationError) as exc_info:
            await classifier.classify("hi")
        assert not isinstance(exc_info.value, ClassificationTimeout)
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert exc_info.value.reason == "backend_error"

    @pytest.mark.asyncio
    async def test_backend_classification_error_passes_through(self):
        error = ClassificationError("bad payload")
        classifier = TaskClassifier(RaisingBackend(error))
        with pytest.raises(ClassificationError) as exc_info:
            await classifier.classify("hi")
        assert exc_info.value is error

    @pytest.mark.asyncio
    async def test_cancellation_not_wrapped(self):
        classifier = TaskClassifier(RaisingBackend(asyncio.CancelledError()))
        with pytest.raises(asyncio.CancelledError):
            await classifier.classify("hi")

    @pytest.mark.asyncio
    async def test_dict_result_validated(self):
        classifier = TaskClassifier(StubBackend({"domain": "math", "action": "proof", "confidence": 0.6}))
        result = await classifier.classify("prove it")
        assert (result.domain, result.action, result.confidence) == ("math", "proof", 0.6)

    def test_fallback(self):
        classifier = TaskClassifier(fallback_domain="general", fallback_action="chat")
        result = classifier.fallback("timeout")
        assert (result.domain, result.action) == ("general", "chat")
        assert result.fallback is True
        assert result.fallback_reason == "timeout"

    def test_from_settings_without_endpoint(self):
        settings = SimpleNamespace(
            endpoint=None,
            api_key=None,
            timeout=0.3,
            fallback_domain="general",
            fallback_action="general",
            fallback_confidence=0.0,
        )
        classifier = TaskClassifier.from_settings(settings)
        assert isinstance(classifier.backend, HeuristicClassifierBackend)
        assert classifier.timeout == 0.3

    def test_from_settings_with_endpoint(self):
        settings = SimpleNamespace(
            endpoint="http://classifier.test/classify",
            api_key=None,
            timeout=0.5,
            fallback_domain="general",
            fallback_action="general",
            fallback_confidence=0.0,
        )
        classifier = TaskClassifier.from_settings(settings)
        assert isinstance(classifier.backend, HTTPClassifierBackend)
