"""Shared fixtures: a Router wired to in-process executors and policies."""

import asyncio

import pytest

from routewise.executors import create_adapter
from routewise.observability import DecisionLog
from routewise.policy import InMemoryPolicyBackend, PolicyStore
from routewise.registry import ExecutorRegistry
from routewise.routing import Router, TaskClassifier
from routewise.routing.classifier import ClassifierBackend
from routewise.scoring import AbilityCheckpoint, AbilityStore, ScoringEngine

EXECUTORS = [
    {
        "id": "openai",
        "transport": "static",
        "models": [{"id": "gpt-4", "cost_per_million": 5.0}],
    },
    {
        "id": "anthropic",
        "transport": "static",
        "models": [{"id": "claude", "cost_per_million": 3.0}],
    },
    {
        "id": "codex-cli",
        "transport": "static",
        "healthy": False,
        "models": [{"id": "codex", "cost_per_million": 1.0}],
    },
]

POLICIES = [
    {"domain": "programming", "action": "code-generation", "models": ["gpt-4", "claude", "codex"]},
    {"domain": "*", "action": "*", "models": ["claude"]},
]

CODE_GENERATION = {"domain": "programming", "action": "code-generation", "confidence": 0.9}


class StubClassifierBackend(ClassifierBackend):
    """Returns a fixed label, optionally after a delay."""

    def __init__(self, result=None, delay: float = 0.0):
        self.result = CODE_GENERATION if result is None else result
        self.delay = delay
        self.calls = 0

    async def classify(self, prompt, context):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.result


@pytest.fixture
def adapters():
    """Adapters created by the router under test, keyed by executor id."""
    return {}


@pytest.fixture
def make_router(adapters):
    def factory(
        backend=None,
        policies=None,
        policy_backend=None,
        abilities=None,
        executors=None,
        classifier_timeout: float = 0.5,
        decision_log: bool = True,
    ) -> Router:
        def adapter_factory(descriptor):
            adapter = create_adapter(descriptor)
            adapters[descriptor.id] = adapter
            return adapter

        registry = ExecutorRegistry(
            probe_interval=60.0,
            probe_timeout=0.5,
            adapter_factory=adapter_factory,
        )
        for descriptor in EXECUTORS if executors is None else executors:
            registry.register(descriptor)

        store = PolicyStore(
            policy_backend or InMemoryPolicyBackend(POLICIES if policies is None else policies)
        )
        classifier = TaskClassifier(
            backend or StubClassifierBackend(),
            timeout=classifier_timeout,
        )
        checkpoint = AbilityCheckpoint.from_dict({"version": "test-1", "abilities": abilities or {}})
        return Router(
            registry=registry,
            policies=store,
            classifier=classifier,
            scoring=ScoringEngine(AbilityStore(checkpoint)),
            decision_log=DecisionLog() if decision_log else None,
        )

    return factory
