#!/usr/bin/env python3
"""
Basic usage examples for Routewise.

Routes a few prompts across config-declared executors and walks the
fallback path when the chosen model fails.
"""

import asyncio

from routewise import Router
from routewise.core.models import Outcome
from routewise.core.errors import NoEligibleCandidates
from routewise.observability import DecisionLog
from routewise.policy import InMemoryPolicyBackend, PolicyStore
from routewise.registry import ExecutorRegistry
from routewise.routing import TaskClassifier
from routewise.scoring import AbilityCheckpoint, AbilityStore, ScoringEngine

EXECUTORS = [
    {"id": "openai", "transport": "static", "models": [{"id": "gpt-4o", "cost_per_million": 5.0}]},
    {"id": "anthropic", "transport": "static", "models": [{"id": "claude-sonnet", "cost_per_million": 3.0}]},
    {"id": "local", "transport": "static", "models": [{"id": "llama-3-8b", "cost_per_million": 0.0}]},
]

POLICIES = [
    {"domain": "programming", "action": "*", "models": ["claude-sonnet", "gpt-4o", "llama-3-8b"]},
    {"domain": "*", "action": "*", "models": ["llama-3-8b", "claude-sonnet"]},
]

ABILITIES = {
    "version": "example-1",
    "abilities": {
        "gpt-4o": [1.5, 2.0, 2.0, 1.5, 1.0, 1.0],
        "claude-sonnet": [1.5, 2.0, 2.5, 1.5, 1.0, 1.0],
        "llama-3-8b": [0.5, 0.2, 0.3, 0.0, 0.2, 0.0],
    },
}


def build() -> Router:
    registry = ExecutorRegistry()
    for descriptor in EXECUTORS:
        registry.register(descriptor)
    return Router(
        registry=registry,
        policies=PolicyStore(InMemoryPolicyBackend(POLICIES)),
        classifier=TaskClassifier(),
        scoring=ScoringEngine(AbilityStore(AbilityCheckpoint.from_dict(ABILITIES))),
        decision_log=DecisionLog(),
    )


async def simple_routing(router: Router):
    """Route prompts of different difficulty."""
    print("\n=== Simple Routing ===\n")

    for prompt in (
        "hello there",
        "Write a Python function to sort a list",
        "Analyze the trade-offs between optimistic and pessimistic locking, step by step",
    ):
        decision = await router.route(prompt)
        print(f"{prompt[:50]!r}")
        print(f"  -> {decision.selected_model} ({decision.classification.domain}/{decision.classification.action})")
        print(f"  {decision.reasoning}\n")


async def fallback(router: Router):
    """Walk the ranked candidates as each chosen model fails."""
    print("\n=== Fallback ===\n")

    decision = await router.route("Debug this stack trace from my Flask app")
    while True:
        print(f"Attempt {decision.attempt}: {decision.selected_model}")
        router.record_outcome(decision.decision_id, Outcome(success=False, error="simulated failure"))
        try:
            decision = await router.select(decision, excluded_model_ids={decision.selected_model})
        except NoEligibleCandidates as e:
            print(f"No candidates left ({e.reason})")
            break


async def main():
    router = build()
    await router.start()
    try:
        await simple_routing(router)
        await fallback(router)
        print(f"\nMetrics: {router.metrics.get_summary()['counters']}")
    finally:
        await router.close()


if __name__ == "__main__":
    asyncio.run(main())
