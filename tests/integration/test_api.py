"""Integration tests for the FastAPI server."""

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from routewise.api.server import RecentDecisions, create_app
from routewise.core.errors import DecisionNotFound

PROMPT = "Write a Python function to sort a list"


@pytest.fixture
def client(make_router):
    """Test client over a router wired to in-process executors."""
    app = create_app(router=make_router())
    with TestClient(app) as client:
        yield client


@pytest.fixture
def unroutable_client(make_router):
    app = create_app(router=make_router(policies=[{"domain": "*", "action": "*", "models": ["codex"]}]))
    with TestClient(app) as client:
        yield client


class TestHealthEndpoint:
    """Tests for health and metrics endpoints."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["registry"]["live_models"] == 2
        assert data["checkpoint"] == "test-1"

    def test_metrics(self, client):
        client.post("/v1/route", json={"prompt": PROMPT})

        response = client.get("/metrics")
        assert response.status_code == 200
        data = response.json()
        assert data["decisions"] == 1
        assert data["models"]["claude"]["selections"] == 1
        assert "dropped" in data["decision_log"]


class TestRouteEndpoint:
    """Tests for routing endpoints."""

    def test_route(self, client):
        response = client.post("/v1/route", json={"prompt": PROMPT, "request_id": "req-1"})

        assert response.status_code == 200
        data = response.json()
        assert data["selected_model"] == "claude"
        assert data["executor_id"] == "anthropic"
        assert data["request_id"] == "req-1"
        assert data["classification"]["domain"] == "programming"
        assert [c["model_id"] for c in data["candidates"]] == ["claude", "gpt-4"]
        assert data["reasoning"].startswith("Selected claude")

    def test_route_with_exclusions(self, client):
        response = client.post(
            "/v1/route",
            json={"prompt": PROMPT, "excluded_model_ids": ["claude"]},
        )
        assert response.status_code == 200
        assert response.json()["selected_model"] == "gpt-4"

    def test_invalid_deadline(self, client):
        response = client.post("/v1/route", json={"prompt": PROMPT, "deadline_ms": 0})
        assert response.status_code == 422

    def test_no_candidates(self, unroutable_client):
        response = unroutable_client.post("/v1/route", json={"prompt": PROMPT})

        assert response.status_code == 503
        data = response.json()
        assert data["error"] == "NoEligibleCandidates"
        assert data["retryable"] is True
        assert data["details"]["reason"] == "no_live_candidates"

    def test_next_candidate(self, client):
        first = client.post("/v1/route", json={"prompt": PROMPT}).json()

        response = client.post(
            f"/v1/route/{first['decision_id']}/next",
            json={"excluded_model_ids": [first["selected_model"]]},
        )
        assert response.status_code == 200
        second = response.json()
        assert second["selected_model"] == "gpt-4"
        assert second["attempt"] == 2
        assert second["request_id"] == first["request_id"]

        exhausted = client.post(
            f"/v1/route/{second['decision_id']}/next",
            json={"excluded_model_ids": ["gpt-4"]},
        )
        assert exhausted.status_code == 503
        assert exhausted.json()["details"]["reason"] == "all_candidates_excluded"

    def test_next_candidate_unknown_decision(self, client):
        response = client.post("/v1/route/dec-unknown/next", json={})
        assert response.status_code == 404
        assert response.json()["error"] == "DecisionNotFound"


class TestOutcomeEndpoint:
    """Tests for outcome back-fill."""

    def test_record_outcome(self, client):
        decision = client.post("/v1/route", json={"prompt": PROMPT}).json()
        url = f"/v1/decisions/{decision['decision_id']}/outcome"

        response = client.post(url, json={"success": True, "latency_ms": 850.0})
        assert response.status_code == 200
        assert response.json() == {"decision_id": decision["decision_id"], "queued": True}

        again = client.post(url, json={"success": False})
        assert again.status_code == 409
        assert again.json()["error"] == "OutcomeAlreadyRecorded"

    def test_outcome_for_unknown_decision(self, client):
        response = client.post("/v1/decisions/dec-unknown/outcome", json={"success": True})
        assert response.status_code == 404

    def test_malformed_outcome(self, client):
        response = client.post("/v1/decisions/dec-unknown/outcome", json={"quality_score": 2})
        assert response.status_code == 422


class TestListingEndpoints:
    """Tests for executor and policy listings."""

    def test_executors(self, client):
        response = client.get("/v1/executors")
        assert response.status_code == 200
        executors = {e["id"]: e for e in response.json()}
        assert set(executors) == {"openai", "anthropic", "codex-cli"}
        assert executors["anthropic"]["liveness"] == "healthy"
        assert executors["codex-cli"]["liveness"] == "unhealthy"

    def test_policies(self, client):
        response = client.get("/v1/policies")
        assert response.status_code == 200
        keys = [(p["domain"], p["action"]) for p in response.json()]
        assert ("programming", "code-generation") in keys
        assert ("*", "*") in keys


class TestRecentDecisions:
    """Tests for the bounded decision cache."""

    def test_evicts_oldest(self):
        recent = RecentDecisions(max_size=2)
        for i in range(3):
            recent.put(SimpleNamespace(decision_id=f"dec-{i}"))

        assert len(recent) == 2
        with pytest.raises(DecisionNotFound):
            recent.get("dec-0")
        assert recent.get("dec-2").decision_id == "dec-2"
