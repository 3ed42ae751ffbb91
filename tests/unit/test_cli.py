"""Tests for the command line interface."""

import json

import pytest
import yaml
from typer.testing import CliRunner

from routewise.cli.main import app

runner = CliRunner()

PROMPT = "Write a Python function to sort a list"


@pytest.fixture
def config(tmp_path):
    path = tmp_path / "routewise.yaml"
    path.write_text(yaml.safe_dump({
        "registry": {
            "executors": [
                {"id": "openai", "transport": "static", "models": [{"id": "gpt-4", "cost_per_million": 5.0}]},
                {"id": "anthropic", "transport": "static", "models": [{"id": "claude", "cost_per_million": 3.0}]},
            ],
        },
        "policy": {
            "policies": [
                {"domain": "programming", "action": "*", "models": ["gpt-4", "claude"]},
                {"domain": "*", "action": "*", "models": ["claude"]},
            ],
        },
        "decisions": {"enabled": False},
    }))
    return str(path)


class TestCLI:
    """Tests for routewise commands."""

    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "Routewise" in result.stdout

    def test_route(self, config):
        result = runner.invoke(app, ["route", PROMPT, "--config", config])
        assert result.exit_code == 0, result.stdout
        assert "claude" in result.stdout
        assert "Ranked Candidates" in result.stdout

    def test_route_json(self, config):
        result = runner.invoke(app, ["route", PROMPT, "--json", "-c", config])
        assert result.exit_code == 0, result.stdout
        assert '"selected_model": "claude"' in result.stdout

    def test_route_everything_excluded(self, config):
        result = runner.invoke(app, ["route", PROMPT, "-x", "claude", "-x", "gpt-4", "-c", config])
        assert result.exit_code == 1
        assert "NoEligibleCandidates" in result.stdout

    def test_policies(self, config):
        result = runner.invoke(app, ["policies", "-c", config])
        assert result.exit_code == 0
        assert "programming" in result.stdout

    def test_executors(self, config):
        result = runner.invoke(app, ["executors", "-c", config])
        assert result.exit_code == 0
        assert "anthropic" in result.stdout
        assert "2 live models" in result.stdout

    def test_decisions(self, tmp_path):
        path = tmp_path / "decisions.jsonl"
        path.write_text("\n".join([
            json.dumps({
                "kind": "decision",
                "decision_id": "dec-1",
                "request_id": "req-1",
                "classification": {"domain": "programming", "action": "debugging"},
                "selected_model": "claude",
                "attempt": 1,
            }),
            json.dumps({"kind": "outcome", "decision_id": "dec-1", "success": True}),
        ]) + "\n")

        result = runner.invoke(app, ["decisions", str(path)])
        assert result.exit_code == 0
        assert "req-1" in result.stdout
        assert "success" in result.stdout

    def test_decisions_missing_file(self, tmp_path):
        result = runner.invoke(app, ["decisions", str(tmp_path / "nope.jsonl")])
        assert result.exit_code == 1
