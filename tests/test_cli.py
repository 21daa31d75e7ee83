"""Tests for CLI commands.

Tests nodeflow CLI commands using Click's CliRunner:
- run: Execute a flow file
- validate: Validate a flow file
- version: Show version information
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from nodeflow import __version__
from nodeflow.cli import main

PASSTHROUGH_FLOW = {
    "nodes": [
        {"id": "in", "type": "input", "data": {"inputValue": "inline text"}},
        {"id": "out", "type": "output", "data": {"label": "Answer"}},
    ],
    "edges": [{"id": "e1", "source": "in", "target": "out"}],
}


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a Click CLI test runner."""
    return CliRunner()


def _write_flow(data: dict, name: str = "flow.yaml") -> str:
    text = json.dumps(data) if name.endswith(".json") else yaml.safe_dump(data)
    Path(name).write_text(text)
    return name


class TestRunCommand:
    """Tests for 'nodeflow run'."""

    def test_run_prints_output(self, cli_runner):
        """Test run prints output."""
        with cli_runner.isolated_filesystem():
            flow = _write_flow(PASSTHROUGH_FLOW)

            result = cli_runner.invoke(main, ["run", flow, "--input", "hello there"])

            assert result.exit_code == 0, result.output
            assert "hello there" in result.output
            assert "Answer" in result.output
            assert "Flow completed successfully" in result.output

    def test_run_uses_inline_value_without_input(self, cli_runner):
        """Test run uses inline value without input."""
        with cli_runner.isolated_filesystem():
            flow = _write_flow(PASSTHROUGH_FLOW)

            result = cli_runner.invoke(main, ["run", flow])

            assert result.exit_code == 0, result.output
            assert "inline text" in result.output

    def test_run_rejects_invalid_graph(self, cli_runner):
        """Test run rejects invalid graph."""
        flow_data = {
            "nodes": [{"id": "a", "type": "input"}],
            "edges": [{"id": "e1", "source": "a", "target": "ghost"}],
        }
        with cli_runner.isolated_filesystem():
            flow = _write_flow(flow_data)

            result = cli_runner.invoke(main, ["run", flow])

            assert result.exit_code == 1
            assert "Validation errors" in result.output

    def test_run_reports_missing_api_key(self, cli_runner):
        """Test run reports missing api key."""
        flow_data = {
            "nodes": [
                {"id": "in", "type": "input", "data": {"inputValue": "x"}},
                {"id": "gen", "type": "prompt", "data": {"provider": "openai"}},
            ],
            "edges": [{"id": "e1", "source": "in", "target": "gen"}],
        }
        with cli_runner.isolated_filesystem():
            flow = _write_flow(flow_data)

            result = cli_runner.invoke(main, ["run", flow], env={"OPENAI_API_KEY": None})

            assert result.exit_code == 1
            assert "Missing API key" in result.output

    def test_run_exits_nonzero_when_node_fails(self, cli_runner):
        """Test run exits nonzero when node fails."""
        flow_data = {
            "nodes": [
                {"id": "in", "type": "input", "data": {"inputValue": "x"}},
                {"id": "code", "type": "code", "data": {"code": "import os"}},
                {"id": "out", "type": "output"},
            ],
            "edges": [
                {"id": "e1", "source": "in", "target": "code"},
                {"id": "e2", "source": "code", "target": "out"},
            ],
        }
        with cli_runner.isolated_filesystem():
            flow = _write_flow(flow_data)

            result = cli_runner.invoke(main, ["run", flow])

            assert result.exit_code == 1
            assert "2 failed and 0 skipped" in result.output

    def test_run_with_bad_config(self, cli_runner):
        """Test run with bad config."""
        with cli_runner.isolated_filesystem():
            flow = _write_flow(PASSTHROUGH_FLOW)
            Path("bad.yaml").write_text(yaml.safe_dump({"unknown_option": 1}))

            result = cli_runner.invoke(main, ["run", flow, "--config", "bad.yaml"])

            assert result.exit_code == 1
            assert "Config error" in result.output

    def test_run_live_monitor(self, cli_runner):
        """Test run live monitor."""
        with cli_runner.isolated_filesystem():
            flow = _write_flow(PASSTHROUGH_FLOW)

            result = cli_runner.invoke(main, ["run", flow, "--live", "-i", "live input"])

            assert result.exit_code == 0, result.output
            assert "live input" in result.output


class TestValidateCommand:
    """Tests for 'nodeflow validate'."""

    def test_valid_flow(self, cli_runner):
        """Test valid flow."""
        with cli_runner.isolated_filesystem():
            flow = _write_flow(PASSTHROUGH_FLOW, "flow.json")

            result = cli_runner.invoke(main, ["validate", flow])

            assert result.exit_code == 0
            assert "Flow validation passed" in result.output
            assert "Nodes: 2" in result.output
            assert "Roots: in" in result.output

    def test_cyclic_flow(self, cli_runner):
        """Test cyclic flow."""
        flow_data = {
            "nodes": [
                {"id": "in", "type": "input"},
                {"id": "a", "type": "prompt"},
                {"id": "b", "type": "prompt"},
            ],
            "edges": [
                {"id": "e1", "source": "in", "target": "a"},
                {"id": "e2", "source": "a", "target": "b"},
                {"id": "e3", "source": "b", "target": "a"},
            ],
        }
        with cli_runner.isolated_filesystem():
            flow = _write_flow(flow_data)

            result = cli_runner.invoke(main, ["validate", flow])

            assert result.exit_code == 1
            assert "Cycle detected" in result.output

    def test_schema_error(self, cli_runner):
        """Test schema error."""
        with cli_runner.isolated_filesystem():
            flow = _write_flow({"nodes": [{"type": "input"}], "edges": []})

            result = cli_runner.invoke(main, ["validate", flow])

            assert result.exit_code == 1
            assert "Error validating flow schema" in result.output


class TestVersionCommand:
    def test_version(self, cli_runner):
        """Test version."""
        result = cli_runner.invoke(main, ["version"])

        assert result.exit_code == 0
        assert "Nodeflow v0.1.0" in result.output

    def test_version_option_matches_package(self, cli_runner):
        """Test version option matches package."""
        result = cli_runner.invoke(main, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output
