"""Tests for the CLI module."""

from unittest.mock import patch

import pytest
from click.testing import CliRunner

from agentstream.cli import main

from tests.helpers import FakeAgentClient, frame, stream_body


class TestCLI:
    """Test CLI group options."""

    @pytest.fixture
    def runner(self):
        """Create CLI test runner."""
        return CliRunner()

    def test_main_help(self, runner):
        """Main command shows help."""
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "AgentStream" in result.output
        for command in ("chat", "plan", "clear", "decode"):
            assert command in result.output

    def test_version(self, runner):
        """Version flag works."""
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestDecodeCommand:
    """Test decode command."""

    def test_decode_file(self, tmp_path):
        capture = tmp_path / "turn.sse"
        capture.write_bytes(stream_body(
            frame("thinking", {"status": "starting"}),
            frame(None, "plain words"),
            frame("done", {}),
        ))

        result = CliRunner().invoke(main, ["decode", str(capture)])

        assert result.exit_code == 0
        assert 'thinking\t{"status": "starting"}' in result.output
        assert "message\t(raw) plain words" in result.output
        assert "done\t{}" in result.output

    def test_decode_missing_file(self):
        result = CliRunner().invoke(main, ["decode", "/nonexistent/turn.sse"])
        assert result.exit_code != 0


class TestChatCommand:
    """Test chat command with a scripted backend."""

    @pytest.fixture
    def runner(self):
        return CliRunner()

    def test_single_agent_streams_reply(self, runner, scenario_a_body):
        fake = FakeAgentClient(streams={None: [scenario_a_body]})
        with patch("agentstream.cli.AgentStreamClient", return_value=fake):
            result = runner.invoke(main, ["chat", "find it", "--session", "sess-1"])

        assert result.exit_code == 0
        assert "xy" in result.output
        assert fake.stream_requests[0].session_id == "sess-1"

    def test_single_agent_error_reply(self, runner):
        from agentstream.client import TransportError

        fake = FakeAgentClient(streams={None: TransportError("HTTP 502")})
        with patch("agentstream.cli.AgentStreamClient", return_value=fake):
            result = runner.invoke(main, ["chat", "hi"])

        assert result.exit_code == 0
        assert "Sorry, I encountered an error." in result.output

    def test_multi_agent(self, runner, scenario_b_plan):
        fake = FakeAgentClient(
            streams={
                "coder": [stream_body(frame("content", {"content": "code"}), frame("done", {}))],
                "writer": [stream_body(
                    frame("progress", {"tool": "search", "status": "completed"}),
                    frame("content", {"content": "prose"}),
                    frame("done", {}),
                )],
            },
            route_body=scenario_b_plan,
        )
        with patch("agentstream.cli.AgentStreamClient", return_value=fake):
            result = runner.invoke(main, ["chat", "go", "--multi"])

        assert result.exit_code == 0
        assert "Dispatched 2 agent(s)" in result.output
        assert "coder [completed]" in result.output
        assert "writer [completed]" in result.output
        assert result.output.index("coder [completed]") < result.output.index("writer [completed]")
        assert "[completed] search" in result.output

    def test_multi_agent_planning_failure(self, runner):
        fake = FakeAgentClient(route_body={"success": True, "plan": {"agents": []}})
        with patch("agentstream.cli.AgentStreamClient", return_value=fake):
            result = runner.invoke(main, ["chat", "go", "--multi"])

        assert result.exit_code == 1
        assert "No agents returned from router" in result.output
        assert fake.stream_requests == []

    def test_raw_output(self, runner, scenario_a_body):
        fake = FakeAgentClient(streams={None: [scenario_a_body]})
        with patch("agentstream.cli.AgentStreamClient", return_value=fake):
            result = runner.invoke(main, ["chat", "find it", "--raw", "--session", "sess-7"])

        assert result.exit_code == 0
        assert '"session_id": "sess-7"' in result.output
        assert '"content": "xy"' in result.output


class TestPlanAndClearCommands:
    """Test plan and clear commands."""

    @pytest.fixture
    def runner(self):
        return CliRunner()

    def test_plan(self, runner, scenario_b_plan):
        fake = FakeAgentClient(route_body=scenario_b_plan)
        with patch("agentstream.cli.AgentStreamClient", return_value=fake):
            result = runner.invoke(main, ["plan", "write docs"])

        assert result.exit_code == 0
        assert "coder: taskA" in result.output
        assert "writer: write docs" in result.output
        assert "Reasoning: code first, prose second" in result.output

    def test_clear(self, runner):
        fake = FakeAgentClient()
        with patch("agentstream.cli.AgentStreamClient", return_value=fake):
            result = runner.invoke(main, ["clear", "sess-3"])

        assert result.exit_code == 0
        assert fake.cleared == ["sess-3"]
        assert "Cleared session: sess-3" in result.output
