"""Tests for the work-registry CLI."""

import pytest
from typer.testing import CliRunner

from work_registry import cli
from work_registry.db.services import AgentService

runner = CliRunner()


@pytest.fixture
def wired(monkeypatch, session_factory, make_source):
    """Point the CLI at the test database and an in-memory object source."""
    sources = {"current": make_source([1, 2, 4])}
    monkeypatch.setattr(cli, "get_session_local", lambda: session_factory)
    monkeypatch.setattr(
        cli, "create_object_source", lambda uri, bucket: sources["current"]
    )
    return sources


class TestRegisterAgent:
    def test_registers(self, wired, db_session):
        result = runner.invoke(cli.app, ["register-agent", "solienne"])
        assert result.exit_code == 0
        assert AgentService(db_session).get_by_handle("solienne") is not None

    def test_idempotent(self, wired, db_session):
        runner.invoke(cli.app, ["register-agent", "solienne"])
        result = runner.invoke(cli.app, ["register-agent", "solienne"])
        assert result.exit_code == 0


class TestReconcileCommand:
    def test_successful_run(self, wired, agent, snapshot):
        result = runner.invoke(
            cli.app, ["reconcile", "--agent", "abraham", "--expected-count", "5"]
        )

        assert result.exit_code == 0, result.output
        assert "Reconciliation complete" in result.output
        assert "Missing ordinals: 3, 5" in result.output
        assert len(snapshot()) == 5

    def test_dry_run(self, wired, agent, snapshot):
        result = runner.invoke(
            cli.app,
            ["reconcile", "--agent", "abraham", "--expected-count", "5", "--dry-run"],
        )
        assert result.exit_code == 0, result.output
        assert snapshot() == {}

    def test_source_failure_exits_non_zero(self, wired, agent, make_source):
        wired["current"] = make_source([1], fail=True)
        result = runner.invoke(
            cli.app, ["reconcile", "--agent", "abraham", "--expected-count", "1"]
        )
        assert result.exit_code == 1
        assert "Reconciliation failed" in result.output

    def test_unknown_agent_exits_non_zero(self, wired):
        result = runner.invoke(
            cli.app, ["reconcile", "--agent", "nobody", "--expected-count", "1"]
        )
        assert result.exit_code == 1

    def test_anomalies_are_listed(self, wired, agent, make_source):
        wired["current"] = make_source([1, "abraham/readme.txt"])
        result = runner.invoke(
            cli.app, ["reconcile", "--agent", "abraham", "--expected-count", "1"]
        )
        assert result.exit_code == 0, result.output
        assert "abraham/readme.txt" in result.output
        assert "unparseable_name" in result.output


class TestStatusCommand:
    def test_counts(self, wired, agent):
        runner.invoke(cli.app, ["reconcile", "--agent", "abraham", "--expected-count", "5"])
        result = runner.invoke(cli.app, ["status", "abraham"])
        assert result.exit_code == 0, result.output
        assert "active" in result.output
        assert "missing" in result.output

    def test_unknown_agent(self, wired):
        assert runner.invoke(cli.app, ["status", "nobody"]).exit_code == 1
