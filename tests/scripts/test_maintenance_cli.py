"""
Maintenance CLI: every command prints JSON on stdout; kernel errors go to
stderr with exit code 1.
"""

import json

import pytest

from mission_kernel.db.engine import get_engine, reset_engine
from mission_kernel.db.triggers import triggers_installed
from scripts.maintenance import main


@pytest.fixture
def db_url(tmp_path):
    url = f"sqlite:///{tmp_path / 'maintenance.db'}"
    yield url
    reset_engine()


@pytest.fixture
def cli(db_url, capsys):
    """Run a command against the test database; returns (exit code, parsed stdout)."""

    def _run(*argv):
        code = main(["--database-url", db_url, *argv])
        out = capsys.readouterr().out
        return code, json.loads(out) if out else None

    _run("init-db")
    return _run


class TestCommands:
    def test_init_db(self, db_url, capsys):
        assert main(["--database-url", db_url, "init-db"]) == 0
        assert json.loads(capsys.readouterr().out) == {"initialized": True}
        assert triggers_installed(get_engine())

    def test_init_db_is_rerunnable(self, cli):
        assert cli("init-db") == (0, {"initialized": True})

    def test_transitions(self, cli):
        code, transitions = cli("transitions")
        assert code == 0
        assert len(transitions) == 22
        assert transitions[0]["action"] == "publish"

    def test_cleanups_on_an_empty_database(self, cli):
        code, idem = cli("cleanup-idempotency")
        assert (code, idem["deleted_count"]) == (0, 0)

        code, notifications = cli("cleanup-notifications")
        assert (notifications["deleted_count"], notifications["failed_count"]) == (0, 0)

    def test_daily_stats_for_a_given_day(self, cli):
        code, stats = cli("daily-stats", "--date", "2025-11-10")
        assert code == 0
        assert stats["date"] == "2025-11-10"
        assert stats["missions"]["created"] == 0

    def test_anomalies_and_snapshot(self, cli):
        assert cli("anomalies") == (0, [])
        code, snapshot = cli("snapshot")
        assert snapshot["missions_active"] == 0
        assert len(snapshot["missions_by_status"]) == 13


class TestErrors:
    def test_invalid_config_is_reported_on_stderr(self, cli, db_url, tmp_path, capsys):
        broken = tmp_path / "broken.yaml"
        broken.write_text("workflow:\n  transitions:\n    - action: publish\n", encoding="utf-8")

        code = main(["--database-url", db_url, "--config", str(broken), "snapshot"])

        captured = capsys.readouterr()
        assert code == 1
        assert captured.out == ""
        assert '"code": "WORKFLOW_CONFIG_ERROR"' in captured.err

    def test_unknown_command(self, db_url):
        with pytest.raises(SystemExit):
            main(["--database-url", db_url, "vacuum"])
