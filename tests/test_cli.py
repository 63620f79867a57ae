import json

import pytest
from click.testing import CliRunner

from birthdayctl.cli import cli
from birthdayctl.db import connect_db
from birthdayctl.repository import list_jobs


@pytest.fixture
def run(tmp_path, monkeypatch):
    monkeypatch.delenv("MAIL_HOST", raising=False)
    path = str(tmp_path / "cli.db")
    runner = CliRunner()

    def _run(*args):
        return runner.invoke(cli, ["--db", path, *args])

    _run.db_path = path
    return _run


def _jobs(path):
    conn = connect_db(path)
    try:
        return list_jobs(conn)
    finally:
        conn.close()


def test_user_lifecycle(run):
    result = run("user", "add", "--name", "John Doe", "--email", "john@example.com",
                 "--birthday", "1990-01-01", "--tz", "Europe/London")
    assert result.exit_code == 0, result.output
    assert "Created user 1" in result.output
    assert len(_jobs(run.db_path)) == 1

    result = run("user", "list")
    assert "john@example.com" in result.output

    result = run("user", "update", "1", "--email", "johnny@example.com")
    assert result.exit_code == 0, result.output
    assert [j.correlation_key for j in _jobs(run.db_path)] == ["johnny@example.com"]

    result = run("user", "show", "1")
    assert "johnny@example.com" in result.output
    assert "next=" in result.output

    result = run("user", "delete", "1")
    assert result.exit_code == 0
    assert _jobs(run.db_path) == []


def test_user_add_validation_error(run):
    result = run("user", "add", "--name", "Jo", "--email", "bad", "--birthday", "1990-01-01")
    assert result.exit_code == 1
    assert "Error:" in result.output
    assert "Email is not valid" in result.output


def test_user_add_rejects_timezone_region(run):
    result = run("user", "add", "--name", "Anna", "--email", "a@example.com",
                 "--birthday", "1990-01-01", "--tz", "America")
    assert result.exit_code == 1
    assert "Invalid timezone" in result.output
    assert _jobs(run.db_path) == []


def test_unknown_user(run):
    assert run("user", "delete", "42").exit_code == 1
    assert run("user", "show", "42").exit_code == 1


def test_schedule_replaces_and_cancel_is_idempotent(run):
    assert run("schedule", "a@example.com", "Anna", "1992-02-29").exit_code == 0
    assert run("schedule", "a@example.com", "Anna", "1992-03-01").exit_code == 0
    jobs = _jobs(run.db_path)
    assert [j.anniversary for j in jobs] == ["1992-03-01"]

    result = run("jobs")
    assert "a@example.com" in result.output

    result = run("cancel", "a@example.com")
    assert "Canceled 1 job(s)" in result.output
    result = run("cancel", "a@example.com")
    assert result.exit_code == 0
    assert "No jobs for a@example.com." in result.output


@pytest.mark.parametrize("tz", ["Atlantis/Capital", "America"])
def test_schedule_rejects_bad_timezone(run, tz):
    result = run("schedule", "a@example.com", "Anna", "1992-02-29", "--tz", tz)
    assert result.exit_code == 1
    assert "Invalid timezone" in result.output


def test_status_and_config(run):
    result = run("status")
    assert json.loads(result.output) == {"total": 0, "due": 0, "locked": 0, "failing": 0}

    assert run("config", "set", "max_concurrency", "3").exit_code == 0
    assert json.loads(run("config", "get").output)["max_concurrency"] == "3"
    assert run("config", "set", "bogus", "1").exit_code == 1


def test_scheduler_once_with_nothing_due(run):
    run("schedule", "a@example.com", "Anna", "1992-02-29")
    result = run("scheduler", "start", "--once", "--interval", "1m")
    assert result.exit_code == 0, result.output
    assert _jobs(run.db_path)[0].last_outcome is None


def test_scheduler_rejects_bad_interval(run):
    result = run("scheduler", "start", "--once", "--interval", "soon")
    assert result.exit_code == 1
    assert "Invalid delay format" in result.output


def test_scheduler_writes_log_files(run, tmp_path):
    log_dir = tmp_path / "logs"
    result = run("scheduler", "start", "--once", "--log-dir", str(log_dir))
    assert result.exit_code == 0, result.output
    assert (log_dir / "error.log").exists()
    assert (log_dir / "combined.log").exists()
