"""Tests for the command line entry point."""

import json

import pytest

from copytrade_replicator.__main__ import main
from copytrade_replicator.config import clear_settings_cache


@pytest.fixture(autouse=True)
def env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.chdir("/")
    monkeypatch.setenv("DATABASE_URL", "postgresql://copy:s3cret@db/copytrade")
    monkeypatch.delenv("DRY_RUN", raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


def test_config_prints_redacted_settings(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["config"]) == 0

    summary = json.loads(capsys.readouterr().out)
    assert summary["database_url"] == "postgresql://copy:***@db/copytrade"
    assert summary["dry_run"] == "True"


def test_live_mode_without_executor_refuses_to_start() -> None:
    assert main(["run", "--live"]) == 2
