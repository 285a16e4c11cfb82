"""Tests for the command-line entry point."""

from unittest.mock import patch

import pytest
import yaml

from gmail_slack_forwarder import cli
from gmail_slack_forwarder.storage.dedup import DedupStore


@pytest.fixture(autouse=True)
def quiet_logging():
    with patch.object(cli, "setup_logging"), patch("logging.shutdown"):
        yield


def _write_config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "slack": {"post_channel_id": "C123"},
        "credentials_path": str(tmp_path / "credentials.json"),
        "accounts": [
            {"name": "work", "display_name": "Work", "token_path": str(tmp_path / "work.json")},
            {"name": "home", "display_name": "Home", "token_path": str(tmp_path / "home.json")},
        ],
        "dedupe": {"sqlite_path": str(tmp_path / "state.db")},
    }))
    return path


def test_no_command_prints_help(capsys):
    assert cli.main([]) == 1
    assert "usage" in capsys.readouterr().out


def test_missing_config(tmp_path, capsys):
    assert cli.main(["--config", str(tmp_path / "missing.yaml"), "status"]) == 1
    assert "Config file not found" in capsys.readouterr().err


def test_status(tmp_path, capsys):
    config_path = _write_config(tmp_path)
    with DedupStore(tmp_path / "state.db") as store:
        store.mark_processed("work", "m1", "1.0")
        store.mark_processed("work", "m2", "2.0")

    assert cli.main(["--config", str(config_path), "status"]) == 0
    out = capsys.readouterr().out
    assert "Total forwarded: 2" in out
    assert "work: 2" in out
    assert "home: 0" in out


def test_setup_unknown_account(tmp_path, capsys):
    config_path = _write_config(tmp_path)
    assert cli.main(["--config", str(config_path), "setup", "--account", "nope"]) == 1
    assert "not found in config" in capsys.readouterr().out


def test_setup_runs_authorization(tmp_path):
    config_path = _write_config(tmp_path)
    with patch.object(cli, "AuthManager") as mock_auth:
        assert cli.main(["--config", str(config_path), "setup", "--account", "work"]) == 0

    mock_auth.return_value.authenticate.assert_called_once_with(
        "work", (tmp_path / "work.json").resolve(), timeout=300, open_browser=False,
    )


def test_run_without_slack_token(tmp_path, monkeypatch):
    config_path = _write_config(tmp_path)
    monkeypatch.delenv("SLACK_BOT_TOKEN", raising=False)
    with patch.object(cli, "AuthManager"):
        assert cli.main(["--config", str(config_path), "run"]) == 1
