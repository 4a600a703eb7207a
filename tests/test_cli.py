"""Tests for the click CLI."""

import json
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from alteris_briefing.cli.score_cmd import score_all
from alteris_briefing.config import ENV_OVERRIDES
from alteris_briefing.main import cli

from conftest import make_item

INBOX = {
    "items": [
        {"id": "m1", "subject": "Budget review", "sender": "alice@example.com",
         "snippet": "Numbers attached", "received_at": "2026-03-02T08:00:00Z"},
        {"id": "m2", "subject": "Re: Budget review", "sender": "bob@example.com",
         "snippet": "Looks fine", "received_at": "2026-03-02T08:10:00Z"},
        {"id": "m3", "subject": "URGENT: server down", "sender": "ops@example.com",
         "snippet": "Production is unreachable", "received_at": "2026-03-02T08:20:00Z"},
    ],
}


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ENV_OVERRIDES:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "briefing.json"
    path.write_text(json.dumps({"provider": "none", "db_path": str(tmp_path / "briefing.db")}))
    return path


@pytest.fixture
def inbox(tmp_path):
    path = tmp_path / "inbox.json"
    path.write_text(json.dumps(INBOX))
    return path


def _invoke(runner, config_file, *args):
    return runner.invoke(cli, ["--config-file", str(config_file), *args])


# ── score ────────────────────────────────────────────────────────

def test_score_all_uses_vip_signal():
    # keyword 0.9 alone: 0.9 * 0.8 / (0.8 + 0.7) = 0.48
    items = [make_item("1", subject="URGENT: call me", sender="dana@example.com")]
    without_vip = score_all(items, [], flag_threshold=0.5)
    with_vip = score_all(items, ["dana@example.com"], flag_threshold=0.5)
    assert without_vip["1"].is_flagged is False
    assert with_vip["1"].is_flagged is True
    assert with_vip["1"].score > without_vip["1"].score


def test_score_table(runner, config_file, inbox):
    result = _invoke(runner, config_file, "score", str(inbox), "--threshold", "0.3")
    assert result.exit_code == 0, result.output
    assert "1 of 3 items flagged (threshold 0.3)" in result.output


def test_score_json_flagged_only(runner, config_file, inbox):
    result = _invoke(runner, config_file, "score", str(inbox), "--threshold", "0.3", "--flagged", "--json")
    assert result.exit_code == 0, result.output
    assert '"id": "m3"' in result.output
    assert '"is_flagged": true' in result.output
    assert '"id": "m1"' not in result.output


# ── brief / history ──────────────────────────────────────────────

def test_brief_heuristic(runner, config_file, inbox):
    result = _invoke(runner, config_file, "brief", str(inbox), "--all", "--items")
    assert result.exit_code == 0, result.output
    assert "3 items to catch up on" in result.output
    assert "Budget review" in result.output
    assert "Done." in result.output


def test_brief_records_history_per_user(runner, config_file, inbox):
    first = _invoke(runner, config_file, "brief", str(inbox), "--all", "--user", "u1")
    assert first.exit_code == 0, first.output
    assert "Recorded 3 items as briefed for u1" in first.output

    again = _invoke(runner, config_file, "brief", str(inbox), "--all", "--user", "u1")
    assert "Nothing to brief." in again.output

    history = _invoke(runner, config_file, "history", "u1")
    assert history.exit_code == 0, history.output
    assert "briefed: 3" in history.output

    actioned = _invoke(runner, config_file, "history", "u1", "--status", "actioned")
    assert "No lifecycle records for u1." in actioned.output


def test_brief_without_api_key_exits(runner, config_file, inbox):
    with patch("alteris_briefing.llm.client._get_api_key", return_value=None):
        result = _invoke(runner, config_file, "brief", str(inbox), "--provider", "gemini")
    assert result.exit_code == 1
    assert "GEMINI_API_KEY not found" in result.output


# ── config ───────────────────────────────────────────────────────

def test_config_set_add_remove(runner, config_file):
    assert _invoke(runner, config_file, "config", "set", "provider", "ollama").exit_code == 0
    assert _invoke(runner, config_file, "config", "set", "flag_threshold", "0.4").exit_code == 0
    assert _invoke(runner, config_file, "config", "add", "vip_emails", "ceo@example.com").exit_code == 0
    dup = _invoke(runner, config_file, "config", "add", "vip_emails", "ceo@example.com")
    assert "already in vip_emails" in dup.output

    saved = json.loads(config_file.read_text())
    assert saved["provider"] == "ollama"
    assert saved["flag_threshold"] == 0.4
    assert saved["vip_emails"] == ["ceo@example.com"]

    assert _invoke(runner, config_file, "config", "remove", "vip_emails", "ceo@example.com").exit_code == 0
    assert json.loads(config_file.read_text())["vip_emails"] == []


@pytest.mark.parametrize("key,value", [("theme", "dark"), ("vip_emails", "x"), ("batch_size", "0")])
def test_config_set_rejects_bad_input(runner, config_file, key, value):
    result = _invoke(runner, config_file, "config", "set", key, value)
    assert result.exit_code == 1


def test_config_show(runner, config_file):
    result = _invoke(runner, config_file, "config", "show")
    assert result.exit_code == 0
    assert '"provider": "none"' in result.output


# ── set-key ──────────────────────────────────────────────────────

def test_set_key_stores_in_keychain(runner):
    with patch("alteris_briefing.main.subprocess.run", return_value=MagicMock(returncode=0)) as run:
        result = runner.invoke(cli, ["set-key", "gemini", "--key", "abc123"])
    assert result.exit_code == 0, result.output
    assert "gemini API key stored in Keychain" in result.output
    add_args = run.call_args_list[-1].args[0]
    assert add_args[:2] == ["security", "add-generic-password"]
    assert add_args[-2:] == ["-w", "abc123"]
