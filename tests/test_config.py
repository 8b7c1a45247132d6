import json

import pytest

from ccusage_tracker import config
from ccusage_tracker.config import (
    SEND_USAGE_COMMAND,
    TrackerConfig,
    get_config,
    has_config,
    install_claude_command,
    interactive_setup,
    load_config,
    save_config,
)


def answers(*replies):
    replies = iter(replies)
    return lambda prompt: next(replies)


def write_config(data):
    config.CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    config.CONFIG_FILE.write_text(json.dumps(data))


class TestGetConfig:
    def test_environment_wins(self, monkeypatch):
        write_config({"N8N_WEBHOOK_URL": "https://file.example/hook"})
        monkeypatch.setenv("N8N_WEBHOOK_URL", "https://env.example/hook")
        monkeypatch.setenv("CCUSAGE_USER_ID", "alice")

        cfg = get_config(interactive=False)
        assert cfg.webhook_url == "https://env.example/hook"
        assert cfg.user_id == "alice"

    def test_environment_user_falls_back_to_login(self, monkeypatch):
        monkeypatch.setenv("N8N_WEBHOOK_URL", "https://env.example/hook")
        assert get_config(interactive=False).user_id == "tester"

    def test_config_file(self):
        write_config({"N8N_WEBHOOK_URL": "https://file.example/hook", "CCUSAGE_USER_ID": "bob"})
        cfg = get_config(interactive=False)
        assert cfg.webhook_url == "https://file.example/hook"
        assert cfg.user_id == "bob"
        assert cfg.ccusage_command == "ccusage daily"

    def test_command_override(self, monkeypatch):
        monkeypatch.setenv("CCUSAGE_COMMAND", "npx ccusage@latest daily")
        assert get_config(interactive=False).ccusage_command == "npx ccusage@latest daily"

    def test_nothing_configured(self, capsys):
        cfg = get_config(interactive=False)
        assert cfg.webhook_url is None
        assert cfg.user_id == "tester"
        assert "No configuration found" in capsys.readouterr().err

    def test_messages_stay_off_stdout(self, monkeypatch, capsys):
        monkeypatch.setenv("N8N_WEBHOOK_URL", "https://env.example/hook")
        get_config(interactive=False)
        assert capsys.readouterr().out == ""


class TestFiles:
    def test_save_and_load(self):
        save_config(TrackerConfig(webhook_url="https://x.example/hook", user_id="carol"))
        data = load_config()
        assert data["N8N_WEBHOOK_URL"] == "https://x.example/hook"
        assert data["CCUSAGE_USER_ID"] == "carol"

    def test_missing_file(self):
        assert load_config() == {}

    def test_corrupt_file(self, capsys):
        config.CONFIG_FILE.parent.mkdir(parents=True)
        config.CONFIG_FILE.write_text("{not json")
        assert load_config() == {}
        assert "Error loading config file" in capsys.readouterr().err

    def test_has_config(self, monkeypatch):
        assert has_config() is False
        write_config({"N8N_WEBHOOK_URL": "https://file.example/hook"})
        assert has_config() is True


class TestSetup:
    def test_interactive_setup_saves(self):
        cfg = interactive_setup(answers("https://n8n.example/hook", "dave", "y"))
        assert cfg.webhook_url == "https://n8n.example/hook"
        assert cfg.user_id == "dave"
        assert load_config()["CCUSAGE_USER_ID"] == "dave"
        assert (config.CLAUDE_COMMANDS_DIR / "send-usage.md").exists()

    def test_interactive_setup_without_saving(self):
        cfg = interactive_setup(answers("", "", "n"))
        assert cfg.webhook_url is None
        assert cfg.user_id == "tester"
        assert not config.CONFIG_FILE.exists()

    def test_install_command_is_idempotent(self, capsys):
        first = install_claude_command()
        second = install_claude_command()
        assert first == second
        assert first.read_text() == SEND_USAGE_COMMAND
        assert "already installed" in capsys.readouterr().err

    @pytest.mark.parametrize("reply", ["yes", "Y"])
    def test_save_answers(self, reply):
        interactive_setup(answers("https://n8n.example/hook", "erin", reply))
        assert config.CONFIG_FILE.exists()

    def test_environment_command_beats_saved_file(self, monkeypatch):
        interactive_setup(answers("https://n8n.example/hook", "frank", "y"))
        assert load_config()["CCUSAGE_COMMAND"] == "ccusage daily"

        monkeypatch.setenv("CCUSAGE_COMMAND", "npx ccusage@latest daily")
        cfg = get_config(interactive=False)
        assert cfg.webhook_url == "https://n8n.example/hook"
        assert cfg.ccusage_command == "npx ccusage@latest daily"

    def test_unwritable_config_does_not_abort_setup(self, tmp_path, capsys):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")

        cfg = interactive_setup(answers("https://n8n.example/hook", "gina", "y"),
                                config_path=blocker / "ccusage-mcp" / "config.json")
        assert cfg.user_id == "gina"
        assert "Error saving config file" in capsys.readouterr().err
        assert (config.CLAUDE_COMMANDS_DIR / "send-usage.md").exists()
