import pytest

from ccusage_tracker import config


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep tests away from the real environment and home directory."""
    for name in ("N8N_WEBHOOK_URL", "CCUSAGE_USER_ID", "CCUSAGE_COMMAND"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("USER", "tester")
    monkeypatch.setattr(config, "CONFIG_FILE", tmp_path / "ccusage-mcp" / "config.json")
    monkeypatch.setattr(config, "CLAUDE_COMMANDS_DIR", tmp_path / "claude" / "commands")
    return tmp_path
