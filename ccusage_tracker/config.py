"""
Configuration for the ccusage tracker.

Resolution order:
1. --setup flag: interactive setup
2. Environment variables (N8N_WEBHOOK_URL, CCUSAGE_USER_ID, CCUSAGE_COMMAND)
3. ~/.ccusage-mcp/config.json
4. Interactive setup, only when stdin is a terminal

Status messages go to stderr; stdout carries the MCP protocol.
"""

import json
import os
import socket
import sys
from pathlib import Path
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

# Paths
CONFIG_DIR = Path.home() / ".ccusage-mcp"
CONFIG_FILE = CONFIG_DIR / "config.json"
CLAUDE_COMMANDS_DIR = Path.home() / ".claude" / "commands"

DEFAULT_CCUSAGE_COMMAND = "ccusage daily"

SEND_USAGE_COMMAND = """---
description: Send today's Claude token usage to the team tracker
---

Use the `send-usage` tool from the ccusage-tracker MCP server to report today's token usage.
If the user gave a note, pass it as the `note` argument: $ARGUMENTS
Show the summary the tool returns.
"""


def default_user_id() -> str:
    return os.environ.get("USER") or socket.gethostname()


class TrackerConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    webhook_url: Optional[str] = Field(default=None, alias="N8N_WEBHOOK_URL")
    user_id: str = Field(default_factory=default_user_id, alias="CCUSAGE_USER_ID")
    ccusage_command: str = Field(default=DEFAULT_CCUSAGE_COMMAND, alias="CCUSAGE_COMMAND")


def _status(message: str):
    print(message, file=sys.stderr)


def load_config(path: Path = None) -> dict:
    """Load configuration from file. Returns {} if missing or unreadable."""
    path = path or CONFIG_FILE
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            config = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        _status(f"Error loading config file: {e}")
        return {}
    if not isinstance(config, dict):
        _status(f"Ignoring config file {path}: expected a JSON object")
        return {}
    _status(f"Loaded configuration from: {path}")
    return config


def save_config(config: TrackerConfig, path: Path = None) -> bool:
    """Save configuration to file, creating the directory if needed.

    Returns False when the file could not be written; setup carries on
    with the in-memory config.
    """
    path = path or CONFIG_FILE
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(config.model_dump(by_alias=True), f, indent=2)
    except OSError as e:
        _status(f"Error saving config file: {e}")
        return False
    _status(f"Configuration saved to: {path}")
    return True


def install_claude_command(commands_dir: Path = None) -> Path:
    """Install the /send-usage slash command for Claude Code."""
    commands_dir = commands_dir or CLAUDE_COMMANDS_DIR
    commands_dir.mkdir(parents=True, exist_ok=True)
    target = commands_dir / "send-usage.md"
    if target.exists() and target.read_text(encoding="utf-8") == SEND_USAGE_COMMAND:
        _status(f"/send-usage command already installed at: {target}")
        return target
    target.write_text(SEND_USAGE_COMMAND, encoding="utf-8")
    _status(f"Installed /send-usage command at: {target}")
    return target


def interactive_setup(input_fn: Callable[[str], str] = input, config_path: Path = None,
                      commands_dir: Path = None) -> TrackerConfig:
    """Prompt for the webhook URL and user name, optionally saving them."""
    _status("\nccusage tracker setup\n")

    _status("Step 1: Webhook configuration")
    _status("Enter your n8n webhook URL (from your n8n workflow):")
    webhook_url = input_fn("Webhook URL: ").strip()

    _status("\nStep 2: User identification")
    _status("Enter your name (for tracking in the spreadsheet):")
    user_id = input_fn("Your name: ").strip()

    config = TrackerConfig(
        webhook_url=webhook_url or None,
        user_id=user_id or default_user_id(),
    )

    _status("\nWould you like to save this configuration for future use? (y/n)")
    save = input_fn("Save? ").strip().lower()
    if save in ("y", "yes"):
        save_config(config, config_path)

    install_claude_command(commands_dir)
    return config


def get_config(setup: bool = False, interactive: Optional[bool] = None,
               config_path: Path = None) -> TrackerConfig:
    """Resolve configuration from setup, environment, file, or prompt."""
    if setup:
        return interactive_setup(config_path=config_path)

    command = os.environ.get("CCUSAGE_COMMAND") or DEFAULT_CCUSAGE_COMMAND

    # Priority 1: environment variables
    if os.environ.get("N8N_WEBHOOK_URL"):
        _status("Using configuration from environment variables")
        return TrackerConfig(
            webhook_url=os.environ["N8N_WEBHOOK_URL"],
            user_id=os.environ.get("CCUSAGE_USER_ID") or default_user_id(),
            ccusage_command=command,
        )

    # Priority 2: config file
    file_config = load_config(config_path)
    if file_config.get("N8N_WEBHOOK_URL"):
        _status("Using configuration from config file")
        return TrackerConfig(
            webhook_url=file_config["N8N_WEBHOOK_URL"],
            user_id=file_config.get("CCUSAGE_USER_ID") or default_user_id(),
            ccusage_command=os.environ.get("CCUSAGE_COMMAND") or file_config.get("CCUSAGE_COMMAND")
            or DEFAULT_CCUSAGE_COMMAND,
        )

    # Priority 3: interactive setup, only when a person is at the terminal
    if interactive is None:
        interactive = sys.stdin.isatty()
    if interactive:
        _status("No configuration found. Starting interactive setup...")
        return interactive_setup(config_path=config_path)

    _status("Warning: No configuration found. Please set N8N_WEBHOOK_URL")
    return TrackerConfig(ccusage_command=command)


def has_config(config_path: Path = None) -> bool:
    if os.environ.get("N8N_WEBHOOK_URL"):
        return True
    return bool(load_config(config_path).get("N8N_WEBHOOK_URL"))
