#!/usr/bin/env python3
"""
ccusage tracker MCP server.

Exposes a single tool, send-usage, which runs ccusage, parses today's row
from the daily table and posts it to the team's n8n webhook.

Usage:
    ccusage-tracker            # serve over stdio
    ccusage-tracker --setup    # interactive configuration, then exit

Environment variables:
    N8N_WEBHOOK_URL: webhook receiving the usage payload
    CCUSAGE_USER_ID: name reported with the usage (defaults to $USER)
    CCUSAGE_COMMAND: ccusage invocation (defaults to "ccusage daily")
"""

import argparse
import asyncio
from typing import Any

import httpx
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from ccusage_tracker.check_usage import CcusageError, format_summary, run_ccusage
from ccusage_tracker.config import TrackerConfig, get_config
from ccusage_tracker.delivery import DeliveryError, build_payload, send_usage
from ccusage_tracker.usage_parser import derive_date_keys, parse_usage

# Initialize server
app = Server("ccusage-tracker")

# Loaded in main() or lazily on first tool call
_config = None


def get_tracker_config() -> TrackerConfig:
    global _config
    if _config is None:
        _config = get_config(interactive=False)
    return _config


def set_tracker_config(config: TrackerConfig):
    global _config
    _config = config


@app.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools."""
    return [
        Tool(
            name="send-usage",
            description="Send today's Claude token usage to the team spreadsheet via n8n",
            inputSchema={
                "type": "object",
                "properties": {
                    "note": {
                        "type": "string",
                        "description": "Optional note or comment about the usage"
                    },
                    "date": {
                        "type": "string",
                        "description": "Day to report as YYYY-MM-DD (defaults to today, local time)"
                    }
                }
            }
        ),
    ]


def send_today_usage(note: str = "", day: str = None) -> str:
    """Run ccusage, parse and deliver. Returns the text shown to the user."""
    config = get_tracker_config()
    if not config.webhook_url:
        return ("Error: N8N_WEBHOOK_URL is not configured. "
                "Please run with --setup flag or set it in your environment.")

    keys = derive_date_keys(day)
    usage_output = run_ccusage(config.ccusage_command)
    record = parse_usage(usage_output, keys.full_date)

    if not record.found:
        return f"⚠️ {record.message}. Nothing was sent; ccusage has no row for that day yet."

    payload = build_payload(record, config.user_id, note, raw_output=usage_output)
    response_text = send_usage(config.webhook_url, payload)

    return (
        "✅ Token usage data sent successfully!\n\n"
        f"{format_summary(record, config.user_id, note)}\n\n"
        f"Response from n8n: {response_text or 'Success'}"
    )


@app.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Handle tool calls."""
    arguments = arguments or {}

    if name != "send-usage":
        return [TextContent(
            type="text",
            text=f"Unknown tool: {name}"
        )]

    try:
        # ccusage and the webhook POST block; keep them off the stdio loop
        text = await asyncio.to_thread(
            send_today_usage,
            note=arguments.get("note", ""),
            day=arguments.get("date") or None,
        )
    except CcusageError as e:
        text = f"Error: {e}"
    except ValueError as e:
        text = f"Error: Invalid date {arguments.get('date')!r}: {e}"
    except DeliveryError as e:
        # Sanitize webhook errors to avoid echoing full response bodies
        if e.status_code == 404:
            error_msg = "Webhook not found (HTTP 404) - check N8N_WEBHOOK_URL"
        elif e.status_code in (401, 403):
            error_msg = f"Webhook rejected the request (HTTP {e.status_code})"
        elif e.status_code >= 500:
            error_msg = f"Webhook server error (HTTP {e.status_code})"
        else:
            error_msg = f"HTTP error {e.status_code}: {e.body[:200]}"
        text = f"Error: Failed to send data to n8n: {error_msg}"
    except httpx.RequestError as e:
        text = f"Error: Network error - {type(e).__name__}"

    return [TextContent(
        type="text",
        text=text
    )]


async def serve():
    """Run the MCP server over stdio."""
    async with stdio_server() as (read_stream, write_stream):
        await app.run(read_stream, write_stream, app.create_initialization_options())


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="ccusage-tracker", description="ccusage tracker MCP server")
    parser.add_argument("--setup", action="store_true", help="Run interactive setup and exit")
    args, extra = parser.parse_known_args(argv)

    if args.setup or "setup" in extra:
        get_config(setup=True)
        return 0

    set_tracker_config(get_config())
    asyncio.run(serve())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
