#!/usr/bin/env python3
"""
Check today's Claude token usage via ccusage.
Runs ccusage, parses the daily table and optionally sends it to the webhook.
"""

import argparse
import json
import os
import shlex
import subprocess
import sys
from pathlib import Path

import httpx

from ccusage_tracker.config import DEFAULT_CCUSAGE_COMMAND, get_config
from ccusage_tracker.delivery import DeliveryError, build_payload, send_usage
from ccusage_tracker.usage_parser import UsageRecord, parse_usage

CCUSAGE_TIMEOUT = 120


class CcusageError(Exception):
    """ccusage could not be run or exited with an error."""


def run_ccusage(command: str = None, timeout: int = CCUSAGE_TIMEOUT) -> str:
    """Run ccusage and return its stdout.

    Colour is disabled through NO_COLOR; the parser strips any ANSI codes
    that get through anyway.
    """
    args = shlex.split(command or DEFAULT_CCUSAGE_COMMAND)
    env = dict(os.environ, NO_COLOR="1", FORCE_COLOR="0")
    try:
        result = subprocess.run(
            args,
            capture_output=True,
            text=True,
            check=True,
            timeout=timeout,
            env=env,
        )
    except FileNotFoundError as e:
        raise CcusageError(f"Failed to execute ccusage: {e}. Make sure ccusage is installed and configured.") from e
    except subprocess.CalledProcessError as e:
        detail = (e.stderr or "").strip() or f"exit status {e.returncode}"
        raise CcusageError(f"Failed to execute ccusage: {detail}") from e
    except subprocess.TimeoutExpired as e:
        raise CcusageError(f"ccusage timed out after {timeout}s") from e

    return result.stdout


def format_summary(record: UsageRecord, user: str, note: str = "") -> str:
    """Human-readable summary of a parsed usage record."""
    lines = [
        f"📊 Usage for {record.date}:",
        f"- Total Tokens: {record.total_tokens:,}",
        f"- Input: {record.input_tokens:,}",
        f"- Output: {record.output_tokens:,}",
        f"- Cache Creation: {record.cache_creation_tokens:,}",
        f"- Cache Read: {record.cache_read_tokens:,}",
        f"- Cost: ${record.total_cost:.2f}",
        f"- User: {user}",
    ]
    if note:
        lines.append(f"- Note: {note}")
    if record.models:
        # Each model is credited the whole day's total
        lines.append(f"- Models (approximate): {', '.join(record.models)}")
    return "\n".join(lines)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ccusage-check",
        description="Parse today's usage from ccusage and optionally send it to the webhook",
    )
    parser.add_argument("--date", help="Day to report (YYYY-MM-DD), defaults to today in local time")
    parser.add_argument("--file", type=Path, help="Parse saved ccusage output instead of running ccusage")
    parser.add_argument("--json", action="store_true", help="Print the parsed record as JSON")
    parser.add_argument("--verbose", action="store_true", help="Print the parser trace to stderr")
    parser.add_argument("--send", action="store_true", help="Send the usage to the configured webhook")
    parser.add_argument("--note", default="", help="Note to attach when sending")
    return parser


def main(argv=None) -> int:
    """Main execution flow."""
    args = build_arg_parser().parse_args(argv)
    config = get_config(interactive=False)

    if args.file:
        try:
            usage_text = args.file.read_text(encoding="utf-8")
        except OSError as e:
            print(f"ERROR: Could not read {args.file}: {e}", file=sys.stderr)
            return 1
    else:
        try:
            usage_text = run_ccusage(config.ccusage_command)
        except CcusageError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1

    try:
        record = parse_usage(usage_text, args.date, verbose=args.verbose)
    except ValueError as e:
        print(f"ERROR: Invalid date {args.date!r}: {e}", file=sys.stderr)
        return 1

    for step in record.trace:
        print(f"  trace: {step}", file=sys.stderr)

    if not record.found:
        print(f"ERROR: {record.message}", file=sys.stderr)
        if args.verbose:
            print("Raw output:", file=sys.stderr)
            print(usage_text, file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps({"date": record.date, **record.to_payload()}, indent=2))
    else:
        print(format_summary(record, config.user_id, args.note))

    if args.send:
        if not config.webhook_url:
            print("ERROR: N8N_WEBHOOK_URL is not configured. Run ccusage-tracker --setup or set it in your environment.",
                  file=sys.stderr)
            return 1
        payload = build_payload(record, config.user_id, args.note, raw_output=usage_text)
        try:
            response_text = send_usage(config.webhook_url, payload)
        except DeliveryError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1
        except httpx.RequestError as e:
            print(f"ERROR: Network error - {type(e).__name__}", file=sys.stderr)
            return 1
        print(f"✓ Sent to webhook: {response_text or 'Success'}")

    return 0


if __name__ == '__main__':
    sys.exit(main())
