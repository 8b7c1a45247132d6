"""Report Claude token usage parsed from ccusage's daily table."""

from ccusage_tracker.usage_parser import UsageNotFoundError, UsageRecord, parse_usage, require_found

__all__ = ["UsageNotFoundError", "UsageRecord", "parse_usage", "require_found"]
