"""
Parse the daily usage table printed by ccusage into a structured record.

Handles the layouts ccusage renders depending on terminal width:
- wide:    Date | Models | Input | Output | Cache Create | Cache Read | Total | Cost
- compact: Date | Models | Input | Output | Cost
- split date, where the year sits on one line and MM-DD on the next

The parser is a pure function of (text, reference date). It keeps no state
and never logs; pass verbose=True to get a trace back on the record.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

# CSI sequences: ESC [ params intermediates final
ANSI_ESCAPE_RE = re.compile(r'\x1b\[[0-?]*[ -/]*[@-~]')
COLUMN_SEPARATOR_RE = re.compile(r'[│┃|]')
FULL_DATE_RE = re.compile(r'\d{4}-\d{2}-\d{2}')
MODEL_BULLET_RE = re.compile(r'^[-•*·]\s*(\w.*)$')
NUMERIC_NOISE_RE = re.compile(r'[,\s$€£¥]')

HEADER_TOKEN = 'Date'
WIDE_COLUMNS = 8
COMPACT_COLUMNS = 5
ASCII_BORDER_CHARS = set('-=+|:')


def _is_border_char(char: str) -> bool:
    return '─' <= char <= '╿' or char in ASCII_BORDER_CHARS or char.isspace()


class LineKind(Enum):
    BLANK = 'blank'
    BORDER = 'border'
    HEADER = 'header'
    DATA = 'data'
    TEXT = 'text'


class ParserState(Enum):
    SCANNING = 'scanning'
    MATCHED_PRIMARY = 'matched_primary'
    AGGREGATING_MODELS = 'aggregating_models'
    DONE = 'done'


@dataclass(frozen=True)
class DateKeys:
    full_date: str
    month_day: str
    year: str


@dataclass
class UsageRecord:
    """Usage for one day.

    models maps every model seen on the day to the day's total_tokens. ccusage
    does not print a per-model breakdown, so those counts are approximate.
    When found is False all numbers are zero and mean "no data", not "no usage".
    """
    date: str
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    models: Dict[str, int] = field(default_factory=dict)
    found: bool = False
    layout: Optional[str] = None
    message: Optional[str] = None
    trace: List[str] = field(default_factory=list, compare=False, repr=False)

    def to_payload(self) -> dict:
        return {
            'inputTokens': self.input_tokens,
            'outputTokens': self.output_tokens,
            'cacheCreationTokens': self.cache_creation_tokens,
            'cacheReadTokens': self.cache_read_tokens,
            'totalTokens': self.total_tokens,
            'totalCost': self.total_cost,
            'models': dict(self.models),
            'found': self.found,
        }


class UsageNotFoundError(LookupError):
    """No usage row for the requested date."""

    def __init__(self, date_str: str):
        self.date = date_str
        super().__init__(f"No usage data found for {date_str}")


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences, leaving every other character alone."""
    return ANSI_ESCAPE_RE.sub('', text)


def split_lines(text: str) -> List[str]:
    return strip_ansi(text).splitlines()


def derive_date_keys(reference: Union[date, datetime, str, None] = None) -> DateKeys:
    """Build the date strings ccusage prints for a day.

    Defaults to the local calendar date so a run just after midnight
    matches the operator's "today", not UTC's.
    """
    if reference is None:
        day = date.today()
    elif isinstance(reference, datetime):
        day = reference.date()
    elif isinstance(reference, date):
        day = reference
    else:
        day = date.fromisoformat(reference.strip())

    full_date = day.isoformat()
    return DateKeys(full_date=full_date, month_day=full_date[5:], year=full_date[:4])


def split_cells(line: str) -> List[str]:
    """Split a table line on the column separator, dropping blank cells."""
    return [cell.strip() for cell in COLUMN_SEPARATOR_RE.split(line) if cell.strip()]


def classify_line(line: str) -> LineKind:
    stripped = line.strip()
    if not stripped:
        return LineKind.BLANK
    if all(_is_border_char(c) for c in stripped):
        return LineKind.BORDER
    if not COLUMN_SEPARATOR_RE.search(stripped):
        return LineKind.TEXT
    cells = split_cells(stripped)
    if cells and cells[0] == HEADER_TOKEN:
        return LineKind.HEADER
    return LineKind.DATA


def parse_int_cell(cell: str) -> int:
    cleaned = NUMERIC_NOISE_RE.sub('', cell)
    if not cleaned.isdecimal():
        return 0
    return int(cleaned)


def parse_cost_cell(cell: str) -> float:
    cleaned = NUMERIC_NOISE_RE.sub('', cell)
    try:
        value = float(cleaned)
    except ValueError:
        return 0.0
    if not math.isfinite(value) or value < 0:
        return 0.0
    return value


def extract_model_name(cell: str) -> Optional[str]:
    """Return the model name from a bullet cell like '- opus-4', else None."""
    match = MODEL_BULLET_RE.match(cell.strip())
    if not match:
        return None
    return match.group(1).strip()


def _layout_for(cells: List[str]) -> Optional[str]:
    if len(cells) == WIDE_COLUMNS:
        return 'wide'
    if len(cells) == COMPACT_COLUMNS:
        return 'compact'
    return None


def _fill_numbers(record: UsageRecord, cells: List[str], layout: str):
    record.input_tokens = parse_int_cell(cells[2])
    record.output_tokens = parse_int_cell(cells[3])
    if layout == 'wide':
        record.cache_creation_tokens = parse_int_cell(cells[4])
        record.cache_read_tokens = parse_int_cell(cells[5])
        record.total_tokens = parse_int_cell(cells[6])
        record.total_cost = parse_cost_cell(cells[7])
    else:
        # Compact tables have no cache or total columns
        record.cache_creation_tokens = 0
        record.cache_read_tokens = 0
        record.total_tokens = record.input_tokens + record.output_tokens
        record.total_cost = parse_cost_cell(cells[4])
    record.layout = layout


def _is_year_cell(cell: str, keys: DateKeys) -> bool:
    if keys.year not in cell or FULL_DATE_RE.search(cell):
        return False
    # Model names like claude-sonnet-4-20250514 carry the year too
    return extract_model_name(cell) is None


def _matches_month_day(cell: str, keys: DateKeys) -> bool:
    return cell == keys.month_day or keys.month_day in cell


def _next_non_blank(lines: List[str], start: int) -> Optional[int]:
    for j in range(start, len(lines)):
        if classify_line(lines[j]) is not LineKind.BLANK:
            return j
    return None


def _match_row(lines: List[str], i: int, keys: DateKeys,
               trace: Optional[List[str]]) -> Optional[Tuple[List[str], int, List[str]]]:
    """Try to match the data row at index i against the target date.

    Returns (numeric cells, index of the last row consumed, extra model
    cells) or None when the row is not the target day.
    """
    cells = split_cells(lines[i])
    first = cells[0]

    if keys.full_date in first:
        if _layout_for(cells) is None:
            if trace is not None:
                trace.append(f"line {i + 1}: date matched but {len(cells)} columns is not a known layout, skipped")
            return None
        return cells, i, []

    if not _is_year_cell(first, keys):
        return None

    # Split date: year here, MM-DD on the next line
    j = _next_non_blank(lines, i + 1)
    if j is None or classify_line(lines[j]) is not LineKind.DATA:
        return None
    next_cells = split_cells(lines[j])
    if not _matches_month_day(next_cells[0], keys):
        return None

    if _layout_for(cells) is not None:
        return cells, i, []
    if _layout_for(next_cells) is not None:
        return next_cells, j, cells[1:2]
    if trace is not None:
        trace.append(f"lines {i + 1}-{j + 1}: split date matched but no row has a known layout, skipped")
    return None


def _collect_models(lines: List[str], start: int, keys: DateKeys,
                    trace: Optional[List[str]]) -> List[str]:
    """Gather model names from the sub-rows following the matched row."""
    models = []
    j = start
    while j < len(lines):
        kind = classify_line(lines[j])
        if kind is LineKind.BLANK:
            j += 1
            continue
        if kind is not LineKind.DATA:
            break

        cells = split_cells(lines[j])
        first = cells[0]
        if first == keys.month_day:
            candidates = cells[1:2]
        elif extract_model_name(first) is not None:
            # Empty date column, so the model cell shifted to the front
            candidates = cells[:1]
        else:
            if trace is not None:
                trace.append(f"line {j + 1}: '{first}' ends the day's rows")
            break

        for cell in candidates:
            name = extract_model_name(cell)
            if name:
                models.append(name)
                if trace is not None:
                    trace.append(f"line {j + 1}: model sub-row '{name}'")
        j += 1
    return models


def parse_usage(text: str, reference: Union[date, datetime, str, None] = None,
                *, verbose: bool = False) -> UsageRecord:
    """Extract one day's usage from ccusage table output.

    Scans top to bottom; the first row matching the date wins. Nothing is
    substituted when no row matches: the record comes back with found=False.
    """
    keys = derive_date_keys(reference)
    lines = split_lines(text)
    record = UsageRecord(date=keys.full_date)
    trace = record.trace if verbose else None

    state = ParserState.SCANNING
    match = None
    i = 0
    while i < len(lines):
        if classify_line(lines[i]) is LineKind.DATA:
            match = _match_row(lines, i, keys, trace)
            if match:
                state = ParserState.MATCHED_PRIMARY
                if trace is not None:
                    trace.append(f"line {i + 1}: matched {keys.full_date}")
                break
        i += 1

    if state is ParserState.SCANNING:
        record.message = f"No usage data found for {keys.full_date}"
        if trace is not None:
            trace.append(f"no row matched {keys.full_date}")
        return record

    cells, last_index, extra_model_cells = match
    layout = _layout_for(cells)
    _fill_numbers(record, cells, layout)
    record.found = True
    if trace is not None:
        trace.append(f"{layout} layout: {cells}")

    names = []
    for cell in [cells[1]] + extra_model_cells:
        name = extract_model_name(cell)
        if name:
            names.append(name)

    state = ParserState.AGGREGATING_MODELS
    if trace is not None:
        trace.append(f"{state.value} from line {last_index + 2}")
    names.extend(_collect_models(lines, last_index + 1, keys, trace))
    for name in names:
        record.models[name] = record.total_tokens

    state = ParserState.DONE
    if trace is not None:
        trace.append(f"{state.value}: {len(record.models)} model(s)")
    return record


def require_found(record: UsageRecord) -> UsageRecord:
    if not record.found:
        raise UsageNotFoundError(record.date)
    return record
