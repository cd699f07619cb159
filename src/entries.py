"""
Entry payload helpers shared by the builders and editors.

Covers comma-separated input, timeline event parsing and time normalisation,
and the text previews shown for tables, lists and timelines.
"""

import re
from typing import Dict, List, Optional

TIME_RE = re.compile(r"^(\d{1,2})(?::|\s)?(\d{2})?\s*(am|pm)?$", re.IGNORECASE)
# Only a dash, en dash or em dash separates time from description; colons stay in the time
EVENT_RE = re.compile(r"^(.+?)\s*[-–—]\s*(.+)$")

NONE_LABEL = "(none)"


def split_csv(text: str) -> List[str]:
    """Comma-separated names (columns, tags): trimmed, empties dropped."""
    return [part.strip() for part in text.split(",") if part.strip()]


def split_row(text: str) -> List[str]:
    """Comma-separated row values: trimmed, empties kept so the width is what was typed."""
    return [part.strip() for part in text.split(",")]


def normalize_time(value: str) -> str:
    """
    Normalise common time spellings: 9, 9am, 9:00, 9:00pm, 09 00 pm, 0900pm.

    Returns H:MM or H:MM AM/PM; anything else (e.g. 'Morning') is returned trimmed.
    """
    if not value:
        return ""
    s = str(value).strip()
    match = TIME_RE.match(s)
    if not match:
        return s
    hour = int(match.group(1))
    minutes = match.group(2) or "00"
    meridiem = match.group(3)
    if meridiem:
        return f"{hour}:{minutes} {meridiem.upper()}"
    return f"{hour}:{minutes}"


def parse_event(text: str) -> Dict[str, str]:
    """Split 'TIME - DESCRIPTION' into an event; lines without a dash have no time."""
    stripped = text.strip()
    match = EVENT_RE.match(stripped)
    if match:
        return {"time": normalize_time(match.group(1).strip()), "description": match.group(2).strip()}
    return {"time": "", "description": stripped}


def format_event(event: Dict[str, str], separator: str = "—") -> str:
    time = (event.get("time") or "").strip()
    description = event.get("description") or ""
    if time:
        return f"{time} {separator} {description}"
    return description


def format_row(row: List[str]) -> str:
    return " | ".join(row)


def format_tags(tags: Optional[List[str]]) -> str:
    return ", ".join(tags or []) or NONE_LABEL


def reconcile_rows(rows: List[List[str]], width: int) -> List[List[str]]:
    """Pad or truncate every row to the column count."""
    adjusted = []
    for row in rows:
        if len(row) < width:
            adjusted.append(list(row) + [""] * (width - len(row)))
        else:
            adjusted.append(list(row[:width]))
    return adjusted


def memory_summary(memory: Dict) -> str:
    """One-line listing used for retrieve results."""
    memory_id = memory.get("id", "?")
    entry_type = memory.get("type") or "text"
    text = memory.get("content") or memory.get("description") or str(memory_id)
    return f"#{memory_id} [{entry_type}] {text}"
