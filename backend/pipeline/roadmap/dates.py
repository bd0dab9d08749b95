"""Epoch-millisecond helpers shared by the ledger, reports and exports."""

from __future__ import annotations

import re
from datetime import datetime, timezone

MS_PER_DAY = 24 * 60 * 60 * 1000

_COMPACT_DATE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")


def to_epoch_ms(value: object) -> int | None:
    """Convert a feed date to epoch milliseconds.

    Numbers are assumed to already be epoch milliseconds and pass through
    unchanged. Strings are parsed as ISO-8601 (a trailing "Z" is accepted;
    naive values are UTC). Returns None for missing or unparseable input.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return int(dt.timestamp() * 1000)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.lstrip("-").isdigit():
            return int(text)
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp() * 1000)
    return None


def parse_capture_date(text: str) -> int:
    """Parse an operator-supplied date ("YYYYMMDD" or ISO-8601) to epoch ms.

    Raises:
        ValueError: If the text is not a recognizable date.
    """
    match = _COMPACT_DATE.match(text.strip())
    if match:
        year, month, day = (int(g) for g in match.groups())
        return int(datetime(year, month, day, tzinfo=timezone.utc).timestamp() * 1000)
    value = to_epoch_ms(text)
    if value is None:
        raise ValueError(f"Unrecognized date: {text!r} (use YYYYMMDD)")
    return value


def ms_to_datetime(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def ms_to_iso(value: int | None) -> str | None:
    """Render epoch ms as an ISO-8601 UTC string ("2022-03-04T00:00:00.000Z")."""
    if value is None:
        return None
    return ms_to_datetime(value).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def ms_to_hyphenated_date(value: int) -> str:
    """Render epoch ms as "YYYY-MM-DD" (used for export file names)."""
    return ms_to_datetime(value).strftime("%Y-%m-%d")


def ms_to_days(value: int | float) -> int:
    """Convert a millisecond duration to whole days (rounded)."""
    return round(value / MS_PER_DAY)


def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)
