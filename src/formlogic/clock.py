"""
Wall-clock helpers.

Snapshots carry ISO-8601 timestamps. Everything that needs "now" takes
an injectable callable returning an aware datetime so tests can pin it.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: object) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware datetime.

    Naive values are taken as UTC. Returns None for anything that does
    not parse, including non-strings.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        # fromisoformat only accepts a trailing Z from 3.11 on
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_iso(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def elapsed_ms(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds() * 1000.0
