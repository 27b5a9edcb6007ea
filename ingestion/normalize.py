from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from dateutil import parser as date_parser
from loguru import logger

from app.models import EventStatus, OptionType


TITLE_MAX_LEN = 256
PLATFORM_EVENT_ID_MAX_LEN = 128
OPTION_NAME_MAX_LEN = 64
RESULT_SOURCE_MAX_LEN = 256
TEAM_NAME_MAX_LEN = 128
UNTYPED_OPTION = ""

_FALLBACK_TIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%a, %d %b %Y %H:%M:%S %Z",
)

_DRAW_NAMES = {"draw", "tie"}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_list(value: Any) -> list[Any]:
    """Return value as a list when possible, decoding JSON strings."""
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return []
        return parsed if isinstance(parsed, list) else []
    return []


def truncate(value: str | None, limit: int, field_name: str) -> str:
    text = (value or "").strip()
    if len(text) <= limit:
        return text
    logger.info("Truncating {} from {} to {} chars", field_name, len(text), limit)
    return text[:limit]


def parse_time(value: Any, *, field_name: str = "time") -> datetime:
    """Parse a venue timestamp, falling back to now when nothing matches."""

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    text = str(value or "").strip()
    if text:
        try:
            parsed = date_parser.isoparse(text)
        except (ValueError, OverflowError):
            parsed = None
        if parsed is None:
            for fmt in _FALLBACK_TIME_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                except ValueError:
                    continue
                break
        if parsed is not None:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    logger.warning("Unparseable {} value {!r}; using now", field_name, value)
    return utcnow()


def parse_price(value: Any) -> float | None:
    """Return a probability in [0, 1] or None when the value is not numeric."""

    if value is None or value == "":
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if price != price:  # NaN
        return None
    return min(max(price, 0.0), 1.0)


def map_status(raw_status: str | None) -> str:
    status = (raw_status or "").strip().lower()
    if status == "open":
        return EventStatus.ACTIVE.value
    if status == "closed":
        return EventStatus.RESOLVED.value
    return EventStatus.CANCELED.value


def map_active_closed(active: bool, closed: bool) -> str:
    if active and not closed:
        return EventStatus.ACTIVE.value
    if not active and closed:
        return EventStatus.RESOLVED.value
    return EventStatus.CANCELED.value


def option_type_for(option_name: str) -> str:
    """Map a venue outcome label to win/draw/lose.

    Only literal Yes/No and draw labels carry a direction. Named outcomes such
    as team names stay untyped ("") and are matched by name only.
    """

    name = option_name.strip().lower()
    if name == "yes":
        return OptionType.WIN.value
    if name == "no":
        return OptionType.LOSE.value
    if name in _DRAW_NAMES:
        return OptionType.DRAW.value
    return UNTYPED_OPTION


def build_event_uuid(platform_id: int, platform_event_id: str) -> str:
    return f"{platform_id}_{platform_event_id}"


__all__ = [
    "OPTION_NAME_MAX_LEN",
    "PLATFORM_EVENT_ID_MAX_LEN",
    "RESULT_SOURCE_MAX_LEN",
    "TEAM_NAME_MAX_LEN",
    "TITLE_MAX_LEN",
    "UNTYPED_OPTION",
    "as_list",
    "build_event_uuid",
    "map_active_closed",
    "map_status",
    "option_type_for",
    "parse_price",
    "parse_time",
    "truncate",
    "utcnow",
]
