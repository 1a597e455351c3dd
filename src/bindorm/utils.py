"""Shared helpers for naming and value parsing."""

from __future__ import annotations

import re
from datetime import date, datetime, time, tzinfo

DATE_FORMAT = "%Y-%m-%d"
DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"
TIME_FORMAT = "%H:%M:%S"

_FIRST_CAP = re.compile(r"(.)([A-Z][a-z]+)")
_ALL_CAP = re.compile(r"([a-z0-9])([A-Z])")

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})


def snake_string(name: str) -> str:
    """``UserProfile`` -> ``user_profile``; already-snake names pass through."""
    s = _FIRST_CAP.sub(r"\1_\2", name)
    return _ALL_CAP.sub(r"\1_\2", s).lower()


def camel_string(name: str) -> str:
    """``user_group`` -> ``UserGroup``."""
    return "".join(part[:1].upper() + part[1:] for part in name.split("_") if part)


def parse_bool(raw: str) -> bool:
    if raw in _TRUE_WORDS:
        return True
    if raw in _FALSE_WORDS:
        return False
    raise ValueError(f"invalid boolean literal {raw!r}")


def model_identity(cls: type) -> str:
    """Fully-qualified identity used to key models and ``rel_through``."""
    return f"{cls.__module__}.{cls.__qualname__}"


def parse_temporal(raw: str) -> datetime | date | time:
    """
    Parse a string by its length: 19+ chars is a datetime, 10+ a date,
    anything shorter a time of day.
    """
    if len(raw) >= 19:
        return datetime.strptime(raw[:19], DATETIME_FORMAT)
    if len(raw) >= 10:
        return datetime.strptime(raw[:10], DATE_FORMAT).date()
    return datetime.strptime(raw[:8], TIME_FORMAT).time()


def to_zone(value: datetime, zone: tzinfo | None) -> datetime:
    if zone is None or value.tzinfo is None:
        return value
    return value.astimezone(zone)
