"""Coerce stored time values into timezone-aware UTC datetimes.

Documents written by different clients carry timestamps in several shapes:
native ``datetime`` objects, store wrappers exposing ``to_datetime()``,
``{"seconds": ..., "nanoseconds": ...}`` mappings, ISO-8601 strings and epoch
numbers. ``to_instant`` accepts all of them and never raises; anything absent
or unparseable becomes the current instant.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

# Epoch values above this are treated as milliseconds (year 5138 in seconds).
_EPOCH_MILLIS_THRESHOLD = 100_000_000_000


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_instant(value: Any) -> datetime:
    parsed = _parse(value)
    if parsed is None:
        if value is not None:
            logger.debug("unparseable timestamp %r; substituting current time", value)
        return utc_now()
    return parsed


def _parse(value: Any) -> datetime | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _as_utc(value)

    converter = getattr(value, "to_datetime", None) or getattr(value, "ToDatetime", None)
    if callable(converter):
        try:
            converted = converter()
        except (TypeError, ValueError, OverflowError):
            return None
        return _as_utc(converted) if isinstance(converted, datetime) else None

    if isinstance(value, Mapping):
        return _from_seconds_mapping(value)

    seconds_attr = getattr(value, "seconds", None)
    if _is_number(seconds_attr):
        return _from_epoch(seconds_attr, getattr(value, "nanoseconds", 0))

    if _is_number(value):
        if value > _EPOCH_MILLIS_THRESHOLD or value < -_EPOCH_MILLIS_THRESHOLD:
            return _from_epoch(value, scale=1000)
        return _from_epoch(value)

    if isinstance(value, str):
        return _from_string(value)

    return None


def _from_seconds_mapping(value: Mapping[str, Any]) -> datetime | None:
    seconds = value.get("seconds", value.get("_seconds"))
    if not _is_number(seconds):
        return None
    return _from_epoch(seconds, value.get("nanoseconds", value.get("_nanoseconds", 0)))


def _from_string(value: str) -> datetime | None:
    candidate = value.strip()
    if not candidate:
        return None
    try:
        return _as_utc(datetime.fromisoformat(candidate.replace("Z", "+00:00")))
    except ValueError:
        pass
    try:
        number = float(candidate)
    except ValueError:
        return None
    return _parse(number)


def _from_epoch(value: float, nanos: Any = 0, *, scale: int = 1) -> datetime | None:
    if not _is_number(nanos):
        nanos = 0
    try:
        return datetime.fromtimestamp(value / scale + nanos / 1_000_000_000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError, TypeError):
        return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
