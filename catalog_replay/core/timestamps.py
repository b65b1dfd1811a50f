"""Commit timestamp parsing and formatting."""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

from pydantic_core import core_schema

# Lowest possible cursor value; a fresh front cursor starts here.
EPOCH = datetime.min.replace(tzinfo=UTC)

_FRACTION_RE = re.compile(r"\.(\d+)")
_MICROSECOND = timedelta(microseconds=1)
_ZERO = Decimal(0)


def _ordering_key(value: datetime) -> tuple[int, Decimal]:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return ((value - EPOCH) // _MICROSECOND, getattr(value, "sub_microsecond", _ZERO))


class CommitTimestamp(datetime):
    """
    UTC datetime that keeps fractional digits past microseconds.

    Catalog timestamps carry 100 ns ticks (seven fractional digits) and two
    commits can fall inside one microsecond. ``sub_microsecond`` holds the
    remainder as a fraction of a microsecond in ``[0, 1)``. Comparison and
    hashing use the full value and stay consistent with plain datetimes, so
    an instance with no remainder equals the matching ``datetime``.
    """

    sub_microsecond: Decimal = _ZERO

    @classmethod
    def from_datetime(cls, value: datetime, sub_microsecond: Decimal = _ZERO) -> CommitTimestamp:
        value = normalize_timestamp(value)
        stamp = cls(
            value.year,
            value.month,
            value.day,
            value.hour,
            value.minute,
            value.second,
            value.microsecond,
            tzinfo=UTC,
        )
        stamp.sub_microsecond = sub_microsecond
        return stamp

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, datetime):
            return NotImplemented
        return _ordering_key(self) == _ordering_key(other)

    def __ne__(self, other: object) -> bool:
        if not isinstance(other, datetime):
            return NotImplemented
        return _ordering_key(self) != _ordering_key(other)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, datetime):
            return NotImplemented
        return _ordering_key(self) < _ordering_key(other)

    def __le__(self, other: object) -> bool:
        if not isinstance(other, datetime):
            return NotImplemented
        return _ordering_key(self) <= _ordering_key(other)

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, datetime):
            return NotImplemented
        return _ordering_key(self) > _ordering_key(other)

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, datetime):
            return NotImplemented
        return _ordering_key(self) >= _ordering_key(other)

    def __hash__(self) -> int:
        if not self.sub_microsecond:
            return datetime.__hash__(self)
        return hash((datetime.__hash__(self), self.sub_microsecond))

    def __repr__(self) -> str:
        return f"CommitTimestamp({format_timestamp(self)!r})"

    def __reduce_ex__(self, protocol: Any) -> tuple:
        return (parse_timestamp, (format_timestamp(self),))

    @classmethod
    def __get_pydantic_core_schema__(cls, source_type: Any, handler: Any) -> core_schema.CoreSchema:
        return core_schema.no_info_plain_validator_function(
            parse_timestamp,
            serialization=core_schema.plain_serializer_function_ser_schema(format_timestamp),
        )


def normalize_timestamp(value: datetime) -> datetime:
    """Return a timezone-aware UTC datetime. Naive values are taken as UTC."""
    if isinstance(value, CommitTimestamp):
        return value
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_timestamp(value: str | datetime) -> CommitTimestamp:
    """
    Parse a catalog commit timestamp.

    Accepts ISO-8601 strings with a ``Z`` suffix, an explicit offset, or no
    offset at all (treated as UTC). Any number of fractional digits is kept
    exactly; digits past microseconds go to ``sub_microsecond``.

    Args:
        value: ISO-8601 string or datetime

    Returns:
        Timezone-aware UTC CommitTimestamp

    Raises:
        ValueError: If the value is not a recognizable timestamp
    """
    if isinstance(value, CommitTimestamp):
        return value
    if isinstance(value, datetime):
        return CommitTimestamp.from_datetime(value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid timestamp: {value!r}")

    text = value.strip()
    if text[-1] in ("Z", "z"):
        text = text[:-1] + "+00:00"

    sub_microsecond = _ZERO
    match = _FRACTION_RE.search(text)
    if match:
        digits = match.group(1)
        extra = digits[6:].rstrip("0")
        if extra:
            sub_microsecond = Decimal("0." + extra)
        text = text[: match.start()] + "." + digits[:6].ljust(6, "0") + text[match.end() :]

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise ValueError(f"Invalid timestamp: {value!r}") from e
    return CommitTimestamp.from_datetime(parsed, sub_microsecond)


def format_timestamp(value: datetime) -> str:
    """
    Format a timestamp as ISO-8601 UTC with a ``Z`` suffix.

    Seven fractional digits are written, the catalog's own precision; more
    are written only when the value carries them.
    """
    value = normalize_timestamp(value)
    sub_microsecond = getattr(value, "sub_microsecond", _ZERO)
    extra = format(sub_microsecond.normalize(), "f")[2:] if sub_microsecond else ""
    fraction = f"{value.microsecond:06d}{extra or '0'}"
    seconds = datetime(value.year, value.month, value.day, value.hour, value.minute, value.second)
    return f"{seconds.isoformat(timespec='seconds')}.{fraction}Z"
