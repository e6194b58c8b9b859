"""
Type-aware value comparison.

Incoming batches often come from JSON, CSV or form data while the store hands
back typed values, so ``"1"`` and ``1`` or two spellings of the same instant
must compare equal. Everything here is pure and side-effect free.
"""

import json
import re
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Hashable, Optional
from uuid import UUID

_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_BOOLEAN_WORDS = {"true": Decimal(1), "false": Decimal(0)}


def parse_datetime(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 date or datetime string, returning None if it is not one."""
    text = value.strip()
    if len(text) < 10 or text[4] != "-":
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _instant(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _number(value: Any) -> Decimal:
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def normalize_value(value: Any) -> Hashable:
    """
    Return a hashable canonical form of ``value``.

    Numbers, booleans and numeric strings collapse to Decimal; datetimes,
    dates and ISO strings collapse to naive UTC datetimes; JSON containers
    are serialized with sorted keys.
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, bool):
        return ("num", Decimal(int(value)))
    if isinstance(value, float) and value != value:
        return ("num", "nan")
    if isinstance(value, (int, float, Decimal)):
        return ("num", _number(value))
    if isinstance(value, datetime):
        return ("dt", _instant(value))
    if isinstance(value, date):
        return ("dt", datetime.combine(value, time()))
    if isinstance(value, (bytes, bytearray, memoryview)):
        try:
            value = bytes(value).decode("utf-8")
        except UnicodeDecodeError:
            return ("bytes", bytes(value))
    if isinstance(value, UUID):
        return ("str", str(value))
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _BOOLEAN_WORDS:
            return ("num", _BOOLEAN_WORDS[lowered])
        if _NUMBER_RE.match(lowered):
            try:
                return ("num", Decimal(lowered))
            except InvalidOperation:
                pass
        parsed = parse_datetime(value)
        if parsed is not None:
            return ("dt", _instant(parsed))
        return ("str", value)
    if isinstance(value, (dict, list, tuple)):
        return ("json", json.dumps(value, sort_keys=True, default=str))
    try:
        hash(value)
    except TypeError:
        return ("other", repr(value))
    return ("other", value)


def values_equal(left: Any, right: Any) -> bool:
    """
    Compare a candidate value with a stored one.

    Two plain strings are compared verbatim unless both are timestamps, so
    ``"007"`` and ``"7"`` stay different while differently formatted instants
    do not.
    """
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, str) and isinstance(right, str):
        if left == right:
            return True
        left_dt, right_dt = parse_datetime(left), parse_datetime(right)
        if left_dt is None or right_dt is None:
            return False
        return _instant(left_dt) == _instant(right_dt)
    return normalize_value(left) == normalize_value(right)


def _key_part(value: Any) -> Hashable:
    if isinstance(value, str):
        parsed = parse_datetime(value)
        if parsed is not None:
            return ("dt", _instant(parsed))
        return ("str", value)
    return normalize_value(value)


def normalize_key(values: Any) -> tuple:
    """
    Canonical form of a unique-key tuple, usable as a dict key.

    Strings stay verbatim unless they are timestamps, so ``"007"`` and
    ``"7"`` are two keys, as they are to the store.
    """
    return tuple(_key_part(value) for value in values)


def loose_key(values: Any) -> tuple:
    """Key under which ``"7"`` and ``7`` collide; confirm hits with ``values_equal``."""
    return tuple(normalize_value(value) for value in values)
