from __future__ import annotations

import math
import re
from typing import Any, Mapping, Optional

from keksobooking.services.types import Location

NUMERIC_FIELDS = ("guests", "price", "rooms")

# Ranges of the INTEGER and BIGINT columns the parsed values end up in.
INT_RANGE = (-(2**31), 2**31 - 1)
BIGINT_RANGE = (-(2**63), 2**63 - 1)

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def parse_int(value: Any, bounds: Optional[tuple[int, int]] = None) -> int | float:
    """Parse ``value`` as a base-10 integer the way a browser's ``parseInt`` does.

    Leading whitespace, an optional sign and the leading run of digits are
    used; trailing text is ignored. Anything without leading digits returns
    ``math.nan`` instead of raising, as does a result outside ``bounds``.
    """

    if isinstance(value, bool):
        return math.nan
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return math.nan
        parsed = int(value)
    elif isinstance(value, str):
        match = _LEADING_INT.match(value)
        if not match:
            return math.nan
        parsed = int(match.group(1))
    else:
        return math.nan

    if bounds is not None and not bounds[0] <= parsed <= bounds[1]:
        return math.nan
    return parsed


def is_nan(value: Any) -> bool:
    return isinstance(value, float) and math.isnan(value)


def normalize_submission(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Return a shallow copy of ``raw`` with the numeric fields parsed."""

    normalized = dict(raw)
    for key in NUMERIC_FIELDS:
        normalized[key] = parse_int(raw.get(key))
    return normalized


def derive_location(address: str) -> Location:
    """Split ``"x,y"`` into integer coordinates; bad or oversized halves become NaN."""

    head, _, tail = str(address).partition(",")
    return Location(x=parse_int(head, INT_RANGE), y=parse_int(tail, INT_RANGE))
