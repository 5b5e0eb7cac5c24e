from __future__ import annotations

import math
import re
from datetime import datetime, timedelta, timezone
from typing import Optional


_MONEY_RE = re.compile(r"-?\d{1,3}(?:,\d{3})+(?:\.\d+)?|-?\d+(?:\.\d+)?")
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_amount(value: str | None) -> Optional[float]:
    """Parse a typed amount such as "900", "1,250.50" or "฿ 2,500".

    The whole string must be one amount: "1,25", "900abc" and "12.5.3" give None.
    """
    if not value:
        return None

    cleaned = value.strip()
    cleaned = cleaned.replace("฿", "").replace("$", "").replace("THB", "")
    cleaned = cleaned.replace(" ", "")

    match = _MONEY_RE.fullmatch(cleaned)
    if not match:
        return None
    return float(match.group(0).replace(",", ""))


def approx_equal(left: float | None, right: float | None, tolerance: float = 0.02) -> bool:
    if left is None or right is None:
        return False

    if math.isclose(left, right, abs_tol=tolerance, rel_tol=0.0):
        return True

    return False


def iso_timestamp(moment: datetime) -> str:
    """Format *moment* as UTC ISO-8601 with milliseconds and a trailing Z."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def epoch_millis(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - _EPOCH) // timedelta(milliseconds=1)
