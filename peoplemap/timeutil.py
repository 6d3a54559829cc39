"""UTC helpers shared by the Graph, history and HTTP layers."""

import re
from datetime import datetime, timezone
from typing import Any, Optional

# Graph returns up to 7 fractional digits; fromisoformat before 3.11 only takes 3 or 6
_FRACTION = re.compile(r"(?<=:\d\d)\.(\d+)")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _normalize_fraction(text: str) -> str:
    return _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)


def parse_iso_utc(value: Any) -> Optional[datetime]:
    """ISO 8601 string (trailing Z allowed, any fraction length) to an aware UTC datetime; None if unparseable."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = _normalize_fraction(value.strip().replace("Z", "+00:00"))
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return ensure_utc(parsed)
