# Overview: UTC time helpers shared by models, services and document numbering.

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC 'now'; every stored timestamp uses this."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def business_day(dt: Optional[datetime] = None) -> str:
    """YYYYMMDD stamp for order, RMA and tracking numbers."""
    return (dt or utcnow()).strftime("%Y%m%d")


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a client-supplied ISO-8601 datetime (e.g. a shipment ETA).

    Blank -> None. Offsets and a trailing Z are folded into naive UTC;
    a value without offset is taken as UTC. Raises ValueError on junk.
    """
    if value is None or not value.strip():
        return None

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Serialize for JSON as second-precision ISO-8601 with 'Z'."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
