"""Time helpers. Stored timestamps are naive UTC."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_midnight(now: datetime, tz_name: str) -> datetime:
    """Start of the local day containing ``now``, returned as naive UTC.

    Args:
        now: Naive UTC instant
        tz_name: IANA timezone name used for the local calendar
    """
    local = now.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(tz_name))
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc).replace(tzinfo=None)
