"""Business date (operating day) resolution.

A business date starts at the rollover time in the property's timezone.
With a 04:00 rollover, a payment taken at 02:00 on Tuesday belongs to
Monday's business date.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from checkcore.core.config import settings

BusinessDateProvider = Callable[[], str]


def parse_rollover(value: str) -> time:
    hours, minutes = (int(part) for part in value.split(":"))
    return time(hours, minutes)


def resolve_business_date(
    now: Optional[datetime] = None,
    rollover: Optional[str] = None,
    tz_name: Optional[str] = None,
) -> str:
    """Return the YYYY-MM-DD business date that ``now`` falls into."""
    tz = ZoneInfo(tz_name or settings.timezone)
    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    local = moment.astimezone(tz)

    cutoff = parse_rollover(rollover or settings.business_date_rollover)
    day: date = local.date()
    if local.time() < cutoff:
        day -= timedelta(days=1)
    return day.isoformat()


def current_business_date() -> str:
    """Default provider used by the check lifecycle."""
    return resolve_business_date()
