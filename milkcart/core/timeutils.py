"""Local civil time helpers. Delivery cutoffs only make sense in IST."""
from datetime import datetime, date, timezone
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo

from milkcart.config import settings


@lru_cache()
def get_local_timezone() -> ZoneInfo:
    return ZoneInfo(settings.TIMEZONE)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_local(moment: Optional[datetime] = None) -> datetime:
    """Convert an instant to local civil time. Naive values are taken as UTC."""
    if moment is None:
        moment = utc_now()
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(get_local_timezone())


def local_today(moment: Optional[datetime] = None) -> date:
    return to_local(moment).date()


def local_day_bounds(day: date) -> tuple[datetime, datetime]:
    """Start (inclusive) and end (exclusive) of a local day, as UTC instants."""
    tz = get_local_timezone()
    start = datetime(day.year, day.month, day.day, tzinfo=tz)
    end = datetime.fromordinal(day.toordinal() + 1).replace(tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def local_month_start(moment: Optional[datetime] = None) -> datetime:
    """First instant of the current local month, as UTC."""
    local = to_local(moment)
    start = datetime(local.year, local.month, 1, tzinfo=get_local_timezone())
    return start.astimezone(timezone.utc)
