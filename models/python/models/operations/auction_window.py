"""
Weekly auction window.

Auctions run on a shared weekly cycle on the London civil calendar: each window
opens Monday 01:00 and closes Sunday 23:00 local time.  Boundaries are computed
on local dates and returned as aware UTC datetimes, so a window that spans a
DST change is 165 or 167 hours long instead of the usual 166, rather than
drifting by an hour.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

LONDON = ZoneInfo("Europe/London")

WINDOW_OPENS_AT = time(1, 0)
WINDOW_CLOSES_AT = time(23, 0)


@dataclass(frozen=True)
class AuctionWindow:
    now: datetime
    current_start: datetime
    current_end: datetime
    next_start: datetime
    next_end: datetime

    @property
    def is_live(self) -> bool:
        return self.current_start <= self.now < self.current_end

    @property
    def is_coming(self) -> bool:
        return self.now < self.current_start


def _london_to_utc(day: date, at: time) -> datetime:
    return datetime.combine(day, at, tzinfo=LONDON).astimezone(timezone.utc)


def _window_bounds(monday: date) -> tuple[datetime, datetime]:
    return _london_to_utc(monday, WINDOW_OPENS_AT), _london_to_utc(monday + timedelta(days=6), WINDOW_CLOSES_AT)


def get_auction_window(now: datetime) -> AuctionWindow:
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")
    now = now.astimezone(timezone.utc)

    local_today = now.astimezone(LONDON).date()
    monday = local_today - timedelta(days=local_today.weekday())
    current_start, current_end = _window_bounds(monday)

    # Between Monday 00:00 and 01:00 the previous week's window is still current
    if now < current_start:
        monday -= timedelta(days=7)
        current_start, current_end = _window_bounds(monday)

    next_start, next_end = _window_bounds(monday + timedelta(days=7))

    return AuctionWindow(
        now=now,
        current_start=current_start,
        current_end=current_end,
        next_start=next_start,
        next_end=next_end,
    )
