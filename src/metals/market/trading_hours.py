"""Metals market calendar.

Spot metals trade around the clock on weekdays with a weekly break from
Friday's close to Sunday evening (New York time), plus a few full-day
holidays. Prices quoted during the break are stale by definition, so the
live cache freezes on the Friday close instead of polling.
"""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from metals.config import MarketSettings

_FRIDAY = 4
_SATURDAY = 5
_SUNDAY = 6


class MarketCalendar:
    """Answers "is the market closed right now" and "what was the last trading day"."""

    def __init__(self, settings: MarketSettings | None = None) -> None:
        self._settings = settings or MarketSettings()
        self._tz = ZoneInfo(self._settings.timezone)
        self._holidays = frozenset(self._settings.holidays)

    def is_holiday(self, day: date) -> bool:
        return day.strftime("%m-%d") in self._holidays

    def is_market_closed(self, now: datetime) -> bool:
        """True during the weekend break or on a configured holiday."""
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        local = now.astimezone(self._tz)
        weekday = local.weekday()

        if self.is_holiday(local.date()):
            return True
        if weekday == _SATURDAY:
            return True
        if weekday == _FRIDAY and local.hour >= self._settings.weekly_close_hour:
            return True
        if weekday == _SUNDAY and local.hour < self._settings.weekly_reopen_hour:
            return True
        return False

    def last_trading_day(self, day: date) -> date:
        """The closest weekday strictly before `day` that is not a holiday.

        Monday, Saturday and Sunday all map to the preceding Friday.
        """
        candidate = day - timedelta(days=1)
        while candidate.weekday() >= _SATURDAY or self.is_holiday(candidate):
            candidate -= timedelta(days=1)
        return candidate

    def closure_start(self, now: datetime) -> datetime | None:
        """UTC instant the current closure began, or None while the market is open.

        A closure that runs into the weekend break or across back-to-back
        holidays starts at the earliest of them: Friday's weekly close, or
        local midnight of the first holiday.
        """
        if not self.is_market_closed(now):
            return None
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        today = now.astimezone(self._tz).date()

        day = today
        start = now
        while True:
            weekday = day.weekday()
            if self.is_holiday(day) or weekday == _SATURDAY or (weekday == _SUNDAY and day == today):
                start = self._local_time(day, 0)
            elif weekday == _FRIDAY:
                return self._local_time(day, self._settings.weekly_close_hour)
            else:
                return start
            day -= timedelta(days=1)

    def last_session_start(self, now: datetime) -> datetime:
        """UTC start (local midnight) of the last trading day before the current closure.

        While the market is open it is the most recent trading day up to today.
        """
        anchor = self.closure_start(now) or now
        if anchor.tzinfo is None:
            anchor = anchor.replace(tzinfo=timezone.utc)
        day = self.last_trading_day(anchor.astimezone(self._tz).date() + timedelta(days=1))
        return self._local_time(day, 0)

    def _local_time(self, day: date, hour: int) -> datetime:
        return datetime.combine(day, time(hour), tzinfo=self._tz).astimezone(timezone.utc)

    def __call__(self, now: datetime) -> bool:
        return self.is_market_closed(now)
