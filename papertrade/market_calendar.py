"""
US equity market calendar.

Pure function of wall-clock time: session state plus the instant of the
next session transition. The holiday and early-close tables are data
(bundled JSON, overridable via MARKET_CALENDAR_PATH).
"""

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional, Union
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

DEFAULT_CALENDAR_PATH = Path(__file__).parent / "data" / "market_calendar.json"
DEFAULT_TIMEZONE = "America/New_York"

MARKET_OPEN = time(9, 30)
MARKET_CLOSE = time(16, 0)
EARLY_CLOSE = time(13, 0)

# A year never has this many consecutive non-trading days
MAX_LOOKAHEAD_DAYS = 31


class SessionState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    EARLY_CLOSE = "EARLY_CLOSE"


@dataclass(frozen=True)
class MarketStatus:
    """Calendar answer for one instant."""
    state: SessionState
    next_transition: datetime  # session close when open, next session open when closed

    @property
    def is_open(self) -> bool:
        return self.state is not SessionState.CLOSED

    def time_to_transition(self, now: datetime) -> timedelta:
        return self.next_transition - now


class MarketCalendar:
    """Trading-day and session-hours rules for a single exchange."""

    def __init__(
        self,
        holidays: Iterable[Union[date, str]] = (),
        early_closes: Iterable[Union[date, str]] = (),
        tz: str = DEFAULT_TIMEZONE,
    ):
        self.holidays = frozenset(_as_date(d) for d in holidays)
        self.early_closes = frozenset(_as_date(d) for d in early_closes)
        self.tz = ZoneInfo(tz)

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "MarketCalendar":
        """Build a calendar from a JSON table (bundled default when path is None)."""
        calendar_path = Path(path) if path else DEFAULT_CALENDAR_PATH
        with calendar_path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)

        calendar = cls(
            holidays=data.get("holidays", []),
            early_closes=data.get("early_closes", []),
            tz=data.get("timezone", DEFAULT_TIMEZONE),
        )
        logger.info(
            "Market calendar loaded from %s: %d holidays, %d early closes",
            calendar_path,
            len(calendar.holidays),
            len(calendar.early_closes),
        )
        return calendar

    def is_trading_day(self, day: date) -> bool:
        return day.weekday() < 5 and day not in self.holidays

    def session_close_time(self, day: date) -> time:
        return EARLY_CLOSE if day in self.early_closes else MARKET_CLOSE

    def next_trading_day(self, day: date) -> date:
        """First trading day strictly after `day`."""
        candidate = day
        for _ in range(MAX_LOOKAHEAD_DAYS):
            candidate += timedelta(days=1)
            if self.is_trading_day(candidate):
                return candidate
        raise RuntimeError(f"No trading day within {MAX_LOOKAHEAD_DAYS} days after {day}")

    def status(self, now: datetime) -> MarketStatus:
        """Session state at `now` (naive datetimes are taken as UTC)."""
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        local = now.astimezone(self.tz)
        today = local.date()

        if self.is_trading_day(today):
            session_open = datetime.combine(today, MARKET_OPEN, tzinfo=self.tz)
            session_close = datetime.combine(today, self.session_close_time(today), tzinfo=self.tz)

            if session_open <= local < session_close:
                state = SessionState.EARLY_CLOSE if today in self.early_closes else SessionState.OPEN
                return MarketStatus(state=state, next_transition=session_close)

            if local < session_open:
                return MarketStatus(state=SessionState.CLOSED, next_transition=session_open)

        next_day = self.next_trading_day(today)
        return MarketStatus(
            state=SessionState.CLOSED,
            next_transition=datetime.combine(next_day, MARKET_OPEN, tzinfo=self.tz),
        )


def _as_date(value: Union[date, str]) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)
