"""Tests for the market calendar."""

import json
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from papertrade.market_calendar import MarketCalendar, SessionState

ET = ZoneInfo("America/New_York")


@pytest.fixture
def calendar():
    return MarketCalendar.load()


class TestSessionState:
    def test_early_close_day_morning_is_open_until_1pm(self, calendar):
        status = calendar.status(datetime(2025, 7, 3, 11, 0, tzinfo=ET))

        assert status.is_open
        assert status.state == SessionState.EARLY_CLOSE
        assert status.next_transition == datetime(2025, 7, 3, 13, 0, tzinfo=ET)

    def test_regular_session_open(self, calendar):
        status = calendar.status(datetime(2025, 7, 1, 10, 0, tzinfo=ET))

        assert status.state == SessionState.OPEN
        assert status.next_transition == datetime(2025, 7, 1, 16, 0, tzinfo=ET)

    def test_open_boundary_is_inclusive(self, calendar):
        status = calendar.status(datetime(2025, 7, 1, 9, 30, tzinfo=ET))
        assert status.state == SessionState.OPEN

    def test_close_boundary_is_exclusive(self, calendar):
        status = calendar.status(datetime(2025, 7, 1, 16, 0, tzinfo=ET))

        assert status.state == SessionState.CLOSED
        assert status.next_transition == datetime(2025, 7, 2, 9, 30, tzinfo=ET)

    def test_pre_open_points_to_same_day(self, calendar):
        status = calendar.status(datetime(2025, 7, 1, 8, 0, tzinfo=ET))

        assert status.state == SessionState.CLOSED
        assert status.next_transition == datetime(2025, 7, 1, 9, 30, tzinfo=ET)

    def test_after_early_close_skips_holiday_and_weekend(self, calendar):
        # 2025-07-04 is a holiday, then Saturday and Sunday
        status = calendar.status(datetime(2025, 7, 3, 14, 0, tzinfo=ET))

        assert status.state == SessionState.CLOSED
        assert status.next_transition == datetime(2025, 7, 7, 9, 30, tzinfo=ET)

    def test_weekend_is_closed(self, calendar):
        status = calendar.status(datetime(2025, 7, 5, 12, 0, tzinfo=ET))

        assert not status.is_open
        assert status.next_transition == datetime(2025, 7, 7, 9, 30, tzinfo=ET)

    def test_holiday_is_closed(self, calendar):
        status = calendar.status(datetime(2025, 12, 25, 11, 0, tzinfo=ET))

        assert status.state == SessionState.CLOSED
        assert status.next_transition == datetime(2025, 12, 26, 9, 30, tzinfo=ET)

    def test_naive_datetime_is_utc(self, calendar):
        # 14:00 UTC is 10:00 EDT
        status = calendar.status(datetime(2025, 7, 1, 14, 0))
        assert status.state == SessionState.OPEN

    def test_utc_input_converted_across_dst(self, calendar):
        # 14:45 UTC in January is 09:45 EST
        status = calendar.status(datetime(2025, 1, 14, 14, 45, tzinfo=timezone.utc))
        assert status.state == SessionState.OPEN

    def test_time_to_transition(self, calendar):
        now = datetime(2025, 7, 3, 11, 0, tzinfo=ET)
        status = calendar.status(now)
        assert status.time_to_transition(now) == timedelta(hours=2)


class TestTradingDays:
    def test_weekday_and_weekend(self):
        calendar = MarketCalendar()
        assert calendar.is_trading_day(date(2025, 7, 2))
        assert not calendar.is_trading_day(date(2025, 7, 5))

    def test_next_trading_day_skips_holidays(self):
        calendar = MarketCalendar(holidays=["2025-07-04"])
        assert calendar.next_trading_day(date(2025, 7, 3)) == date(2025, 7, 7)

    def test_next_trading_day_gives_up(self):
        start = date(2025, 1, 1)
        holidays = [start + timedelta(days=i) for i in range(1, 40)]
        calendar = MarketCalendar(holidays=holidays)

        with pytest.raises(RuntimeError):
            calendar.next_trading_day(start)

    def test_session_close_time(self):
        calendar = MarketCalendar(early_closes=["2025-11-28"])
        assert calendar.session_close_time(date(2025, 11, 28)).hour == 13
        assert calendar.session_close_time(date(2025, 11, 26)).hour == 16


class TestCalendarFile:
    def test_load_custom_table(self, tmp_path):
        path = tmp_path / "calendar.json"
        path.write_text(json.dumps({"holidays": ["2030-01-02"], "early_closes": ["2030-01-03"]}))

        calendar = MarketCalendar.load(path)

        assert not calendar.is_trading_day(date(2030, 1, 2))
        status = calendar.status(datetime(2030, 1, 3, 12, 0, tzinfo=ET))
        assert status.state == SessionState.EARLY_CLOSE

    def test_bundled_table_has_early_closes(self, calendar):
        assert date(2025, 7, 3) in calendar.early_closes
        assert date(2025, 7, 4) in calendar.holidays
