"""Tests for cron parsing, next-fire computation and descriptions."""

from datetime import datetime, timezone

import pytest
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger

from scheduled_matching.utils.cron import (
    build_trigger,
    describe_cron,
    expand_day_of_week,
    next_fire_time,
)

# 2024-01-03 is a Wednesday
WEDNESDAY_UTC = datetime(2024, 1, 3, 0, 0, tzinfo=timezone.utc)
# 2026-10-20 is a Tuesday
TUESDAY_UTC = datetime(2026, 10, 20, 0, 0, tzinfo=timezone.utc)


class TestExpandDayOfWeek:
    def test_sunday_is_zero_and_seven(self):
        assert expand_day_of_week("0") == "sun"
        assert expand_day_of_week("7") == "sun"

    def test_list_is_sorted_names(self):
        assert expand_day_of_week("4,0") == "sun,thu"

    def test_range(self):
        assert expand_day_of_week("1-5") == "mon,tue,wed,thu,fri"

    def test_step(self):
        assert expand_day_of_week("*/2") == "sun,tue,thu,sat"

    def test_names_pass_through(self):
        assert expand_day_of_week("MON,fri") == "mon,fri"

    def test_wildcard(self):
        assert expand_day_of_week("*") == "*"

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            expand_day_of_week("8")


class TestBuildTrigger:
    def test_requires_five_fields(self):
        with pytest.raises(ValueError, match="5 fields"):
            build_trigger("0 0 * *", "Asia/Seoul")
        with pytest.raises(ValueError):
            build_trigger("0 0 0 * * *", "Asia/Seoul")

    def test_unknown_timezone(self):
        with pytest.raises(ValueError, match="timezone"):
            build_trigger("0 0 * * *", "Mars/Olympus")

    def test_bad_field(self):
        with pytest.raises(ValueError):
            build_trigger("61 0 * * *", "Asia/Seoul")


class TestNextFireTime:
    def test_thursday_midnight_seoul(self):
        fire = next_fire_time("0 0 * * 4,0", "Asia/Seoul", now=WEDNESDAY_UTC)
        # Thursday 00:00 KST is Wednesday 15:00 UTC
        assert fire == datetime(2024, 1, 3, 15, 0, tzinfo=timezone.utc)

    def test_sunday_only(self):
        fire = next_fire_time("0 0 * * 0", "Asia/Seoul", now=WEDNESDAY_UTC)
        assert fire == datetime(2024, 1, 6, 15, 0, tzinfo=timezone.utc)

    def test_timezone_changes_instant(self):
        seoul = next_fire_time("0 9 * * *", "Asia/Seoul", now=WEDNESDAY_UTC)
        tokyo = next_fire_time("0 9 * * *", "Asia/Tokyo", now=WEDNESDAY_UTC)
        # Same UTC offset, same instant
        assert seoul == tokyo
        utc = next_fire_time("0 9 * * *", "UTC", now=WEDNESDAY_UTC)
        assert utc == datetime(2024, 1, 3, 9, 0, tzinfo=timezone.utc)

    def test_result_is_utc(self):
        fire = next_fire_time("0 0 * * *", "Asia/Tokyo", now=WEDNESDAY_UTC)
        assert fire.tzinfo == timezone.utc


class TestDayOfMonthAndWeek:
    def test_fires_on_either_day_field(self):
        # Monday the 26th comes before the 1st of November
        fire = next_fire_time("0 0 1 * 1", "UTC", now=TUESDAY_UTC)
        assert fire == datetime(2026, 10, 26, 0, 0, tzinfo=timezone.utc)

    def test_day_of_month_fires_on_non_matching_weekday(self):
        # 2026-11-01 is a Sunday
        after_monday = datetime(2026, 10, 26, 0, 30, tzinfo=timezone.utc)
        fire = next_fire_time("0 0 1 * 1", "UTC", now=after_monday)
        assert fire == datetime(2026, 11, 1, 0, 0, tzinfo=timezone.utc)

    def test_both_restricted_builds_or_trigger(self):
        assert isinstance(build_trigger("0 0 1,15 * 1-5", "Asia/Seoul"), OrTrigger)

    @pytest.mark.parametrize("expression", ["0 0 * * 1", "0 0 1 * *", "0 0 */2 * 1"])
    def test_one_restricted_field_stays_single_cron(self, expression):
        assert isinstance(build_trigger(expression, "Asia/Seoul"), CronTrigger)

    def test_invalid_day_still_rejected(self):
        with pytest.raises(ValueError):
            build_trigger("0 0 32 * 1", "UTC")


class TestDescribeCron:
    def test_daily(self):
        assert describe_cron("30 9 * * *") == "Every day at 09:30"

    def test_weekdays(self):
        assert describe_cron("0 0 * * 4,0") == "Every Thu, Sun at 00:00"

    def test_day_of_month(self):
        assert describe_cron("0 6 15 * *") == "Day 15 of every month at 06:00"

    def test_day_of_month_or_weekday(self):
        assert describe_cron("0 0 1 * 1") == "Day 1 of every month or every Mon at 00:00"

    def test_malformed_returned_as_is(self):
        assert describe_cron("not a cron") == "not a cron"
