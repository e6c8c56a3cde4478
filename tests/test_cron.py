#!/usr/bin/env python3
"""Tests for cams.scheduling.cron -- parsing, next-run calculation, descriptions."""

from datetime import datetime, timezone

import pytest

from cams.scheduling.cron import describe_cron, next_run_time, parse_cron


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestParseCron:
    """Validation and error reporting."""

    def test_expression_is_normalized(self):
        assert parse_cron("  0   12 * *  * ").expression == "0 12 * * *"

    @pytest.mark.parametrize("expression", [
        "*/15 * * * *",
        "0,30 8-10 1-10/3 * *",
        "0 0 * JAN,jul MON-FRI",
        "0 0 * * 7",
    ])
    def test_valid_expressions(self, expression):
        assert parse_cron(expression).expression == expression

    @pytest.mark.parametrize("expression, fragment", [
        ("", "required"),
        ("   ", "required"),
        ("* * * *", "5 fields"),
        ("0 0 * * * *", "5 fields"),
        ("@hourly", "5 fields"),
    ])
    def test_shape_errors(self, expression, fragment):
        with pytest.raises(ValueError) as exc_info:
            parse_cron(expression)
        assert fragment in str(exc_info.value)

    @pytest.mark.parametrize("expression", [
        "60 * * * *",
        "* 24 * * *",
        "* * 32 * *",
        "* * * 13 *",
        "* * * FOO *",
        "* * * * FUNDAY",
    ])
    def test_field_errors(self, expression):
        with pytest.raises(ValueError):
            parse_cron(expression)


class TestNextRunTime:
    """next_run_time always returns a minute strictly after the reference."""

    def test_next_quarter_hour(self):
        assert next_run_time("*/15 * * * *", _utc(2024, 1, 1, 10, 7, 30)) == \
            _utc(2024, 1, 1, 10, 15)

    def test_exact_match_is_skipped(self):
        # 2024-01-01 is a Monday
        assert next_run_time("0 9 * * MON", _utc(2024, 1, 1, 9, 0)) == \
            _utc(2024, 1, 8, 9, 0)

    def test_rolls_over_year_end(self):
        assert next_run_time("0 0 1 1 *", _utc(2024, 6, 1)) == _utc(2025, 1, 1)

    def test_day_of_month_and_weekday_must_both_match(self):
        # First Friday the 13th after New Year 2024
        assert next_run_time("0 0 13 * 5", _utc(2024, 1, 1)) == _utc(2024, 9, 13)

    def test_sunday_seven_is_alias_for_zero(self):
        sunday = _utc(2024, 1, 7)
        assert next_run_time("0 0 * * 7", _utc(2024, 1, 1)) == sunday
        assert next_run_time("0 0 * * 0", _utc(2024, 1, 1)) == sunday

    def test_weekday_range_by_name(self):
        # Saturday 2024-01-06 23:59 -> Monday 08:00
        assert next_run_time("0 8 * * MON-FRI", _utc(2024, 1, 6, 23, 59)) == \
            _utc(2024, 1, 8, 8, 0)

    def test_naive_reference_is_treated_as_utc(self):
        assert next_run_time("30 * * * *", datetime(2024, 3, 1, 12, 0)) == \
            _utc(2024, 3, 1, 12, 30)

    def test_impossible_date_raises(self):
        with pytest.raises(ValueError):
            next_run_time("0 0 31 2 *", _utc(2024, 1, 1))

    def test_exhausted_search_reports_no_occurrence(self):
        # 29 Feb falling on a Monday: next is 2044, beyond the search window
        with pytest.raises(ValueError, match="no occurrence"):
            next_run_time("0 0 29 2 1", _utc(2024, 3, 1))


class TestDescribeCron:
    """Human-readable descriptions for common shapes."""

    @pytest.mark.parametrize("expression, expected", [
        ("* * * * *", "Every minute"),
        ("15 * * * *", "Every hour at minute 15"),
        ("5 2 * * *", "Daily at 2:05"),
        ("0 9 * * 1", "Weekly on day 1 at 9:00"),
        ("30 6 1 * *", "Monthly on day 1 at 6:30"),
        ("0 0 1 1 *", "Custom schedule"),
        ("bad", "Invalid cron expression"),
    ])
    def test_descriptions(self, expression, expected):
        assert describe_cron(expression) == expected
