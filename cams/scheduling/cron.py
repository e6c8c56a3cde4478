"""Five-field cron expressions: validation, next-run calculation, descriptions.

Fields: minute hour day-of-month month day-of-week

Parsing and matching are done by croniter.  Months accept JAN-DEC and days
of week accept SUN-SAT (Sunday is 0, and 7 is accepted as an alias).  A time
matches only when every field matches, including both day-of-month and
day-of-week (croniter's ``day_or=False``).
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from croniter import CroniterBadDateError, croniter

SEARCH_YEARS = 5


@dataclass(frozen=True)
class CronSchedule:
    expression: str

    def next_occurrence(self, after: Optional[datetime] = None) -> datetime:
        """First matching minute strictly after ``after`` (UTC, seconds dropped).

        Raises:
            ValueError: nothing matches within the search window
                (e.g. ``0 0 31 2 *``).
        """
        if after is None:
            after = datetime.now(timezone.utc)
        elif after.tzinfo is None:
            after = after.replace(tzinfo=timezone.utc)
        start = after.astimezone(timezone.utc).replace(second=0, microsecond=0)
        try:
            itr = croniter(self.expression, start, day_or=False,
                           max_years_between_matches=SEARCH_YEARS)
            return itr.get_next(datetime)
        except CroniterBadDateError as exc:
            raise ValueError(
                "Cron expression '{}' has no occurrence in the next {} years".format(
                    self.expression, SEARCH_YEARS)) from exc


def parse_cron(expression: str) -> CronSchedule:
    """Validate a five-field cron expression.

    Raises:
        ValueError: with croniter's description of the offending field.
    """
    if expression is None or not str(expression).strip():
        raise ValueError("Cron expression is required")
    parts = str(expression).split()
    if len(parts) != 5:
        raise ValueError(
            "Cron expression must have 5 fields (minute hour day month weekday), "
            "got {}".format(len(parts)))

    normalized = " ".join(parts)
    try:
        croniter(normalized, day_or=False)
    except ValueError as exc:  # CroniterBadCronError names the offending field
        raise ValueError(str(exc)) from exc
    return CronSchedule(expression=normalized)


def next_run_time(expression: str, after: Optional[datetime] = None) -> datetime:
    return parse_cron(expression).next_occurrence(after)


def describe_cron(expression: str) -> str:
    """Short English description for the common schedule shapes."""
    parts = (expression or "").split()
    if len(parts) < 5:
        return "Invalid cron expression"
    minute, hour, day, month, weekday = parts[:5]
    padded = minute.rjust(2, "0")

    if minute == "*" and hour == "*" and day == "*" and month == "*" and weekday == "*":
        return "Every minute"
    if minute != "*" and hour == "*" and day == "*" and month == "*" and weekday == "*":
        return f"Every hour at minute {minute}"
    if minute != "*" and hour != "*" and day == "*" and month == "*" and weekday == "*":
        return f"Daily at {hour}:{padded}"
    if minute != "*" and hour != "*" and day == "*" and month == "*" and weekday != "*":
        return f"Weekly on day {weekday} at {hour}:{padded}"
    if minute != "*" and hour != "*" and day != "*" and month == "*" and weekday == "*":
        return f"Monthly on day {day} at {hour}:{padded}"
    return "Custom schedule"
