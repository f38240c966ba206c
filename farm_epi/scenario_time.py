"""Scenario clock and calendar.

Encapsulates all time readings of a scenario. The calendar is a simplified
livestock-reporting calendar:

  - 1 year  = 364 days = 52 weeks
  - 1 week  = 7 days
  - 1 month = 28 days  (13 months per year; 30 × 12 = 360 does not divide)

Days are counted from 1. ``day_in_year`` lies in 1..=364: day 364 is the
last day of a year, not day 0 of the next one.

The clock is advanced exactly once per simulated day, from one place (the
scenario driver). Periodic processes are gated with run criteria, pure
predicates over the current ScenarioTime.
"""

from __future__ import annotations

import datetime
from typing import Callable, Dict, Optional

Time = int

DAYS_IN_A_YEAR: Time = 364
WEEKS_IN_A_YEAR: Time = 52
DAYS_IN_A_WEEK: Time = 7
DAYS_IN_A_MONTH: Time = 28
MONTHS_IN_A_YEAR: Time = 13

# Largest representable tick (unsigned 64-bit day counter)
MAX_TIME: Time = 2 ** 64 - 1


def _ceil_div(count: Time, period: Time) -> Time:
    """1-based period index of a 1-based count."""
    if count > period:
        return count // period + (0 if count % period == 0 else 1)
    return 1


class ScenarioTime:
    """Elapsed simulated days plus derived calendar predicates.

    It is fine to start at 0, but the clock must be advanced before it is
    read: ``current_time()`` is always > 0.
    """

    def __init__(self, start_time: Time = 0, end_time: Optional[Time] = None):
        if start_time < 0:
            raise ValueError(f"start_time must be >= 0, got {start_time}")
        if end_time is not None and end_time < start_time:
            raise ValueError(
                f"end_time ({end_time}) must be >= start_time ({start_time})"
            )
        self._start_time = int(start_time)
        self._end_time = None if end_time is None else int(end_time)
        self._elapsed_time = 0

    # ── Mutation ─────────────────────────────────────────────────────

    def advance(self, days: Time = 1) -> None:
        """Increment scenario time. Invoke from one central location only."""
        if days < 0:
            raise ValueError(f"cannot advance time by a negative amount: {days}")
        if self._start_time + self._elapsed_time + days > MAX_TIME:
            raise OverflowError(
                f"advancing by {days} days overflows the day counter "
                f"(current: {self._start_time + self._elapsed_time})"
            )
        self._elapsed_time += int(days)

    # ── Readings ─────────────────────────────────────────────────────

    @property
    def start_time(self) -> Time:
        return self._start_time

    @property
    def end_time(self) -> Optional[Time]:
        return self._end_time

    def current_time(self) -> Time:
        """Current time in days (always > 0)."""
        now = self._start_time + self._elapsed_time
        if now <= 0:
            raise ValueError(
                f"day time is assumed to always be greater than 0, "
                f"instead: {now}; advance the clock before reading it"
            )
        return now

    def elapsed_duration(self) -> Time:
        return self._elapsed_time

    def scenario_duration(self) -> Time:
        """Configured duration, or the elapsed duration if open-ended."""
        if self._end_time is not None:
            return self._end_time - self._start_time
        return self.elapsed_duration()

    def year(self) -> Time:
        """Year of the scenario, starting with year 1."""
        return _ceil_div(self.current_time(), DAYS_IN_A_YEAR)

    def day_in_year(self) -> Time:
        """Day in the year within 1..=364."""
        days = self.current_time()
        if days > DAYS_IN_A_YEAR:
            rem = days % DAYS_IN_A_YEAR
            return DAYS_IN_A_YEAR if rem == 0 else rem
        return days

    def week_in_year(self) -> Time:
        """Week number within 1..=52."""
        return _ceil_div(self.day_in_year(), DAYS_IN_A_WEEK)

    def month_in_year(self) -> Time:
        """Month number within 1..=13."""
        return _ceil_div(self.day_in_year(), DAYS_IN_A_MONTH)

    # ── Calendar predicates ──────────────────────────────────────────

    def first_day_of_year(self) -> bool:
        return self.day_in_year() == 1

    def last_day_of_year(self) -> bool:
        return self.day_in_year() == DAYS_IN_A_YEAR

    def first_day_of_week(self, week_no: Optional[Time] = None) -> bool:
        """True on the first day of a week, optionally of a specific week."""
        return (self.current_time() % DAYS_IN_A_WEEK == 1
                and (week_no is None or week_no == self.week_in_year()))

    def first_day_of_month(self) -> bool:
        return self.day_in_year() % DAYS_IN_A_MONTH == 1

    def ended(self) -> bool:
        """True once current time reaches the configured end time."""
        if self._end_time is None:
            raise ValueError("there is no end time given")
        return self.current_time() >= self._end_time

    def first_day_date(self) -> datetime.date:
        """Calendar date used as day 1 when plotting scenario output."""
        return datetime.date(2000, 1, 1)

    # ── Dunder ───────────────────────────────────────────────────────

    def __eq__(self, other) -> bool:
        if not isinstance(other, ScenarioTime):
            return NotImplemented
        return ((self._start_time, self._end_time, self._elapsed_time)
                == (other._start_time, other._end_time, other._elapsed_time))

    def __repr__(self) -> str:
        return (f"ScenarioTime(start_time={self._start_time}, "
                f"end_time={self._end_time}, elapsed_time={self._elapsed_time})")

    def __str__(self) -> str:
        return f"Time: {self.current_time()}; Week no. {self.week_in_year()}"


# ═══════════════════════════════════════════════════════════════════════
# RUN CRITERIA
# ═══════════════════════════════════════════════════════════════════════

RunCriterion = Callable[[ScenarioTime], bool]


def run_every_day(scenario_time: ScenarioTime) -> bool:
    return True


def run_every_week(scenario_time: ScenarioTime) -> bool:
    return scenario_time.first_day_of_week(None)


def run_every_month(scenario_time: ScenarioTime) -> bool:
    return scenario_time.first_day_of_month()


def run_every_year(scenario_time: ScenarioTime) -> bool:
    return scenario_time.first_day_of_year()


RUN_CRITERIA: Dict[str, RunCriterion] = {
    'daily': run_every_day,
    'weekly': run_every_week,
    'monthly': run_every_month,
    'yearly': run_every_year,
}


def run_criterion(name: str) -> RunCriterion:
    """Look up a run criterion by its configuration name.

    Raises:
        KeyError: If the name is unknown.
    """
    if name not in RUN_CRITERIA:
        raise KeyError(
            f"Unknown run criterion '{name}'. "
            f"Available: {sorted(RUN_CRITERIA)}"
        )
    return RUN_CRITERIA[name]
