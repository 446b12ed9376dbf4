"""
MoodHabit — Streak Calculator  (moodhabit/streaks.py)
======================================================
Current and best contiguous-day streaks per habit and across all habits.

A run grows by one for every pair of completions exactly one calendar day
apart and restarts at 1 otherwise.  The current streak is the run ending at
the most recent completion, and only counts while that completion is today
or yesterday (one grace day).

Public API:
  compute_streak(completed_dates, today) -> Streak
  refresh_habit_streaks(habit, today)    -> HabitRecord
  aggregate_streaks(habits, today)       -> Streak
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable

from moodhabit.schemas import HabitRecord, parse_day


@dataclass(frozen=True)
class Streak:
    current: int = 0
    best:    int = 0

    def to_dict(self) -> dict:
        return {"current": self.current, "best": self.best}


def _sorted_days(completed_dates: Iterable[str], today: date) -> list[date]:
    days = set()
    for raw in completed_dates:
        try:
            day = parse_day(raw)
        except ValueError:
            continue
        if day <= today:
            days.add(day)
    return sorted(days)


def compute_streak(completed_dates: Iterable[str], today: date) -> Streak:
    """Streak for one habit's completion dates, anchored at `today`."""
    days = _sorted_days(completed_dates, today)
    if not days:
        return Streak()

    best = run = 1
    for prev, cur in zip(days, days[1:]):
        run = run + 1 if cur - prev == timedelta(days=1) else 1
        best = max(best, run)

    # `run` now holds the length of the run ending at the latest completion
    current = run if days[-1] >= today - timedelta(days=1) else 0
    return Streak(current=current, best=best)


def refresh_habit_streaks(habit: HabitRecord, today: date) -> HabitRecord:
    """Recompute `streak` / `best_streak`; the stored best is never lowered."""
    streak = compute_streak(habit.completed_dates, today)
    best   = max(habit.best_streak, streak.best, streak.current)
    return habit.model_copy(update={"streak": streak.current, "best_streak": best})


def aggregate_streaks(habits: Iterable[HabitRecord], today: date) -> Streak:
    """Max current and max best streak over all habits (0/0 with no habits)."""
    current = best = 0
    for habit in habits:
        s = compute_streak(habit.completed_dates, today)
        current = max(current, s.current)
        best    = max(best, s.best, habit.best_streak)
    return Streak(current=current, best=best)
