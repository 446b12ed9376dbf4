"""
MoodHabit — Mood Trend Aggregator  (moodhabit/trends.py)
=========================================================
Buckets mood check-ins and habit completions by calendar day, and computes
the completion-rate statistics shown on the stats screen.

A MoodTrend row is a view over the two raw logs, rebuilt on every call:

    date              'YYYY-MM-DD'
    average_mood      mean intensity of that day's check-ins (0–10)
    habits_completed  habits whose completed dates include the day
    habits_skipped    habits that existed that day but were not completed

Days without a check-in are omitted unless zero_fill is set, so callers that
slice weekly buckets must not assume seven contiguous rows.

Public API:
  build_mood_trends(habits, mood_entries, today, window_days, zero_fill) -> list[MoodTrend]
  daily_mood_averages(mood_entries)                -> {date: float}
  primary_mood_by_day(mood_entries)                -> {date: MoodEntry}
  completion_rate(habits, window_days, today)      -> int  (0–100)
  overall_completion_rate(habits, today)           -> int  (0–100)
  total_completions(habits, today)                 -> int
  daily_completion_data(habits, window_days, today)-> list[DailyCompletion]
  monthly_completion_data(habits, year, month)     -> list[dict]
  weekly_report(trends)                            -> WeeklyReport
"""
from __future__ import annotations

import calendar
from collections import defaultdict
from dataclasses import dataclass, asdict
from datetime import date, timedelta
from typing import Optional

from moodhabit.schemas import HabitRecord, MoodEntry
from moodhabit.stats import clamp, mean_or_zero, safe_ratio

_DOW_SHORT = ["M", "T", "W", "T", "F", "S", "S"]


# ──────────────────────────────────────────────
# DATA STRUCTURES
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class MoodTrend:
    date:             str
    average_mood:     float
    habits_completed: int
    habits_skipped:   int
    entry_count:      int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class DailyCompletion:
    date:            str
    day_short:       str
    total_count:     int
    completed_count: int
    completion_rate: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class WeeklyReport:
    total_habits_completed: int            = 0
    average_mood:           float          = 0.0
    best_day:               Optional[str]  = None
    improving:              bool           = False
    days_with_data:         int            = 0

    def to_dict(self) -> dict:
        return asdict(self)


# ──────────────────────────────────────────────
# MOOD BUCKETS
# ──────────────────────────────────────────────

def daily_mood_averages(mood_entries: list[MoodEntry]) -> dict[str, float]:
    """Mean intensity per day, rounded to one decimal."""
    by_day: dict[str, list[int]] = defaultdict(list)
    for entry in mood_entries:
        by_day[entry.date].append(entry.intensity)
    return {d: round(mean_or_zero(v), 1) for d, v in by_day.items()}


def primary_mood_by_day(mood_entries: list[MoodEntry]) -> dict[str, MoodEntry]:
    """The latest check-in of each day (later list position wins a timestamp tie)."""
    primary: dict[str, MoodEntry] = {}
    for entry in mood_entries:
        current = primary.get(entry.date)
        if current is None or entry.timestamp >= current.timestamp:
            primary[entry.date] = entry
    return primary


def _window(today: date, window_days: int) -> list[date]:
    return [today - timedelta(days=i) for i in range(window_days - 1, -1, -1)]


def build_mood_trends(
    habits: list[HabitRecord],
    mood_entries: list[MoodEntry],
    today: date,
    window_days: int = 30,
    zero_fill: bool = False,
) -> list[MoodTrend]:
    """Per-day trend rows for the last `window_days` days, oldest first."""
    if window_days <= 0:
        return []

    by_day: dict[str, list[int]] = defaultdict(list)
    for entry in mood_entries:
        by_day[entry.date].append(entry.intensity)

    completed_sets = [(h, set(h.completed_dates)) for h in habits]
    trends: list[MoodTrend] = []
    for day in _window(today, window_days):
        key = day.isoformat()
        intensities = by_day.get(key, [])
        if not intensities and not zero_fill:
            continue
        completed = skipped = 0
        for habit, done in completed_sets:
            if key in done:
                completed += 1
            elif habit.existed_on(day):
                skipped += 1
        trends.append(MoodTrend(
            date             = key,
            average_mood     = round(mean_or_zero(intensities), 1),
            habits_completed = completed,
            habits_skipped   = skipped,
            entry_count      = len(intensities),
        ))
    return trends


# ──────────────────────────────────────────────
# COMPLETION STATISTICS
# ──────────────────────────────────────────────

def completion_rate(habits: list[HabitRecord], window_days: int, today: date) -> int:
    """Completed / possible habit-days over the last `window_days` days, in %."""
    if not habits or window_days <= 0:
        return 0
    possible = completed = 0
    completed_sets = [(h, set(h.completed_dates)) for h in habits]
    for day in _window(today, window_days):
        key = day.isoformat()
        for habit, done in completed_sets:
            if habit.existed_on(day):
                possible += 1
                if key in done:
                    completed += 1
    return round(clamp(safe_ratio(completed, possible), 0, 1) * 100)


def overall_completion_rate(habits: list[HabitRecord], today: date) -> int:
    """All completions / days since each habit was created, in %."""
    if not habits:
        return 0
    possible = completed = 0
    for habit in habits:
        created = habit.created_on() or today
        possible  += max((today - created).days + 1, 1)
        completed += sum(1 for d in habit.completed_dates if d <= today.isoformat())
    return round(clamp(safe_ratio(completed, possible), 0, 1) * 100)


def total_completions(habits: list[HabitRecord], today: date) -> int:
    cutoff = today.isoformat()
    return sum(1 for h in habits for d in h.completed_dates if d <= cutoff)


def daily_completion_data(habits: list[HabitRecord], window_days: int, today: date) -> list[DailyCompletion]:
    if not habits or window_days <= 0:
        return []
    rows = []
    for day in _window(today, window_days):
        key = day.isoformat()
        existing = [h for h in habits if h.existed_on(day)]
        done = sum(1 for h in existing if key in h.completed_dates)
        rows.append(DailyCompletion(
            date            = key,
            day_short       = _DOW_SHORT[day.weekday()],
            total_count     = len(existing),
            completed_count = done,
            completion_rate = round(safe_ratio(done, len(existing)) * 100, 1),
        ))
    return rows


def monthly_completion_data(habits: list[HabitRecord], year: int, month: int) -> list[dict]:
    if not habits:
        return []
    days_in_month = calendar.monthrange(year, month)[1]
    rows = []
    for dom in range(1, days_in_month + 1):
        day = date(year, month, dom)
        existing = [h for h in habits if h.existed_on(day)]
        done = sum(1 for h in existing if day.isoformat() in h.completed_dates)
        rows.append({"day": dom, "completion_rate": round(safe_ratio(done, len(existing)) * 100, 1)})
    return rows


def weekly_report(trends: list[MoodTrend]) -> WeeklyReport:
    """Summary of the last seven trend rows; tolerates gaps and empty input."""
    week = trends[-7:]
    if not week:
        return WeeklyReport()
    best = max(week, key=lambda t: (t.average_mood, t.date))
    return WeeklyReport(
        total_habits_completed = sum(t.habits_completed for t in week),
        average_mood           = round(mean_or_zero(t.average_mood for t in week), 1),
        best_day               = best.date,
        improving              = len(week) > 1 and week[-1].average_mood > week[0].average_mood,
        days_with_data         = len(week),
    )
