"""
MoodHabit — Correlation Engine  (moodhabit/correlations.py)
============================================================
Relates habit success to the mood the user was in.

Habit events come from two sources:
  - explicit join records (HabitMoodEntry): the habit was completed or
    skipped while the logged mood was active
  - daily check-ins: on every day with a check-in, each habit that existed
    that day counts as completed (date in its log) or skipped, under that
    day's primary mood.  An explicit join record for the same habit and day
    replaces the implied event.

For each habit and each of the seven mood states:
  success_rate = completions / (completions + skips) × 100
A mood state with no events is still reported, as rate 0 / count 0, so the
mood axis is always complete.

Public API:
  build_habit_events(habits, mood_entries, habit_mood_entries, today) -> list[HabitEvent]
  compute_habit_correlation(habit, events, mood_averages, today)     -> HabitMoodCorrelation
  compute_correlations(habits, mood_entries, habit_mood_entries, today) -> list[HabitMoodCorrelation]
  mood_state_success(events)                                          -> list[MoodSuccess]
  build_mood_habit_analytics(...)                                     -> MoodHabitAnalytics
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from moodhabit.config import AnalyticsPolicy
from moodhabit.schemas import MOOD_STATES, HabitMoodEntry, HabitRecord, MoodEntry, hour_of
from moodhabit.stats import clamp, mean_or_zero, safe_ratio
from moodhabit.streaks import Streak, aggregate_streaks
from moodhabit.trends import MoodTrend, build_mood_trends, daily_mood_averages, primary_mood_by_day


# ──────────────────────────────────────────────
# DATA STRUCTURES
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class HabitEvent:
    habit_id:       str
    date:           str
    action:         str              # "completed" | "skipped"
    mood_state:     str
    intensity:      int
    post_intensity: Optional[int] = None
    hour:           Optional[int] = None
    explicit:       bool          = False


@dataclass(frozen=True)
class MoodSuccess:
    mood_state:   str
    success_rate: float   # 0–100
    count:        int     # completions observed under this mood
    observations: int = 0 # completions + skips

    def to_dict(self) -> dict:
        return {
            "mood_state":   self.mood_state,
            "success_rate": self.success_rate,
            "count":        self.count,
            "observations": self.observations,
        }


@dataclass(frozen=True)
class MoodFailure:
    mood_state:   str
    failure_rate: float
    count:        int

    def to_dict(self) -> dict:
        return {"mood_state": self.mood_state, "failure_rate": self.failure_rate, "count": self.count}


@dataclass(frozen=True)
class HabitMoodCorrelation:
    habit_id:                    str
    habit_title:                 str
    completion_rate:             float
    successful_moods:            list[MoodSuccess]
    failed_moods:                list[MoodFailure]
    mood_improvement:            float
    total_entries:               int   = 0
    average_pre_mood_intensity:  float = 0.0
    average_post_mood_intensity: float = 0.0
    best_mood_for_success:       str   = ""
    worst_mood_for_success:      str   = ""

    def success_under(self, mood_state: str) -> Optional[float]:
        """Success rate (0–100) under `mood_state`, or None if never observed."""
        for m in self.successful_moods:
            if m.mood_state == mood_state:
                return m.success_rate if m.observations else None
        return None

    def to_dict(self) -> dict:
        return {
            "habit_id":                    self.habit_id,
            "habit_title":                 self.habit_title,
            "completion_rate":             self.completion_rate,
            "successful_moods":            [m.to_dict() for m in self.successful_moods],
            "failed_moods":                [m.to_dict() for m in self.failed_moods],
            "mood_improvement":            self.mood_improvement,
            "total_entries":               self.total_entries,
            "average_pre_mood_intensity":  self.average_pre_mood_intensity,
            "average_post_mood_intensity": self.average_post_mood_intensity,
            "best_mood_for_success":       self.best_mood_for_success,
            "worst_mood_for_success":      self.worst_mood_for_success,
        }


@dataclass(frozen=True)
class AnalyticsInsights:
    best_mood_for_habits:     str             = ""
    worst_mood_for_habits:    str             = ""
    mood_boosting_habits:     list[str]       = field(default_factory=list)
    mood_draining_habits:     list[str]       = field(default_factory=list)
    optimal_completion_moods: dict[str, str]  = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "best_mood_for_habits":     self.best_mood_for_habits,
            "worst_mood_for_habits":    self.worst_mood_for_habits,
            "mood_boosting_habits":     list(self.mood_boosting_habits),
            "mood_draining_habits":     list(self.mood_draining_habits),
            "optimal_completion_moods": dict(self.optimal_completion_moods),
        }


@dataclass(frozen=True)
class MoodHabitAnalytics:
    overall_correlations: list[HabitMoodCorrelation] = field(default_factory=list)
    mood_trends:          list[MoodTrend]            = field(default_factory=list)
    mood_success:         list[MoodSuccess]          = field(default_factory=list)
    insights:             AnalyticsInsights          = field(default_factory=AnalyticsInsights)
    streaks:              Streak                     = field(default_factory=Streak)

    def to_dict(self) -> dict:
        return {
            "overall_correlations": [c.to_dict() for c in self.overall_correlations],
            "mood_trends":          [t.to_dict() for t in self.mood_trends],
            "mood_success":         [m.to_dict() for m in self.mood_success],
            "insights":             self.insights.to_dict(),
            "streaks":              self.streaks.to_dict(),
        }


# ──────────────────────────────────────────────
# EVENTS
# ──────────────────────────────────────────────

def build_habit_events(
    habits: list[HabitRecord],
    mood_entries: list[MoodEntry],
    habit_mood_entries: list[HabitMoodEntry],
    today: date,
) -> list[HabitEvent]:
    """Explicit join events plus events implied by daily check-ins, in date order."""
    cutoff    = today.isoformat()
    habit_ids = {h.id for h in habits}
    events: list[HabitEvent] = []
    explicit_days: set[tuple[str, str]] = set()

    for entry in habit_mood_entries:
        if entry.habit_id not in habit_ids or entry.date > cutoff:
            continue
        explicit_days.add((entry.habit_id, entry.date))
        events.append(HabitEvent(
            habit_id       = entry.habit_id,
            date           = entry.date,
            action         = entry.action,
            mood_state     = entry.mood_state,
            intensity      = entry.intensity,
            post_intensity = entry.post_intensity,
            hour           = hour_of(entry.timestamp),
            explicit       = True,
        ))

    primary = primary_mood_by_day(mood_entries)
    for day_key in sorted(primary):
        if day_key > cutoff:
            continue
        mood = primary[day_key]
        day  = date.fromisoformat(day_key)
        for habit in habits:
            if (habit.id, day_key) in explicit_days or not habit.existed_on(day):
                continue
            events.append(HabitEvent(
                habit_id   = habit.id,
                date       = day_key,
                action     = "completed" if day_key in habit.completed_dates else "skipped",
                mood_state = mood.mood_state,
                intensity  = mood.intensity,
            ))

    events.sort(key=lambda e: (e.date, e.habit_id, not e.explicit))
    return events


def _tally(events: list[HabitEvent]) -> dict[str, list[int]]:
    """mood_state -> [completions, skips]"""
    counts: dict[str, list[int]] = {m: [0, 0] for m in MOOD_STATES}
    for e in events:
        slot = counts.setdefault(e.mood_state, [0, 0])
        slot[0 if e.action == "completed" else 1] += 1
    return counts


def _success_row(mood: str, completed: int, skipped: int) -> MoodSuccess:
    rate = clamp(safe_ratio(completed, completed + skipped), 0, 1) * 100
    return MoodSuccess(mood_state=mood, success_rate=round(rate, 1), count=completed,
                       observations=completed + skipped)


def mood_state_success(events: list[HabitEvent]) -> list[MoodSuccess]:
    """Aggregate success per mood state over every habit; all seven states present."""
    counts = _tally(events)
    return [_success_row(m, *counts[m]) for m in MOOD_STATES]


def _best_and_worst(rows: list[MoodSuccess]) -> tuple[str, str]:
    observed = [r for r in rows if r.observations]
    if not observed:
        return "", ""
    best  = max(observed, key=lambda r: r.success_rate)   # max/min keep the first on ties
    worst = min(observed, key=lambda r: r.success_rate)
    return best.mood_state, worst.mood_state


# ──────────────────────────────────────────────
# PER-HABIT CORRELATION
# ──────────────────────────────────────────────

def habit_completion_rate(habit: HabitRecord, today: date) -> float:
    """Completed days / days since creation, in % (one decimal)."""
    created = habit.created_on() or today
    days    = max((today - created).days + 1, 1)
    done    = sum(1 for d in habit.completed_dates if d <= today.isoformat())
    return round(clamp(safe_ratio(done, days), 0, 1) * 100, 1)


def _mood_improvement(habit: HabitRecord, mood_averages: dict[str, float], today: date) -> float:
    done = set(habit.completed_dates)
    on_days, off_days = [], []
    for day_key, avg in mood_averages.items():
        day = date.fromisoformat(day_key)
        if day > today or not habit.existed_on(day):
            continue
        (on_days if day_key in done else off_days).append(avg)
    if not on_days or not off_days:
        return 0.0
    return round(mean_or_zero(on_days) - mean_or_zero(off_days), 2)


def compute_habit_correlation(
    habit: HabitRecord,
    events: list[HabitEvent],
    mood_averages: dict[str, float],
    today: date,
) -> HabitMoodCorrelation:
    habit_events = [e for e in events if e.habit_id == habit.id]
    counts = _tally(habit_events)

    successful = [_success_row(m, *counts[m]) for m in MOOD_STATES]
    failed = [
        MoodFailure(
            mood_state   = m,
            failure_rate = round(clamp(safe_ratio(counts[m][1], sum(counts[m])), 0, 1) * 100, 1),
            count        = counts[m][1],
        )
        for m in MOOD_STATES
    ]
    best, worst = _best_and_worst(successful)

    explicit = [e for e in habit_events if e.explicit]
    post     = [e.post_intensity for e in explicit if e.post_intensity is not None]

    return HabitMoodCorrelation(
        habit_id                    = habit.id,
        habit_title                 = habit.title,
        completion_rate             = habit_completion_rate(habit, today),
        successful_moods            = successful,
        failed_moods                = failed,
        mood_improvement            = _mood_improvement(habit, mood_averages, today),
        total_entries               = len(habit_events),
        average_pre_mood_intensity  = round(mean_or_zero(e.intensity for e in explicit), 1),
        average_post_mood_intensity = round(mean_or_zero(post), 1),
        best_mood_for_success       = best,
        worst_mood_for_success      = worst,
    )


def compute_correlations(
    habits: list[HabitRecord],
    mood_entries: list[MoodEntry],
    habit_mood_entries: list[HabitMoodEntry],
    today: date,
    events: Optional[list[HabitEvent]] = None,
) -> list[HabitMoodCorrelation]:
    if events is None:
        events = build_habit_events(habits, mood_entries, habit_mood_entries, today)
    mood_averages = daily_mood_averages(mood_entries)
    return [compute_habit_correlation(h, events, mood_averages, today) for h in habits]


# ──────────────────────────────────────────────
# DASHBOARD ANALYTICS
# ──────────────────────────────────────────────

def build_insights(
    correlations: list[HabitMoodCorrelation],
    mood_success: list[MoodSuccess],
    policy: AnalyticsPolicy,
) -> AnalyticsInsights:
    best, worst = _best_and_worst(mood_success)
    boosting = sorted(
        (c for c in correlations if c.mood_improvement > policy.mood_effect_cutoff),
        key=lambda c: (-c.mood_improvement, c.habit_title),
    )
    draining = sorted(
        (c for c in correlations if c.mood_improvement < -policy.mood_effect_cutoff),
        key=lambda c: (c.mood_improvement, c.habit_title),
    )
    return AnalyticsInsights(
        best_mood_for_habits     = best,
        worst_mood_for_habits    = worst,
        mood_boosting_habits     = [c.habit_title for c in boosting],
        mood_draining_habits     = [c.habit_title for c in draining],
        optimal_completion_moods = {
            c.habit_id: c.best_mood_for_success for c in correlations if c.best_mood_for_success
        },
    )


def build_mood_habit_analytics(
    habits: list[HabitRecord],
    mood_entries: list[MoodEntry],
    habit_mood_entries: list[HabitMoodEntry],
    today: date,
    window_days: int = 30,
    policy: Optional[AnalyticsPolicy] = None,
) -> MoodHabitAnalytics:
    policy = policy or AnalyticsPolicy()
    events = build_habit_events(habits, mood_entries, habit_mood_entries, today)
    correlations = compute_correlations(habits, mood_entries, habit_mood_entries, today, events)
    mood_success = mood_state_success(events)
    return MoodHabitAnalytics(
        overall_correlations = correlations,
        mood_trends          = build_mood_trends(habits, mood_entries, today, window_days),
        mood_success         = mood_success,
        insights             = build_insights(correlations, mood_success, policy),
        streaks              = aggregate_streaks(habits, today),
    )
