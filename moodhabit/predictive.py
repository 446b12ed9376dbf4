"""
MoodHabit — Predictive Analytics Service  (moodhabit/predictive.py)
====================================================================
Turns a loaded snapshot of the raw logs into forward-looking views:

  Success predictions   per-habit probability of completing now
  Risk alerts           habits likely to be missed, with causes and fixes
  Mood-dip alert        the last three check-ins are consistently low
  Optimal timing        best time-of-day bucket per habit under a mood
  Recommendations       habits ranked by expected mood benefit
  Weekly forecast       7-day projection per habit plus a mood outlook

Every method is a pure function of the snapshot and its arguments.  `today`
is part of the snapshot, there is no randomness, and repeated calls return
equal values.

Prediction blend
----------------
    predicted = 0.5 × mood_alignment + 0.2 × time_of_day + 0.3 × momentum

    mood_alignment  success share under the current mood state, falling back
                    to the overall completion rate
    time_of_day     success share of the hour's bucket (best bucket when no
                    hour is given); 0.5 without timing data
    momentum        mean of the last-7-day completion share and
                    min(current streak / 7, 1)

Weights and cut-offs come from AnalyticsPolicy.

Public API:
  AnalyticsSnapshot
  PredictiveAnalyticsService(snapshot, policy)
    .get_habit_success_predictions(current_mood, hour) -> list[Prediction]
    .get_risk_alerts(current_mood, hour)               -> list[RiskAlert]
    .get_mood_dip_alert()                              -> RiskAlert | None
    .get_optimal_timing_suggestions(current_mood)      -> list[TimingSuggestion]
    .get_mood_triggered_recommendations(current_mood)  -> RecommendationBundle
    .get_weekly_forecast()                             -> Forecast
    .get_ai_predictive_analytics(current_mood, hour)   -> AggregatedAnalytics
"""
from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import Optional

import numpy as np
from sklearn.linear_model import LinearRegression

from moodhabit.adaptive_thresholds import ThresholdView
from moodhabit.config import AnalyticsPolicy
from moodhabit.correlations import (
    HabitMoodCorrelation,
    build_habit_events,
    build_insights,
    compute_correlations,
    mood_state_success,
)
from moodhabit.feedback import NEUTRAL_RATING, activity_suggestion_id, activity_weights
from moodhabit.schemas import (
    CurrentMood,
    HabitMoodEntry,
    HabitRecord,
    MoodEntry,
    RecommendationFeedback,
    hour_of,
)
from moodhabit.stats import clamp, coefficient_of_variation, mean_or_zero, safe_ratio, trend_slope
from moodhabit.streaks import compute_streak
from moodhabit.trends import daily_mood_averages

log = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# CATALOGS
# ──────────────────────────────────────────────

TIME_BUCKETS: tuple[str, ...] = ("morning", "afternoon", "evening", "night")

BUCKET_TIMES: dict[str, str] = {
    "morning":   "08:00",
    "afternoon": "14:00",
    "evening":   "19:00",
    "night":     "22:00",
}

RISK_SUGGESTIONS: dict[str, list[str]] = {
    "complexity": [
        "Start with a smaller, more manageable version",
        "Break the habit into two shorter steps",
        "Lower today's target and just show up",
    ],
    "timing": [
        "Schedule it for your most successful time of day",
        "Set a reminder for later today",
        "Attach it to something you already do at that time",
    ],
    "isolation": [
        "Find an accountability partner",
        "Share today's goal with a friend",
        "Pair it with a habit you completed recently",
    ],
    "general": [
        "Complete the habit now to keep momentum",
        "Set a specific time for this habit",
        "Consider a quick version if time is limited",
    ],
}

STREAK_SUGGESTION = "Complete it today to protect your streak"

MOOD_DIP_SUGGESTIONS: list[str] = [
    "Consider light exercise or meditation",
    "Reach out to friends or family",
    "Try a mood-boosting activity",
]

MOOD_BOOSTING_ACTIVITIES: dict[str, list[str]] = {
    "happy":     ["Share your good mood with someone", "Write down what went well today",
                  "Start a habit you have been putting off"],
    "calm":      ["Read for fifteen minutes", "Plan tomorrow's priorities",
                  "Take a mindful walk"],
    "energetic": ["Do a short workout", "Tackle your hardest task first",
                  "Tidy one room"],
    "tired":     ["Take a short walk outside", "Drink a glass of water",
                  "Do five minutes of gentle stretching"],
    "stressed":  ["Try a breathing exercise", "Write down what is on your mind",
                  "Take a ten minute break away from screens"],
    "anxious":   ["Try the 5-4-3-2-1 grounding exercise", "Do a short guided meditation",
                  "Call someone you trust"],
    "sad":       ["Listen to uplifting music", "Reach out to a friend",
                  "Spend a few minutes in daylight"],
}

_WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
_SEVERITY = {"critical": 4, "high": 3, "medium": 2, "low": 1}


def time_bucket(hour: int) -> str:
    """morning 05–11, afternoon 12–16, evening 17–20, night 21–04."""
    if 5 <= hour <= 11:
        return "morning"
    if 12 <= hour <= 16:
        return "afternoon"
    if 17 <= hour <= 20:
        return "evening"
    return "night"


def _mood_from_intensity(intensity: float) -> str:
    if intensity >= 8:
        return "happy"
    if intensity >= 6:
        return "calm"
    if intensity >= 4:
        return "tired"
    if intensity >= 2:
        return "sad"
    return "anxious"


# ──────────────────────────────────────────────
# DATA STRUCTURES
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class AnalyticsSnapshot:
    """Everything the predictive views read, fixed at load time."""
    user_id:            str
    today:              date
    habits:             list[HabitRecord]         = field(default_factory=list)
    mood_entries:       list[MoodEntry]           = field(default_factory=list)
    habit_mood_entries: list[HabitMoodEntry]      = field(default_factory=list)
    feedback:           list[RecommendationFeedback] = field(default_factory=list)
    thresholds:         ThresholdView             = field(default_factory=ThresholdView)


@dataclass(frozen=True)
class Prediction:
    habit_id:               str
    habit_title:            str
    current_mood:           Optional[str]
    predicted_success_rate: float            # 0–1
    factors:                dict[str, float]
    reasoning:              str
    confidence:             float            # 0–1
    recommendation:         str              # "proceed" | "wait" | "modify_approach"
    optimal_time:           Optional[str]    = None
    risk_factors:           list[str]        = field(default_factory=list)
    opportunity_factors:    list[str]        = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class RiskAlert:
    id:                     str
    alert_type:             str              # "habit_failure" | "mood_dip"
    risk_level:             str              # "low" | "medium" | "high" | "critical"
    message:                str
    suggestions:            list[str]
    urgency:                str              # "immediate" | "today" | "this_week"
    predicted_impact:       int              # 1–10
    created_at:             str
    habit_id:               Optional[str]    = None
    habit_title:            Optional[str]    = None
    predicted_success_rate: Optional[float]  = None
    risk_score:             float            = 0.0
    causes:                 list[str]        = field(default_factory=list)
    streak_at_risk:         bool             = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class TimingSuggestion:
    habit_id:          str
    habit_title:       str
    current_mood:      Optional[str]
    best_time:         str                   # bucket name
    best_time_of_day:  str                   # representative HH:MM
    success_rate:      float                 # 0–1
    alternative_times: list[dict]
    daily_pattern:     dict[str, float]
    based_on_mood:     bool
    reasoning:         str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class HabitRecommendation:
    habit_id:        str
    habit_title:     str
    expected_benefit: float
    match_score:     float
    priority:        str                     # "high" | "medium" | "low"
    reasoning:       str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class RecommendationBundle:
    current_mood:              str
    current_mood_intensity:    int
    recommended_habits:        list[HabitRecommendation] = field(default_factory=list)
    mood_boosting_activities:  list[str]                 = field(default_factory=list)
    avoidance_recommendations: list[str]                 = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class RiskDay:
    date:            str
    weekday:         str
    historical_rate: float
    risk_level:      str                     # "medium" | "high"


@dataclass(frozen=True)
class HabitForecast:
    habit_id:               str
    habit_title:            str
    predicted_completions:  int
    predicted_success_rate: float
    trend:                  str              # "improving" | "declining" | "stable"
    risk_days:              list[RiskDay] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class MoodForecastDay:
    date:                str
    predicted_intensity: float
    predicted_mood:      str
    confidence:          float


@dataclass(frozen=True)
class Forecast:
    start_date:             str
    end_date:               str
    habits:                 list[HabitForecast]    = field(default_factory=list)
    overall_predicted_rate: float                  = 0.0
    mood_outlook:           list[MoodForecastDay]  = field(default_factory=list)
    insights:               list[str]              = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class AggregatedAnalytics:
    overall_score:      float
    predictions:        list[Prediction]
    risk_alerts:        list[RiskAlert]
    mood_dip_alert:     Optional[RiskAlert]
    timing_suggestions: list[TimingSuggestion]
    recommendations:    Optional[RecommendationBundle]
    forecast:           Forecast
    insights:           list[str]
    last_updated:       str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class _TimingSample:
    hour:       int
    completed:  bool
    mood_state: Optional[str]


# ──────────────────────────────────────────────
# SERVICE
# ──────────────────────────────────────────────

class PredictiveAnalyticsService:
    """Predictive views over one AnalyticsSnapshot."""

    def __init__(self, snapshot: AnalyticsSnapshot, policy: Optional[AnalyticsPolicy] = None):
        self.snapshot = snapshot
        self.policy   = policy or AnalyticsPolicy()
        self.today    = snapshot.today

        self.events = build_habit_events(
            snapshot.habits, snapshot.mood_entries, snapshot.habit_mood_entries, self.today
        )
        self.correlations: dict[str, HabitMoodCorrelation] = {
            c.habit_id: c
            for c in compute_correlations(
                snapshot.habits, snapshot.mood_entries, snapshot.habit_mood_entries,
                self.today, self.events,
            )
        }
        self._events_by_habit = defaultdict(list)
        for e in self.events:
            self._events_by_habit[e.habit_id].append(e)

    # ── Factor helpers ────────────────────────────────────────

    def _timing_samples(self, habit: HabitRecord) -> list[_TimingSample]:
        """Timed join records; completion times fill in when there are none."""
        samples = [
            _TimingSample(e.hour, e.action == "completed", e.mood_state)
            for e in self._events_by_habit[habit.id]
            if e.explicit and e.hour is not None
        ]
        if samples:
            return samples
        hours = (hour_of(t) for t in habit.completion_times)
        return [_TimingSample(h, True, None) for h in hours if h is not None]

    @staticmethod
    def _bucket_rates(samples: list[_TimingSample]) -> dict[str, tuple[float, int]]:
        """bucket -> (success share, observations) for observed buckets."""
        counts: dict[str, list[int]] = defaultdict(lambda: [0, 0])
        for s in samples:
            slot = counts[time_bucket(s.hour)]
            slot[0] += int(s.completed)
            slot[1] += 1
        return {b: (safe_ratio(done, total), total) for b, (done, total) in counts.items()}

    @staticmethod
    def _ranked_buckets(rates: dict[str, tuple[float, int]]) -> list[str]:
        return sorted(rates, key=lambda b: (-rates[b][0], -rates[b][1], TIME_BUCKETS.index(b)))

    def _mood_alignment(self, habit: HabitRecord, mood_state: Optional[str]) -> float:
        corr = self.correlations[habit.id]
        if mood_state:
            rate = corr.success_under(mood_state)
            if rate is not None:
                return clamp(rate / 100)
        return clamp(corr.completion_rate / 100)

    def _time_of_day(self, habit: HabitRecord, hour: Optional[int]) -> float:
        rates = self._bucket_rates(self._timing_samples(habit))
        if not rates:
            return 0.5
        if hour is None:
            return clamp(rates[self._ranked_buckets(rates)[0]][0])
        bucket = time_bucket(hour)
        return clamp(rates[bucket][0]) if bucket in rates else 0.5

    def _recent_share(self, habit: HabitRecord) -> float:
        window = self.policy.momentum_window_days
        done = set(habit.completed_dates)
        possible = completed = 0
        for i in range(window):
            day = self.today - timedelta(days=i)
            if not habit.existed_on(day):
                continue
            possible += 1
            completed += day.isoformat() in done
        return safe_ratio(completed, possible)

    def _momentum(self, habit: HabitRecord) -> float:
        streak = compute_streak(habit.completed_dates, self.today).current
        streak_factor = min(safe_ratio(streak, self.policy.momentum_streak_cap), 1.0)
        return clamp((self._recent_share(habit) + streak_factor) / 2)

    def _optimal_time(self, habit: HabitRecord) -> Optional[str]:
        times = [t.strip()[:5] for t in habit.completion_times]
        if times:
            counts = Counter(times)
            return min(counts, key=lambda t: (-counts[t], t))
        rates = self._bucket_rates(self._timing_samples(habit))
        if rates:
            return BUCKET_TIMES[self._ranked_buckets(rates)[0]]
        return None

    def _has_history(self, habit: HabitRecord) -> bool:
        return bool(habit.completed_dates or self._events_by_habit[habit.id])

    def _reasoning(self, habit: HabitRecord, factors: dict[str, float]) -> str:
        if not self._has_history(habit):
            return "new habit"
        p = self.policy
        weighted = [
            ("mood_alignment", p.weight_mood_alignment * factors["mood_alignment"]),
            ("time_of_day",    p.weight_time_of_day * factors["time_of_day"]),
            ("momentum",       p.weight_momentum * factors["momentum"]),
        ]
        dominant = max(weighted, key=lambda kv: kv[1])[0]   # first wins a tie
        strong = factors[dominant] >= 0.5
        if dominant == "mood_alignment":
            return "good mood" if strong else "low mood"
        if dominant == "time_of_day":
            return "good timing" if strong else "off-peak timing"
        return "momentum" if strong else "recovery"

    def _risk_level(self, rate: float) -> str:
        p = self.policy
        if rate < p.risk_critical_below:
            return "critical"
        if rate < p.risk_high_below:
            return "high"
        if rate < p.risk_medium_below:
            return "medium"
        return "low"

    # ── Success predictions ───────────────────────────────────

    def predict_habit(
        self,
        habit: HabitRecord,
        current_mood: Optional[CurrentMood] = None,
        hour: Optional[int] = None,
    ) -> Prediction:
        p = self.policy
        mood_state = current_mood.mood_state if current_mood else None
        factors = {
            "mood_alignment": round(self._mood_alignment(habit, mood_state), 4),
            "time_of_day":    round(self._time_of_day(habit, hour), 4),
            "momentum":       round(self._momentum(habit), 4),
        }
        predicted = clamp(
            p.weight_mood_alignment * factors["mood_alignment"]
            + p.weight_time_of_day * factors["time_of_day"]
            + p.weight_momentum * factors["momentum"]
        )
        data_points = max(len(self._events_by_habit[habit.id]), len(habit.completed_dates))
        confidence  = min(safe_ratio(data_points, p.confidence_data_cap), 1.0)

        if predicted >= p.proceed_above:
            recommendation = "proceed"
        elif factors["mood_alignment"] < p.wait_mood_below:
            recommendation = "wait"
        else:
            recommendation = "modify_approach"

        risks, opportunities = [], []
        if factors["mood_alignment"] < p.wait_mood_below:
            risks.append(f"Low success when feeling {mood_state}" if mood_state
                         else "Low historical completion rate")
        elif factors["mood_alignment"] >= 0.7:
            opportunities.append(f"Strong track record when feeling {mood_state}" if mood_state
                                 else "Strong historical completion rate")
        if factors["time_of_day"] < p.timing_factor_below:
            risks.append("Off-peak time of day")
        elif factors["time_of_day"] >= 0.7:
            opportunities.append("Good time of day for this habit")
        if factors["momentum"] < p.isolation_momentum_below:
            risks.append("Little recent activity")
        streak = compute_streak(habit.completed_dates, self.today).current
        if streak > 0:
            opportunities.append(f"{streak}-day streak in progress")
        if not self._has_history(habit):
            risks.append("Insufficient data for accurate prediction")

        return Prediction(
            habit_id               = habit.id,
            habit_title            = habit.title,
            current_mood           = mood_state,
            predicted_success_rate = round(predicted, 4),
            factors                = factors,
            reasoning              = self._reasoning(habit, factors),
            confidence             = round(confidence, 4),
            recommendation         = recommendation,
            optimal_time           = self._optimal_time(habit),
            risk_factors           = risks,
            opportunity_factors    = opportunities,
        )

    def get_habit_success_predictions(
        self,
        current_mood: Optional[CurrentMood] = None,
        hour: Optional[int] = None,
    ) -> list[Prediction]:
        return [self.predict_habit(h, current_mood, hour) for h in self.snapshot.habits]

    # ── Risk alerts ───────────────────────────────────────────

    def _below_adaptive(self, habit_id: str, rate: float) -> bool:
        view = self.snapshot.thresholds
        threshold = view.get_threshold(self.snapshot.user_id, "habit", habit_id)
        if threshold is None or threshold.confidence < view.config.confidence_threshold:
            return False
        return view.is_below_threshold(self.snapshot.user_id, "habit", habit_id, rate)

    def _causes(self, habit: HabitRecord, prediction: Prediction) -> list[str]:
        p = self.policy
        causes = []
        overall = self.correlations[habit.id].completion_rate / 100
        if habit.difficulty == "hard" or overall < p.complexity_rate_below:
            causes.append("complexity")
        if prediction.factors["time_of_day"] < p.timing_factor_below:
            causes.append("timing")
        if prediction.factors["momentum"] < p.isolation_momentum_below:
            causes.append("isolation")
        return causes

    @staticmethod
    def _suggestions(causes: list[str], streak_at_risk: bool) -> list[str]:
        """One suggestion per cause first, then fill from the first cause's list; 1–3 total."""
        lists = [RISK_SUGGESTIONS[c] for c in causes] or [RISK_SUGGESTIONS["general"]]
        picked = [STREAK_SUGGESTION] if streak_at_risk else []
        for options in lists:
            if options[0] not in picked:
                picked.append(options[0])
        for option in lists[0]:
            if len(picked) >= 3:
                break
            if option not in picked:
                picked.append(option)
        return picked[:3]

    def _habit_alert(self, habit: HabitRecord, prediction: Prediction) -> Optional[RiskAlert]:
        rate = prediction.predicted_success_rate
        if not (rate < self.policy.risk_threshold or self._below_adaptive(habit.id, rate)):
            return None

        streak = compute_streak(habit.completed_dates, self.today).current
        streak_at_risk = streak > 0 and self.today.isoformat() not in habit.completed_dates
        level = self._risk_level(rate)
        urgency = {"critical": "immediate", "high": "today"}.get(level, "this_week")
        if streak_at_risk and urgency == "this_week":
            urgency = "today"
        causes = self._causes(habit, prediction)
        impact = round((1 - rate) * 10) + (1 if streak_at_risk else 0)

        if streak_at_risk:
            message = f"Your {streak}-day streak for {habit.title} is at risk"
        else:
            message = f"{habit.title} is unlikely to be completed ({round(rate * 100)}% predicted)"

        return RiskAlert(
            id                     = f"habit_risk_{habit.id}",
            alert_type             = "habit_failure",
            risk_level             = level,
            message                = message,
            suggestions            = self._suggestions(causes, streak_at_risk),
            urgency                = urgency,
            predicted_impact       = int(clamp(impact, 1, 10)),
            created_at             = self.today.isoformat(),
            habit_id               = habit.id,
            habit_title            = habit.title,
            predicted_success_rate = rate,
            risk_score             = round(1 - rate, 4),
            causes                 = causes,
            streak_at_risk         = streak_at_risk,
        )

    def get_risk_alerts(
        self,
        current_mood: Optional[CurrentMood] = None,
        hour: Optional[int] = None,
    ) -> list[RiskAlert]:
        alerts = []
        for habit in self.snapshot.habits:
            alert = self._habit_alert(habit, self.predict_habit(habit, current_mood, hour))
            if alert is not None:
                alerts.append(alert)
        return sorted(
            alerts,
            key=lambda a: (-_SEVERITY[a.risk_level], a.predicted_success_rate, a.habit_id),
        )

    def get_mood_dip_alert(self) -> Optional[RiskAlert]:
        """Alert when the last three check-ins average below the dip cut-off."""
        p = self.policy
        ordered = sorted(self.snapshot.mood_entries, key=lambda e: (e.date, e.timestamp))
        ordered = [e for e in ordered if e.date <= self.today.isoformat()]
        recent = ordered[-3:]
        if len(recent) < 3:
            return None
        avg = mean_or_zero(e.intensity for e in recent)
        if avg >= p.mood_dip_intensity_below:
            return None
        return RiskAlert(
            id               = f"mood_dip_{recent[-1].date}",
            alert_type       = "mood_dip",
            risk_level       = "high" if avg < p.mood_dip_high_below else "medium",
            message          = "Your mood has been consistently low recently",
            suggestions      = list(MOOD_DIP_SUGGESTIONS),
            urgency          = "immediate",
            predicted_impact = int(clamp(round(10 - avg), 1, 10)),
            created_at       = self.today.isoformat(),
            risk_score       = round(clamp(1 - avg / 10), 4),
        )

    # ── Optimal timing ────────────────────────────────────────

    def get_optimal_timing_suggestions(self, current_mood: Optional[CurrentMood] = None) -> list[TimingSuggestion]:
        mood_state = current_mood.mood_state if current_mood else None
        suggestions = []
        for habit in self.snapshot.habits:
            samples = self._timing_samples(habit)
            if not samples:
                continue
            under_mood = [s for s in samples if mood_state and s.mood_state == mood_state]
            used = under_mood or samples
            rates = self._bucket_rates(used)
            ranked = self._ranked_buckets(rates)
            best = ranked[0]
            best_rate = round(rates[best][0], 4)

            if under_mood:
                reasoning = f"Most successful in the {best} when feeling {mood_state}"
            else:
                reasoning = f"Historically most successful in the {best}"

            suggestions.append(TimingSuggestion(
                habit_id          = habit.id,
                habit_title       = habit.title,
                current_mood      = mood_state,
                best_time         = best,
                best_time_of_day  = BUCKET_TIMES[best],
                success_rate      = best_rate,
                alternative_times = [
                    {"bucket": b, "time": BUCKET_TIMES[b], "success_rate": round(rates[b][0], 4),
                     "observations": rates[b][1]}
                    for b in ranked[1:4]
                ],
                daily_pattern     = {b: round(rates[b][0], 4) if b in rates else 0.0 for b in TIME_BUCKETS},
                based_on_mood     = bool(under_mood),
                reasoning         = reasoning,
            ))
        return suggestions

    # ── Mood-triggered recommendations ────────────────────────

    def _boosting_activities(self, mood_state: str) -> list[str]:
        weights = activity_weights(self.snapshot.feedback)
        catalog = MOOD_BOOSTING_ACTIVITIES.get(mood_state, [])
        ordered = sorted(
            enumerate(catalog),
            key=lambda item: (-weights.get(activity_suggestion_id(item[1]), NEUTRAL_RATING), item[0]),
        )
        return [activity for _, activity in ordered][: self.policy.max_activities]

    def get_mood_triggered_recommendations(self, current_mood: CurrentMood) -> RecommendationBundle:
        p = self.policy
        mood_state = current_mood.mood_state
        recommended, avoid = [], []
        for habit in self.snapshot.habits:
            corr  = self.correlations[habit.id]
            under = corr.success_under(mood_state)
            match = clamp((under if under is not None else corr.completion_rate) / 100)
            benefit = corr.mood_improvement

            if benefit >= p.high_benefit:
                priority = "high"
            elif benefit >= p.min_benefit:
                priority = "medium"
            else:
                priority = "low"

            if benefit > 0:
                reasoning = f"Completing {habit.title} lifts your mood by {benefit:+.1f} on average"
            elif under is not None:
                reasoning = f"You complete {habit.title} {round(under)}% of the time when feeling {mood_state}"
            else:
                reasoning = f"Not enough history to estimate the mood effect of {habit.title}"

            recommended.append(HabitRecommendation(
                habit_id         = habit.id,
                habit_title      = habit.title,
                expected_benefit = benefit,
                match_score      = round(match, 4),
                priority         = priority,
                reasoning        = reasoning,
            ))
            if under is not None and under / 100 < p.avoid_success_below:
                avoid.append(f"Consider postponing {habit.title} while feeling {mood_state}")

        recommended.sort(key=lambda r: (-r.expected_benefit, -r.match_score, r.habit_title))
        needs_boost = not any(r.expected_benefit >= p.min_benefit for r in recommended)
        return RecommendationBundle(
            current_mood              = mood_state,
            current_mood_intensity    = current_mood.intensity,
            recommended_habits        = recommended,
            mood_boosting_activities  = self._boosting_activities(mood_state) if needs_boost else [],
            avoidance_recommendations = avoid,
        )

    # ── Weekly forecast ───────────────────────────────────────

    def _daily_outcomes(self, habit: HabitRecord, days: int) -> list[tuple[date, int]]:
        done = set(habit.completed_dates)
        outcomes = []
        for i in range(days - 1, -1, -1):
            day = self.today - timedelta(days=i)
            if habit.existed_on(day):
                outcomes.append((day, int(day.isoformat() in done)))
        return outcomes

    def _risk_days(self, habit: HabitRecord, upcoming: list[date]) -> list[RiskDay]:
        p = self.policy
        history = self._daily_outcomes(habit, p.risk_day_history_days)
        if not history:
            return []
        baseline = mean_or_zero(o for _, o in history)
        by_weekday: dict[int, list[int]] = defaultdict(list)
        for day, outcome in history:
            by_weekday[day.weekday()].append(outcome)

        risk_days = []
        for day in upcoming:
            observed = by_weekday.get(day.weekday(), [])
            if len(observed) < p.risk_day_min_samples:
                continue
            rate = mean_or_zero(observed)
            if rate < baseline - p.risk_day_margin:
                risk_days.append(RiskDay(
                    date            = day.isoformat(),
                    weekday         = _WEEKDAYS[day.weekday()],
                    historical_rate = round(rate, 4),
                    risk_level      = "high" if rate < baseline - 2 * p.risk_day_margin else "medium",
                ))
        return risk_days

    def _forecast_habit(self, habit: HabitRecord, upcoming: list[date]) -> HabitForecast:
        p = self.policy
        outcomes = [o for _, o in self._daily_outcomes(habit, p.forecast_history_days)]
        horizon = len(upcoming)
        trend = "stable"
        if len(outcomes) >= 2 and horizon:
            X = np.arange(len(outcomes), dtype=float).reshape(-1, 1)
            model = LinearRegression().fit(X, np.asarray(outcomes, dtype=float))
            future = np.arange(len(outcomes), len(outcomes) + horizon, dtype=float).reshape(-1, 1)
            projected = np.clip(model.predict(future), 0.0, 1.0)
            slope = float(model.coef_[0])
            if slope > p.trend_slope_band:
                trend = "improving"
            elif slope < -p.trend_slope_band:
                trend = "declining"
        else:
            projected = np.full(horizon, float(mean_or_zero(outcomes)))

        rate = float(projected.mean()) if horizon else 0.0
        return HabitForecast(
            habit_id               = habit.id,
            habit_title            = habit.title,
            predicted_completions  = int(round(float(projected.sum()))),
            predicted_success_rate = round(clamp(rate), 4),
            trend                  = trend,
            risk_days              = self._risk_days(habit, upcoming),
        )

    def _mood_outlook(self, upcoming: list[date]) -> list[MoodForecastDay]:
        averages = daily_mood_averages(self.snapshot.mood_entries)
        recent = [averages[d] for d in sorted(averages) if d <= self.today.isoformat()][-7:]
        if not recent:
            return []
        slope     = trend_slope(recent)
        intercept = mean_or_zero(recent) - slope * (len(recent) - 1) / 2
        base_conf = min(len(recent) / 7, 1.0)
        outlook = []
        for i, day in enumerate(upcoming, start=1):
            intensity = clamp(intercept + slope * (len(recent) - 1 + i), 1.0, 10.0)
            outlook.append(MoodForecastDay(
                date                = day.isoformat(),
                predicted_intensity = round(intensity, 1),
                predicted_mood      = _mood_from_intensity(intensity),
                confidence          = round(base_conf * 0.9 ** i, 2),
            ))
        return outlook

    def get_weekly_forecast(self) -> Forecast:
        days = max(self.policy.forecast_days, 0)
        upcoming = [self.today + timedelta(days=i) for i in range(1, days + 1)]
        habits = [self._forecast_habit(h, upcoming) for h in self.snapshot.habits]

        insights = []
        if habits:
            strongest = max(habits, key=lambda f: (f.predicted_success_rate, f.habit_title))
            insights.append(f"{strongest.habit_title} is on track for "
                            f"{strongest.predicted_completions} completions this week")
            declining = sorted(f.habit_title for f in habits if f.trend == "declining")
            if declining:
                insights.append(f"Declining: {', '.join(declining)}")
            risky = sum(len(f.risk_days) for f in habits)
            if risky:
                insights.append(f"{risky} upcoming day(s) historically perform below your usual rate")

        start = upcoming[0] if upcoming else self.today
        end   = upcoming[-1] if upcoming else self.today
        return Forecast(
            start_date             = start.isoformat(),
            end_date               = end.isoformat(),
            habits                 = habits,
            overall_predicted_rate = round(mean_or_zero(f.predicted_success_rate for f in habits), 4),
            mood_outlook           = self._mood_outlook(upcoming),
            insights               = insights,
        )

    # ── Aggregate ─────────────────────────────────────────────

    def _insights(self) -> list[str]:
        correlations = list(self.correlations.values())
        summary = build_insights(correlations, mood_state_success(self.events), self.policy)
        insights = []
        if summary.best_mood_for_habits:
            insights.append(f"You complete habits most often when feeling {summary.best_mood_for_habits}")
        if summary.worst_mood_for_habits and summary.worst_mood_for_habits != summary.best_mood_for_habits:
            insights.append(f"Habits are hardest when feeling {summary.worst_mood_for_habits}")
        if summary.mood_boosting_habits:
            insights.append(f"Mood boosters: {', '.join(summary.mood_boosting_habits)}")
        if summary.mood_draining_habits:
            insights.append(f"Mood drainers: {', '.join(summary.mood_draining_habits)}")

        recent = [e.intensity for e in sorted(self.snapshot.mood_entries, key=lambda e: (e.date, e.timestamp))][-7:]
        if len(recent) >= 3 and coefficient_of_variation(recent) > self.policy.mood_volatility_cutoff:
            insights.append("Your mood has been fluctuating; steadier routines may help")
        return insights

    def get_ai_predictive_analytics(
        self,
        current_mood: Optional[CurrentMood] = None,
        hour: Optional[int] = None,
    ) -> AggregatedAnalytics:
        predictions = self.get_habit_success_predictions(current_mood, hour)
        score = mean_or_zero(pr.predicted_success_rate for pr in predictions) * 100
        log.debug("Predictive analytics for %s: %d habits", self.snapshot.user_id, len(predictions))
        return AggregatedAnalytics(
            overall_score      = round(clamp(score, 0, 100), 1),
            predictions        = predictions,
            risk_alerts        = self.get_risk_alerts(current_mood, hour),
            mood_dip_alert     = self.get_mood_dip_alert(),
            timing_suggestions = self.get_optimal_timing_suggestions(current_mood),
            recommendations    = (self.get_mood_triggered_recommendations(current_mood)
                                  if current_mood else None),
            forecast           = self.get_weekly_forecast(),
            insights           = self._insights(),
            last_updated       = self.today.isoformat(),
        )
