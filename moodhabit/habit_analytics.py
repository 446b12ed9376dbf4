"""
MoodHabit — Analytics Facade  (moodhabit/habit_analytics.py)
=============================================================
The single entry point the view layer talks to.  `load()` reads the raw logs
once (async), refreshes derived streaks, and returns an instance whose
methods are synchronous and pure over that snapshot:

    analytics = await HabitAnalytics.load(store, user_id="u1", today=date.today(),
                                          thresholds=threshold_service)
    analytics.get_completion_rate(7)
    analytics.get_ai_predictive_analytics(CurrentMood(mood_state="tired", intensity=4))

Reload to pick up new data; the instance itself never re-reads the store.
"""
from __future__ import annotations

import time
from datetime import date
from typing import Optional, Union

from moodhabit.adaptive_thresholds import AdaptiveThresholdService, ThresholdRecommendation, ThresholdView
from moodhabit.config import AnalyticsPolicy
from moodhabit.correlations import HabitMoodCorrelation, MoodHabitAnalytics, build_mood_habit_analytics
from moodhabit.feedback import FeedbackSummary, summarize_feedback
from moodhabit.predictive import (
    AggregatedAnalytics,
    AnalyticsSnapshot,
    Forecast,
    Prediction,
    PredictiveAnalyticsService,
    RecommendationBundle,
    RiskAlert,
    TimingSuggestion,
)
from moodhabit.record_store import RecordStore
from moodhabit.schemas import CurrentMood, HabitRecord
from moodhabit.streaks import Streak, aggregate_streaks, refresh_habit_streaks
from moodhabit.structured_logging import logger
from moodhabit import trends


class HabitAnalytics:
    def __init__(self, snapshot: AnalyticsSnapshot, policy: Optional[AnalyticsPolicy] = None):
        self.snapshot   = snapshot
        self.policy     = policy or AnalyticsPolicy()
        self.today      = snapshot.today
        self.predictive = PredictiveAnalyticsService(snapshot, self.policy)

    @classmethod
    async def load(
        cls,
        store: RecordStore,
        user_id: str,
        today: date,
        thresholds: Optional[Union[AdaptiveThresholdService, ThresholdView]] = None,
        policy: Optional[AnalyticsPolicy] = None,
    ) -> "HabitAnalytics":
        """Read every collection through `store` and build a ready instance."""
        start = time.time()
        habits = [refresh_habit_streaks(h, today) for h in await store.list_habits()]
        mood_entries = await store.list_mood_entries()
        habit_mood_entries = await store.list_habit_mood_entries()
        feedback = await store.list_feedback()

        if isinstance(thresholds, AdaptiveThresholdService):
            view = thresholds.view()
        else:
            view = thresholds or ThresholdView()

        logger.debug(
            "Analytics snapshot loaded",
            user_id=user_id,
            habits=len(habits),
            mood_entries=len(mood_entries),
            habit_mood_entries=len(habit_mood_entries),
            elapsed_ms=round((time.time() - start) * 1000, 2),
        )
        return cls(
            AnalyticsSnapshot(
                user_id            = user_id,
                today              = today,
                habits             = habits,
                mood_entries       = mood_entries,
                habit_mood_entries = habit_mood_entries,
                feedback           = feedback,
                thresholds         = view,
            ),
            policy,
        )

    # ── Completion statistics ─────────────────────────────────

    def get_habits(self) -> list[HabitRecord]:
        return list(self.snapshot.habits)

    def get_overall_completion_rate(self) -> int:
        return trends.overall_completion_rate(self.snapshot.habits, self.today)

    def get_completion_rate(self, window_days: int) -> int:
        return trends.completion_rate(self.snapshot.habits, window_days, self.today)

    def get_total_completions(self) -> int:
        return trends.total_completions(self.snapshot.habits, self.today)

    def get_daily_completion_data(self, window_days: int = 7) -> list[trends.DailyCompletion]:
        return trends.daily_completion_data(self.snapshot.habits, window_days, self.today)

    def get_monthly_completion_data(self, year: Optional[int] = None, month: Optional[int] = None) -> list[dict]:
        return trends.monthly_completion_data(
            self.snapshot.habits, year or self.today.year, month or self.today.month
        )

    def get_streaks(self) -> Streak:
        return aggregate_streaks(self.snapshot.habits, self.today)

    # ── Mood trends and correlations ──────────────────────────

    def get_mood_trends(self, window_days: int = 30, zero_fill: bool = False) -> list[trends.MoodTrend]:
        return trends.build_mood_trends(
            self.snapshot.habits, self.snapshot.mood_entries, self.today, window_days, zero_fill
        )

    def get_weekly_report(self) -> trends.WeeklyReport:
        return trends.weekly_report(self.get_mood_trends(7))

    def get_mood_habit_analytics(self, window_days: int = 30) -> MoodHabitAnalytics:
        return build_mood_habit_analytics(
            self.snapshot.habits,
            self.snapshot.mood_entries,
            self.snapshot.habit_mood_entries,
            self.today,
            window_days,
            self.policy,
        )

    def get_habit_mood_correlations(self) -> list[HabitMoodCorrelation]:
        return list(self.predictive.correlations.values())

    # ── Predictive views ──────────────────────────────────────

    def get_habit_success_predictions(
        self, current_mood: Optional[CurrentMood] = None, hour: Optional[int] = None
    ) -> list[Prediction]:
        return self.predictive.get_habit_success_predictions(current_mood, hour)

    def get_risk_alerts(
        self, current_mood: Optional[CurrentMood] = None, hour: Optional[int] = None
    ) -> list[RiskAlert]:
        return self.predictive.get_risk_alerts(current_mood, hour)

    def get_mood_dip_alert(self) -> Optional[RiskAlert]:
        return self.predictive.get_mood_dip_alert()

    def get_optimal_timing_suggestions(self, current_mood: Optional[CurrentMood] = None) -> list[TimingSuggestion]:
        return self.predictive.get_optimal_timing_suggestions(current_mood)

    def get_mood_triggered_recommendations(self, current_mood: CurrentMood) -> RecommendationBundle:
        return self.predictive.get_mood_triggered_recommendations(current_mood)

    def get_weekly_forecast(self) -> Forecast:
        return self.predictive.get_weekly_forecast()

    def get_ai_predictive_analytics(
        self, current_mood: Optional[CurrentMood] = None, hour: Optional[int] = None
    ) -> AggregatedAnalytics:
        return self.predictive.get_ai_predictive_analytics(current_mood, hour)

    # ── Thresholds and feedback ───────────────────────────────

    def get_threshold_recommendations(self) -> list[ThresholdRecommendation]:
        return self.snapshot.thresholds.get_threshold_recommendations(self.snapshot.user_id)

    def get_feedback_summary(self) -> list[FeedbackSummary]:
        return summarize_feedback(self.snapshot.feedback)
