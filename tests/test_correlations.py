"""Correlation engine tests."""

from conftest import TODAY, days_back, make_habit, make_join, make_mood

from moodhabit.correlations import (
    build_habit_events,
    build_mood_habit_analytics,
    compute_correlations,
    mood_state_success,
)
from moodhabit.schemas import MOOD_STATES


def _rates(correlation):
    return {m.mood_state: (m.success_rate, m.count) for m in correlation.successful_moods}


def test_happy_every_day_gives_full_success_for_happy_only(happy_week):
    habits, moods = happy_week
    [corr] = compute_correlations(habits, moods, [], TODAY)

    rates = _rates(corr)
    assert rates["happy"] == (100.0, 7)
    for mood in MOOD_STATES:
        if mood != "happy":
            assert rates[mood] == (0.0, 0)
    assert corr.best_mood_for_success == "happy"


def test_every_mood_state_is_always_reported():
    habits = [make_habit("run", completed=[], created_at="2024-01-01")]
    [corr] = compute_correlations(habits, [], [], TODAY)
    assert [m.mood_state for m in corr.successful_moods] == list(MOOD_STATES)
    assert [m.mood_state for m in corr.failed_moods] == list(MOOD_STATES)
    assert all(m.success_rate == 0 and m.count == 0 for m in corr.successful_moods)
    assert corr.best_mood_for_success == ""


def test_success_rate_mixes_completions_and_skips():
    habits = [make_habit("gym", completed=["2024-01-02", "2024-01-04"], created_at="2024-01-01")]
    moods = [make_mood(d, "stressed", 4) for d in days_back(4)]   # 01-02 .. 01-05

    [corr] = compute_correlations(habits, moods, [], TODAY)
    assert _rates(corr)["stressed"] == (50.0, 2)
    failed = {f.mood_state: f for f in corr.failed_moods}
    assert failed["stressed"].failure_rate == 50.0
    assert failed["stressed"].count == 2


def test_explicit_join_replaces_the_implied_event():
    habits = [make_habit("gym", completed=["2024-01-05"], created_at="2024-01-05")]
    moods = [make_mood("2024-01-05", "sad", 3)]
    joins = [make_join("gym", "2024-01-05", "energetic", 7, post_intensity=9)]

    events = build_habit_events(habits, moods, joins, TODAY)
    assert len(events) == 1
    assert events[0].mood_state == "energetic"
    assert events[0].explicit

    [corr] = compute_correlations(habits, moods, joins, TODAY)
    assert _rates(corr)["energetic"] == (100.0, 1)
    assert _rates(corr)["sad"] == (0.0, 0)
    assert corr.average_pre_mood_intensity == 7.0
    assert corr.average_post_mood_intensity == 9.0


def test_joins_for_unknown_habits_and_future_dates_are_ignored():
    habits = [make_habit("gym", created_at="2024-01-01")]
    joins = [
        make_join("ghost", "2024-01-03", "happy"),
        make_join("gym", "2024-01-09", "happy"),
    ]
    assert build_habit_events(habits, [], joins, TODAY) == []


def test_mood_improvement_is_signed_delta():
    habits = [make_habit("walk", completed=["2024-01-02", "2024-01-04"], created_at="2024-01-01")]
    moods = [
        make_mood("2024-01-01", "sad", 4),
        make_mood("2024-01-02", "happy", 8),
        make_mood("2024-01-03", "tired", 4),
        make_mood("2024-01-04", "calm", 8),
    ]
    [corr] = compute_correlations(habits, moods, [], TODAY)
    assert corr.mood_improvement == 4.0


def test_mood_improvement_zero_without_both_sides():
    habits = [make_habit("walk", completed=["2024-01-02"], created_at="2024-01-02")]
    moods = [make_mood("2024-01-02", "happy", 8)]
    [corr] = compute_correlations(habits, moods, [], TODAY)
    assert corr.mood_improvement == 0.0


def test_completion_rate_per_habit_is_bounded():
    habits = [make_habit("walk", completed=days_back(10), created_at="2024-01-01")]
    [corr] = compute_correlations(habits, [], [], TODAY)
    assert corr.completion_rate == 100.0


def test_mood_state_success_aggregates_all_habits():
    habits = [
        make_habit("a", completed=["2024-01-05"], created_at="2024-01-05"),
        make_habit("b", completed=[], created_at="2024-01-05"),
    ]
    moods = [make_mood("2024-01-05", "calm", 6)]
    events = build_habit_events(habits, moods, [], TODAY)
    rows = {r.mood_state: r for r in mood_state_success(events)}
    assert rows["calm"].success_rate == 50.0
    assert rows["calm"].observations == 2
    assert len(rows) == 7


def test_dashboard_analytics_insights():
    habits = [
        make_habit("walk", completed=["2024-01-02", "2024-01-04"], created_at="2024-01-01"),
        make_habit("doomscroll", completed=["2024-01-01", "2024-01-03"], created_at="2024-01-01"),
    ]
    moods = [
        make_mood("2024-01-01", "sad", 4),
        make_mood("2024-01-02", "happy", 8),
        make_mood("2024-01-03", "tired", 4),
        make_mood("2024-01-04", "calm", 8),
    ]
    analytics = build_mood_habit_analytics(habits, moods, [], TODAY)

    assert analytics.insights.mood_boosting_habits == ["Walk"]
    assert analytics.insights.mood_draining_habits == ["Doomscroll"]
    assert analytics.streaks.best == 1
    assert len(analytics.mood_trends) == 4
    assert set(analytics.to_dict()) == {
        "overall_correlations", "mood_trends", "mood_success", "insights", "streaks",
    }


def test_empty_inputs_give_empty_analytics():
    analytics = build_mood_habit_analytics([], [], [], TODAY)
    assert analytics.overall_correlations == []
    assert analytics.mood_trends == []
    assert len(analytics.mood_success) == 7
    assert analytics.insights.best_mood_for_habits == ""
    assert analytics.streaks.current == 0
