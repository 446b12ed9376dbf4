"""Shared fixtures for the MoodHabit test suite."""

import json
from datetime import date, timedelta

import pytest

from moodhabit.record_store import (
    FEEDBACK_KEY,
    HABIT_MOOD_ENTRIES_KEY,
    HABITS_KEY,
    MOOD_ENTRIES_KEY,
    MemoryKeyValueStore,
    RecordStore,
)
from moodhabit.schemas import HabitMoodEntry, HabitRecord, MoodEntry


TODAY = date(2024, 1, 5)


def days_back(n: int, today: date = TODAY) -> list[str]:
    """ISO dates for the last `n` days ending at `today`, oldest first."""
    return [(today - timedelta(days=i)).isoformat() for i in range(n - 1, -1, -1)]


def make_habit(habit_id: str, completed=(), created_at=None, **kwargs) -> HabitRecord:
    return HabitRecord(
        id=habit_id,
        title=kwargs.pop("title", habit_id.replace("_", " ").title()),
        created_at=created_at,
        completed_dates=list(completed),
        **kwargs,
    )


def make_mood(day: str, mood_state: str, intensity: int, time_of_day: str = "09:00", **kwargs) -> MoodEntry:
    return MoodEntry(
        id=kwargs.pop("id", f"m-{day}-{time_of_day}"),
        date=day,
        timestamp=f"{day}T{time_of_day}:00",
        mood_state=mood_state,
        intensity=intensity,
        **kwargs,
    )


def make_join(habit_id: str, day: str, mood_state: str, intensity: int = 5,
              action: str = "completed", time_of_day: str = "09:00", **kwargs) -> HabitMoodEntry:
    return HabitMoodEntry(
        id=kwargs.pop("id", f"j-{habit_id}-{day}"),
        habit_id=habit_id,
        date=day,
        timestamp=f"{day}T{time_of_day}:00",
        action=action,
        mood_state=mood_state,
        intensity=intensity,
        **kwargs,
    )


def seeded_store(habits=(), mood_entries=(), habit_mood_entries=(), feedback=None, raw=None) -> RecordStore:
    """RecordStore over an in-memory backend pre-filled with the given records."""
    data = {
        HABITS_KEY:             json.dumps([h.model_dump(mode="json") for h in habits]),
        MOOD_ENTRIES_KEY:       json.dumps([m.model_dump(mode="json") for m in mood_entries]),
        HABIT_MOOD_ENTRIES_KEY: json.dumps([j.model_dump(mode="json") for j in habit_mood_entries]),
    }
    if feedback is not None:
        data[FEEDBACK_KEY] = json.dumps(feedback)
    data.update(raw or {})
    return RecordStore(MemoryKeyValueStore(data))


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def empty_store():
    return RecordStore(MemoryKeyValueStore())


@pytest.fixture
def happy_week():
    """One daily habit and a happy check-in every day of the week up to TODAY."""
    dates = days_back(7)
    habits = [make_habit("meditate", completed=dates, created_at=dates[0])]
    moods = [make_mood(d, "happy", 8) for d in dates]
    return habits, moods
