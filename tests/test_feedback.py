"""Recommendation feedback recording and weighting."""

import asyncio

import pytest

from moodhabit.api_exceptions import ValidationError
from moodhabit.feedback import (
    RecommendationFeedbackSink,
    activity_suggestion_id,
    activity_weights,
    summarize_feedback,
)
from moodhabit.record_store import FEEDBACK_KEY, JsonFileKeyValueStore, MemoryKeyValueStore, RecordStore
from moodhabit.schemas import RecommendationFeedback


def test_activity_ids_are_slugs():
    assert activity_suggestion_id("Take a short walk outside") == "activity:take-a-short-walk-outside"
    assert activity_suggestion_id("Try the 5-4-3-2-1 grounding exercise!") == "activity:try-the-5-4-3-2-1-grounding-exercise"


@pytest.mark.asyncio
async def test_record_and_summarize(empty_store):
    sink = RecommendationFeedbackSink(empty_store)
    await sink.record_feedback("activity:walk", 5, implemented=True, effectiveness=8, timestamp="2024-01-05T10:00:00")
    await sink.record_feedback("activity:walk", 3, timestamp="2024-01-05T11:00:00")
    await sink.record_feedback("habit:gym", 2, mood_state="tired", timestamp="2024-01-05T12:00:00")

    stored = await RecommendationFeedbackSink(empty_store).list_feedback()
    assert [f.suggestion_id for f in stored] == ["activity:walk", "activity:walk", "habit:gym"]
    assert stored[2].mood_state == "tired"

    [walk, gym] = await sink.summary()
    assert gym.suggestion_id == "habit:gym"
    assert walk.count == 2
    assert walk.average_rating == 4.0
    assert walk.average_effectiveness == 6.5
    assert walk.implemented_ratio == 0.5


@pytest.mark.asyncio
async def test_record_feedback_stamps_a_timestamp(empty_store):
    item = await RecommendationFeedbackSink(empty_store).record_feedback("activity:walk", 4)
    assert item.timestamp


@pytest.mark.asyncio
@pytest.mark.parametrize("kwargs", [
    {"rating": 6},
    {"rating": 0},
    {"rating": 3, "effectiveness": 11},
    {"rating": 3, "mood_state": "grumpy"},
])
async def test_out_of_range_feedback_is_rejected(empty_store, kwargs):
    sink = RecommendationFeedbackSink(empty_store)
    with pytest.raises(ValidationError) as exc:
        await sink.record_feedback("activity:walk", **kwargs)
    assert exc.value.status_code == 422
    assert await sink.list_feedback() == []


@pytest.mark.asyncio
async def test_corrupt_feedback_blob_starts_over():
    store = RecordStore(MemoryKeyValueStore({FEEDBACK_KEY: "[{oops"}))
    sink = RecommendationFeedbackSink(store)
    assert await sink.list_feedback() == []
    await sink.record_feedback("activity:walk", 5)
    assert len(await sink.list_feedback()) == 1


def test_activity_weights_average_ratings():
    feedback = [
        RecommendationFeedback(suggestion_id="activity:a", rating=5),
        RecommendationFeedback(suggestion_id="activity:a", rating=2),
        RecommendationFeedback(suggestion_id="activity:b", rating=1),
    ]
    assert activity_weights(feedback) == {"activity:a": 3.5, "activity:b": 1.0}
    assert summarize_feedback([]) == []


@pytest.mark.asyncio
async def test_concurrent_feedback_is_not_lost(tmp_path):
    sink = RecommendationFeedbackSink(RecordStore(JsonFileKeyValueStore(str(tmp_path))))
    await asyncio.gather(*(sink.record_feedback(f"activity:a{i}", 4) for i in range(10)))
    assert len(await sink.list_feedback()) == 10
