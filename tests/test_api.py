"""
API tests for the MoodHabit analytics backend.

Every test runs against a fresh app over an in-memory store.
"""

import pytest
from httpx import AsyncClient, ASGITransport

from conftest import seeded_store

from main import create_app
from moodhabit.api_exceptions import StorageError
from moodhabit.config import Settings
from moodhabit.record_store import MemoryKeyValueStore, RecordStore


TODAY = "2024-01-05"


class _ReadOnlyBackend(MemoryKeyValueStore):
    async def set(self, key, value):
        raise StorageError(key, "read-only volume")


def _client(store):
    app = create_app(store=store, settings=Settings(user_id="u1"))
    return AsyncClient(transport=ASGITransport(app), base_url="http://test")


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
async def client():
    """Client over an empty store."""
    async with _client(RecordStore(MemoryKeyValueStore())) as ac:
        yield ac


@pytest.fixture
async def seeded_client(happy_week):
    """Client over a week of happy check-ins and one daily habit."""
    habits, moods = happy_week
    async with _client(seeded_store(habits, moods)) as ac:
        yield ac


# ============================================================================
# HEALTH & STATS
# ============================================================================

@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_stats_on_empty_store(client):
    response = await client.get("/api/stats", params={"today": TODAY})
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["overall_completion_rate"] == 0
    assert data["total_completions"] == 0
    assert data["streaks"] == {"current": 0, "best": 0}
    assert data["daily_completion"] == []


@pytest.mark.asyncio
async def test_stats_for_a_full_week(seeded_client):
    response = await seeded_client.get("/api/stats", params={"today": TODAY, "window_days": 7})
    data = response.json()
    assert data["completion_rate"] == 100
    assert data["total_completions"] == 7
    assert data["streaks"] == {"current": 7, "best": 7}
    assert len(data["daily_completion"]) == 7
    assert data["weekly_report"]["days_with_data"] == 7


@pytest.mark.asyncio
async def test_mood_trends_and_correlations(seeded_client):
    trends = (await seeded_client.get("/api/mood-trends", params={"today": TODAY, "window_days": 7})).json()
    assert [t["average_mood"] for t in trends["trends"]] == [8.0] * 7

    correlations = (await seeded_client.get("/api/correlations", params={"today": TODAY})).json()
    [corr] = correlations["correlations"]
    assert corr["habit_id"] == "meditate"
    assert corr["best_mood_for_success"] == "happy"

    analytics = (await seeded_client.get("/api/analytics", params={"today": TODAY})).json()
    assert analytics["analytics"]["insights"]["best_mood_for_habits"] == "happy"


# ============================================================================
# PREDICTIVE
# ============================================================================

@pytest.mark.asyncio
async def test_predictive_payload_on_empty_store(client):
    response = await client.get("/api/predictive", params={"today": TODAY})
    assert response.status_code == 200
    data = response.json()
    assert data["overall_score"] == 0
    assert data["predictions"] == []
    assert data["risk_alerts"] == []
    assert data["mood_dip_alert"] is None
    assert data["recommendations"] is None
    assert data["forecast"]["start_date"] == "2024-01-06"


@pytest.mark.asyncio
async def test_predictions_with_current_mood(seeded_client):
    response = await seeded_client.get(
        "/api/predictions", params={"today": TODAY, "mood": "happy", "intensity": 8}
    )
    [prediction] = response.json()["predictions"]
    assert prediction["predicted_success_rate"] == 0.9
    assert prediction["current_mood"] == "happy"


@pytest.mark.asyncio
async def test_invalid_mood_is_rejected(client):
    response = await client.get("/api/predictions", params={"mood": "grumpy"})
    assert response.status_code == 422
    data = response.json()
    assert data["success"] is False
    assert data["error_code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_out_of_range_intensity_is_rejected(client):
    response = await client.get("/api/predictions", params={"mood": "calm", "intensity": 11})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_recommendations_require_a_mood(client):
    assert (await client.get("/api/recommendations")).status_code == 422

    response = await client.get("/api/recommendations", params={"mood": "tired", "intensity": 3})
    assert response.status_code == 200
    bundle = response.json()["recommendations"]
    assert bundle["current_mood"] == "tired"
    assert bundle["recommended_habits"] == []
    assert len(bundle["mood_boosting_activities"]) == 3


@pytest.mark.asyncio
async def test_risk_alerts_timing_and_forecast(seeded_client):
    alerts = (await seeded_client.get("/api/risk-alerts", params={"today": TODAY})).json()
    assert alerts["alerts"] == []
    assert alerts["mood_dip_alert"] is None

    timing = (await seeded_client.get("/api/timing", params={"today": TODAY, "mood": "happy"})).json()
    assert timing["suggestions"] == []

    forecast = (await seeded_client.get("/api/forecast", params={"today": TODAY})).json()["forecast"]
    assert forecast["end_date"] == "2024-01-12"
    assert forecast["habits"][0]["predicted_completions"] == 7


# ============================================================================
# ADAPTIVE THRESHOLDS
# ============================================================================

@pytest.mark.asyncio
async def test_threshold_appears_after_enough_patterns(client):
    missing = await client.get("/api/thresholds/u1/mood/intensity")
    assert missing.status_code == 404
    assert missing.json()["error_code"] == "NOT_FOUND"

    body = {"user_id": "u1", "pattern_type": "mood", "metric": "intensity", "value": 7.0,
            "timestamp": "2024-01-05T09:00:00"}
    for _ in range(4):
        response = await client.post("/api/patterns", json=body)
        assert response.status_code == 200
        assert response.json()["threshold"] is None
    threshold = (await client.post("/api/patterns", json=body)).json()["threshold"]
    assert threshold["current"] == 7.0
    assert threshold["sample_size"] == 5

    response = await client.get("/api/thresholds/u1/mood/intensity", params={"value": 3})
    data = response.json()
    assert response.status_code == 200
    assert data["is_below"] is True
    assert data["is_above"] is False

    listing = (await client.get("/api/thresholds/u1")).json()
    assert [t["metric"] for t in listing["thresholds"]] == ["intensity"]
    assert (await client.get("/api/thresholds/u2")).json()["thresholds"] == []


@pytest.mark.asyncio
async def test_unknown_pattern_type_is_rejected(client):
    response = await client.post(
        "/api/patterns", json={"user_id": "u1", "pattern_type": "diet", "metric": "x", "value": 1}
    )
    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.parametrize("literal", [b"NaN", b"Infinity", b"-Infinity"])
async def test_non_finite_pattern_value_is_rejected(client, literal):
    body = {"user_id": "u1", "pattern_type": "mood", "metric": "intensity", "value": 7.0}
    for _ in range(5):
        assert (await client.post("/api/patterns", json=body)).status_code == 200

    response = await client.post(
        "/api/patterns",
        content=b'{"user_id": "u1", "pattern_type": "mood", "metric": "intensity", "value": ' + literal + b"}",
        headers={"content-type": "application/json"},
    )
    assert response.status_code == 422
    assert response.json()["error_code"] == "VALIDATION_ERROR"

    listing = await client.get("/api/thresholds/u1")
    assert listing.status_code == 200
    [threshold] = listing.json()["thresholds"]
    assert threshold["current"] == 7.0
    assert threshold["sample_size"] == 5


@pytest.mark.asyncio
async def test_write_failure_is_service_unavailable():
    async with _client(RecordStore(_ReadOnlyBackend())) as ac:
        response = await ac.post(
            "/api/patterns", json={"user_id": "u1", "pattern_type": "mood", "metric": "intensity", "value": 5}
        )
        assert response.status_code == 503
        assert response.json()["error_code"] == "STORAGE_UNAVAILABLE"

        assert (await ac.get("/api/stats")).status_code == 200


# ============================================================================
# FEEDBACK
# ============================================================================

@pytest.mark.asyncio
async def test_feedback_round_trip(client):
    response = await client.post(
        "/api/feedback",
        json={"suggestion_id": "activity:take-a-short-walk-outside", "rating": 5, "implemented": True},
    )
    assert response.status_code == 200
    assert response.json()["feedback"]["rating"] == 5

    summary = (await client.get("/api/feedback/summary")).json()["summary"]
    assert summary == [{
        "suggestion_id":         "activity:take-a-short-walk-outside",
        "count":                 1,
        "average_rating":        5.0,
        "average_effectiveness": 5.0,
        "implemented_ratio":     1.0,
    }]


@pytest.mark.asyncio
async def test_feedback_rating_out_of_range(client):
    response = await client.post("/api/feedback", json={"suggestion_id": "activity:walk", "rating": 6})
    assert response.status_code == 422
    assert (await client.get("/api/feedback/summary")).json()["summary"] == []
