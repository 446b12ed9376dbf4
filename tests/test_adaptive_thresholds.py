"""Adaptive threshold service: pure computation, view, and persistence."""

import asyncio
import json

import pytest

from moodhabit.adaptive_thresholds import AdaptiveThresholdService, ThresholdView, compute_threshold
from moodhabit.api_exceptions import StorageError, ValidationError
from moodhabit.config import ThresholdConfig
from moodhabit.record_store import (
    PATTERNS_KEY,
    THRESHOLDS_KEY,
    JsonFileKeyValueStore,
    MemoryKeyValueStore,
    RecordStore,
)
from moodhabit.schemas import PatternObservation


def _obs(values, user_id="u1", pattern_type="mood", metric="intensity"):
    return [
        PatternObservation(
            user_id=user_id,
            pattern_type=pattern_type,
            metric=metric,
            value=v,
            timestamp=f"2024-01-01T00:{i % 60:02d}:00",
        )
        for i, v in enumerate(values)
    ]


def _confidences(values):
    config = ThresholdConfig()
    result = []
    for n in range(1, len(values) + 1):
        threshold = compute_threshold(_obs(values[:n]), config)
        result.append(threshold.confidence if threshold else None)
    return result


# ============================================================================
# PURE COMPUTATION
# ============================================================================

def test_no_threshold_below_minimum_sample_size():
    assert compute_threshold(_obs([7, 7, 7, 7])) is None
    assert compute_threshold([]) is None
    assert compute_threshold(_obs([7, 7, 7, 7, 7])) is not None


def test_confidence_after_forty_narrow_observations_beats_five():
    values = [7 + (0.1 if i % 2 else -0.1) for i in range(40)]
    conf = _confidences(values)
    assert conf[4] is not None
    assert conf[39] > conf[4]


def test_confidence_non_decreasing_for_consistent_observations():
    conf = [c for c in _confidences([7.0] * 60) if c is not None]
    assert all(b >= a for a, b in zip(conf, conf[1:]))
    assert conf[-1] == ThresholdConfig().max_confidence


def test_divergent_observation_lowers_confidence():
    before = compute_threshold(_obs([7.0] * 20))
    after = compute_threshold(_obs([7.0] * 20 + [30.0]))
    assert after.confidence < before.confidence


def test_baseline_current_and_trend():
    threshold = compute_threshold(_obs([5.0] * 10 + [20.0] * 10))
    assert threshold.baseline == 5.0
    assert 5.0 < threshold.current < 12.5
    assert threshold.trend == "increasing"
    assert threshold.sample_size == 20
    assert threshold.user_id == "u1"

    flat = compute_threshold(_obs([7.0] * 10))
    assert flat.current == 7.0
    assert flat.trend == "stable"


def test_view_comparisons_use_confidence_margin():
    threshold = compute_threshold(_obs([7.0] * 10))
    view = ThresholdView({threshold.key: threshold})
    # confidence 0.2 -> margin 0.8 * 0.3 * 7 = 1.68
    assert threshold.confidence == 0.2
    assert view.is_below_threshold("u1", "mood", "intensity", 5.0)
    assert not view.is_below_threshold("u1", "mood", "intensity", 6.0)
    assert view.is_above_threshold("u1", "mood", "intensity", 9.0)
    assert not view.is_above_threshold("u1", "mood", "intensity", 8.0)


def test_view_without_threshold_is_never_below_or_above():
    view = ThresholdView()
    assert view.get_threshold("u1", "mood", "intensity") is None
    assert not view.is_below_threshold("u1", "mood", "intensity", -100)
    assert not view.is_above_threshold("u1", "mood", "intensity", 100)
    assert view.get_threshold_recommendations("u1") == []


def test_recommendation_flags_drifted_threshold():
    observations = _obs([5.0] * 10 + [20.0] * 10)
    threshold = compute_threshold(observations)
    view = ThresholdView({threshold.key: threshold}, {threshold.key: observations})

    [rec] = view.get_threshold_recommendations("u1")
    assert rec.recommended_threshold == 12.5
    assert rec.priority == "medium"
    assert rec.metric == "intensity"


# ============================================================================
# SERVICE
# ============================================================================

@pytest.mark.asyncio
async def test_record_pattern_persists_and_reloads(empty_store):
    service = await AdaptiveThresholdService(empty_store).load()
    for i, value in enumerate([6.8, 7.1, 7.0, 6.9, 7.2, 7.0]):
        threshold = await service.record_pattern("u1", "mood", "intensity", value,
                                                 timestamp=f"2024-01-0{i + 1}T09:00:00")
    assert threshold is not None
    assert threshold.sample_size == 6

    reloaded = await AdaptiveThresholdService(empty_store).load()
    assert reloaded.get_threshold("u1", "mood", "intensity") == threshold
    assert [t.key for t in reloaded.get_user_thresholds("u1")] == ["u1|mood|intensity"]


@pytest.mark.asyncio
async def test_record_pattern_returns_none_until_enough_samples(empty_store):
    service = await AdaptiveThresholdService(empty_store).load()
    for value in (1, 2, 3, 4):
        assert await service.record_pattern("u1", "habit", "h1", value, timestamp="2024-01-01") is None
    assert await service.record_pattern("u1", "habit", "h1", 5, timestamp="2024-01-01") is not None


@pytest.mark.asyncio
async def test_corrupt_pattern_blob_is_a_cold_start():
    store = RecordStore(MemoryKeyValueStore({PATTERNS_KEY: "{not json", THRESHOLDS_KEY: "[1, 2"}))
    service = await AdaptiveThresholdService(store).load()
    assert service.patterns == {}
    assert service.get_threshold("u1", "mood", "intensity") is None

    for _ in range(5):
        await service.record_pattern("u1", "mood", "intensity", 7.0, timestamp="2024-01-01")
    assert service.get_threshold("u1", "mood", "intensity").current == 7.0


@pytest.mark.asyncio
async def test_snapshots_are_used_when_the_pattern_log_is_unreadable(empty_store):
    service = await AdaptiveThresholdService(empty_store).load()
    for _ in range(6):
        await service.record_pattern("u1", "wellness", "sleep", 8.0, timestamp="2024-01-01")

    empty_store.backend.data[PATTERNS_KEY] = "garbage"
    reloaded = await AdaptiveThresholdService(empty_store).load()
    threshold = reloaded.get_threshold("u1", "wellness", "sleep")
    assert threshold is not None
    assert threshold.current == 8.0


@pytest.mark.asyncio
async def test_invalid_pattern_type_is_rejected(empty_store):
    service = await AdaptiveThresholdService(empty_store).load()
    with pytest.raises(ValidationError):
        await service.record_pattern("u1", "bogus", "intensity", 7.0)
    assert service.patterns == {}


@pytest.mark.asyncio
async def test_clear_user_data_only_touches_that_user(empty_store):
    service = await AdaptiveThresholdService(empty_store).load()
    for user in ("u1", "u2"):
        for _ in range(5):
            await service.record_pattern(user, "mood", "intensity", 6.0, timestamp="2024-01-01")

    await service.clear_user_data("u1")
    reloaded = await AdaptiveThresholdService(empty_store).load()
    assert reloaded.get_threshold("u1", "mood", "intensity") is None
    assert reloaded.get_threshold("u2", "mood", "intensity") is not None


@pytest.mark.asyncio
async def test_update_config_recomputes(empty_store):
    service = await AdaptiveThresholdService(empty_store).load()
    for _ in range(3):
        await service.record_pattern("u1", "performance", "focus", 4.0, timestamp="2024-01-01")
    assert service.get_threshold("u1", "performance", "focus") is None

    config = service.update_config(min_sample_size=3)
    assert config.min_sample_size == 3
    assert service.get_config() is config
    assert service.get_threshold("u1", "performance", "focus").current == 4.0


# ============================================================================
# NON-FINITE VALUES AND CONCURRENT WRITES
# ============================================================================

class _FlakyBackend(MemoryKeyValueStore):
    fail_writes = False

    async def set(self, key, value):
        if self.fail_writes:
            raise StorageError(key, "disk full")
        await super().set(key, value)


@pytest.mark.asyncio
@pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
async def test_non_finite_values_are_rejected(empty_store, value):
    service = await AdaptiveThresholdService(empty_store).load()
    with pytest.raises(ValidationError):
        await service.record_pattern("u1", "mood", "intensity", value)
    assert service.patterns == {}


def test_non_finite_observations_are_skipped():
    poisoned = PatternObservation.model_construct(
        user_id="u1", pattern_type="mood", metric="intensity", value=float("nan"),
        timestamp="2024-01-02T00:00:00", context={},
    )
    threshold = compute_threshold(_obs([7.0] * 5) + [poisoned])
    assert threshold.current == 7.0
    assert threshold.sample_size == 5
    assert compute_threshold(_obs([7.0] * 4) + [poisoned]) is None


@pytest.mark.asyncio
async def test_non_finite_entries_in_stored_log_are_dropped():
    good = [o.model_dump() for o in _obs([7.0] * 5)]
    bad = dict(good[0], value=float("nan"))
    store = RecordStore(MemoryKeyValueStore({
        PATTERNS_KEY: json.dumps({"u1|mood|intensity": good + [bad]}),
        THRESHOLDS_KEY: json.dumps({"u1|wellness|sleep": {
            "patternType": "wellness", "metric": "sleep", "baseline": float("nan"), "current": float("nan"),
        }}),
    }))
    service = await AdaptiveThresholdService(store).load()

    threshold = service.get_threshold("u1", "mood", "intensity")
    assert threshold.sample_size == 5
    assert service.get_threshold("u1", "wellness", "sleep") is None
    json.dumps([t.to_dict() for t in service.get_user_thresholds("u1")], allow_nan=False)


@pytest.mark.asyncio
async def test_failed_write_leaves_memory_unchanged():
    backend = _FlakyBackend()
    service = await AdaptiveThresholdService(RecordStore(backend)).load()
    for _ in range(5):
        await service.record_pattern("u1", "mood", "intensity", 7.0, timestamp="2024-01-01")
    before = service.get_threshold("u1", "mood", "intensity")

    backend.fail_writes = True
    with pytest.raises(StorageError):
        await service.record_pattern("u1", "mood", "intensity", 1.0, timestamp="2024-01-02")
    with pytest.raises(StorageError):
        await service.record_pattern("u1", "habit", "h1", 1.0, timestamp="2024-01-02")

    assert len(service.patterns["u1|mood|intensity"]) == 5
    assert "u1|habit|h1" not in service.patterns
    assert service.get_threshold("u1", "mood", "intensity") == before


@pytest.mark.asyncio
async def test_concurrent_patterns_through_one_service(tmp_path):
    store = RecordStore(JsonFileKeyValueStore(str(tmp_path)))
    service = await AdaptiveThresholdService(store).load()

    await asyncio.gather(*(
        service.record_pattern("u1", "mood", "intensity", 7.0, timestamp=f"2024-01-01T09:{i:02d}:00")
        for i in range(10)
    ))

    reloaded = await AdaptiveThresholdService(store).load()
    assert len(reloaded.patterns["u1|mood|intensity"]) == 10
    assert reloaded.get_threshold("u1", "mood", "intensity").sample_size == 10


@pytest.mark.asyncio
async def test_concurrent_services_on_one_file_store(tmp_path):
    store = RecordStore(JsonFileKeyValueStore(str(tmp_path)))
    services = [await AdaptiveThresholdService(store).load() for _ in range(10)]

    results = await asyncio.gather(*(
        s.record_pattern("u1", "mood", "intensity", 7.0, timestamp="2024-01-01") for s in services
    ))

    assert results == [None] * 10
    assert len((await store.load_patterns())["u1|mood|intensity"]) >= 1
    assert list(tmp_path.glob("*.tmp")) == []
