"""
MoodHabit — Adaptive Threshold Service  (moodhabit/adaptive_thresholds.py)
===========================================================================
Keeps a per-user statistical baseline for each (pattern type, metric) pair so
that "low" and "high" are judged against the user's own history instead of a
global cut-off.

Read path (pure, no I/O):
    compute_threshold(observations, config) -> AdaptiveThreshold | None
    ThresholdView                            — lookups and comparisons

Write path:
    AdaptiveThresholdService.record_pattern(...) appends an observation,
    persists the pattern log, then recomputes and persists that key's
    threshold. The whole sequence runs under the store's write lock, and a
    failed write restores the in-memory log and threshold.

Baseline rule
-------------
Once `min_sample_size` observations exist, every further observation moves
the threshold toward the mean of the last `window_size` observations:

    current = current × (1 − learning_rate) + window_mean × learning_rate

Confidence
----------
    sample_factor = min(n / confidence_sample_cap, 1)
    stability     = 1 / (1 + volatility_sensitivity × cv(window))
    confidence    = min(max_confidence, sample_factor × stability)

More consistent observations raise it; a sharply divergent value inflates
the window's coefficient of variation and pulls it down.
"""
from __future__ import annotations

import math
import statistics
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import ValidationError as SchemaError

from moodhabit.api_exceptions import StorageError, ValidationError
from moodhabit.config import ThresholdConfig
from moodhabit.record_store import RecordStore
from moodhabit.schemas import PatternObservation, ThresholdSnapshot, threshold_key
from moodhabit.stats import coefficient_of_variation, safe_ratio
from moodhabit.structured_logging import logger


# ──────────────────────────────────────────────
# DATA STRUCTURES
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class AdaptiveThreshold:
    user_id:      str
    pattern_type: str
    metric:       str
    baseline:     float
    current:      float
    trend:        str     # "increasing" | "decreasing" | "stable"
    confidence:   float   # 0–1
    last_updated: str
    sample_size:  int

    @property
    def key(self) -> str:
        return threshold_key(self.user_id, self.pattern_type, self.metric)

    def to_dict(self) -> dict:
        return asdict(self)

    def to_snapshot(self) -> ThresholdSnapshot:
        return ThresholdSnapshot(
            pattern_type = self.pattern_type,
            metric       = self.metric,
            baseline     = self.baseline,
            current      = self.current,
            trend        = self.trend,
            confidence   = self.confidence,
            last_updated = self.last_updated,
            sample_size  = self.sample_size,
        )

    @classmethod
    def from_snapshot(cls, key: str, snap: ThresholdSnapshot) -> "AdaptiveThreshold":
        user_id = key.split("|", 1)[0]
        return cls(
            user_id      = user_id,
            pattern_type = snap.pattern_type,
            metric       = snap.metric,
            baseline     = snap.baseline,
            current      = snap.current,
            trend        = snap.trend,
            confidence   = snap.confidence,
            last_updated = snap.last_updated,
            sample_size  = snap.sample_size,
        )


@dataclass(frozen=True)
class ThresholdRecommendation:
    pattern_type:          str
    metric:                str
    current_value:         float
    recommended_threshold: float
    reasoning:             str
    priority:              str   # "high" | "medium" | "low"

    def to_dict(self) -> dict:
        return asdict(self)


# ──────────────────────────────────────────────
# PURE COMPUTATION
# ──────────────────────────────────────────────

def _trend(values: list[float]) -> str:
    if len(values) < 3:
        return "stable"
    half   = len(values) // 2
    first  = statistics.fmean(values[:half])
    second = statistics.fmean(values[half:])
    change = safe_ratio(second - first, abs(first))
    if abs(change) < 0.05:
        return "stable"
    return "increasing" if change > 0 else "decreasing"


def compute_confidence(values: list[float], total: int, config: ThresholdConfig) -> float:
    sample_factor = min(safe_ratio(total, config.confidence_sample_cap), 1.0)
    stability     = 1.0 / (1.0 + config.volatility_sensitivity * coefficient_of_variation(values))
    return round(min(config.max_confidence, sample_factor * stability), 4)


def compute_threshold(
    observations: list[PatternObservation],
    config: Optional[ThresholdConfig] = None,
) -> Optional[AdaptiveThreshold]:
    """Replay the observation log into a threshold; None below the minimum sample size."""
    config = config or ThresholdConfig()
    observations = [o for o in observations if math.isfinite(o.value)]
    n = len(observations)
    if n == 0 or n < config.min_sample_size:
        return None

    values = [float(o.value) for o in observations]
    start  = max(config.min_sample_size, 1) - 1
    window_size = max(config.window_size, 1)
    baseline = current = 0.0
    for i in range(start, n):
        window_mean = statistics.fmean(values[max(0, i + 1 - window_size): i + 1])
        if i == start:
            baseline = current = window_mean
        else:
            current = current * (1 - config.learning_rate) + window_mean * config.learning_rate

    window = values[-window_size:]
    last   = observations[-1]
    return AdaptiveThreshold(
        user_id      = last.user_id,
        pattern_type = last.pattern_type,
        metric       = last.metric,
        baseline     = round(baseline, 4),
        current      = round(current, 4),
        trend        = _trend(window),
        confidence   = compute_confidence(window, n, config),
        last_updated = last.timestamp,
        sample_size  = min(n, window_size),
    )


def _reasoning(deviation: float) -> str:
    pct = round(deviation * 100)
    if deviation > 0.5:
        return (f"Significant change detected ({pct}% deviation). "
                "Current threshold may not reflect recent patterns.")
    if deviation > 0.3:
        return (f"Moderate change detected ({pct}% deviation). "
                "Consider adjusting threshold for better accuracy.")
    return f"Minor change detected ({pct}% deviation). Threshold is generally accurate."


class ThresholdView:
    """Read-only projection over computed thresholds."""

    def __init__(
        self,
        thresholds: Optional[dict[str, AdaptiveThreshold]] = None,
        patterns: Optional[dict[str, list[PatternObservation]]] = None,
        config: Optional[ThresholdConfig] = None,
    ):
        self.thresholds = dict(thresholds or {})
        self.patterns   = {k: list(v) for k, v in (patterns or {}).items()}
        self.config     = config or ThresholdConfig()

    def get_threshold(self, user_id: str, pattern_type: str, metric: str) -> Optional[AdaptiveThreshold]:
        return self.thresholds.get(threshold_key(user_id, pattern_type, metric))

    def get_user_thresholds(self, user_id: str) -> list[AdaptiveThreshold]:
        prefix = f"{user_id}|"
        return [t for k, t in sorted(self.thresholds.items()) if k.startswith(prefix)]

    def margin(self, threshold: AdaptiveThreshold) -> float:
        """Tolerance band around `current`; shrinks to 0 as confidence reaches 1."""
        return (1.0 - threshold.confidence) * self.config.margin_fraction * abs(threshold.current)

    def is_below_threshold(self, user_id: str, pattern_type: str, metric: str, value: float) -> bool:
        threshold = self.get_threshold(user_id, pattern_type, metric)
        if threshold is None:
            return False
        return value < threshold.current - self.margin(threshold)

    def is_above_threshold(self, user_id: str, pattern_type: str, metric: str, value: float) -> bool:
        threshold = self.get_threshold(user_id, pattern_type, metric)
        if threshold is None:
            return False
        return value > threshold.current + self.margin(threshold)

    def get_threshold_recommendations(self, user_id: str) -> list[ThresholdRecommendation]:
        """Thresholds whose recent window mean has drifted away from `current`."""
        recommendations = []
        for threshold in self.get_user_thresholds(user_id):
            recent = self.patterns.get(threshold.key, [])[-self.config.window_size:]
            if len(recent) < self.config.min_sample_size:
                continue
            avg = statistics.fmean(o.value for o in recent)
            deviation = safe_ratio(abs(avg - threshold.current), abs(threshold.current))
            if deviation <= self.config.recommendation_deviation:
                continue
            recommendations.append(ThresholdRecommendation(
                pattern_type          = threshold.pattern_type,
                metric                = threshold.metric,
                current_value         = threshold.current,
                recommended_threshold = round(avg, 4),
                reasoning             = _reasoning(deviation),
                priority              = "high" if deviation > 0.5 else "medium" if deviation > 0.3 else "low",
            ))
        order = {"high": 3, "medium": 2, "low": 1}
        return sorted(recommendations, key=lambda r: -order[r.priority])


# ──────────────────────────────────────────────
# SERVICE
# ──────────────────────────────────────────────

class AdaptiveThresholdService:
    """Owns the pattern log and thresholds for one store.

    Construct it explicitly and call `load()` before first use:

        service = await AdaptiveThresholdService(store).load()
    """

    def __init__(self, store: RecordStore, config: Optional[ThresholdConfig] = None):
        self.store = store
        self.config = config or ThresholdConfig()
        self.patterns: dict[str, list[PatternObservation]] = {}
        self.thresholds: dict[str, AdaptiveThreshold] = {}

    async def load(self) -> "AdaptiveThresholdService":
        await self.load_thresholds()
        await self.load_patterns()
        return self

    async def load_patterns(self) -> None:
        """Load the pattern log and recompute every key that has observations."""
        self.patterns = await self.store.load_patterns()
        for key, observations in self.patterns.items():
            threshold = compute_threshold(observations, self.config)
            if threshold is not None:
                self.thresholds[key] = threshold
            else:
                self.thresholds.pop(key, None)

    async def load_thresholds(self) -> None:
        """Load persisted thresholds for keys whose pattern log is not loaded."""
        snapshots = await self.store.load_thresholds()
        for key, snap in snapshots.items():
            if key not in self.patterns:
                self.thresholds[key] = AdaptiveThreshold.from_snapshot(key, snap)

    async def _persist(self) -> None:
        await self.store.save_patterns(self.patterns)
        await self.store.save_thresholds({k: t.to_snapshot() for k, t in self.thresholds.items()})

    async def record_pattern(
        self,
        user_id: str,
        pattern_type: str,
        metric: str,
        value: float,
        timestamp: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> Optional[AdaptiveThreshold]:
        """Append an observation and return the key's recomputed threshold."""
        try:
            observation = PatternObservation(
                user_id      = user_id,
                pattern_type = pattern_type,
                metric       = metric,
                value        = value,
                timestamp    = timestamp or datetime.now(timezone.utc).isoformat(),
                context      = context or {},
            )
        except SchemaError as e:
            errors = e.errors(include_url=False, include_context=False, include_input=False)
            raise ValidationError("Invalid pattern observation", details={"errors": errors}) from e

        key = observation.key
        async with self.store.write_lock:
            previous = self.thresholds.get(key)
            self.patterns.setdefault(key, []).append(observation)
            threshold = compute_threshold(self.patterns[key], self.config)
            if threshold is not None:
                self.thresholds[key] = threshold
            try:
                await self._persist()
            except StorageError:
                # keep memory in step with what was last persisted
                self.patterns[key].pop()
                if not self.patterns[key]:
                    del self.patterns[key]
                if previous is None:
                    self.thresholds.pop(key, None)
                else:
                    self.thresholds[key] = previous
                raise

        logger.log_pattern_recorded(user_id, observation.pattern_type, metric, observation.value,
                                    threshold.confidence if threshold else None)
        return threshold

    # ── Read path ─────────────────────────────────────────────

    def view(self) -> ThresholdView:
        return ThresholdView(self.thresholds, self.patterns, self.config)

    def get_threshold(self, user_id: str, pattern_type: str, metric: str) -> Optional[AdaptiveThreshold]:
        return self.view().get_threshold(user_id, pattern_type, metric)

    def get_user_thresholds(self, user_id: str) -> list[AdaptiveThreshold]:
        return self.view().get_user_thresholds(user_id)

    def is_below_threshold(self, user_id: str, pattern_type: str, metric: str, value: float) -> bool:
        return self.view().is_below_threshold(user_id, pattern_type, metric, value)

    def is_above_threshold(self, user_id: str, pattern_type: str, metric: str, value: float) -> bool:
        return self.view().is_above_threshold(user_id, pattern_type, metric, value)

    def get_threshold_recommendations(self, user_id: str) -> list[ThresholdRecommendation]:
        return self.view().get_threshold_recommendations(user_id)

    # ── Configuration / housekeeping ──────────────────────────

    def update_config(self, **changes: Any) -> ThresholdConfig:
        """Replace config fields and recompute every threshold with the new constants."""
        self.config = replace(self.config, **changes)
        for key, observations in self.patterns.items():
            threshold = compute_threshold(observations, self.config)
            if threshold is not None:
                self.thresholds[key] = threshold
            else:
                self.thresholds.pop(key, None)
        return self.config

    def get_config(self) -> ThresholdConfig:
        return self.config

    async def clear_user_data(self, user_id: str) -> None:
        prefix = f"{user_id}|"
        async with self.store.write_lock:
            self.patterns   = {k: v for k, v in self.patterns.items() if not k.startswith(prefix)}
            self.thresholds = {k: v for k, v in self.thresholds.items() if not k.startswith(prefix)}
            await self._persist()
