"""
MoodHabit — Configuration  (moodhabit/config.py)
=================================================
Environment-driven settings plus the tunable policy constants used by the
analytics core.  Every threshold that shapes a prediction lives here rather
than inline, so it can be overridden per deployment through `.env`.

    from moodhabit.config import load_settings
    settings = load_settings()
    settings.policy.risk_threshold      # 0.5
    settings.thresholds.min_sample_size # 5
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


# ──────────────────────────────────────────────
# ADAPTIVE THRESHOLDS
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class ThresholdConfig:
    """Constants for the adaptive baseline per (user, pattern type, metric)."""
    min_sample_size:        int   = 5      # observations before a threshold exists
    window_size:            int   = 30     # most recent observations in the window
    learning_rate:          float = 0.1    # EMA step toward the window mean
    confidence_sample_cap:  int   = 50     # sample count at which the size factor saturates
    volatility_sensitivity: float = 5.0    # how hard the coefficient of variation cuts confidence
    max_confidence:         float = 0.95
    margin_fraction:        float = 0.3    # margin at zero confidence, as a share of |current|
    confidence_threshold:   float = 0.7    # confidence before a threshold drives risk alerts
    recommendation_deviation: float = 0.2  # 20% drift before a threshold is flagged


# ──────────────────────────────────────────────
# PREDICTION POLICY
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class AnalyticsPolicy:
    """Weights and cut-offs for predictions, alerts and forecasts."""
    # Success prediction blend (sums to 1)
    weight_mood_alignment: float = 0.5
    weight_time_of_day:    float = 0.2
    weight_momentum:       float = 0.3

    momentum_window_days:  int   = 7
    momentum_streak_cap:   int   = 7
    confidence_data_cap:   int   = 50
    proceed_above:         float = 0.6    # predicted rate for a "proceed" recommendation
    wait_mood_below:       float = 0.4    # mood alignment below which the advice is "wait"

    # Risk alerts
    risk_threshold:        float = 0.5
    risk_critical_below:   float = 0.15
    risk_high_below:       float = 0.30
    risk_medium_below:     float = 0.45
    complexity_rate_below: float = 0.30   # overall completion share marking a habit as too hard
    timing_factor_below:   float = 0.40
    isolation_momentum_below: float = 0.30

    # Mood signals
    mood_dip_intensity_below: float = 4.0
    mood_dip_high_below:      float = 2.0
    mood_volatility_cutoff:   float = 0.3
    mood_effect_cutoff:       float = 0.5  # |mood_improvement| for boosting/draining habits

    # Recommendations
    min_benefit:           float = 0.5
    high_benefit:          float = 1.0
    avoid_success_below:   float = 0.3    # success share under a mood that suggests postponing
    max_activities:        int   = 3

    # Forecast
    forecast_days:         int   = 7
    forecast_history_days: int   = 14
    risk_day_margin:       float = 0.15
    risk_day_min_samples:  int   = 2
    risk_day_history_days: int   = 90
    trend_slope_band:      float = 0.01


# ──────────────────────────────────────────────
# SETTINGS
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class Settings:
    data_dir:   str           = "data"
    log_file:   Optional[str] = None
    log_level:  str           = "INFO"
    user_id:    str           = "default"
    policy:     AnalyticsPolicy = field(default_factory=AnalyticsPolicy)
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)


def _override(instance, prefix: str):
    """Override dataclass fields from PREFIX_FIELD_NAME environment variables."""
    changes = {}
    for f in fields(instance):
        env_name = f"{prefix}{f.name.upper()}"
        if env_name not in os.environ:
            continue
        current = getattr(instance, f.name)
        if isinstance(current, int) and not isinstance(current, bool):
            changes[f.name] = _env_int(env_name, current)
        else:
            changes[f.name] = _env_float(env_name, current)
    return replace(instance, **changes) if changes else instance


def load_settings() -> Settings:
    """Build settings from the environment (after `.env` has been loaded)."""
    return Settings(
        data_dir   = os.environ.get("MOODHABIT_DATA_DIR", "data"),
        log_file   = os.environ.get("MOODHABIT_LOG_FILE") or None,
        log_level  = os.environ.get("MOODHABIT_LOG_LEVEL", "INFO").upper(),
        user_id    = os.environ.get("MOODHABIT_USER_ID", "default"),
        policy     = _override(AnalyticsPolicy(), "MOODHABIT_POLICY_"),
        thresholds = _override(ThresholdConfig(), "MOODHABIT_THRESHOLD_"),
    )
