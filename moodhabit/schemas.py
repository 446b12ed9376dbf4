"""
Schemas for the persisted collections and for boundary input.

Every persisted collection has an explicit model.  Absent fields are filled
with defaults at parse time and camelCase keys written by older clients are
accepted alongside snake_case, so read sites never need to probe for
optional keys.
"""
from __future__ import annotations

import re
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


# ══════════════════════════════════════════════
# ENUMERATIONS
# ══════════════════════════════════════════════

class MoodState(str, Enum):
    """The fixed set of mood states a check-in can carry."""
    HAPPY = "happy"
    CALM = "calm"
    ENERGETIC = "energetic"
    TIRED = "tired"
    STRESSED = "stressed"
    ANXIOUS = "anxious"
    SAD = "sad"


# Fixed axis order used whenever every mood state must be reported
MOOD_STATES: tuple[str, ...] = tuple(m.value for m in MoodState)


class PatternType(str, Enum):
    MOOD = "mood"
    HABIT = "habit"
    PERFORMANCE = "performance"
    WELLNESS = "wellness"


Difficulty = Literal["easy", "medium", "hard"]
HabitAction = Literal["completed", "skipped"]

_TIME_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)")


# ══════════════════════════════════════════════
# NORMALISATION HELPERS
# ══════════════════════════════════════════════

def normalize_date(value: Any) -> str:
    """Normalise a date, datetime or ISO string to 'YYYY-MM-DD'.

    Raises ValueError if the value cannot be read as a date.
    """
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        text = value.strip()
        if len(text) >= 10:
            return date.fromisoformat(text[:10]).isoformat()
    raise ValueError(f"not a date: {value!r}")


def parse_day(value: str) -> date:
    return date.fromisoformat(normalize_date(value))


def hour_of(value: str) -> Optional[int]:
    """Hour of day from an ISO timestamp or an 'HH:MM' string, else None."""
    if not value:
        return None
    text = value.strip()
    if "T" in text:
        text = text.split("T", 1)[1]
    elif " " in text:
        text = text.split(" ", 1)[1]
    match = _TIME_RE.match(text)
    return int(match.group(1)) if match else None


def _clamp_int(value: Any, low: int, high: int, default: int) -> int:
    try:
        number = int(round(float(value)))
    except (TypeError, ValueError):
        return default
    return max(low, min(high, number))


class _Record(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )


# ══════════════════════════════════════════════
# PERSISTED COLLECTIONS
# ══════════════════════════════════════════════

class HabitRecord(_Record):
    """One habit and its completion log."""
    id: str
    title: str = "Untitled habit"
    category: str = "general"
    difficulty: Difficulty = "medium"
    created_at: Optional[str] = None
    completed_dates: List[str] = Field(default_factory=list)
    completion_times: List[str] = Field(default_factory=list)
    streak: int = 0
    best_streak: int = 0

    @model_validator(mode="before")
    @classmethod
    def _default_created_at(cls, data: Any) -> Any:
        # Older records carry no creation date; the first completion stands in for it.
        if isinstance(data, dict) and not (data.get("created_at") or data.get("createdAt")):
            dates = data.get("completed_dates") or data.get("completedDates") or []
            valid = []
            for d in dates:
                try:
                    valid.append(normalize_date(d))
                except ValueError:
                    continue
            data = {**data, "created_at": min(valid) if valid else None}
            data.pop("createdAt", None)
        return data

    @field_validator("created_at", mode="before")
    @classmethod
    def _normalize_created(cls, v: Any) -> Optional[str]:
        return normalize_date(v) if v else None

    @field_validator("completed_dates", mode="before")
    @classmethod
    def _normalize_dates(cls, v: Any) -> List[str]:
        days = set()
        for item in v or []:
            try:
                days.add(normalize_date(item))
            except ValueError:
                continue
        return sorted(days)

    @field_validator("completion_times", mode="before")
    @classmethod
    def _valid_times(cls, v: Any) -> List[str]:
        return [t for t in (v or []) if isinstance(t, str) and _TIME_RE.match(t.strip())]

    @field_validator("streak", "best_streak", mode="before")
    @classmethod
    def _non_negative(cls, v: Any) -> int:
        return _clamp_int(v, 0, 10**6, 0)

    @field_validator("difficulty", mode="before")
    @classmethod
    def _known_difficulty(cls, v: Any) -> str:
        return v if v in ("easy", "medium", "hard") else "medium"

    def created_on(self) -> Optional[date]:
        return date.fromisoformat(self.created_at) if self.created_at else None

    def existed_on(self, day: date) -> bool:
        created = self.created_on()
        return created is None or created <= day


class MoodEntry(_Record):
    """A single mood check-in."""
    id: str = ""
    date: str
    timestamp: str = ""
    mood_state: MoodState
    intensity: int = 5
    triggers: List[str] = Field(default_factory=list)
    note: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _date_from_timestamp(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("date") and data.get("timestamp"):
            data = {**data, "date": data["timestamp"]}
        return data

    @field_validator("date", mode="before")
    @classmethod
    def _normalize(cls, v: Any) -> str:
        return normalize_date(v)

    @field_validator("intensity", mode="before")
    @classmethod
    def _clamp(cls, v: Any) -> int:
        return _clamp_int(v, 1, 10, 5)


class HabitMoodEntry(_Record):
    """Join record: the mood that was active when a habit was completed or skipped."""
    id: str = ""
    habit_id: str
    date: str
    timestamp: str = ""
    action: HabitAction = "completed"
    mood_state: MoodState
    intensity: int = 5
    post_mood_state: Optional[MoodState] = None
    post_intensity: Optional[int] = None
    triggers: List[str] = Field(default_factory=list)
    note: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _migrate_nested_moods(cls, data: Any) -> Any:
        # Legacy shape: {"preMood": {"moodState", "intensity"}, "postMood": {...}}
        if not isinstance(data, dict):
            return data
        data = dict(data)
        pre = data.pop("preMood", None) or data.pop("pre_mood", None)
        post = data.pop("postMood", None) or data.pop("post_mood", None)
        if isinstance(pre, dict) and not (data.get("mood_state") or data.get("moodState")):
            data["mood_state"] = pre.get("moodState") or pre.get("mood_state")
            data.setdefault("intensity", pre.get("intensity", 5))
        if isinstance(post, dict):
            data.setdefault("post_mood_state", post.get("moodState") or post.get("mood_state"))
            data.setdefault("post_intensity", post.get("intensity"))
        if not data.get("date") and data.get("timestamp"):
            data["date"] = data["timestamp"]
        return data

    @field_validator("date", mode="before")
    @classmethod
    def _normalize(cls, v: Any) -> str:
        return normalize_date(v)

    @field_validator("intensity", mode="before")
    @classmethod
    def _clamp(cls, v: Any) -> int:
        return _clamp_int(v, 1, 10, 5)

    @field_validator("post_intensity", mode="before")
    @classmethod
    def _clamp_post(cls, v: Any) -> Optional[int]:
        return None if v is None else _clamp_int(v, 1, 10, 5)


class PatternObservation(_Record):
    """One observation feeding an adaptive threshold."""
    user_id: str
    pattern_type: PatternType
    metric: str
    value: float = Field(..., allow_inf_nan=False)
    timestamp: str
    context: Dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> str:
        return threshold_key(self.user_id, self.pattern_type, self.metric)


class ThresholdSnapshot(_Record):
    """Persisted copy of a computed adaptive threshold."""
    pattern_type: str
    metric: str
    baseline: float = Field(..., allow_inf_nan=False)
    current: float = Field(..., allow_inf_nan=False)
    trend: Literal["increasing", "decreasing", "stable"] = "stable"
    confidence: float = Field(0.0, allow_inf_nan=False)
    last_updated: str = ""
    sample_size: int = 0


class RecommendationFeedback(_Record):
    """A user's rating of a recommendation."""
    suggestion_id: str
    rating: int = Field(..., ge=1, le=5)
    implemented: bool = False
    effectiveness: int = Field(5, ge=1, le=10)
    comments: Optional[str] = Field(None, max_length=1000)
    mood_state: Optional[MoodState] = None
    timestamp: str = ""


def threshold_key(user_id: str, pattern_type: str, metric: str) -> str:
    return f"{user_id}|{pattern_type}|{metric}"


# ══════════════════════════════════════════════
# BOUNDARY INPUT
# ══════════════════════════════════════════════

class CurrentMood(BaseModel):
    """The user's mood right now, as passed to predictive functions."""
    model_config = ConfigDict(use_enum_values=True, frozen=True)

    mood_state: MoodState
    intensity: int = Field(5, ge=1, le=10)


class PatternRequest(BaseModel):
    """Body of POST /api/patterns."""
    model_config = ConfigDict(use_enum_values=True)

    user_id: str = Field(..., min_length=1, max_length=100)
    pattern_type: PatternType
    metric: str = Field(..., min_length=1, max_length=100)
    value: float = Field(..., allow_inf_nan=False)
    timestamp: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)


class FeedbackRequest(BaseModel):
    """Body of POST /api/feedback."""
    model_config = ConfigDict(use_enum_values=True)

    suggestion_id: str = Field(..., min_length=1, max_length=200)
    rating: int = Field(..., ge=1, le=5)
    implemented: bool = False
    effectiveness: int = Field(5, ge=1, le=10)
    comments: Optional[str] = Field(None, max_length=1000)
    mood_state: Optional[MoodState] = None
