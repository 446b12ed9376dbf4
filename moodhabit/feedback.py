"""
MoodHabit — Recommendation Feedback Sink  (moodhabit/feedback.py)
==================================================================
Records how users rate the recommendations they were shown, and turns the
accumulated ratings into weights that reorder future suggestions.

    sink = RecommendationFeedbackSink(store)
    await sink.record_feedback("activity:take-a-short-walk", rating=5, implemented=True)
    weights = activity_weights(await sink.list_feedback())

Ratings are 1–5, effectiveness is 1–10.  Out-of-range input raises
ValidationError before anything is persisted.
"""
from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError as SchemaError

from moodhabit.api_exceptions import ValidationError
from moodhabit.record_store import RecordStore
from moodhabit.schemas import RecommendationFeedback
from moodhabit.stats import mean_or_zero, safe_ratio
from moodhabit.structured_logging import logger

NEUTRAL_RATING = 3.0


def activity_suggestion_id(activity: str) -> str:
    """Stable suggestion id for a free-text activity."""
    slug = re.sub(r"[^a-z0-9]+", "-", activity.lower()).strip("-")
    return f"activity:{slug}"


@dataclass(frozen=True)
class FeedbackSummary:
    suggestion_id:         str
    count:                 int
    average_rating:        float
    average_effectiveness: float
    implemented_ratio:     float

    def to_dict(self) -> dict:
        return asdict(self)


def summarize_feedback(feedback: list[RecommendationFeedback]) -> list[FeedbackSummary]:
    """Per-suggestion averages, sorted by suggestion id."""
    grouped: dict[str, list[RecommendationFeedback]] = defaultdict(list)
    for item in feedback:
        grouped[item.suggestion_id].append(item)

    summaries = []
    for suggestion_id in sorted(grouped):
        items = grouped[suggestion_id]
        summaries.append(FeedbackSummary(
            suggestion_id         = suggestion_id,
            count                 = len(items),
            average_rating        = round(mean_or_zero(i.rating for i in items), 2),
            average_effectiveness = round(mean_or_zero(i.effectiveness for i in items), 2),
            implemented_ratio     = round(safe_ratio(sum(1 for i in items if i.implemented), len(items)), 2),
        ))
    return summaries


def activity_weights(feedback: list[RecommendationFeedback]) -> dict[str, float]:
    """suggestion_id -> average rating.  Unrated suggestions are absent (treat as NEUTRAL_RATING)."""
    return {s.suggestion_id: s.average_rating for s in summarize_feedback(feedback)}


class RecommendationFeedbackSink:
    def __init__(self, store: RecordStore):
        self.store = store

    async def list_feedback(self) -> list[RecommendationFeedback]:
        return await self.store.list_feedback()

    async def record_feedback(
        self,
        suggestion_id: str,
        rating: int,
        implemented: bool = False,
        effectiveness: int = 5,
        comments: Optional[str] = None,
        mood_state: Optional[str] = None,
        timestamp: Optional[str] = None,
    ) -> RecommendationFeedback:
        """Validate, append and persist one rating."""
        try:
            item = RecommendationFeedback(
                suggestion_id = suggestion_id,
                rating        = rating,
                implemented   = implemented,
                effectiveness = effectiveness,
                comments      = comments,
                mood_state    = mood_state,
                timestamp     = timestamp or datetime.now(timezone.utc).isoformat(),
            )
        except SchemaError as e:
            errors = e.errors(include_url=False, include_context=False, include_input=False)
            raise ValidationError("Invalid recommendation feedback", details={"errors": errors}) from e

        async with self.store.write_lock:
            feedback = await self.store.list_feedback()
            feedback.append(item)
            await self.store.save_feedback(feedback)
        logger.log_feedback_recorded(item.suggestion_id, item.rating, item.implemented)
        return item

    async def summary(self) -> list[FeedbackSummary]:
        return summarize_feedback(await self.list_feedback())
