"""
MoodHabit — Record Store  (moodhabit/record_store.py)
======================================================
Reads and writes the persisted collections through a small async key-value
interface.  Each collection is one JSON document under a stable key:

    habits                   list[HabitRecord]
    mood_entries             list[MoodEntry]
    habit_mood_entries       list[HabitMoodEntry]
    adaptive_patterns        {key: list[PatternObservation]}
    adaptive_thresholds      {key: ThresholdSnapshot}
    recommendation_feedback  list[RecommendationFeedback]

Reads never raise: a missing key, an unreadable file or a blob that does not
parse is logged and returned as an empty collection.  Records that fail
schema validation are dropped one by one.
"""

import os
import re
import json
import time
import asyncio
import tempfile
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError as SchemaError

from moodhabit.api_exceptions import StorageError
from moodhabit.schemas import (
    HabitMoodEntry,
    HabitRecord,
    MoodEntry,
    PatternObservation,
    RecommendationFeedback,
    ThresholdSnapshot,
)
from moodhabit.structured_logging import logger

HABITS_KEY             = "habits"
MOOD_ENTRIES_KEY       = "mood_entries"
HABIT_MOOD_ENTRIES_KEY = "habit_mood_entries"
PATTERNS_KEY           = "adaptive_patterns"
THRESHOLDS_KEY         = "adaptive_thresholds"
FEEDBACK_KEY           = "recommendation_feedback"

M = TypeVar("M", bound=BaseModel)


# ──────────────────────────────────────────────
# KEY-VALUE BACKENDS
# ──────────────────────────────────────────────

class KeyValueStore:
    """Async string store.  `get` returns None for a missing key."""

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str) -> None:
        raise NotImplementedError


class MemoryKeyValueStore(KeyValueStore):
    """In-process store, used by tests and as the default for one-off analysis."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value


class JsonFileKeyValueStore(KeyValueStore):
    """One `<key>.json` file per collection under `data_dir`."""

    def __init__(self, data_dir: str):
        self.data_dir = data_dir

    def _path(self, key: str) -> str:
        safe = re.sub(r"[^\w\-]", "_", key.lower())
        return os.path.join(self.data_dir, f"{safe}.json")

    def _read(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, encoding="utf-8") as fh:
                return fh.read()
        except OSError as e:
            raise StorageError(key, str(e)) from e

    def _write(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp: Optional[str] = None
        try:
            os.makedirs(self.data_dir, exist_ok=True)
            # unique temp file per write; concurrent writers must not share one
            fd, tmp = tempfile.mkstemp(dir=self.data_dir, prefix=f".{os.path.basename(path)}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(value)
            os.replace(tmp, path)
        except OSError as e:
            if tmp and os.path.exists(tmp):
                os.remove(tmp)
            raise StorageError(key, str(e)) from e

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._read, key)

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._write, key, value)


# ──────────────────────────────────────────────
# PARSING
# ──────────────────────────────────────────────

def parse_records(model: Type[M], items: Any) -> tuple[List[M], int]:
    """Validate each item against `model`.  Returns (records, dropped_count)."""
    if not isinstance(items, list):
        return [], 0 if items is None else 1
    records: List[M] = []
    dropped = 0
    for item in items:
        try:
            records.append(model.model_validate(item))
        except SchemaError:
            dropped += 1
    return records, dropped


def _dump(records: List[BaseModel]) -> List[dict]:
    return [r.model_dump(mode="json") for r in records]


# ──────────────────────────────────────────────
# ACCESSOR
# ──────────────────────────────────────────────

class RecordStore:
    """Typed access to every persisted collection."""

    def __init__(self, backend: KeyValueStore):
        self.backend = backend
        # held across read-modify-write sequences on this store
        self.write_lock = asyncio.Lock()

    async def _load_json(self, key: str) -> Any:
        start = time.perf_counter()
        try:
            raw = await self.backend.get(key)
        except StorageError as e:
            logger.log_store_operation(key, "read", 0, (time.perf_counter() - start) * 1000,
                                       error=e.message)
            return None
        except UnicodeDecodeError as e:
            logger.log_corrupt_blob(key, str(e))
            return None
        if raw is None or raw.strip() == "":
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.log_corrupt_blob(key, str(e))
            return None
        logger.log_store_operation(key, "read", len(data) if hasattr(data, "__len__") else 1,
                                   (time.perf_counter() - start) * 1000)
        return data

    async def _save_json(self, key: str, data: Any) -> None:
        start = time.perf_counter()
        await self.backend.set(key, json.dumps(data, indent=2))
        logger.log_store_operation(key, "write", len(data), (time.perf_counter() - start) * 1000)

    async def _load_list(self, key: str, model: Type[M]) -> List[M]:
        data = await self._load_json(key)
        if data is None:
            return []
        if not isinstance(data, list):
            logger.log_corrupt_blob(key, f"expected a list, got {type(data).__name__}")
            return []
        records, dropped = parse_records(model, data)
        if dropped:
            logger.log_corrupt_blob(key, "invalid records skipped", dropped=dropped)
        return records

    # ── Raw logs ──────────────────────────────────────────────

    async def list_habits(self) -> List[HabitRecord]:
        return await self._load_list(HABITS_KEY, HabitRecord)

    async def list_mood_entries(self) -> List[MoodEntry]:
        return await self._load_list(MOOD_ENTRIES_KEY, MoodEntry)

    async def list_habit_mood_entries(self) -> List[HabitMoodEntry]:
        return await self._load_list(HABIT_MOOD_ENTRIES_KEY, HabitMoodEntry)

    async def save_habits(self, habits: List[HabitRecord]) -> None:
        await self._save_json(HABITS_KEY, _dump(habits))

    async def save_mood_entries(self, entries: List[MoodEntry]) -> None:
        await self._save_json(MOOD_ENTRIES_KEY, _dump(entries))

    async def save_habit_mood_entries(self, entries: List[HabitMoodEntry]) -> None:
        await self._save_json(HABIT_MOOD_ENTRIES_KEY, _dump(entries))

    # ── Adaptive thresholds ───────────────────────────────────

    async def load_patterns(self) -> Dict[str, List[PatternObservation]]:
        data = await self._load_json(PATTERNS_KEY)
        if data is None:
            return {}
        if not isinstance(data, dict):
            logger.log_corrupt_blob(PATTERNS_KEY, f"expected an object, got {type(data).__name__}")
            return {}
        patterns: Dict[str, List[PatternObservation]] = {}
        dropped = 0
        for key, items in data.items():
            records, bad = parse_records(PatternObservation, items)
            dropped += bad
            if records:
                patterns[key] = records
        if dropped:
            logger.log_corrupt_blob(PATTERNS_KEY, "invalid observations skipped", dropped=dropped)
        return patterns

    async def save_patterns(self, patterns: Dict[str, List[PatternObservation]]) -> None:
        await self._save_json(PATTERNS_KEY, {k: _dump(v) for k, v in patterns.items()})

    async def load_thresholds(self) -> Dict[str, ThresholdSnapshot]:
        data = await self._load_json(THRESHOLDS_KEY)
        if not isinstance(data, dict):
            if data is not None:
                logger.log_corrupt_blob(THRESHOLDS_KEY, f"expected an object, got {type(data).__name__}")
            return {}
        thresholds: Dict[str, ThresholdSnapshot] = {}
        for key, item in data.items():
            try:
                thresholds[key] = ThresholdSnapshot.model_validate(item)
            except SchemaError:
                logger.log_corrupt_blob(THRESHOLDS_KEY, f"invalid threshold {key} skipped", dropped=1)
        return thresholds

    async def save_thresholds(self, thresholds: Dict[str, ThresholdSnapshot]) -> None:
        await self._save_json(THRESHOLDS_KEY, {k: v.model_dump(mode="json") for k, v in thresholds.items()})

    # ── Feedback ──────────────────────────────────────────────

    async def list_feedback(self) -> List[RecommendationFeedback]:
        return await self._load_list(FEEDBACK_KEY, RecommendationFeedback)

    async def save_feedback(self, feedback: List[RecommendationFeedback]) -> None:
        await self._save_json(FEEDBACK_KEY, _dump(feedback))
