"""Durable learner progress: a SQLite key/value store and the progress ledger on top of it."""

from __future__ import annotations

import copy
import json
import logging
import math
import sqlite3
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import cast

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
RECORD_FORMAT_VERSION = 1
LESSON_COUNT = 20
MAX_TEST_SCORE = 5
PROGRESS_KEY = "progress"


def _default_flags() -> list[bool]:
    return [False] * LESSON_COUNT


def _default_scores() -> list[int]:
    return [0] * LESSON_COUNT


def _default_exercises() -> list[list[bool]]:
    return [[] for _ in range(LESSON_COUNT)]


@dataclass
class ProgressRecord:
    """One learner's progress; lists are indexed by ``lesson_id - 1``."""

    current_lesson: int = 1
    completed: list[bool] = field(default_factory=_default_flags)
    best_scores: list[int] = field(default_factory=_default_scores)
    exercises_done: list[list[bool]] = field(default_factory=_default_exercises)


class SqliteKeyValueStore:
    """Single-table string key/value store."""

    def __init__(self, db_path: Path | str) -> None:
        """Open the database and bring its schema up to date."""
        if isinstance(db_path, Path):
            db_path.parent.mkdir(parents=True, exist_ok=True)
            target = str(db_path)
        else:
            target = db_path
        self._conn = sqlite3.connect(target)
        self._conn.row_factory = sqlite3.Row
        self._apply_migrations()

    def _apply_migrations(self) -> None:
        """Apply forward-only schema migrations to latest version."""
        current = int(self._conn.execute("PRAGMA user_version").fetchone()[0])
        if current > SCHEMA_VERSION:
            raise RuntimeError(f"Database schema version {current} is newer than supported {SCHEMA_VERSION}.")

        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL
                )
                """)

        for version in range(current + 1, SCHEMA_VERSION + 1):
            if version == 1:
                self._migrate_to_v1()
            with self._conn:
                self._conn.execute(f"PRAGMA user_version = {version}")
                self._conn.execute(
                    "INSERT OR REPLACE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                    (version, datetime.now(UTC).isoformat()),
                )

    def _migrate_to_v1(self) -> None:
        """Create the key/value table."""
        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """)

    def get(self, key: str) -> str | None:
        """Return the stored value for ``key`` if present."""
        row = self._conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        return str(row["value"])

    def set(self, key: str, value: str) -> None:
        """Insert or overwrite ``key``."""
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO kv_store (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value, datetime.now(UTC).isoformat()),
            )

    def delete(self, key: str) -> bool:
        """Remove ``key``; return whether it existed."""
        with self._conn:
            cursor = self._conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        return cursor.rowcount > 0

    def close(self) -> None:
        """Close db connection."""
        self._conn.close()

    def __del__(self) -> None:  # pragma: no cover
        """Best-effort connection cleanup."""
        try:
            self.close()
        except Exception:
            pass


class ProgressLedger:
    """In-memory progress record, flushed to the store after every change."""

    def __init__(self, store: SqliteKeyValueStore, key: str = PROGRESS_KEY) -> None:
        self.store = store
        self.key = key
        self.record = self.load()

    def load(self) -> ProgressRecord:
        """Read the stored record; absent or corrupt data yields defaults."""
        raw = self.store.get(self.key)
        if raw is None:
            self.record = ProgressRecord()
        else:
            self.record = decode_record(raw)
        return self.record

    def save(self, record: ProgressRecord | None = None) -> None:
        """Overwrite the stored record with ``record`` (or the current one)."""
        if record is not None:
            self.record = record
        self.store.set(self.key, encode_record(self.record))

    def reset(self) -> ProgressRecord:
        """Erase stored progress and return to defaults."""
        self.store.delete(self.key)
        self.record = ProgressRecord()
        logger.info("Progress reset")
        return self.record

    def snapshot(self) -> ProgressRecord:
        """Return a copy that callers may inspect without affecting the ledger."""
        return copy.deepcopy(self.record)

    def set_current_lesson(self, lesson_id: int) -> None:
        _check_lesson_id(lesson_id)
        if self.record.current_lesson != lesson_id:
            self.record.current_lesson = lesson_id
            self.save()

    def sync_exercise_count(self, lesson_id: int, count: int) -> list[bool]:
        """Resize one lesson's exercise flags to ``count`` without dropping any done flag.

        Growing pads with ``False``. Shrinking only removes trailing ``False``
        flags, so completion earned under an older lesson version survives.
        """
        _check_lesson_id(lesson_id)
        flags = self.record.exercises_done[lesson_id - 1]
        resized = list(flags)
        if len(resized) < count:
            resized.extend([False] * (count - len(resized)))
        else:
            while len(resized) > count and not resized[-1]:
                resized.pop()
        if resized != flags:
            self.record.exercises_done[lesson_id - 1] = resized
            self.save()
        return resized

    def mark_exercise_done(self, lesson_id: int, index: int, count: int) -> bool:
        """Flag exercise ``index`` done; return whether this finished the lesson's exercises."""
        if not 0 <= index < count:
            raise IndexError(f"Exercise index {index} out of range for {count} exercises.")
        self.sync_exercise_count(lesson_id, count)
        flags = self.record.exercises_done[lesson_id - 1]
        flags[index] = True
        all_done = all(flags[:count])
        if all_done:
            self.record.completed[lesson_id - 1] = True
        self.save()
        return all_done

    def mark_lesson_completed(self, lesson_id: int) -> None:
        _check_lesson_id(lesson_id)
        self.record.completed[lesson_id - 1] = True
        self.save()

    def record_test_score(self, lesson_id: int, score: int, total: int) -> bool:
        """Keep the best score and complete the lesson on a pass; return whether it passed."""
        _check_lesson_id(lesson_id)
        slot = lesson_id - 1
        self.record.best_scores[slot] = max(self.record.best_scores[slot], score)
        passed = total > 0 and score * 5 >= total * 3
        if passed:
            self.record.completed[slot] = True
        self.save()
        logger.info("Lesson %d test scored %d/%d (best %d)", lesson_id, score, total, self.record.best_scores[slot])
        return passed

    def is_completed(self, lesson_id: int) -> bool:
        _check_lesson_id(lesson_id)
        return self.record.completed[lesson_id - 1]

    def best_score(self, lesson_id: int) -> int:
        _check_lesson_id(lesson_id)
        return self.record.best_scores[lesson_id - 1]

    def exercise_flags(self, lesson_id: int) -> list[bool]:
        _check_lesson_id(lesson_id)
        return list(self.record.exercises_done[lesson_id - 1])


def _check_lesson_id(lesson_id: int) -> None:
    if not 1 <= lesson_id <= LESSON_COUNT:
        raise KeyError(lesson_id)


def encode_record(record: ProgressRecord) -> str:
    """Serialize a record to its stored JSON text."""
    payload = {
        "format_version": RECORD_FORMAT_VERSION,
        "current_lesson": record.current_lesson,
        "completed": record.completed,
        "best_scores": record.best_scores,
        "exercises_done": record.exercises_done,
    }
    return json.dumps(payload, separators=(",", ":"))


def decode_record(raw: str) -> ProgressRecord:
    """Parse stored JSON text; each malformed field falls back to its default.

    Unparseable JSON, a non-object root or a newer format version count as a
    corrupt record and produce a fresh default record.
    """
    try:
        raw_obj: object = json.loads(raw)
    except ValueError:
        logger.warning("Stored progress is not valid JSON; starting from defaults.")
        return ProgressRecord()
    if not isinstance(raw_obj, dict):
        logger.warning("Stored progress root is not an object; starting from defaults.")
        return ProgressRecord()
    data = cast(dict[str, object], raw_obj)

    format_version = _coerce_int(data.get("format_version", RECORD_FORMAT_VERSION))
    if format_version is None or format_version > RECORD_FORMAT_VERSION:
        logger.warning("Stored progress has unsupported format_version %r; starting from defaults.", format_version)
        return ProgressRecord()

    record = ProgressRecord()
    current = _coerce_int(data.get("current_lesson"))
    if current is not None and 1 <= current <= LESSON_COUNT:
        record.current_lesson = current
    record.completed = _normalize_flags(data.get("completed"))
    record.best_scores = _normalize_scores(data.get("best_scores"))
    record.exercises_done = _normalize_exercises(data.get("exercises_done"))
    return record


def _normalize_flags(raw: object) -> list[bool]:
    """Normalize per-lesson completion flags, padding or truncating to the lesson count."""
    flags = _default_flags()
    if not isinstance(raw, list):
        return flags
    for index, item in enumerate(cast(list[object], raw)[:LESSON_COUNT]):
        flags[index] = item is True or _coerce_int(item, default=0) == 1
    return flags


def _normalize_scores(raw: object) -> list[int]:
    """Normalize per-lesson best scores, clamped to 0..MAX_TEST_SCORE; unreadable values become 0."""
    scores = _default_scores()
    if not isinstance(raw, list):
        return scores
    for index, item in enumerate(cast(list[object], raw)[:LESSON_COUNT]):
        scores[index] = max(0, min(_coerce_int(item, default=0) or 0, MAX_TEST_SCORE))
    return scores


def _normalize_exercises(raw: object) -> list[list[bool]]:
    """Normalize per-lesson exercise flag lists."""
    lessons = _default_exercises()
    if not isinstance(raw, list):
        return lessons
    for index, item in enumerate(cast(list[object], raw)[:LESSON_COUNT]):
        if isinstance(item, list):
            lessons[index] = [flag is True or _coerce_int(flag, default=0) == 1 for flag in cast(list[object], item)]
    return lessons


def _coerce_int(value: object, default: int | None = None) -> int | None:
    """Coerce value to int for record normalization."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return default
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return default
    return default
