from __future__ import annotations

import shutil
import sys
from collections.abc import Iterator
from pathlib import Path
from typing import Any
from uuid import uuid4

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from sqltrainer.content_loader import _lesson_from_dict  # noqa: E402
from sqltrainer.database import LessonDatabase  # noqa: E402
from sqltrainer.grader import Grader  # noqa: E402
from sqltrainer.models import Lesson  # noqa: E402
from sqltrainer.progress import ProgressLedger, SqliteKeyValueStore  # noqa: E402

PLANETS_SCHEMA = (
    "CREATE TABLE planets (name TEXT, diameter_km INT);"
    "INSERT INTO planets VALUES ('Mercury', 4879), ('Venus', 12104);"
    "CREATE TABLE t (id INTEGER PRIMARY KEY, label TEXT);"
    "INSERT INTO t VALUES (1, 'A'), (2, 'B'), (3, 'C');"
)


def _tmp_path_fixture() -> Iterator[Path]:
    """Provide per-test temporary directory path inside the workspace.

    Overrides pytest's builtin ``tmp_path`` so file-backed progress stores
    live under ``.tmp_pytest/`` in the project directory.
    """
    base = ROOT / ".tmp_pytest"
    base.mkdir(parents=True, exist_ok=True)
    path = base / str(uuid4())
    path.mkdir(parents=True, exist_ok=False)
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
        try:
            next(base.iterdir())
        except StopIteration:
            base.rmdir()
        except FileNotFoundError:
            pass


tmp_path = pytest.fixture(name="tmp_path")(_tmp_path_fixture)


def sample_lesson_dict(**overrides: Any) -> dict[str, Any]:
    """Small two-table lesson used across service and session tests."""
    raw: dict[str, Any] = {
        "id": 1,
        "title": "Planets",
        "theme": "Space",
        "schema": PLANETS_SCHEMA,
        "schema_display": "planets(name, diameter_km); t(id, label)",
        "default_query": "SELECT * FROM planets;",
        "exercises": [
            {"instruction": "Select every planet name.", "hint": "SELECT name", "solution": "SELECT name FROM planets"},
            {
                "instruction": "Insert row 9 labelled X into t.",
                "hint": "INSERT INTO t VALUES",
                "solution": "INSERT INTO t VALUES (9, 'X')",
                "verify": "SELECT * FROM t WHERE id = 9",
            },
        ],
        "templates": [
            {"type": "free-write", "prompt": "Select all planet names.", "solution": "SELECT name FROM planets"},
            {
                "type": "free-write",
                "prompt": "Select labels of t ordered by id descending.",
                "solution": "SELECT label FROM t ORDER BY id DESC",
            },
            {
                "type": "fix-the-query",
                "prompt": "Fix this query:",
                "broken": "SELCT * FROM t",
                "solution": "SELECT * FROM t",
            },
            {
                "type": "multiple-choice",
                "prompt": "Which keyword filters rows?",
                "options": ["WHERE", "ORDER BY", "FROM"],
                "answer": 0,
            },
            {
                "type": "multiple-choice",
                "prompt": "Which keyword sorts rows?",
                "options": ["ORDER BY", "GROUP BY", "LIMIT"],
                "answer": 0,
            },
        ],
    }
    raw.update(overrides)
    return raw


@pytest.fixture
def lesson() -> Lesson:
    return _lesson_from_dict(sample_lesson_dict())


@pytest.fixture
def database() -> Iterator[LessonDatabase]:
    db = LessonDatabase(PLANETS_SCHEMA)
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def grader(database: LessonDatabase) -> Grader:
    return Grader(database)


@pytest.fixture
def ledger() -> Iterator[ProgressLedger]:
    store = SqliteKeyValueStore(":memory:")
    try:
        yield ProgressLedger(store)
    finally:
        store.close()
