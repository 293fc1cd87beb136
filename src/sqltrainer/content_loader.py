"""Load declarative lesson content from bundled JSON resources."""

from __future__ import annotations

import json
import logging
import random
from importlib import resources
from pathlib import Path
from typing import Any

from .assessment import ASSESSMENT_SIZE, template_from_dict
from .database import LessonDatabase, QueryResult
from .errors import ContentError
from .models import Exercise, Lesson, TemplateFn
from .progress import LESSON_COUNT

logger = logging.getLogger(__name__)

CONTENT_PACKAGE = "sqltrainer.content"


def _text(value: object) -> str:
    """Join line lists so long SQL can be authored one statement per line."""
    if isinstance(value, list):
        return "\n".join(str(line) for line in value)
    if value is None:
        return ""
    return str(value)


def _exercise_from_dict(lesson_id: int, position: int, raw: dict[str, Any]) -> Exercise:
    """Build an exercise from raw JSON content."""
    solution = _text(raw.get("solution")).strip()
    if not solution:
        raise ContentError(f"Lesson {lesson_id} exercise {position + 1} has no solution.")
    instruction = _text(raw.get("instruction")).strip()
    if not instruction:
        raise ContentError(f"Lesson {lesson_id} exercise {position + 1} has no instruction.")
    verify = _text(raw.get("verify")).strip() or None
    order_sensitive = raw.get("order_sensitive")
    return Exercise(
        position=position,
        instruction=instruction,
        hint=_text(raw.get("hint")).strip(),
        solution=solution,
        verify=verify,
        order_sensitive=bool(order_sensitive) if order_sensitive is not None else None,
    )


def _normalize_template(raw: dict[str, Any]) -> dict[str, Any]:
    normalized = dict(raw)
    for key in ("prompt", "solution", "verify", "broken"):
        if key in normalized and normalized[key] is not None:
            normalized[key] = _text(normalized[key])
    return normalized


def _lesson_from_dict(raw: dict[str, Any]) -> Lesson:
    """Build a lesson from raw JSON content."""
    try:
        lesson_id = int(raw["id"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ContentError(f"Lesson has no valid id: {raw.get('id')!r}") from exc
    if not 1 <= lesson_id <= LESSON_COUNT:
        raise ContentError(f"Lesson id {lesson_id} is outside 1..{LESSON_COUNT}.")

    exercises = [_exercise_from_dict(lesson_id, index, item) for index, item in enumerate(raw.get("exercises", []))]
    templates: list[TemplateFn] = [
        template_from_dict(f"{lesson_id}.{index + 1}", _normalize_template(item))
        for index, item in enumerate(raw.get("templates", []))
    ]
    if not templates:
        raise ContentError(f"Lesson {lesson_id} has no assessment templates.")
    if len(templates) < ASSESSMENT_SIZE:
        logger.warning(
            "Lesson %d has %d templates; its tests will have fewer than %d questions.",
            lesson_id,
            len(templates),
            ASSESSMENT_SIZE,
        )

    return Lesson(
        id=lesson_id,
        title=str(raw.get("title", f"Lesson {lesson_id}")),
        theme=str(raw.get("theme", "")),
        schema=_text(raw.get("schema")),
        schema_display=_text(raw.get("schema_display")),
        default_query=_text(raw.get("default_query")),
        exercises=exercises,
        templates=templates,
    )


def _add_lesson(lessons: dict[int, Lesson], raw: object, source: str) -> None:
    if not isinstance(raw, dict):
        raise ContentError(f"{source}: lesson root must be a JSON object.")
    lesson = _lesson_from_dict(raw)
    if lesson.id in lessons:
        raise ContentError(f"Duplicate lesson id: {lesson.id}")
    lessons[lesson.id] = lesson


def load_lessons(check: bool = False) -> dict[int, Lesson]:
    """Load bundled lessons keyed by id.

    With ``check`` every lesson's queries are also run through ``check_lesson_queries``.
    """
    lessons: dict[int, Lesson] = {}
    entries = sorted(resources.files(CONTENT_PACKAGE).iterdir(), key=lambda item: item.name)
    for entry in entries:
        if entry.name.endswith(".json"):
            _add_lesson(lessons, json.loads(entry.read_text(encoding="utf-8-sig")), entry.name)
    return _finish(lessons, check)


def load_lessons_from_dir(path: Path, check: bool = False) -> dict[int, Lesson]:
    """Load lessons from directory for tests/tools."""
    lessons: dict[int, Lesson] = {}
    for file_path in sorted(path.glob("*.json")):
        _add_lesson(lessons, json.loads(file_path.read_text(encoding="utf-8-sig")), file_path.name)
    return _finish(lessons, check)


def _finish(lessons: dict[int, Lesson], check: bool) -> dict[int, Lesson]:
    ordered = dict(sorted(lessons.items()))
    if check:
        for lesson in ordered.values():
            check_lesson_queries(lesson)
    return ordered


def check_lesson_queries(lesson: Lesson, rng: random.Random | None = None) -> None:
    """Run the schema, every exercise solution and one draw of every template.

    Raises ``ContentError`` on the first query the engine rejects.
    """
    rng = rng if rng is not None else random.Random(0)
    database = LessonDatabase(lesson.schema)
    try:
        for exercise in lesson.exercises:
            label = f"Lesson {lesson.id} exercise {exercise.position + 1}"
            _run_checked(database, exercise.solution, label)
            if exercise.verify:
                _run_checked(database, exercise.verify, f"{label} verification", fresh=False)
        for index, template in enumerate(lesson.templates):
            question = template(rng)
            label = f"Lesson {lesson.id} template {index + 1}"
            if question.solution:
                _run_checked(database, question.solution, label)
            if question.verify:
                _run_checked(database, question.verify, f"{label} verification", fresh=False)
    finally:
        database.close()


def _run_checked(database: LessonDatabase, text: str, label: str, fresh: bool = True) -> QueryResult:
    if fresh:
        database.reinitialize()
    result = database.execute(text)
    if not result.ok:
        raise ContentError(f"{label} failed: {result.error}")
    return result
