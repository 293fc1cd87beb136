"""Core domain models for lesson-based query practice."""

from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum


class QuestionType(StrEnum):
    """Kinds of assessment question."""

    MULTIPLE_CHOICE = "multiple-choice"
    FREE_WRITE = "free-write"
    FIX_THE_QUERY = "fix-the-query"


@dataclass(frozen=True)
class Exercise:
    """One free-form practice exercise inside a lesson."""

    position: int
    instruction: str
    hint: str
    solution: str
    verify: str | None = None
    order_sensitive: bool | None = None


@dataclass(frozen=True)
class Question:
    """One concrete assessment question produced by a template."""

    type: QuestionType
    prompt: str
    solution: str | None = None
    options: tuple[str, ...] = ()
    answer_index: int | None = None
    verify: str | None = None
    broken: str | None = None
    order_sensitive: bool | None = None

    @property
    def is_multiple_choice(self) -> bool:
        return self.type is QuestionType.MULTIPLE_CHOICE

    @property
    def starting_text(self) -> str:
        """Text pre-filled in the editor: the broken query for fix-the-query questions."""
        if self.type is QuestionType.FIX_THE_QUERY and self.broken:
            return self.broken
        return ""


TemplateFn = Callable[[random.Random], Question]


@dataclass(frozen=True)
class Lesson:
    """Immutable lesson: schema, exercises, and an assessment template bank."""

    id: int
    title: str
    theme: str
    schema: str
    schema_display: str
    default_query: str
    exercises: list[Exercise]
    templates: list[TemplateFn]
