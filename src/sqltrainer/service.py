"""Application service for lessons, exercises, tests and learner progress."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from pathlib import Path

from .assessment import AssessmentGenerator
from .content_loader import load_lessons
from .database import LessonDatabase, QueryResult
from .errors import EmptySubmissionError, SessionStateError
from .grader import Grader, GradeResult
from .models import Exercise, Lesson
from .progress import ProgressLedger, ProgressRecord, SqliteKeyValueStore
from .session import AnswerRecord, TestSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LessonState:
    """Lesson state for the learner."""

    lesson: Lesson
    completed: bool
    best_score: int
    exercises_done: int
    exercise_total: int
    current: bool


@dataclass(frozen=True)
class OverallProgress:
    """Completion summary across every lesson."""

    completed: int
    total: int

    @property
    def percent(self) -> int:
        if self.total == 0:
            return 0
        return round(100 * self.completed / self.total)


class LearnService:
    """Coordinates the open lesson, its database, the active test and the ledger."""

    def __init__(
        self,
        db_path: Path | str,
        lessons: dict[int, Lesson] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize service with progress database path."""
        self.lessons = lessons if lessons is not None else load_lessons()
        self.store = SqliteKeyValueStore(db_path)
        self.ledger = ProgressLedger(self.store)
        self.generator = AssessmentGenerator(rng=rng)
        self.database = LessonDatabase()
        self.grader = Grader(self.database)
        self.current_lesson: Lesson | None = None
        self.test_session: TestSession | None = None

    def get_lesson(self, lesson_id: int) -> Lesson | None:
        """Get lesson by id."""
        return self.lessons.get(lesson_id)

    def list_lesson_states(self) -> list[LessonState]:
        """Return lesson states sorted by lesson id."""
        record = self.ledger.snapshot()
        states: list[LessonState] = []
        for lesson in sorted(self.lessons.values(), key=lambda item: item.id):
            flags = record.exercises_done[lesson.id - 1]
            total = len(lesson.exercises)
            states.append(
                LessonState(
                    lesson=lesson,
                    completed=record.completed[lesson.id - 1],
                    best_score=record.best_scores[lesson.id - 1],
                    exercises_done=sum(1 for flag in flags[:total] if flag),
                    exercise_total=total,
                    current=self.current_lesson is not None and self.current_lesson.id == lesson.id,
                )
            )
        return states

    def overall_progress(self) -> OverallProgress:
        """Return how many lessons are completed."""
        record = self.ledger.snapshot()
        done = sum(1 for lesson_id in self.lessons if record.completed[lesson_id - 1])
        return OverallProgress(completed=done, total=len(self.lessons))

    def progress_snapshot(self) -> ProgressRecord:
        """Return a read-only copy of the progress record."""
        return self.ledger.snapshot()

    def open_lesson(self, lesson_id: int) -> Lesson:
        """Make ``lesson_id`` current, rebuild its database and drop any active test."""
        lesson = self.lessons[lesson_id]
        self.test_session = None
        self.ledger.set_current_lesson(lesson_id)
        self.ledger.sync_exercise_count(lesson_id, len(lesson.exercises))
        self.database.load_schema(lesson.schema)
        self.current_lesson = lesson
        logger.debug("Opened lesson %d", lesson_id)
        return lesson

    def resume_lesson(self) -> Lesson | None:
        """Open the lesson recorded as current, if it still exists."""
        lesson_id = self.ledger.record.current_lesson
        if lesson_id not in self.lessons:
            return None
        return self.open_lesson(lesson_id)

    def exercise_flags(self) -> list[bool]:
        """Return done flags for the open lesson's exercises."""
        lesson = self._require_lesson()
        flags = self.ledger.exercise_flags(lesson.id)
        return [bool(flags[index]) if index < len(flags) else False for index in range(len(lesson.exercises))]

    def run_query(self, text: str) -> QueryResult:
        """Run sandbox text against the live database; changes persist until reset."""
        self._require_lesson()
        if not text.strip():
            raise EmptySubmissionError("Please write a query first.")
        return self.database.execute(text)

    def reset_sandbox(self) -> None:
        """Discard sandbox changes by rebuilding the lesson database."""
        self._require_lesson()
        self.database.reinitialize()

    def check_exercise(self, index: int, text: str) -> GradeResult:
        """Grade an exercise answer and record completion on success."""
        lesson = self._require_lesson()
        if not 0 <= index < len(lesson.exercises):
            raise IndexError(f"Exercise index {index} out of range for {len(lesson.exercises)} exercises.")
        exercise: Exercise = lesson.exercises[index]
        result = self.grader.grade(
            text,
            exercise.solution,
            verify=exercise.verify,
            order_sensitive=exercise.order_sensitive,
        )
        if result.correct:
            finished = self.ledger.mark_exercise_done(lesson.id, index, len(lesson.exercises))
            if finished:
                logger.info("Lesson %d completed through exercises", lesson.id)
        return result

    def start_test(self) -> TestSession:
        """Start a fresh test for the open lesson, replacing any active one."""
        lesson = self._require_lesson()
        session = self.generator.start_assessment(lesson, self.grader, self.ledger)
        session.start()
        self.test_session = session
        return session

    def submit_test_answer(self, answer: str | int | None) -> AnswerRecord:
        """Submit one answer to the active test."""
        if self.test_session is None:
            raise SessionStateError("No test is in progress.")
        return self.test_session.submit(answer)

    def abandon_test(self) -> None:
        """Drop the active test without recording anything."""
        if self.test_session is not None and not self.test_session.is_completed:
            logger.debug("Test abandoned for lesson %d", self.test_session.lesson_id)
        self.test_session = None
        if self.current_lesson is not None:
            self.database.reinitialize()

    def reset_progress(self) -> None:
        """Erase all progress and close the open lesson."""
        self.ledger.reset()
        self.test_session = None
        self.current_lesson = None
        self.database.load_schema("")

    def _require_lesson(self) -> Lesson:
        if self.current_lesson is None:
            raise SessionStateError("No lesson is open.")
        return self.current_lesson

    def close(self) -> None:
        """Close resources."""
        self.database.close()
        self.store.close()

    def __del__(self) -> None:  # pragma: no cover
        """Best-effort close."""
        try:
            self.close()
        except Exception:
            pass
