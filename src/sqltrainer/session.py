"""Test session state machine: sequence questions, grade answers, report the score."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from .errors import EmptySubmissionError, SessionStateError
from .grader import Grader, GradeResult
from .models import Question

if TYPE_CHECKING:
    from .progress import ProgressLedger

logger = logging.getLogger(__name__)


class SessionState(StrEnum):
    """Lifecycle of one test attempt."""

    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


@dataclass(frozen=True)
class AnswerRecord:
    """One graded answer, kept for end-of-test review."""

    question: Question
    response: str | int
    correct: bool
    grade: GradeResult | None = None


@dataclass(frozen=True)
class TestSummary:
    """Final result of a completed session."""

    __test__ = False

    lesson_id: int
    score: int
    total: int
    passed: bool
    answers: tuple[AnswerRecord, ...]


def passing_score(score: int, total: int) -> bool:
    """Return whether ``score`` out of ``total`` reaches the 60% pass mark."""
    return total > 0 and score * 5 >= total * 3


def _parse_choice(question: Question, answer: str | int | None) -> int:
    """Return a valid 0-based option index; only ints and digit strings are accepted."""
    if answer is None or (isinstance(answer, str) and not answer.strip()):
        raise EmptySubmissionError("Please select an option first.")
    if isinstance(answer, str) and answer.strip().isascii() and answer.strip().isdigit():
        choice = int(answer.strip())
    elif isinstance(answer, int) and not isinstance(answer, bool):
        choice = answer
    else:
        raise ValueError(f"Option must be a number, got {answer!r}.")
    if not 0 <= choice < len(question.options):
        raise ValueError(f"Option {choice} is out of range.")
    return choice


class TestSession:
    """Drives one test attempt from NOT_STARTED through IN_PROGRESS to COMPLETED.

    The ledger is only touched once, on completion. A session dropped before
    that leaves no trace.
    """

    __test__ = False

    def __init__(
        self,
        lesson_id: int,
        questions: list[Question],
        grader: Grader,
        ledger: ProgressLedger | None = None,
    ) -> None:
        if not questions:
            raise ValueError("A test session needs at least one question.")
        self.lesson_id = lesson_id
        self.questions = list(questions)
        self.grader = grader
        self.ledger = ledger
        self.state = SessionState.NOT_STARTED
        self.index = 0
        self.score = 0
        self.answers: list[AnswerRecord] = []

    @property
    def total(self) -> int:
        return len(self.questions)

    @property
    def current_question(self) -> Question:
        """Question awaiting an answer."""
        if self.state is not SessionState.IN_PROGRESS:
            raise SessionStateError(f"No current question while session is {self.state}.")
        return self.questions[self.index]

    @property
    def is_completed(self) -> bool:
        return self.state is SessionState.COMPLETED

    def start(self) -> Question:
        """Reset the database and present the first question."""
        if self.state is not SessionState.NOT_STARTED:
            raise SessionStateError(f"Cannot start a session that is {self.state}.")
        self.grader.database.reinitialize()
        self.state = SessionState.IN_PROGRESS
        self.index = 0
        logger.debug("Test started for lesson %d with %d questions", self.lesson_id, self.total)
        return self.questions[0]

    def submit(self, answer: str | int | None) -> AnswerRecord:
        """Grade ``answer`` for the current question and advance.

        Multiple-choice questions take an option index; the others take query
        text. Empty answers are rejected without consuming the question.
        """
        if self.state is not SessionState.IN_PROGRESS:
            raise SessionStateError(f"Cannot submit while session is {self.state}.")
        question = self.questions[self.index]
        if question.is_multiple_choice:
            choice = _parse_choice(question, answer)
            self.grader.database.reinitialize()
            record = AnswerRecord(question=question, response=choice, correct=choice == question.answer_index)
        else:
            text = "" if answer is None else str(answer)
            if not text.strip():
                raise EmptySubmissionError("Please write a query first.")
            self.grader.database.reinitialize()
            record = self._grade_query(question, text)

        self.answers.append(record)
        if record.correct:
            self.score += 1
        self.index += 1
        if self.index >= self.total:
            self._complete()
        return record

    def _grade_query(self, question: Question, text: str) -> AnswerRecord:
        assert question.solution is not None
        result = self.grader.grade(
            text,
            question.solution,
            verify=question.verify,
            order_sensitive=question.order_sensitive,
        )
        return AnswerRecord(question=question, response=text, correct=result.correct, grade=result)

    def _complete(self) -> None:
        self.state = SessionState.COMPLETED
        logger.debug("Test finished for lesson %d: %d/%d", self.lesson_id, self.score, self.total)
        if self.ledger is not None:
            self.ledger.record_test_score(self.lesson_id, self.score, self.total)

    def summary(self) -> TestSummary:
        """Return the final score; only valid once the session is completed."""
        if self.state is not SessionState.COMPLETED:
            raise SessionStateError("Test is not finished yet.")
        return TestSummary(
            lesson_id=self.lesson_id,
            score=self.score,
            total=self.total,
            passed=passing_score(self.score, self.total),
            answers=tuple(self.answers),
        )
