"""Grade one free-form query submission against a reference solution."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

from .compare import is_order_sensitive, results_equivalent
from .database import LessonDatabase, QueryResult
from .errors import EmptySubmissionError

logger = logging.getLogger(__name__)


class GradeOutcome(StrEnum):
    """Result category for one graded submission."""

    CORRECT = "correct"
    INCORRECT = "incorrect"
    USER_ERROR = "user-error"


@dataclass(frozen=True)
class GradeResult:
    """Outcome plus the results that were compared, for feedback display."""

    outcome: GradeOutcome
    user_result: QueryResult
    expected_result: QueryResult | None = None

    @property
    def correct(self) -> bool:
        return self.outcome is GradeOutcome.CORRECT


class Grader:
    """Runs submissions and reference solutions on freshly reset databases.

    Two protocols are used. Without a verification query the submission's own
    result is compared with the reference solution's result. With one, both
    the submission and the reference solution are applied to separate fresh
    databases and the verification query's results are compared instead.
    The database is always reset before ``grade`` returns.
    """

    def __init__(self, database: LessonDatabase) -> None:
        self.database = database

    def grade(
        self,
        user_query: str,
        solution: str,
        verify: str | None = None,
        order_sensitive: bool | None = None,
    ) -> GradeResult:
        """Grade ``user_query`` against ``solution``."""
        text = user_query.strip()
        if not text:
            raise EmptySubmissionError("Please write a query first.")

        ordered = is_order_sensitive(solution, order_sensitive)
        try:
            if verify:
                return self._grade_mutation(text, solution, verify, ordered)
            return self._grade_read_only(text, solution, ordered)
        finally:
            self.database.reinitialize()

    def _grade_read_only(self, text: str, solution: str, ordered: bool) -> GradeResult:
        self.database.reinitialize()
        user_result = self.database.execute(text)
        if not user_result.ok:
            return GradeResult(outcome=GradeOutcome.USER_ERROR, user_result=user_result)

        self.database.reinitialize()
        expected = self.database.execute(solution)
        _warn_if_failed("reference solution", solution, expected)
        return _verdict(user_result, expected, ordered)

    def _grade_mutation(self, text: str, solution: str, verify: str, ordered: bool) -> GradeResult:
        self.database.reinitialize()
        user_exec = self.database.execute(text)
        if not user_exec.ok:
            return GradeResult(outcome=GradeOutcome.USER_ERROR, user_result=user_exec)
        observed = self.database.execute(verify)

        self.database.reinitialize()
        reference_exec = self.database.execute(solution)
        _warn_if_failed("reference solution", solution, reference_exec)
        expected = self.database.execute(verify)
        _warn_if_failed("verification query", verify, expected)
        return _verdict(observed, expected, ordered)


def _verdict(user_result: QueryResult, expected: QueryResult, ordered: bool) -> GradeResult:
    if results_equivalent(user_result, expected, ordered):
        outcome = GradeOutcome.CORRECT
    else:
        outcome = GradeOutcome.INCORRECT
    return GradeResult(outcome=outcome, user_result=user_result, expected_result=expected)


def _warn_if_failed(label: str, text: str, result: QueryResult) -> None:
    if not result.ok:
        logger.warning("Authored %s failed: %s (%s)", label, result.error, text)
