from sqltrainer.database import LessonDatabase
from sqltrainer.errors import EmptySubmissionError
from sqltrainer.grader import GradeOutcome, Grader


def test_matching_select_is_correct(grader: Grader) -> None:
    result = grader.grade("SELECT name FROM planets", "SELECT name FROM planets")
    assert result.outcome is GradeOutcome.CORRECT
    assert result.correct is True
    assert result.user_result.rows == (("Mercury",), ("Venus",))


def test_reverse_order_fails_ordered_reference(grader: Grader) -> None:
    result = grader.grade("SELECT * FROM t ORDER BY id DESC", "SELECT * FROM t ORDER BY id")
    assert result.outcome is GradeOutcome.INCORRECT


def test_different_order_passes_unordered_reference(grader: Grader) -> None:
    result = grader.grade("SELECT * FROM t ORDER BY id DESC", "SELECT * FROM t")
    assert result.outcome is GradeOutcome.CORRECT


def test_authored_override_beats_heuristic(grader: Grader) -> None:
    result = grader.grade(
        "SELECT * FROM t ORDER BY id DESC",
        "SELECT * FROM t ORDER BY id",
        order_sensitive=False,
    )
    assert result.correct is True


def test_wrong_columns_are_incorrect(grader: Grader) -> None:
    result = grader.grade("SELECT diameter_km FROM planets", "SELECT name FROM planets")
    assert result.outcome is GradeOutcome.INCORRECT
    assert result.expected_result is not None
    assert result.expected_result.columns == ("name",)


def test_engine_error_is_user_error(grader: Grader) -> None:
    result = grader.grade("SELEC name FROM planets", "SELECT name FROM planets")
    assert result.outcome is GradeOutcome.USER_ERROR
    assert result.user_result.error is not None
    assert result.expected_result is None


def test_empty_submission_is_rejected(grader: Grader) -> None:
    try:
        grader.grade("   \n", "SELECT name FROM planets")
        raise AssertionError("Expected EmptySubmissionError")
    except EmptySubmissionError:
        pass


def test_mutating_exercise_compares_verification_rows(grader: Grader) -> None:
    wrong = grader.grade(
        "INSERT INTO t VALUES (9, 'Y')",
        "INSERT INTO t VALUES (9, 'X')",
        verify="SELECT * FROM t WHERE id = 9",
    )
    assert wrong.outcome is GradeOutcome.INCORRECT
    assert wrong.user_result.rows == ((9, "Y"),)

    right = grader.grade(
        "insert into t (id, label) values (9, 'X');",
        "INSERT INTO t VALUES (9, 'X')",
        verify="SELECT * FROM t WHERE id = 9",
    )
    assert right.outcome is GradeOutcome.CORRECT


def test_mutating_submission_error_is_user_error(grader: Grader) -> None:
    result = grader.grade(
        "INSERT INTO t VALUES (1, 'dup')",
        "INSERT INTO t VALUES (9, 'X')",
        verify="SELECT * FROM t WHERE id = 9",
    )
    assert result.outcome is GradeOutcome.USER_ERROR


def test_grading_leaves_database_clean(grader: Grader, database: LessonDatabase) -> None:
    for _ in range(2):
        result = grader.grade(
            "DELETE FROM t WHERE id = 3",
            "DELETE FROM t WHERE id = 3",
            verify="SELECT id FROM t",
        )
        assert result.correct is True
        assert database.execute("SELECT COUNT(*) FROM t").rows == ((3,),)


def test_sandbox_changes_do_not_leak_into_grading(grader: Grader, database: LessonDatabase) -> None:
    database.execute("DELETE FROM planets")
    result = grader.grade("SELECT name FROM planets", "SELECT name FROM planets")
    assert result.correct is True
    assert result.user_result.rows == (("Mercury",), ("Venus",))


def test_failing_reference_grades_incorrect(grader: Grader) -> None:
    result = grader.grade("SELECT name FROM planets", "SELECT name FROM nowhere")
    assert result.outcome is GradeOutcome.INCORRECT
