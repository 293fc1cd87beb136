import random
from pathlib import Path

from conftest import sample_lesson_dict
from sqltrainer.content_loader import _lesson_from_dict
from sqltrainer.database import NO_ROWS_MESSAGE
from sqltrainer.errors import EmptySubmissionError, SessionStateError
from sqltrainer.grader import GradeOutcome
from sqltrainer.models import Lesson, Question, QuestionType
from sqltrainer.service import LearnService
from sqltrainer.session import SessionState


def _lessons() -> dict[int, Lesson]:
    return {
        1: _lesson_from_dict(sample_lesson_dict()),
        2: _lesson_from_dict(sample_lesson_dict(id=2, title="Second")),
    }


def _service(db_path: Path | str = ":memory:") -> LearnService:
    return LearnService(db_path=db_path, lessons=_lessons(), rng=random.Random(0))


def _correct_answer(question: Question) -> str | int:
    if question.type is QuestionType.MULTIPLE_CHOICE:
        assert question.answer_index is not None
        return question.answer_index
    assert question.solution is not None
    return question.solution


def test_lesson_states_start_new() -> None:
    service = _service()
    states = service.list_lesson_states()
    assert [state.lesson.id for state in states] == [1, 2]
    assert all(not state.completed and state.best_score == 0 for state in states)
    assert states[0].exercise_total == 2
    assert states[0].current is False
    overall = service.overall_progress()
    assert (overall.completed, overall.total, overall.percent) == (0, 2, 0)


def test_open_lesson_records_current_and_sizes_flags() -> None:
    service = _service()
    lesson = service.open_lesson(2)
    assert lesson.id == 2
    assert service.progress_snapshot().current_lesson == 2
    assert service.exercise_flags() == [False, False]
    assert [state.current for state in service.list_lesson_states()] == [False, True]


def test_open_unknown_lesson_raises_key_error() -> None:
    service = _service()
    try:
        service.open_lesson(7)
        raise AssertionError("Expected KeyError")
    except KeyError:
        pass


def test_operations_without_lesson_raise() -> None:
    service = _service()
    for call in (service.exercise_flags, service.reset_sandbox, service.start_test):
        try:
            call()
            raise AssertionError("Expected SessionStateError")
        except SessionStateError:
            pass
    try:
        service.submit_test_answer("SELECT 1")
        raise AssertionError("Expected SessionStateError")
    except SessionStateError:
        pass


def test_sandbox_changes_persist_until_reset() -> None:
    service = _service()
    service.open_lesson(1)
    result = service.run_query("DELETE FROM planets")
    assert result.message == NO_ROWS_MESSAGE
    assert service.run_query("SELECT COUNT(*) FROM planets").rows == ((0,),)
    service.reset_sandbox()
    assert service.run_query("SELECT COUNT(*) FROM planets").rows == ((2,),)


def test_run_query_rejects_blank_text_and_reports_errors() -> None:
    service = _service()
    service.open_lesson(1)
    try:
        service.run_query("  ")
        raise AssertionError("Expected EmptySubmissionError")
    except EmptySubmissionError:
        pass
    assert service.run_query("SELECT * FROM nowhere").ok is False


def test_exercises_complete_lesson() -> None:
    service = _service()
    service.open_lesson(1)
    wrong = service.check_exercise(0, "SELECT diameter_km FROM planets")
    assert wrong.outcome is GradeOutcome.INCORRECT
    assert service.exercise_flags() == [False, False]

    assert service.check_exercise(0, "select NAME from planets").correct is True
    assert service.check_exercise(1, "INSERT INTO t VALUES (9, 'Y')").correct is False
    assert service.check_exercise(1, "INSERT INTO t (id, label) VALUES (9, 'X')").correct is True
    assert service.exercise_flags() == [True, True]
    assert service.list_lesson_states()[0].completed is True
    assert service.overall_progress().percent == 50


def test_check_exercise_unknown_index_raises() -> None:
    service = _service()
    service.open_lesson(1)
    last = service.lessons[1].exercises[-1]
    for index, text in ((5, "SELECT 1"), (-1, last.solution), (-1, "SELECT 1")):
        try:
            service.check_exercise(index, text)
            raise AssertionError("Expected IndexError")
        except IndexError:
            pass
    assert service.exercise_flags() == [False, False]


def test_full_test_pass_records_score() -> None:
    service = _service()
    service.open_lesson(2)
    session = service.start_test()
    assert session.state is SessionState.IN_PROGRESS
    while not session.is_completed:
        service.submit_test_answer(_correct_answer(session.current_question))
    summary = session.summary()
    assert summary.score == summary.total == 5
    assert summary.passed is True
    snapshot = service.progress_snapshot()
    assert snapshot.best_scores[1] == 5
    assert snapshot.completed[1] is True


def test_abandoned_test_records_nothing() -> None:
    service = _service()
    service.open_lesson(1)
    session = service.start_test()
    service.submit_test_answer(_correct_answer(session.current_question))
    service.abandon_test()
    assert service.test_session is None
    assert service.progress_snapshot().best_scores[0] == 0
    try:
        service.submit_test_answer("SELECT 1")
        raise AssertionError("Expected SessionStateError")
    except SessionStateError:
        pass


def test_opening_lesson_discards_active_test() -> None:
    service = _service()
    service.open_lesson(1)
    service.start_test()
    service.open_lesson(2)
    assert service.test_session is None


def test_progress_survives_restart(tmp_path: Path) -> None:
    db_path = tmp_path / "state" / "progress.db"
    first = _service(db_path)
    first.open_lesson(2)
    first.check_exercise(0, "SELECT name FROM planets")
    first.close()

    second = _service(db_path)
    lesson = second.resume_lesson()
    assert lesson is not None
    assert lesson.id == 2
    assert second.exercise_flags() == [True, False]
    second.close()


def test_resume_lesson_missing_from_content_returns_none() -> None:
    service = _service()
    service.ledger.set_current_lesson(9)
    assert service.resume_lesson() is None


def test_reset_progress_clears_everything() -> None:
    service = _service()
    service.open_lesson(1)
    service.check_exercise(0, "SELECT name FROM planets")
    service.start_test()
    service.reset_progress()
    assert service.current_lesson is None
    assert service.test_session is None
    snapshot = service.progress_snapshot()
    assert snapshot.exercises_done[0] == []
    assert snapshot.current_lesson == 1


def test_bundled_lessons_load_by_default(tmp_path: Path) -> None:
    service = LearnService(db_path=tmp_path / "progress.db")
    assert len(service.lessons) == 20
    service.open_lesson(13)
    assert service.run_query(service.lessons[13].default_query).ok is True
    service.close()
