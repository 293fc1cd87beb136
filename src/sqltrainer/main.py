"""CLI entrypoint for the SQL lesson trainer."""

from __future__ import annotations

import argparse
import logging
from collections.abc import Callable
from pathlib import Path

from .database import Cell, QueryResult
from .errors import EmptySubmissionError, SessionStateError
from .grader import GradeOutcome
from .models import Lesson, Question
from .service import LearnService, LessonState

InputFn = Callable[[str], str]
PrintFn = Callable[[str], None]
BACK_COMMANDS = {":back", ":b", "back"}
MENU_QUIT_COMMANDS = {"q"}
FLOW_EXIT_COMMANDS = {":quit", ":exit", ":q"}
MENU_BACK_COMMANDS = {"b"}
HINT_COMMANDS = {":hint", ":h"}
RESET_COMMANDS = {":reset", ":r"}
DEFAULT_DB_PATH = Path(".sqltrainer") / "progress.db"
MAX_DISPLAY_ROWS = 100


class QuitApp(Exception):
    """Signal immediate app exit from nested menu flows."""


def _service(db_path: Path) -> LearnService:
    """Create app service backed by the progress database at ``db_path``."""
    return LearnService(db_path=db_path)


def run(argv: list[str] | None = None) -> int:
    """Run the CLI application."""
    parser = argparse.ArgumentParser(prog="sqltrainer", description="Lesson-based SQL practice")
    parser.add_argument("command", nargs="?", default="play", choices=["play"])
    parser.add_argument("--db", type=Path, default=DEFAULT_DB_PATH, help="progress database file")
    parser.add_argument("--verbose", action="store_true", help="log debug output")
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    return play_shell(db_path=args.db)


def play_shell(input_fn: InputFn = input, print_fn: PrintFn = print, db_path: Path = DEFAULT_DB_PATH) -> int:
    """Run persistent menu-driven shell."""
    service = _service(db_path)
    try:
        try:
            while True:
                overall = service.overall_progress()
                print_fn("\n=== SQL Trainer ===")
                print_fn(f"Progress: {overall.completed}/{overall.total} lessons completed ({overall.percent}%)")
                print_fn("1) Choose a lesson")
                print_fn("2) Continue current lesson")
                print_fn("3) Status")
                print_fn("4) Reset progress")
                print_fn("q) Quit")
                choice = input_fn("Choose: ").strip().lower()

                if choice == "1":
                    _choose_lesson_flow(service, input_fn, print_fn)
                elif choice == "2":
                    _continue_flow(service, input_fn, print_fn)
                elif choice == "3":
                    _status_flow(service, print_fn)
                elif choice == "4":
                    _reset_progress_flow(service, input_fn, print_fn)
                elif choice in MENU_QUIT_COMMANDS:
                    return 0
                else:
                    print_fn("Invalid choice.")
        except QuitApp:
            return 0
    finally:
        service.close()


def _lesson_status(state: LessonState) -> str:
    if state.completed:
        return "completed"
    if state.exercises_done or state.best_score:
        return "started"
    return "new"


def _choose_lesson_flow(service: LearnService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Pick a lesson from the numbered list and open it."""
    states = service.list_lesson_states()
    if not states:
        print_fn("No lessons available.")
        return

    print_fn("\n=== Lessons ===")
    for state in states:
        marker = " *" if state.current else ""
        print_fn(f"{state.lesson.id}) {state.lesson.title} [{_lesson_status(state)}]{marker}")
    print_fn("b) Back")
    print_fn("q) Quit")
    choice = input_fn("Choose lesson: ").strip().lower()
    if choice in MENU_BACK_COMMANDS:
        return
    if choice in MENU_QUIT_COMMANDS:
        raise QuitApp()
    if not choice.isdigit() or service.get_lesson(int(choice)) is None:
        print_fn("Invalid lesson selection.")
        return

    lesson = service.open_lesson(int(choice))
    _lesson_flow(service, lesson, input_fn, print_fn)


def _continue_flow(service: LearnService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Reopen the lesson recorded as current."""
    lesson = service.resume_lesson()
    if lesson is None:
        print_fn("No lesson to continue. Choose one from the list.")
        return
    _lesson_flow(service, lesson, input_fn, print_fn)


def _lesson_flow(service: LearnService, lesson: Lesson, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Lesson menu: exercises, sandbox, test and schema."""
    while True:
        print_fn(f"\n=== Lesson {lesson.id}: {lesson.title} ===")
        if lesson.theme:
            print_fn(lesson.theme)
        done = sum(1 for flag in service.exercise_flags() if flag)
        print_fn(f"1) Exercises ({done}/{len(lesson.exercises)} done)")
        print_fn("2) Sandbox")
        print_fn("3) Take the test")
        print_fn("4) Show schema")
        print_fn("b) Back")
        print_fn("q) Quit")
        choice = input_fn("Choose: ").strip().lower()

        if choice == "1":
            _exercises_flow(service, lesson, input_fn, print_fn)
        elif choice == "2":
            _sandbox_flow(service, lesson, input_fn, print_fn)
        elif choice == "3":
            _test_flow(service, input_fn, print_fn)
        elif choice == "4":
            _schema_flow(lesson, print_fn)
        elif choice in MENU_BACK_COMMANDS:
            return
        elif choice in MENU_QUIT_COMMANDS:
            raise QuitApp()
        else:
            print_fn("Invalid choice.")


def _exercises_flow(service: LearnService, lesson: Lesson, input_fn: InputFn, print_fn: PrintFn) -> None:
    """List the lesson's exercises and run the chosen one."""
    if not lesson.exercises:
        print_fn("This lesson has no exercises.")
        return
    while True:
        flags = service.exercise_flags()
        print_fn("\n=== Exercises ===")
        for exercise in lesson.exercises:
            mark = "x" if flags[exercise.position] else " "
            print_fn(f"{exercise.position + 1}) [{mark}] {exercise.instruction.splitlines()[0]}")
        print_fn("b) Back")
        print_fn("q) Quit")
        choice = input_fn("Choose exercise: ").strip().lower()
        if choice in MENU_BACK_COMMANDS:
            return
        if choice in MENU_QUIT_COMMANDS:
            raise QuitApp()
        if not choice.isdigit() or not 1 <= int(choice) <= len(lesson.exercises):
            print_fn("Invalid choice.")
            continue
        _run_exercise(service, lesson, int(choice) - 1, input_fn, print_fn)


def _run_exercise(service: LearnService, lesson: Lesson, index: int, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Run one exercise until the answer is correct or the learner leaves."""
    exercise = lesson.exercises[index]
    print_fn(f"\nExercise {index + 1}: {exercise.instruction}")
    print_fn("End a query with ; or a blank line. Type :hint for a hint, :b to go back.")
    while True:
        text = _read_query(input_fn, "sql> ")
        lowered = text.strip().lower()
        if lowered in BACK_COMMANDS or lowered in FLOW_EXIT_COMMANDS:
            return
        if lowered in HINT_COMMANDS:
            print_fn(f"Hint: {exercise.hint}" if exercise.hint else "No hint for this exercise.")
            continue
        try:
            result = service.check_exercise(index, text)
        except EmptySubmissionError as exc:
            print_fn(str(exc))
            continue

        if result.outcome is GradeOutcome.USER_ERROR:
            print_fn(f"Error: {result.user_result.error}")
            continue
        _print_result(result.user_result, print_fn)
        if result.correct:
            print_fn("Correct.")
            return
        print_fn("Not quite. Try again.")


def _sandbox_flow(service: LearnService, lesson: Lesson, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Free query playground; changes persist until :reset."""
    print_fn("\n=== Sandbox ===")
    print_fn("Changes persist until :reset. Type :b to go back.")
    if lesson.default_query:
        print_fn(f"Try: {lesson.default_query}")
    while True:
        text = _read_query(input_fn, "sql> ")
        lowered = text.strip().lower()
        if lowered in BACK_COMMANDS or lowered in FLOW_EXIT_COMMANDS:
            return
        if lowered in RESET_COMMANDS:
            service.reset_sandbox()
            print_fn("Database reset.")
            continue
        try:
            result = service.run_query(text)
        except EmptySubmissionError as exc:
            print_fn(str(exc))
            continue
        _print_result(result, print_fn)


def _test_flow(service: LearnService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Run one randomized test; leaving early records nothing."""
    session = service.start_test()
    print_fn("\n=== Test ===")
    print_fn(f"{session.total} questions. 60% is needed to pass. Type :b to abandon.")
    while not session.is_completed:
        question = session.current_question
        print_fn(f"\nQuestion {session.index + 1}/{session.total}")
        answer = _ask_question(question, input_fn, print_fn)
        if answer is None:
            service.abandon_test()
            print_fn("Test abandoned. Nothing was recorded.")
            return
        try:
            record = service.submit_test_answer(answer)
        except ValueError as exc:
            print_fn(str(exc))
            continue
        except SessionStateError as exc:
            print_fn(f"Test ended: {exc}")
            return
        if record.correct:
            print_fn("Correct.")
        elif question.is_multiple_choice and question.answer_index is not None:
            print_fn(f"Incorrect. Answer: {question.options[question.answer_index]}")
        else:
            if record.grade is not None and record.grade.outcome is GradeOutcome.USER_ERROR:
                print_fn(f"Error: {record.grade.user_result.error}")
            print_fn(f"Incorrect. One solution: {question.solution}")

    summary = session.summary()
    print_fn(f"\nScore: {summary.score}/{summary.total}")
    if summary.passed:
        print_fn("Passed. Lesson marked complete.")
    else:
        print_fn("Not passed. Review the exercises and try again.")


def _ask_question(question: Question, input_fn: InputFn, print_fn: PrintFn) -> str | int | None:
    """Show one question and read its answer; None means leave the test."""
    print_fn(question.prompt)
    if question.is_multiple_choice:
        for idx, option in enumerate(question.options, start=1):
            print_fn(f"{idx}) {option}")
        while True:
            choice = input_fn("Answer: ").strip().lower()
            if choice in BACK_COMMANDS or choice in FLOW_EXIT_COMMANDS:
                return None
            if choice.isdigit() and 1 <= int(choice) <= len(question.options):
                return int(choice) - 1
            print_fn("Choose one of the numbered options.")

    if question.starting_text:
        print_fn("Broken query:")
        print_fn(question.starting_text)
    text = _read_query(input_fn, "sql> ")
    lowered = text.strip().lower()
    if lowered in BACK_COMMANDS or lowered in FLOW_EXIT_COMMANDS:
        return None
    return text


def _schema_flow(lesson: Lesson, print_fn: PrintFn) -> None:
    """Print the lesson's tables."""
    print_fn(f"\n=== Schema: {lesson.title} ===")
    print_fn(lesson.schema_display or lesson.schema)


def _status_flow(service: LearnService, print_fn: PrintFn) -> None:
    """Print lesson progress table."""
    print_fn("\n=== Lesson Status ===")
    states = service.list_lesson_states()
    if not states:
        print_fn("No lessons available.")
        return
    rows: list[tuple[str, str, str, str, str]] = []
    for state in states:
        rows.append(
            (
                str(state.lesson.id),
                state.lesson.title,
                _lesson_status(state),
                f"{state.exercises_done}/{state.exercise_total}",
                str(state.best_score),
            )
        )
    headers = ("#", "Lesson", "Status", "Exercises", "Best test")
    widths = [max(len(headers[col]), max(len(row[col]) for row in rows)) for col in range(len(headers))]
    header = " ".join(f"{title:<{widths[col]}}" for col, title in enumerate(headers))
    print_fn(header)
    print_fn("-" * len(header))
    for row in rows:
        print_fn(" ".join(f"{value:<{widths[col]}}" for col, value in enumerate(row)))
    overall = service.overall_progress()
    print_fn(f"\nCompleted: {overall.completed}/{overall.total} ({overall.percent}%)")


def _reset_progress_flow(service: LearnService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Erase all progress with explicit confirmation safeguard."""
    print_fn("WARNING: This permanently erases all lesson progress and test scores.")
    confirm = input_fn("Type YES to confirm reset: ").strip()
    if confirm != "YES":
        print_fn("Reset cancelled.")
        return
    service.reset_progress()
    print_fn("Progress reset.")


def _read_query(input_fn: InputFn, prompt: str) -> str:
    """Read query text; lines are joined until one ends with ';' or is blank."""
    first = input_fn(prompt)
    stripped = first.strip()
    if not stripped or stripped.startswith(":") or stripped.lower() in BACK_COMMANDS or stripped.endswith(";"):
        return first
    lines = [first]
    while True:
        line = input_fn("...> ")
        if not line.strip():
            break
        lines.append(line)
        if line.rstrip().endswith(";"):
            break
    return "\n".join(lines)


def _format_cell(value: Cell) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bytes):
        return value.hex()
    return str(value)


def _print_result(result: QueryResult, print_fn: PrintFn) -> None:
    """Render a query result as a text table."""
    if not result.ok:
        print_fn(f"Error: {result.error}")
        return
    if not result.is_tabular:
        print_fn(result.message or "")
        return

    shown = [[_format_cell(value) for value in row] for row in result.rows[:MAX_DISPLAY_ROWS]]
    widths = [len(column) for column in result.columns]
    for row in shown:
        for col, text in enumerate(row):
            widths[col] = max(widths[col], len(text))
    header = " | ".join(f"{column:<{widths[col]}}" for col, column in enumerate(result.columns))
    print_fn(header)
    print_fn("-" * len(header))
    for row in shown:
        print_fn(" | ".join(f"{text:<{widths[col]}}" for col, text in enumerate(row)))

    count = len(result.rows)
    if count > MAX_DISPLAY_ROWS:
        print_fn(f"({count} rows, showing first {MAX_DISPLAY_ROWS})")
    else:
        print_fn(f"({count} row{'' if count == 1 else 's'})")


def main_entry() -> None:
    """Console script entrypoint."""
    raise SystemExit(run())
