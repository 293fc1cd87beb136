"""Scoped in-memory SQLite database used for running learner and reference queries."""

from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass

from .errors import ContentError

logger = logging.getLogger(__name__)

Cell = int | float | str | bytes | None

NO_ROWS_MESSAGE = "Query executed successfully. No rows returned."
_COMMENT_RE = re.compile(r"--[^\n]*|/\*.*?\*/", re.DOTALL)


@dataclass(frozen=True)
class QueryResult:
    """Normalized outcome of executing query text.

    Exactly one shape applies: an error (``error`` set), a tabular result
    (``columns`` non-empty, possibly zero rows), or a non-tabular success
    (no columns, ``message`` set).
    """

    columns: tuple[str, ...] = ()
    rows: tuple[tuple[Cell, ...], ...] = ()
    error: str | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def is_tabular(self) -> bool:
        return self.error is None and bool(self.columns)

    @classmethod
    def failure(cls, error: str) -> QueryResult:
        return cls(error=error)


def split_statements(text: str) -> list[str]:
    """Split query text into complete statements, keeping literals and trigger bodies intact."""
    statements: list[str] = []
    buffer = ""
    pieces = text.split(";")
    for index, piece in enumerate(pieces):
        buffer += piece
        if index < len(pieces) - 1:
            buffer += ";"
            if not sqlite3.complete_statement(buffer):
                continue
        if _COMMENT_RE.sub("", buffer).strip().strip(";").strip():
            statements.append(buffer.strip())
        buffer = ""
    return statements


class LessonDatabase:
    """The one live database instance, rebuilt from a lesson schema on demand.

    Callers that need a clean baseline must call ``reinitialize`` first; no
    state is reset implicitly by ``execute``.
    """

    def __init__(self, schema: str = "") -> None:
        """Create a database and apply the schema."""
        self._schema = schema
        self._conn: sqlite3.Connection | None = None
        self.reinitialize()

    @property
    def schema(self) -> str:
        return self._schema

    def load_schema(self, schema: str) -> None:
        """Switch to another lesson schema and rebuild the database."""
        self._schema = schema
        self.reinitialize()

    def reinitialize(self) -> None:
        """Discard the current database and re-apply the schema script."""
        self.close()
        conn = sqlite3.connect(":memory:", isolation_level=None)
        if self._schema.strip():
            try:
                conn.executescript(self._schema)
            except sqlite3.Error as exc:
                conn.close()
                logger.error("Schema initialisation failed: %s", exc)
                raise ContentError(f"Schema script failed to apply: {exc}") from exc
        self._conn = conn
        logger.debug("Database reinitialised")

    def execute(self, text: str) -> QueryResult:
        """Run every statement in ``text``; engine failures become error results."""
        conn = self._connection()
        statements = split_statements(text)
        result: QueryResult | None = None
        try:
            for statement in statements:
                cursor = conn.execute(statement)
                if cursor.description is None:
                    continue
                rows = cursor.fetchall()
                if result is None:
                    columns = tuple(str(item[0]) for item in cursor.description)
                    result = QueryResult(columns=columns, rows=tuple(tuple(row) for row in rows))
        except (sqlite3.Error, sqlite3.Warning, ValueError) as exc:
            return QueryResult.failure(str(exc))
        if result is None:
            return QueryResult(message=NO_ROWS_MESSAGE)
        return result

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self.reinitialize()
        assert self._conn is not None
        return self._conn

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __del__(self) -> None:  # pragma: no cover
        """Best-effort connection cleanup."""
        try:
            self.close()
        except Exception:
            pass
