"""Exception kinds raised by the trainer core."""

from __future__ import annotations


class ContentError(ValueError):
    """Lesson content is malformed; detected when lessons are loaded."""


class EmptySubmissionError(ValueError):
    """A submission carried no query text or no selected option."""


class SessionStateError(RuntimeError):
    """A test session operation was called from the wrong state."""
