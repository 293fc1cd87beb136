"""Parameterized question templates and the randomized assessment generator."""

from __future__ import annotations

import logging
import random
import string
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .errors import ContentError
from .grader import Grader
from .models import Lesson, Question, QuestionType
from .session import TestSession

if TYPE_CHECKING:
    from .progress import ProgressLedger

logger = logging.getLogger(__name__)

ASSESSMENT_SIZE = 5
PARAM_KINDS = ("choice", "range", "sample")

_FORMATTER = string.Formatter()


@dataclass(frozen=True)
class ParamSpec:
    """How one template parameter is drawn."""

    name: str
    kind: str
    values: tuple[Any, ...] = ()
    low: int = 0
    high: int = 0
    k: int = 1

    def draw(self, rng: random.Random) -> Any:
        """Sample one value for this parameter."""
        if self.kind == "choice":
            return rng.choice(self.values)
        if self.kind == "range":
            return rng.randint(self.low, self.high)
        return rng.sample(self.values, self.k)


@dataclass(frozen=True)
class QuestionTemplate:
    """Declarative template; every call draws fresh parameters and formats one question."""

    id: str
    type: QuestionType
    prompt: str
    solution: str | None = None
    verify: str | None = None
    broken: str | None = None
    options: tuple[str, ...] = ()
    answer: int | None = None
    shuffle: bool = True
    order_sensitive: bool | None = None
    params: tuple[ParamSpec, ...] = field(default_factory=tuple)

    def __call__(self, rng: random.Random) -> Question:
        return self.instantiate(rng)

    def instantiate(self, rng: random.Random) -> Question:
        """Build a concrete question; prompt and solution share one parameter draw."""
        values = {param.name: param.draw(rng) for param in self.params}
        try:
            prompt = self.prompt.format_map(values)
            solution = _format_optional(self.solution, values)
            verify = _format_optional(self.verify, values)
            broken = _format_optional(self.broken, values)
            options = tuple(option.format_map(values) for option in self.options)
        except (KeyError, IndexError, AttributeError, ValueError) as exc:
            raise ContentError(f"Template '{self.id}' could not be formatted: {exc!r}") from exc

        answer_index = self.answer
        if self.type is QuestionType.MULTIPLE_CHOICE:
            if len(set(options)) != len(options):
                raise ContentError(f"Template '{self.id}' produced duplicate options.")
            if self.shuffle and answer_index is not None:
                order = list(range(len(options)))
                rng.shuffle(order)
                answer_index = order.index(answer_index)
                options = tuple(options[position] for position in order)

        return Question(
            type=self.type,
            prompt=prompt,
            solution=solution,
            options=options,
            answer_index=answer_index,
            verify=verify,
            broken=broken,
            order_sensitive=self.order_sensitive,
        )


def _format_optional(text: str | None, values: dict[str, Any]) -> str | None:
    if text is None:
        return None
    return text.format_map(values)


def template_from_dict(template_id: str, raw: dict[str, Any]) -> QuestionTemplate:
    """Build and validate a template from raw JSON content."""
    raw_type = str(raw.get("type", ""))
    try:
        question_type = QuestionType(raw_type)
    except ValueError as exc:
        raise ContentError(f"Template '{template_id}' has unknown type '{raw_type}'.") from exc

    prompt = str(raw.get("prompt", "")).strip()
    if not prompt:
        raise ContentError(f"Template '{template_id}' has no prompt.")

    params = tuple(_param_from_dict(template_id, name, spec) for name, spec in dict(raw.get("params", {})).items())
    order_sensitive = raw.get("order_sensitive")
    template = QuestionTemplate(
        id=template_id,
        type=question_type,
        prompt=prompt,
        solution=_optional_text(raw.get("solution")),
        verify=_optional_text(raw.get("verify")),
        broken=_optional_text(raw.get("broken")),
        options=tuple(str(option) for option in raw.get("options", [])),
        answer=int(raw["answer"]) if raw.get("answer") is not None else None,
        shuffle=bool(raw.get("shuffle", True)),
        order_sensitive=bool(order_sensitive) if order_sensitive is not None else None,
        params=params,
    )
    _validate_template(template)
    return template


def _optional_text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _param_from_dict(template_id: str, name: str, raw: object) -> ParamSpec:
    """Parse one parameter spec: choice, range, or sample."""
    if not isinstance(raw, dict):
        raise ContentError(f"Template '{template_id}' param '{name}' must be an object.")
    kinds = [kind for kind in PARAM_KINDS if kind in raw]
    if len(kinds) != 1:
        raise ContentError(f"Template '{template_id}' param '{name}' needs exactly one of {', '.join(PARAM_KINDS)}.")
    kind = kinds[0]

    if kind == "range":
        bounds = raw["range"]
        if not isinstance(bounds, list) or len(bounds) != 2:
            raise ContentError(f"Template '{template_id}' param '{name}' range must be [low, high].")
        low, high = int(bounds[0]), int(bounds[1])
        if low > high:
            raise ContentError(f"Template '{template_id}' param '{name}' range is empty.")
        return ParamSpec(name=name, kind=kind, low=low, high=high)

    values = raw[kind]
    if not isinstance(values, list) or not values:
        raise ContentError(f"Template '{template_id}' param '{name}' needs a non-empty list.")
    if kind == "choice":
        dict_values = [value for value in values if isinstance(value, dict)]
        if dict_values and (
            len(dict_values) != len(values) or any(set(value) != set(dict_values[0]) for value in dict_values)
        ):
            raise ContentError(f"Template '{template_id}' param '{name}' choices must share the same keys.")
        return ParamSpec(name=name, kind=kind, values=tuple(values))

    k = int(raw.get("k", 1))
    if not 1 <= k <= len(values):
        raise ContentError(f"Template '{template_id}' param '{name}' sample size {k} is out of range.")
    return ParamSpec(name=name, kind=kind, values=tuple(values), k=k)


def _field_roots(text: str) -> set[str]:
    """Return the parameter names referenced by a format string."""
    roots: set[str] = set()
    for _, field_name, _, _ in _FORMATTER.parse(text):
        if field_name is None:
            continue
        root = field_name.split("[", 1)[0].split(".", 1)[0]
        if not root or root.isdigit():
            raise ContentError(f"Positional placeholder '{{{field_name}}}' is not allowed in templates.")
        roots.add(root)
    return roots


def _validate_template(template: QuestionTemplate) -> None:
    """Reject templates that could never produce a consistent question."""
    if template.type is QuestionType.MULTIPLE_CHOICE:
        if len(template.options) < 2:
            raise ContentError(f"Template '{template.id}' needs at least two options.")
        if template.answer is None or not 0 <= template.answer < len(template.options):
            raise ContentError(f"Template '{template.id}' answer index is out of range.")
        if len(set(template.options)) != len(template.options):
            raise ContentError(f"Template '{template.id}' has duplicate options.")
    else:
        if not template.solution:
            raise ContentError(f"Template '{template.id}' has no solution.")
        if template.type is QuestionType.FIX_THE_QUERY and not template.broken:
            raise ContentError(f"Template '{template.id}' has no broken query.")

    declared = {param.name for param in template.params}
    texts = [template.prompt, *template.options]
    texts.extend(text for text in (template.solution, template.verify, template.broken) if text)
    try:
        referenced = set().union(*(_field_roots(text) for text in texts))
    except ValueError as exc:
        if isinstance(exc, ContentError):
            raise ContentError(f"Template '{template.id}': {exc}") from exc
        raise ContentError(f"Template '{template.id}' has a malformed placeholder: {exc}") from exc
    missing = referenced - declared
    if missing:
        raise ContentError(f"Template '{template.id}' uses undeclared params: {', '.join(sorted(missing))}.")

    # One trial draw catches bad indexes and keys in placeholders.
    template.instantiate(random.Random(0))


class AssessmentGenerator:
    """Samples a lesson's template bank into a fresh test session."""

    def __init__(self, rng: random.Random | None = None, size: int = ASSESSMENT_SIZE) -> None:
        self.rng = rng if rng is not None else random.Random()
        self.size = size

    def generate(self, lesson: Lesson) -> list[Question]:
        """Draw up to ``size`` distinct templates and instantiate each one."""
        if not lesson.templates:
            raise ContentError(f"Lesson {lesson.id} has no assessment templates.")
        count = min(self.size, len(lesson.templates))
        selected = self.rng.sample(lesson.templates, count)
        return [template(self.rng) for template in selected]

    def start_assessment(
        self,
        lesson: Lesson,
        grader: Grader,
        ledger: ProgressLedger | None = None,
    ) -> TestSession:
        """Create a not-yet-started test session for ``lesson``."""
        questions = self.generate(lesson)
        logger.debug("Generated %d questions for lesson %d", len(questions), lesson.id)
        return TestSession(lesson_id=lesson.id, questions=questions, grader=grader, ledger=ledger)
