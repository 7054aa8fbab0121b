"""The ordered coercion chain that turns raw argument text into values.

Each heuristic is a tagged predicate/transform pair. The chain is walked in
order and the first heuristic that yields a value wins:

    missing -> annotated-expression -> expression -> structured-data
    -> literal-keyword -> numeric -> quoted-string -> fallback

A heuristic that fails is skipped, never fatal: the fallback always matches.
"""

import json
import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from function_lab.engine.annotations import has_annotation, strip_annotations
from function_lab.engine.sandbox import EvaluationContext
from function_lab.errors import MaterializationFailure
from function_lab.models import MISSING, ArgumentSpec

logger = logging.getLogger(__name__)


class _NoMatch:
    def __repr__(self) -> str:
        return "NO_MATCH"


NO_MATCH = _NoMatch()

# Exact, case-sensitive keyword spellings
LITERAL_KEYWORDS: dict[str, Any] = {
    "true": True,
    "false": False,
    "True": True,
    "False": False,
    "null": None,
    "None": None,
    "undefined": MISSING,
    "NaN": math.nan,
    "Infinity": math.inf,
    "-Infinity": -math.inf,
}

QUOTE_CHARS = ("'", '"')


class HeuristicKind(str, Enum):
    MISSING = "missing"
    ANNOTATED_EXPRESSION = "annotated-expression"
    EXPRESSION = "expression"
    STRUCTURED_DATA = "structured-data"
    LITERAL_KEYWORD = "literal-keyword"
    NUMERIC = "numeric"
    QUOTED_STRING = "quoted-string"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class Heuristic:
    """One step of the coercion chain.

    Attributes:
        kind: Tag naming the step
        applies: Cheap predicate on (text, declared_type)
        transform: Produces the value, or NO_MATCH; may raise MaterializationFailure
    """

    kind: HeuristicKind
    applies: Callable[[str, str], bool]
    transform: Callable[[str, str, EvaluationContext | None], Any]


def _evaluate_annotated(text: str, declared_type: str, context: EvaluationContext | None):
    if context is None:
        return NO_MATCH
    cleaned = strip_annotations(text)
    if cleaned is None:
        return NO_MATCH
    if cleaned.binds:
        return context.define_statement(cleaned.text, cleaned.binds)
    return context.evaluate(cleaned.text)


def _evaluate_expression(text: str, declared_type: str, context: EvaluationContext | None):
    if context is None:
        return NO_MATCH
    return context.evaluate(text)


def _parse_structured(text: str, declared_type: str, context: EvaluationContext | None):
    try:
        return json.loads(text)
    except ValueError as e:
        raise MaterializationFailure(f"not structured data: {e}") from e


def _parse_number(text: str, declared_type: str, context: EvaluationContext | None):
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return NO_MATCH


def is_quoted(text: str) -> bool:
    return len(text) >= 2 and text[0] in QUOTE_CHARS and text[-1] == text[0]


MISSING_HEURISTIC = Heuristic(
    kind=HeuristicKind.MISSING,
    applies=lambda text, declared_type: not text,
    transform=lambda text, declared_type, context: MISSING,
)

ANNOTATED_HEURISTIC = Heuristic(
    kind=HeuristicKind.ANNOTATED_EXPRESSION,
    applies=lambda text, declared_type: has_annotation(text, declared_type),
    transform=_evaluate_annotated,
)

EXPRESSION_HEURISTIC = Heuristic(
    kind=HeuristicKind.EXPRESSION,
    applies=lambda text, declared_type: True,
    transform=_evaluate_expression,
)

STRUCTURED_DATA_HEURISTIC = Heuristic(
    kind=HeuristicKind.STRUCTURED_DATA,
    applies=lambda text, declared_type: text.startswith(("{", "[")),
    transform=_parse_structured,
)

LITERAL_KEYWORD_HEURISTIC = Heuristic(
    kind=HeuristicKind.LITERAL_KEYWORD,
    applies=lambda text, declared_type: text in LITERAL_KEYWORDS,
    transform=lambda text, declared_type, context: LITERAL_KEYWORDS[text],
)

NUMERIC_HEURISTIC = Heuristic(
    kind=HeuristicKind.NUMERIC,
    applies=lambda text, declared_type: True,
    transform=_parse_number,
)

QUOTED_STRING_HEURISTIC = Heuristic(
    kind=HeuristicKind.QUOTED_STRING,
    applies=lambda text, declared_type: is_quoted(text),
    transform=lambda text, declared_type, context: text[1:-1],
)

FALLBACK_HEURISTIC = Heuristic(
    kind=HeuristicKind.FALLBACK,
    applies=lambda text, declared_type: True,
    transform=lambda text, declared_type, context: text,
)

FULL_CHAIN: tuple[Heuristic, ...] = (
    MISSING_HEURISTIC,
    ANNOTATED_HEURISTIC,
    EXPRESSION_HEURISTIC,
    STRUCTURED_DATA_HEURISTIC,
    LITERAL_KEYWORD_HEURISTIC,
    NUMERIC_HEURISTIC,
    QUOTED_STRING_HEURISTIC,
    FALLBACK_HEURISTIC,
)

# Follow-up arguments carry no declared types and are never evaluated
FOLLOW_UP_CHAIN: tuple[Heuristic, ...] = (
    LITERAL_KEYWORD_HEURISTIC,
    NUMERIC_HEURISTIC,
    QUOTED_STRING_HEURISTIC,
    FALLBACK_HEURISTIC,
)


def match(
    spec: ArgumentSpec,
    context: EvaluationContext | None = None,
    chain: tuple[Heuristic, ...] = FULL_CHAIN,
) -> tuple[HeuristicKind, Any]:
    """Walk the chain and return the winning heuristic's kind and value.

    Args:
        spec: Raw text and declared type
        context: Context whose bindings expressions may reference
        chain: Heuristics to try, in order

    Returns:
        (kind, value) of the first heuristic that produced a value
    """
    text = spec.raw.strip()

    for heuristic in chain:
        if not heuristic.applies(text, spec.declared_type):
            continue
        try:
            value = heuristic.transform(text, spec.declared_type, context)
        except MaterializationFailure as e:
            logger.debug(f"{heuristic.kind.value} rejected {text!r}: {e}")
            continue
        if value is NO_MATCH:
            continue
        logger.debug(f"{heuristic.kind.value} materialized {text!r}")
        return heuristic.kind, value

    return HeuristicKind.FALLBACK, text


def materialize(
    spec: ArgumentSpec,
    context: EvaluationContext | None = None,
    chain: tuple[Heuristic, ...] = FULL_CHAIN,
) -> Any:
    """Turn one raw argument into a value using the coercion chain."""
    _, value = match(spec, context, chain)
    return value
