"""Best-effort coercion of a single raw value, outside any execute call.

Used by hosts to pre-validate what a user typed before submitting it. Unlike
the engine's coercion chain it is aware of the declared type (functions,
dates, numbers) and it never fails: anything it cannot interpret comes back
as the trimmed raw text.
"""

import ast
import collections
import datetime
import decimal
import fractions
import json
import logging
import re
from datetime import UTC
from typing import Any

from function_lab.engine.annotations import TYPE_GUARD_PATTERN, strip_annotations
from function_lab.engine.heuristics import LITERAL_KEYWORDS, NO_MATCH, is_quoted
from function_lab.engine.sandbox import EvaluationContext
from function_lab.errors import MaterializationFailure
from function_lab.models import ANY_TYPE, MISSING

logger = logging.getLogger(__name__)

CALLABLE_TYPE_PATTERN = re.compile(r"\bCallable\b|->|^\s*\(")
DATE_TYPE_PATTERN = re.compile(r"\b(?:date|datetime|Date|DateTime)\b")
DATETIME_TYPE_PATTERN = re.compile(r"\b(?:datetime|Date|DateTime)\b")

# (a, b) => a + b   or   x -> x * 2
ARROW_PATTERN = re.compile(
    r"^\(?\s*(?P<params>[\w\s,]*?)\s*\)?\s*(?:=>|->)\s*(?P<body>.+)$", re.DOTALL
)

# Extra constructors available to constructor-call text
CONSTRUCTORS = {
    "Decimal": decimal.Decimal,
    "Fraction": fractions.Fraction,
    "OrderedDict": collections.OrderedDict,
    "Counter": collections.Counter,
    "defaultdict": collections.defaultdict,
    "deque": collections.deque,
    "date": datetime.date,
    "time": datetime.time,
    "timedelta": datetime.timedelta,
    "timezone": datetime.timezone,
}


def coerce(raw: str | None, declared_type: str = ANY_TYPE) -> Any:
    """Coerce one raw value according to its declared type.

    Args:
        raw: The text a user typed
        declared_type: The parameter's annotation text, or "any"

    Returns:
        The coerced value, MISSING for blank input, or the trimmed raw text
    """
    if raw is None or not raw.strip():
        return MISSING

    text = raw.strip()
    declared = declared_type or ANY_TYPE

    for step in COERCION_STEPS:
        try:
            value = step(text, declared)
        except Exception as e:
            logger.debug(f"{step.__name__} failed for {text!r}: {e}")
            continue
        if value is not NO_MATCH:
            logger.debug(f"{step.__name__} coerced {text!r} as {declared}")
            return value

    return text


def _structured_data(text: str, declared: str) -> Any:
    if not text.startswith(("{", "[", "(")):
        return NO_MATCH

    if "lambda" in text:
        # A collection of functions
        try:
            return _scratch_context().evaluate(text)
        except MaterializationFailure as e:
            logger.debug(f"Function collection did not evaluate: {e}")

    try:
        return json.loads(text)
    except ValueError:
        pass

    try:
        return ast.literal_eval(text)
    except (ValueError, TypeError, SyntaxError, MemoryError, RecursionError):
        return NO_MATCH


def _function_literal(text: str, declared: str) -> Any:
    if not (_names_callable(declared) or _looks_like_function(text)):
        return NO_MATCH

    context = _scratch_context()

    # 1. Direct evaluation
    try:
        value = context.evaluate(text)
        if callable(value):
            return value
    except MaterializationFailure as e:
        logger.debug(f"Direct evaluation failed: {e}")

    # 2. Annotation-stripped evaluation
    cleaned = strip_annotations(text)
    if cleaned is not None:
        try:
            if cleaned.binds:
                value = context.define_statement(cleaned.text, cleaned.binds)
            else:
                value = context.evaluate(cleaned.text)
            if callable(value):
                return value
        except MaterializationFailure as e:
            logger.debug(f"Stripped evaluation failed: {e}")

    # 3. Rebuild a single-expression arrow as a lambda
    arrow = ARROW_PATTERN.match(text)
    if arrow:
        params = arrow.group("params").strip()
        body = arrow.group("body").strip()
        logger.debug(f"Rebuilding arrow as lambda: params={params!r} body={body!r}")
        value = context.evaluate(f"lambda {params}: {body}")
        if callable(value):
            return value

    return NO_MATCH


def _date_value(text: str, declared: str) -> Any:
    if not DATE_TYPE_PATTERN.search(declared):
        return NO_MATCH

    wants_datetime = bool(DATETIME_TYPE_PATTERN.search(declared))
    unquoted = text[1:-1] if is_quoted(text) else text

    try:
        moment = datetime.datetime.fromisoformat(unquoted)
    except ValueError:
        try:
            moment = datetime.datetime.fromtimestamp(float(unquoted), tz=UTC)
        except (ValueError, OverflowError, OSError):
            return NO_MATCH

    return moment if wants_datetime else moment.date()


def _constructor_call(text: str, declared: str) -> Any:
    try:
        expression = ast.parse(text, mode="eval").body
    except SyntaxError:
        return NO_MATCH
    if not isinstance(expression, ast.Call):
        return NO_MATCH
    return _scratch_context().evaluate(text)


def _literal_keyword(text: str, declared: str) -> Any:
    return LITERAL_KEYWORDS.get(text, NO_MATCH)


def _number(text: str, declared: str) -> Any:
    kind = declared.strip()
    if kind == "float":
        try:
            return float(text)
        except ValueError:
            return NO_MATCH

    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return NO_MATCH
    # Integral spellings such as "3.0" or "1e3" stay ints when int is declared
    if kind == "int" and number.is_integer():
        return int(number)
    return number


def _quoted(text: str, declared: str) -> Any:
    return text[1:-1] if is_quoted(text) else NO_MATCH


COERCION_STEPS = (
    _structured_data,
    _function_literal,
    _date_value,
    _constructor_call,
    _literal_keyword,
    _number,
    _quoted,
)


def _names_callable(declared: str) -> bool:
    return bool(CALLABLE_TYPE_PATTERN.search(declared) or TYPE_GUARD_PATTERN.search(declared))


def _looks_like_function(text: str) -> bool:
    return (
        text.startswith(("lambda", "def ", "async def "))
        or "=>" in text
        or bool(re.match(r"^\(?[\w\s,]*\)?\s*->", text))
    )


def _scratch_context() -> EvaluationContext:
    # Not closed: coerced functions keep using its globals after return
    context = EvaluationContext()
    context.namespace.update(CONSTRUCTORS)
    return context
