"""Split follow-up argument text and shape materialized values into a call."""

import inspect
import logging
from typing import Any

from function_lab.models import MISSING

logger = logging.getLogger(__name__)

POSITIONAL_KINDS = (
    inspect.Parameter.POSITIONAL_ONLY,
    inspect.Parameter.POSITIONAL_OR_KEYWORD,
)

QUOTES = "\"'"
OPENERS = "([{"
CLOSERS = ")]}"


def split_top_level(text: str) -> list[str]:
    """Split argument text on commas outside brackets and string literals.

    ``"1, [2, 3], 'a,b'"`` gives ``["1", "[2, 3]", "'a,b'"]``. A backslash
    inside a string escapes the next character. Blank pieces are dropped.
    """
    if not text or not text.strip():
        return []

    bounds = []
    start = 0
    depth = 0
    quote = None
    escaped = False

    for index, char in enumerate(text):
        if quote is not None:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
        elif char in QUOTES:
            quote = char
        elif char in OPENERS:
            depth += 1
        elif char in CLOSERS:
            depth = max(depth - 1, 0)
        elif char == "," and depth == 0:
            bounds.append((start, index))
            start = index + 1
    bounds.append((start, len(text)))

    pieces = (text[begin:end].strip() for begin, end in bounds)
    return [piece for piece in pieces if piece]


def shape_call(target, values: list[Any]) -> tuple[list[Any], dict[str, Any]]:
    """Turn materialized values into (args, kwargs) for calling target.

    Trailing missing values are dropped so parameter defaults apply. An
    interior missing value at a parameter with a default switches the rest
    of the call to keyword arguments, so that default applies too; where no
    default exists or the parameter is positional-only it becomes None. A
    single list/tuple value is spread when the target's final positional
    parameter is ``*args``. Values beyond the positional parameters of a
    target without ``*args`` fill its keyword-only parameters in order.
    """
    values = list(values)
    while values and values[-1] is MISSING:
        values.pop()

    try:
        parameters = list(inspect.signature(target).parameters.values())
    except (TypeError, ValueError):
        return _absent_as_none(values), {}

    if _ends_with_variadic(parameters):
        values = _absent_as_none(values)
        if len(values) == 1 and isinstance(values[0], (list, tuple)):
            logger.debug(f"Spreading {len(values[0])} values into variadic parameter")
            return list(values[0]), {}
        return values, {}

    positional = [p for p in parameters if p.kind in POSITIONAL_KINDS]
    keyword_only = [p for p in parameters if p.kind is inspect.Parameter.KEYWORD_ONLY]

    args = []
    kwargs = {}
    by_name = False
    for parameter, value in zip(positional, values):
        if not by_name and value is MISSING and _accepts_default_by_name(parameter):
            logger.debug(f"Leaving {parameter.name} to its default")
            by_name = True
        if by_name:
            _bind_by_name(kwargs, parameter, value)
        else:
            args.append(None if value is MISSING else value)

    extra = values[len(positional) :]
    for parameter, value in zip(keyword_only, extra):
        _bind_by_name(kwargs, parameter, value)
    # Anything left over stays positional so the call reports the mismatch
    args.extend(_absent_as_none(extra[len(keyword_only) :]))

    return args, kwargs


def _accepts_default_by_name(parameter: inspect.Parameter) -> bool:
    return (
        parameter.kind is inspect.Parameter.POSITIONAL_OR_KEYWORD
        and parameter.default is not inspect.Parameter.empty
    )


def _bind_by_name(kwargs: dict, parameter: inspect.Parameter, value) -> None:
    if value is MISSING and parameter.default is not inspect.Parameter.empty:
        return
    kwargs[parameter.name] = None if value is MISSING else value


def _absent_as_none(values: list[Any]) -> list[Any]:
    return [None if v is MISSING else v for v in values]


def _ends_with_variadic(parameters: list[inspect.Parameter]) -> bool:
    non_keyword = [
        p
        for p in parameters
        if p.kind
        not in (inspect.Parameter.KEYWORD_ONLY, inspect.Parameter.VAR_KEYWORD)
    ]
    return bool(non_keyword) and non_keyword[-1].kind is inspect.Parameter.VAR_POSITIONAL
