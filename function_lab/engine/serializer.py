"""Serialize execution results into plain, transportable data."""

import dataclasses
import datetime
import inspect
import logging
import math
import re
import textwrap
import traceback
from collections.abc import Mapping, Sequence, Set
from decimal import Decimal
from enum import Enum
from fractions import Fraction
from typing import Any

from function_lab.errors import SerializationFailure
from function_lab.models import MISSING

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 150

MISSING_LABEL = "undefined"
NONE_LABEL = "None"
NAN_LABEL = "NaN"
INFINITY_LABEL = "Infinity"
NEGATIVE_INFINITY_LABEL = "-Infinity"

FUNCTION_HINT = (
    "Returned a function (higher-order). "
    "Supply follow-up arguments to call the returned function."
)


class _Drop:
    """Marks a member that is not data and is left out of the copy."""


_DROP = _Drop()


def serialize(value: Any, preview_length: int = PREVIEW_LENGTH) -> Any:
    """Convert a result into JSON-compatible data.

    Absent values and non-finite floats become text labels, callables become
    a summary record, exceptions become {kind, message, trace}, and containers
    are deep-copied with non-data members discarded. A value that cannot be
    copied at all, or is nested too deeply, degrades to its repr.
    """
    if value is MISSING:
        return MISSING_LABEL
    if value is None:
        return NONE_LABEL
    if isinstance(value, BaseException):
        return serialize_exception(value)
    if isinstance(value, float) and not math.isfinite(value):
        return _non_finite_label(value)
    if isinstance(value, (bool, int, float, str)) and not isinstance(value, Enum):
        return value
    if callable(value):
        return summarize_callable(value, preview_length)

    try:
        copied = _to_data(value, frozenset())
        if copied is _DROP:
            raise SerializationFailure(f"{type(value).__name__} is not data")
        return copied
    except (SerializationFailure, RecursionError) as e:
        logger.warning(f"Falling back to repr for {type(value).__name__}: {e}")
        return _safe_repr(value)


def serialize_exception(error: BaseException) -> dict:
    """Structured record for an exception object."""
    return {
        "kind": type(error).__name__,
        "message": str(error),
        "trace": "".join(traceback.format_exception(error)),
    }


def summarize_callable(value: Any, preview_length: int = PREVIEW_LENGTH) -> dict:
    """Summary record for a callable, with a truncated source preview."""
    try:
        source = textwrap.dedent(inspect.getsource(value)).strip()
    except (OSError, TypeError):
        source = _signature_text(value)

    if len(source) > preview_length:
        source = source[:preview_length] + "..."

    return {
        "_type": "function",
        "_name": getattr(value, "__qualname__", type(value).__name__),
        "_hint": FUNCTION_HINT,
        "_source": source,
    }


def _to_data(value: Any, ancestors: frozenset[int]) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        if isinstance(value, Enum):
            return _to_data(value.value, ancestors)
        if isinstance(value, float) and not math.isfinite(value):
            return _non_finite_label(value)
        return value
    if value is MISSING:
        return None
    if isinstance(value, Enum):
        return _to_data(value.value, ancestors)
    if isinstance(value, (datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, datetime.timedelta):
        return value.total_seconds()
    if isinstance(value, (Decimal, Fraction, complex)):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, re.Pattern):
        return value.pattern
    if callable(value) or isinstance(value, BaseException):
        return _DROP

    if id(value) in ancestors:
        raise SerializationFailure("circular reference")
    ancestors = ancestors | {id(value)}

    if isinstance(value, Mapping):
        return _copy_members(value.items(), ancestors)
    if dataclasses.is_dataclass(value):
        return _copy_members(
            ((f.name, getattr(value, f.name)) for f in dataclasses.fields(value)),
            ancestors,
        )
    if isinstance(value, Set):
        items = [_to_data(item, ancestors) for item in _ordered(value)]
        return [None if item is _DROP else item for item in items]
    if isinstance(value, Sequence):
        items = [_to_data(item, ancestors) for item in value]
        return [None if item is _DROP else item for item in items]
    if hasattr(value, "__dict__"):
        members = (
            (name, member)
            for name, member in vars(value).items()
            if not name.startswith("_")
        )
        return _copy_members(members, ancestors)

    return _DROP


def _copy_members(items, ancestors: frozenset[int]) -> dict:
    result = {}
    for key, member in items:
        copied = _to_data(member, ancestors)
        if copied is not _DROP:
            result[str(key)] = copied
    return result


def _ordered(values: Set) -> list:
    try:
        return sorted(values)
    except TypeError:
        return list(values)


def _signature_text(value: Any) -> str:
    name = getattr(value, "__qualname__", type(value).__name__)
    try:
        return f"{name}{inspect.signature(value)}"
    except (TypeError, ValueError):
        return _safe_repr(value)


def _non_finite_label(value: float) -> str:
    if math.isnan(value):
        return NAN_LABEL
    return INFINITY_LABEL if value > 0 else NEGATIVE_INFINITY_LABEL


def _safe_repr(value: Any) -> str:
    try:
        return repr(value)
    except Exception as e:
        return f"<unrepresentable {type(value).__name__}: {e}>"
