"""Sandboxed execution engine for discovered callables."""

from function_lab.engine.arguments import shape_call, split_top_level
from function_lab.engine.executor import (
    ExecutionEngine,
    ExecutionState,
    execute,
    execute_sync,
)
from function_lab.engine.heuristics import (
    FOLLOW_UP_CHAIN,
    FULL_CHAIN,
    Heuristic,
    HeuristicKind,
    match,
    materialize,
)
from function_lab.engine.sandbox import DEFAULT_ALLOWED_MODULES, EvaluationContext
from function_lab.engine.serializer import serialize

__all__ = [
    # Execution
    "ExecutionEngine",
    "ExecutionState",
    "execute",
    "execute_sync",
    # Evaluation context
    "EvaluationContext",
    "DEFAULT_ALLOWED_MODULES",
    # Coercion chain
    "Heuristic",
    "HeuristicKind",
    "FULL_CHAIN",
    "FOLLOW_UP_CHAIN",
    "match",
    "materialize",
    # Call shaping
    "split_top_level",
    "shape_call",
    # Serialization
    "serialize",
]
