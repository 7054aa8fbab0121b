"""Discover callables in Python source and run them with ad hoc arguments."""

from function_lab.coercion import coerce
from function_lab.engine import (
    EvaluationContext,
    ExecutionEngine,
    execute,
    execute_sync,
    materialize,
)
from function_lab.errors import (
    DefinitionFailure,
    ExecutionFailure,
    FunctionLabError,
    InvocationFailure,
    MaterializationFailure,
    SerializationFailure,
    SyntaxFailure,
)
from function_lab.extractor import extract, extract_file, find_descriptor
from function_lab.models import (
    MISSING,
    ArgumentSpec,
    DescriptorKind,
    ExecuteRequest,
    ExecutionOutcome,
    FunctionDescriptor,
    Parameter,
)

__all__ = [
    # Models
    "MISSING",
    "ArgumentSpec",
    "DescriptorKind",
    "ExecuteRequest",
    "ExecutionOutcome",
    "FunctionDescriptor",
    "Parameter",
    # Extraction
    "extract",
    "extract_file",
    "find_descriptor",
    # Execution
    "EvaluationContext",
    "ExecutionEngine",
    "execute",
    "execute_sync",
    "materialize",
    # Coercion
    "coerce",
    # Errors
    "FunctionLabError",
    "SyntaxFailure",
    "ExecutionFailure",
    "DefinitionFailure",
    "InvocationFailure",
    "MaterializationFailure",
    "SerializationFailure",
]
