"""Exceptions raised across the extractor, engine and coercion utility."""


class FunctionLabError(Exception):
    """Base class for function-lab errors."""


class SyntaxFailure(FunctionLabError):
    """The source text could not be parsed as a program."""

    def __init__(
        self,
        message: str,
        file_identifier: str = "<source>",
        line: int | None = None,
        column: int | None = None,
    ):
        super().__init__(message)
        self.file_identifier = file_identifier
        self.line = line
        self.column = column

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "file": self.file_identifier,
            "line": self.line,
            "column": self.column,
        }


class ExecutionFailure(FunctionLabError):
    """A fatal failure during one execute call."""

    def __init__(self, message: str, phase: str = "invoking"):
        super().__init__(message)
        self.phase = phase


class DefinitionFailure(ExecutionFailure):
    """The callable's own source failed to evaluate."""

    def __init__(self, message: str):
        super().__init__(message, phase="defining")


class InvocationFailure(ExecutionFailure):
    """The call raised, its awaitable failed, or the entry was not found."""


class MaterializationFailure(FunctionLabError):
    """One coercion heuristic could not turn raw text into a value.

    Never fatal: the coercion chain moves on to the next heuristic.
    """


class SerializationFailure(FunctionLabError):
    """A result could not be structurally copied."""
