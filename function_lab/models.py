"""Data models exchanged between the extractor, the engine and a host."""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class _Missing:
    """The absent-value sentinel: an argument that was not supplied."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()

ANY_TYPE = "any"


class DescriptorKind(str, Enum):
    """The syntactic shape a callable was declared with."""

    FUNCTION = "function"
    BINDING = "arrow-or-expression-binding"
    CONSTRUCTOR = "constructor"
    METHOD = "method"


@dataclass(frozen=True)
class Parameter:
    """One declared parameter."""

    name: str
    type: str = ANY_TYPE
    optional: bool = False

    @property
    def is_variadic(self) -> bool:
        return self.name.startswith("*") and not self.name.startswith("**")


@dataclass(frozen=True)
class FunctionDescriptor:
    """A callable discovered in source text.

    Attributes:
        name: Declared name, or ``Owner.method`` for methods
        parameters: Declared parameters in declaration order
        return_type: Verbatim return annotation, or "any"
        start_line: First line of the declaration (1-based, decorators included)
        end_line: Last line of the declaration (1-based, inclusive)
        source_text: Source slice that re-defines the callable standalone
        is_async: True for ``async def``
        kind: The declaration shape
        owner: Owning class name for constructors and methods
    """

    name: str
    parameters: list[Parameter]
    return_type: str
    start_line: int
    end_line: int
    source_text: str
    is_async: bool = False
    kind: DescriptorKind = DescriptorKind.FUNCTION
    owner: str | None = None

    def to_dict(self) -> dict:
        """Convert to the boundary shape, omitting owner when unset."""
        result = {
            "name": self.name,
            "parameters": [
                {"name": p.name, "type": p.type, "optional": p.optional}
                for p in self.parameters
            ],
            "returnType": self.return_type,
            "startLine": self.start_line,
            "endLine": self.end_line,
            "sourceText": self.source_text,
            "isAsync": self.is_async,
            "kind": self.kind.value,
        }
        if self.owner is not None:
            result["owner"] = self.owner
        return result

    @classmethod
    def from_dict(cls, data: dict) -> "FunctionDescriptor":
        return cls(
            name=data["name"],
            parameters=[
                Parameter(
                    name=p["name"],
                    type=p.get("type", ANY_TYPE),
                    optional=p.get("optional", False),
                )
                for p in data.get("parameters", [])
            ],
            return_type=data.get("returnType", ANY_TYPE),
            start_line=data["startLine"],
            end_line=data["endLine"],
            source_text=data["sourceText"],
            is_async=data.get("isAsync", False),
            kind=DescriptorKind(data.get("kind", DescriptorKind.FUNCTION.value)),
            owner=data.get("owner"),
        )


@dataclass(frozen=True)
class ArgumentSpec:
    """A caller-supplied request to materialize one parameter."""

    raw: str
    declared_type: str = ANY_TYPE

    @classmethod
    def from_dict(cls, data: dict | str) -> "ArgumentSpec":
        if isinstance(data, str):
            return cls(raw=data)
        return cls(
            raw=data.get("raw", ""),
            declared_type=data.get("declaredType") or ANY_TYPE,
        )


@dataclass(frozen=True)
class ExecuteRequest:
    """Everything the engine needs for one execute call."""

    source_text: str
    entry_name: str
    arguments: list[ArgumentSpec] = field(default_factory=list)
    is_async: bool = False
    follow_up_arguments: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "ExecuteRequest":
        return cls(
            source_text=data["sourceText"],
            entry_name=data["entryName"],
            arguments=[ArgumentSpec.from_dict(a) for a in data.get("arguments", [])],
            is_async=data.get("isAsync", False),
            follow_up_arguments=data.get("followUpArguments"),
        )

    @classmethod
    def for_descriptor(
        cls,
        descriptor: FunctionDescriptor,
        raw_values: list[str],
        follow_up_arguments: str | None = None,
    ) -> "ExecuteRequest":
        """Pair raw values with the descriptor's declared parameter types.

        Values beyond the declared parameters are typed "any".
        """
        arguments = []
        for index, raw in enumerate(raw_values):
            if index < len(descriptor.parameters):
                declared = descriptor.parameters[index].type
            else:
                declared = ANY_TYPE
            arguments.append(ArgumentSpec(raw=raw, declared_type=declared))
        return cls(
            source_text=descriptor.source_text,
            entry_name=descriptor.name,
            arguments=arguments,
            is_async=descriptor.is_async,
            follow_up_arguments=follow_up_arguments,
        )


@dataclass(frozen=True)
class ExecutionOutcome:
    """The terminal result of one execute call."""

    success: bool
    elapsed_ms: float
    value: Any = None
    error_message: str | None = None
    phase: str | None = None  # "defining", "invoking", "followup_invoking"
    output: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to the boundary shape."""
        if self.success:
            return {
                "success": True,
                "value": self.value,
                "elapsedMs": self.elapsed_ms,
                "output": list(self.output),
            }
        return {
            "success": False,
            "errorMessage": self.error_message,
            "elapsedMs": self.elapsed_ms,
            "phase": self.phase,
            "output": list(self.output),
        }

    def to_json(self, indent: int = 2) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)


def descriptors_to_json(descriptors: list[FunctionDescriptor], indent: int = 2) -> str:
    """Serialize a descriptor list to JSON string."""
    return json.dumps([d.to_dict() for d in descriptors], indent=indent)
