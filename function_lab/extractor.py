"""Extract callable signatures from Python source text."""

import ast
import logging
import re
from pathlib import Path

from function_lab.errors import SyntaxFailure
from function_lab.models import (
    ANY_TYPE,
    DescriptorKind,
    FunctionDescriptor,
    Parameter,
)

logger = logging.getLogger(__name__)

# Line breaks as the parser counts them
LINE_BREAK_PATTERN = re.compile(r"\r\n|\r|\n")

CALLABLE_NAMES = frozenset({"Callable", "typing.Callable", "collections.abc.Callable"})


def extract(source_text: str, file_identifier: str = "<source>") -> list[FunctionDescriptor]:
    """Extract descriptors for every recognizable callable in the source.

    Module-level functions, lambda bindings and classes (constructor plus
    methods) are recognized, in document order. Anything else is skipped.

    Args:
        source_text: Python source code
        file_identifier: Name used in syntax error reports

    Returns:
        List of FunctionDescriptor objects

    Raises:
        SyntaxFailure: If the source cannot be parsed at all
    """
    try:
        tree = ast.parse(source_text, filename=file_identifier)
    except SyntaxError as e:
        logger.error(f"Failed to parse {file_identifier}: {e.msg} (line {e.lineno})")
        raise SyntaxFailure(
            e.msg, file_identifier=file_identifier, line=e.lineno, column=e.offset
        ) from e
    except ValueError as e:
        # Source containing null bytes
        logger.error(f"Failed to parse {file_identifier}: {e}")
        raise SyntaxFailure(str(e), file_identifier=file_identifier) from e

    lines = _split_lines(source_text)
    descriptors: list[FunctionDescriptor] = []

    for node in tree.body:
        try:
            descriptors.extend(_extract_node(node, source_text, lines))
        except Exception as e:
            logger.warning(
                f"Skipping {type(node).__name__} at line {getattr(node, 'lineno', '?')}: {e}"
            )

    logger.info(f"Found {len(descriptors)} callables in {file_identifier}")
    return descriptors


def extract_file(path: Path) -> list[FunctionDescriptor]:
    """Read a Python file and extract its callables.

    Args:
        path: Path to the source file

    Returns:
        List of FunctionDescriptor objects
    """
    logger.info(f"Extracting callables from {path}")
    return extract(Path(path).read_text(encoding="utf-8"), file_identifier=str(path))


def find_descriptor(
    descriptors: list[FunctionDescriptor], entry_name: str
) -> FunctionDescriptor | None:
    """Find the first descriptor with the given name (navigation lookup)."""
    return next((d for d in descriptors if d.name == entry_name), None)


def _extract_node(node: ast.stmt, source: str, lines: list[str]) -> list[FunctionDescriptor]:
    if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
        return [_function_descriptor(node, source, lines)]

    if isinstance(node, ast.ClassDef):
        return _class_descriptors(node, source, lines)

    binding = _lambda_binding(node)
    if binding is not None:
        name, value, annotation = binding
        return [_binding_descriptor(node, name, value, annotation, source, lines)]

    return []


def _function_descriptor(
    node: ast.FunctionDef | ast.AsyncFunctionDef, source: str, lines: list[str]
) -> FunctionDescriptor:
    start_line, end_line = _span(node)
    logger.debug(f"Function: {node.name} (lines {start_line}-{end_line})")
    return FunctionDescriptor(
        name=node.name,
        parameters=_parameters(node.args, source),
        return_type=_annotation_text(node.returns, source),
        start_line=start_line,
        end_line=end_line,
        source_text=_slice(lines, node),
        is_async=isinstance(node, ast.AsyncFunctionDef),
        kind=DescriptorKind.FUNCTION,
    )


def _lambda_binding(node: ast.stmt) -> tuple[str, ast.Lambda, ast.expr | None] | None:
    """Return (name, lambda, annotation) for ``name = lambda ...`` statements."""
    if isinstance(node, ast.Assign):
        if len(node.targets) == 1 and isinstance(node.targets[0], ast.Name):
            if isinstance(node.value, ast.Lambda):
                return node.targets[0].id, node.value, None
    elif isinstance(node, ast.AnnAssign):
        if isinstance(node.target, ast.Name) and isinstance(node.value, ast.Lambda):
            return node.target.id, node.value, node.annotation
    return None


def _binding_descriptor(
    node: ast.stmt,
    name: str,
    value: ast.Lambda,
    annotation: ast.expr | None,
    source: str,
    lines: list[str],
) -> FunctionDescriptor:
    parameters = _parameters(value.args, source)
    return_type = ANY_TYPE

    # Lambdas cannot be annotated; a Callable[[...], R] on the binding can
    callable_types = _callable_types(annotation, source)
    if callable_types is not None:
        param_types, return_type = callable_types
        if param_types is not None and len(param_types) == len(parameters):
            parameters = [
                Parameter(name=p.name, type=t, optional=p.optional)
                for p, t in zip(parameters, param_types)
            ]

    start_line, end_line = _span(node)
    logger.debug(f"Binding: {name} (lines {start_line}-{end_line})")
    return FunctionDescriptor(
        name=name,
        parameters=parameters,
        return_type=return_type,
        start_line=start_line,
        end_line=end_line,
        source_text=_slice(lines, node),
        is_async=False,
        kind=DescriptorKind.BINDING,
    )


def _class_descriptors(node: ast.ClassDef, source: str, lines: list[str]) -> list[FunctionDescriptor]:
    class_name = node.name
    class_text = _slice(lines, node)
    start_line, end_line = _span(node)

    methods = [
        m for m in node.body if isinstance(m, (ast.FunctionDef, ast.AsyncFunctionDef))
    ]
    constructor = next((m for m in methods if m.name == "__init__"), None)
    parameters = _parameters(constructor.args, source, skip_receiver=True) if constructor else []

    descriptors = [
        FunctionDescriptor(
            name=class_name,
            parameters=parameters,
            return_type=class_name,
            start_line=start_line,
            end_line=end_line,
            source_text=class_text,
            is_async=False,
            kind=DescriptorKind.CONSTRUCTOR,
            owner=class_name,
        )
    ]

    for method in methods:
        if method is constructor:
            continue
        try:
            method_start, method_end = _span(method)
            descriptors.append(
                FunctionDescriptor(
                    name=f"{class_name}.{method.name}",
                    parameters=_parameters(
                        method.args, source, skip_receiver=not _is_static(method)
                    ),
                    return_type=_annotation_text(method.returns, source),
                    start_line=method_start,
                    end_line=method_end,
                    source_text=class_text,
                    is_async=isinstance(method, ast.AsyncFunctionDef),
                    kind=DescriptorKind.METHOD,
                    owner=class_name,
                )
            )
        except Exception as e:
            logger.warning(f"Skipping method {class_name}.{method.name}: {e}")

    logger.debug(f"Class: {class_name} with {len(descriptors) - 1} methods")
    return descriptors


def _parameters(args: ast.arguments, source: str, skip_receiver: bool = False) -> list[Parameter]:
    """Build parameters in declaration order, variadics keeping their stars."""
    positional = [*args.posonlyargs, *args.args]
    defaults_start = len(positional) - len(args.defaults)

    parameters = [
        Parameter(
            name=arg.arg,
            type=_annotation_text(arg.annotation, source),
            optional=index >= defaults_start,
        )
        for index, arg in enumerate(positional)
    ]
    if skip_receiver and parameters:
        parameters = parameters[1:]

    if args.vararg:
        parameters.append(
            Parameter(
                name=f"*{args.vararg.arg}",
                type=_annotation_text(args.vararg.annotation, source),
                optional=True,
            )
        )

    for arg, default in zip(args.kwonlyargs, args.kw_defaults):
        parameters.append(
            Parameter(
                name=arg.arg,
                type=_annotation_text(arg.annotation, source),
                optional=default is not None,
            )
        )

    if args.kwarg:
        parameters.append(
            Parameter(
                name=f"**{args.kwarg.arg}",
                type=_annotation_text(args.kwarg.annotation, source),
                optional=True,
            )
        )

    return parameters


def _annotation_text(annotation: ast.expr | None, source: str) -> str:
    if annotation is None:
        return ANY_TYPE
    text = ast.get_source_segment(source, annotation)
    return text if text else ast.unparse(annotation)


def _callable_types(
    annotation: ast.expr | None, source: str
) -> tuple[list[str] | None, str] | None:
    """Split ``Callable[[A, B], R]`` into ([A, B], R); ``Callable[..., R]`` gives (None, R)."""
    if not isinstance(annotation, ast.Subscript):
        return None
    if ast.unparse(annotation.value) not in CALLABLE_NAMES:
        return None
    if not isinstance(annotation.slice, ast.Tuple) or len(annotation.slice.elts) != 2:
        return None

    params_node, return_node = annotation.slice.elts
    return_type = _annotation_text(return_node, source)
    if isinstance(params_node, ast.List):
        return [_annotation_text(e, source) for e in params_node.elts], return_type
    return None, return_type


def _is_static(method: ast.FunctionDef | ast.AsyncFunctionDef) -> bool:
    return any(
        isinstance(d, ast.Name) and d.id == "staticmethod" for d in method.decorator_list
    )


def _span(node: ast.stmt) -> tuple[int, int]:
    """1-based inclusive line span, decorators included."""
    decorators = getattr(node, "decorator_list", None) or []
    start_line = min([node.lineno] + [d.lineno for d in decorators])
    return start_line, node.end_lineno or node.lineno


def _slice(lines: list[str], node: ast.stmt) -> str:
    """Exact source text of a module-level statement, decorators included."""
    start_line, end_line = _span(node)
    chunk = lines[start_line - 1 : end_line]
    if not chunk:
        return ""
    # end_col_offset counts UTF-8 bytes
    last = LINE_BREAK_PATTERN.sub("", chunk[-1])
    if node.end_col_offset is not None:
        last = last.encode("utf-8")[: node.end_col_offset].decode("utf-8", errors="ignore")
    chunk[-1] = last
    return "".join(chunk)


def _split_lines(source: str) -> list[str]:
    lines = []
    start = 0
    for match in LINE_BREAK_PATTERN.finditer(source):
        lines.append(source[start : match.end()])
        start = match.end()
    if start < len(source):
        lines.append(source[start:])
    return lines
