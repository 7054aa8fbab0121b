"""Strip type annotations from argument text so it can be evaluated."""

import ast
import logging
import re
import textwrap
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Type-guard phrases that mark a predicate-shaped argument
TYPE_GUARD_PATTERN = re.compile(r"\b(?:TypeGuard|TypeIs)\b")


@dataclass(frozen=True)
class CleanedText:
    """Annotation-free text, plus the name it binds when it is a statement."""

    text: str
    binds: str | None = None


class _AnnotationStripper(ast.NodeTransformer):
    def visit_arg(self, node: ast.arg) -> ast.arg:
        node.annotation = None
        return node

    def visit_FunctionDef(self, node):
        node.returns = None
        self.generic_visit(node)
        return node

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_AnnAssign(self, node: ast.AnnAssign):
        if node.value is None:
            return ast.Pass()
        return ast.Assign(targets=[node.target], value=node.value)


def has_annotation(raw: str, declared_type: str = "") -> bool:
    """True when the raw text or its declared type carries type information."""
    if TYPE_GUARD_PATTERN.search(declared_type or "") or TYPE_GUARD_PATTERN.search(raw):
        return True

    statement = _parse_statement(raw)
    if isinstance(statement, ast.AnnAssign):
        return True
    if isinstance(statement, (ast.FunctionDef, ast.AsyncFunctionDef)):
        return any(
            isinstance(node, ast.arg) and node.annotation is not None
            for node in ast.walk(statement)
        ) or statement.returns is not None
    return False


def strip_annotations(raw: str) -> CleanedText | None:
    """Remove annotations from one statement or expression.

    ``value: list[int] = [1, 2]`` becomes ``[1, 2]``; an annotated ``def``
    becomes the same ``def`` without annotations; a bare expression comes
    back unchanged. Returns None when the text is not a single statement.
    """
    statement = _parse_statement(raw)
    if statement is None:
        return None

    if isinstance(statement, ast.Expr):
        return CleanedText(ast.unparse(statement.value))

    if isinstance(statement, ast.AnnAssign):
        if statement.value is None:
            return None
        return CleanedText(ast.unparse(statement.value))

    if isinstance(statement, (ast.FunctionDef, ast.AsyncFunctionDef)):
        stripped = ast.fix_missing_locations(_AnnotationStripper().visit(statement))
        cleaned = CleanedText(ast.unparse(stripped), binds=statement.name)
        logger.debug(f"Stripped annotations from {statement.name}")
        return cleaned

    return None


def _parse_statement(raw: str) -> ast.stmt | None:
    text = textwrap.dedent(raw.strip("\n")).strip().rstrip(";")
    try:
        tree = ast.parse(text)
    except (SyntaxError, ValueError):
        return None
    if len(tree.body) != 1:
        return None
    return tree.body[0]
