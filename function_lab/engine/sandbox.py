"""Isolated evaluation context: one fresh, capability-restricted scope per call."""

import __future__

import ast
import asyncio
import builtins
import datetime
import inspect
import json
import linecache
import logging
import math
import operator
import re
import textwrap
import types
import uuid

from RestrictedPython import compile_restricted
from RestrictedPython.Eval import default_guarded_getitem, default_guarded_getiter
from RestrictedPython.Guards import (
    full_write_guard,
    guarded_iter_unpack_sequence,
    guarded_unpack_sequence,
    safer_getattr,
)
from RestrictedPython.PrintCollector import PrintCollector
from RestrictedPython.transformer import INSPECT_ATTRIBUTES

from function_lab.errors import (
    DefinitionFailure,
    InvocationFailure,
    MaterializationFailure,
)

logger = logging.getLogger(__name__)
output_logger = logging.getLogger("function_lab.output")

SAFE_BUILTIN_NAMES = (
    # Core constructors
    "bool", "bytes", "complex", "dict", "float", "frozenset", "int", "list",
    "object", "range", "set", "slice", "str", "tuple", "type",
    # Pure helpers
    "abs", "all", "any", "ascii", "bin", "callable", "chr", "divmod",
    "enumerate", "filter", "format", "hash", "hex", "id",
    "isinstance", "issubclass", "iter", "len", "map", "max", "min", "next",
    "oct", "ord", "pow", "repr", "reversed", "round", "sorted",
    "sum", "zip",
    # Class machinery
    "__build_class__", "classmethod", "property", "staticmethod", "super",
    "NotImplemented", "Ellipsis",
)  # fmt: skip

# Control-flow exceptions, and the roots that would slip past `except Exception`
WITHHELD_EXCEPTIONS = frozenset(
    {
        "BaseException",
        "BaseExceptionGroup",
        "GeneratorExit",
        "KeyboardInterrupt",
        "SystemExit",
    }
)

# Raised by the host process; never turned into a failure
HOST_INTERRUPTS = (KeyboardInterrupt, SystemExit)

# Attributes leading back to real modules, interpreter internals or the event loop
PRIVILEGED_ATTRIBUTES = INSPECT_ATTRIBUTES | frozenset(
    {
        "__base__",
        "__bases__",
        "__builtins__",
        "__closure__",
        "__code__",
        "__dict__",
        "__getattribute__",
        "__globals__",
        "__loader__",
        "__mro__",
        "__self__",
        "__spec__",
        "__subclasses__",
        "_get_loop",
        "_loop",
        "get_loop",
    }
)

DEFAULT_ALLOWED_MODULES = frozenset(
    {
        "abc",
        "bisect",
        "cmath",
        "collections",
        "copy",
        "dataclasses",
        "datetime",
        "decimal",
        "enum",
        "fractions",
        "functools",
        "heapq",
        "itertools",
        "json",
        "math",
        "operator",
        "random",
        "re",
        "statistics",
        "string",
        "time",
        "typing",
    }
)

# Public names left out of a module's facade because they evaluate or
# format text against arbitrary objects
WITHHELD_MODULE_ATTRIBUTES = {
    "string": frozenset({"Formatter"}),
    "typing": frozenset({"ForwardRef", "get_type_hints"}),
}

INPLACE_OPERATORS = {
    "+=": operator.iadd,
    "-=": operator.isub,
    "*=": operator.imul,
    "/=": operator.itruediv,
    "//=": operator.ifloordiv,
    "%=": operator.imod,
    "**=": operator.ipow,
    "<<=": operator.ilshift,
    ">>=": operator.irshift,
    "&=": operator.iand,
    "|=": operator.ior,
    "^=": operator.ixor,
    "@=": operator.imatmul,
}


def normalize_source(source_text: str) -> str:
    """Best-effort cleanup so an extracted slice compiles standalone."""
    text = source_text.lstrip("\ufeff")
    return textwrap.dedent(text).strip("\n") + "\n"


def describe_exception(error: BaseException) -> str:
    """The human-readable message of an exception, never empty."""
    if isinstance(error, SyntaxError) and error.msg:
        return f"{error.msg} (line {error.lineno})" if error.lineno else error.msg
    message = str(error)
    if isinstance(error, KeyError) and error.args:
        message = repr(error.args[0])
    return message or type(error).__name__


def check_attribute(name: str) -> None:
    """Raise AttributeError if ``name`` is off limits inside a context."""
    if name in PRIVILEGED_ATTRIBUTES:
        raise AttributeError(f"attribute '{name}' is not available")


def find_privileged_attribute(tree: ast.AST) -> ast.Attribute | None:
    """The first attribute access in ``tree`` that is off limits, if any."""
    for node in ast.walk(tree):
        if isinstance(node, ast.Attribute) and node.attr in PRIVILEGED_ATTRIBUTES:
            return node
    return None


def _guarded_getattr(obj, name, *default):
    check_attribute(name)
    return getattr(obj, name, *default)


def _guarded_hasattr(obj, name):
    if name in PRIVILEGED_ATTRIBUTES:
        return False
    return hasattr(obj, name)


def _guarded_setattr(obj, name, value):
    check_attribute(name)
    setattr(obj, name, value)


def _restricted_getattr(obj, name, default=None, getattr=getattr):
    check_attribute(name)
    return safer_getattr(obj, name, default, getattr)


def _guarded_attrgetter(attr, *attrs):
    for dotted in (attr, *attrs):
        for name in dotted.split("."):
            check_attribute(name)
    return operator.attrgetter(attr, *attrs)


def _guarded_methodcaller(name, /, *args, **kwargs):
    check_attribute(name)
    return operator.methodcaller(name, *args, **kwargs)


REPLACED_MODULE_ATTRIBUTES = {
    "operator": {
        "attrgetter": _guarded_attrgetter,
        "methodcaller": _guarded_methodcaller,
    },
}


def module_facade(module: types.ModuleType, allowed: frozenset[str], cache: dict):
    """A stand-in module holding only the public names of ``module``.

    Submodules appear as facades themselves when their package is allowed
    and are dropped otherwise, so ``json.codecs`` or ``random._os`` never
    reach user code.
    """
    name = module.__name__
    if name in cache:
        return cache[name]

    facade = types.ModuleType(name, module.__doc__)
    cache[name] = facade
    withheld = WITHHELD_MODULE_ATTRIBUTES.get(name, frozenset())
    replaced = REPLACED_MODULE_ATTRIBUTES.get(name, {})

    for attr in dir(module):
        if attr.startswith("_") or attr in withheld:
            continue
        if attr in replaced:
            setattr(facade, attr, replaced[attr])
            continue
        try:
            value = getattr(module, attr)
        except AttributeError:
            continue
        if inspect.ismodule(value):
            if value.__name__.partition(".")[0] not in allowed:
                continue
            value = module_facade(value, allowed, cache)
        setattr(facade, attr, value)

    return facade


def _asyncio_facade() -> types.SimpleNamespace:
    """Timer and future primitives, without loops, subprocesses or sockets."""
    return types.SimpleNamespace(
        sleep=asyncio.sleep,
        gather=asyncio.gather,
        wait_for=asyncio.wait_for,
        create_task=asyncio.create_task,
        Future=asyncio.Future,
        Event=asyncio.Event,
        Lock=asyncio.Lock,
        Queue=asyncio.Queue,
        TimeoutError=asyncio.TimeoutError,
        CancelledError=asyncio.CancelledError,
    )


def _inplace_operation(op: str, target, value):
    return INPLACE_OPERATORS[op](target, value)


def _apply(func, *args, **kwargs):
    return func(*args, **kwargs)


class EvaluationContext:
    """A fresh scope in which source text is defined and then invoked.

    Both evaluation steps share one globals dict, so names bound while
    defining are visible to argument expressions and the call. The context
    is meant to live for exactly one execute call:

        with EvaluationContext() as context:
            context.define(source_text)
            target = context.lookup("add")
    """

    def __init__(self, allowed_modules: frozenset[str] = DEFAULT_ALLOWED_MODULES):
        self.filename = f"<function-lab-{uuid.uuid4().hex[:12]}>"
        self.output: list[str] = []
        self._allowed_modules = allowed_modules
        self._argument_count = 0
        self._facades: dict[str, types.ModuleType] = {}
        self.namespace = self._build_namespace()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        """Discard every binding and the registered source."""
        linecache.cache.pop(self.filename, None)
        self.namespace.clear()
        self._facades.clear()
        logger.debug(f"Context {self.filename} closed")

    def define(self, source_text: str) -> None:
        """Evaluate the callable's source once, binding its names.

        Raises:
            DefinitionFailure: If the source fails to compile, touches a
                privileged attribute, or raises
        """
        text = normalize_source(source_text)
        try:
            # Annotations stay unevaluated so unresolved type names are harmless
            code = compile(
                text,
                self.filename,
                "exec",
                flags=__future__.annotations.compiler_flag,
                dont_inherit=True,
            )
        except SyntaxError as e:
            logger.error(f"Definition does not compile: {e}")
            raise DefinitionFailure(describe_exception(e)) from e

        privileged = find_privileged_attribute(ast.parse(text, self.filename))
        if privileged is not None:
            logger.error(f"Definition uses privileged attribute {privileged.attr}")
            raise DefinitionFailure(
                f"attribute '{privileged.attr}' is not available "
                f"(line {privileged.lineno})"
            )

        linecache.cache[self.filename] = (
            len(text),
            None,
            text.splitlines(keepends=True),
            self.filename,
        )

        try:
            exec(code, self.namespace)
        except HOST_INTERRUPTS:
            raise
        except BaseException as e:
            logger.error(f"Definition raised {type(e).__name__}: {e}")
            raise DefinitionFailure(describe_exception(e)) from e

        logger.debug(f"Defined source in {self.filename}")

    def evaluate(self, expression: str):
        """Evaluate one restricted expression against the context's bindings.

        Raises:
            MaterializationFailure: If the expression fails to compile or raises
        """
        try:
            code = compile_restricted(expression, self._argument_filename(), "eval")
        except SyntaxError as e:
            raise MaterializationFailure(describe_exception(e)) from e

        try:
            return eval(code, self.namespace)
        except HOST_INTERRUPTS:
            raise
        except BaseException as e:
            raise MaterializationFailure(describe_exception(e)) from e

    def define_statement(self, statement: str, name: str):
        """Execute one restricted ``def`` and return what it binds to ``name``.

        The binding lands in a scratch scope, so it cannot shadow the entry.

        Raises:
            MaterializationFailure: If the statement fails or binds nothing
        """
        scratch: dict = {}
        try:
            code = compile_restricted(statement, self._argument_filename(), "exec")
            exec(code, self.namespace, scratch)
        except HOST_INTERRUPTS:
            raise
        except BaseException as e:
            raise MaterializationFailure(describe_exception(e)) from e
        if name not in scratch:
            raise MaterializationFailure(f"statement did not bind {name!r}")
        return scratch[name]

    def lookup(self, dotted_name: str):
        """Resolve ``name`` or ``Owner.attr`` to a callable.

        A plain instance method is bound to an owner constructed with no
        arguments.

        Raises:
            InvocationFailure: If the name cannot be resolved
        """
        head, *rest = dotted_name.split(".")
        if head not in self.namespace:
            raise InvocationFailure(f"name '{head}' is not defined")

        target = self.namespace[head]
        for attr in rest:
            owner = target
            try:
                check_attribute(attr)
                static = inspect.getattr_static(owner, attr)
            except AttributeError as e:
                owner_name = getattr(owner, "__name__", type(owner).__name__)
                raise InvocationFailure(
                    f"'{owner_name}' has no attribute '{attr}'"
                ) from e

            if inspect.isclass(owner) and inspect.isfunction(static):
                try:
                    instance = owner()
                except HOST_INTERRUPTS:
                    raise
                except BaseException as e:
                    raise InvocationFailure(
                        f"cannot construct {owner.__name__}() to call {attr}: "
                        f"{describe_exception(e)}"
                    ) from e
                target = getattr(instance, attr)
            else:
                target = getattr(owner, attr)

        return target

    def _argument_filename(self) -> str:
        self._argument_count += 1
        return f"{self.filename[:-1]}:arg{self._argument_count}>"

    def _facade(self, module: types.ModuleType) -> types.ModuleType:
        return module_facade(module, self._allowed_modules, self._facades)

    def _build_namespace(self) -> dict:
        safe_builtins = {name: getattr(builtins, name) for name in SAFE_BUILTIN_NAMES}
        for name, value in vars(builtins).items():
            if (
                isinstance(value, type)
                and issubclass(value, BaseException)
                and name not in WITHHELD_EXCEPTIONS
            ):
                safe_builtins[name] = value

        facade = _asyncio_facade()
        safe_builtins["getattr"] = _guarded_getattr
        safe_builtins["hasattr"] = _guarded_hasattr
        safe_builtins["setattr"] = _guarded_setattr
        safe_builtins["print"] = self._print
        safe_builtins["__import__"] = self._make_importer(facade)

        return {
            "__builtins__": safe_builtins,
            "__name__": "__function_lab__",
            # Pre-bound host capabilities
            "asyncio": facade,
            "datetime": self._facade(datetime),
            "json": self._facade(json),
            "math": self._facade(math),
            "re": self._facade(re),
            # Guards for RestrictedPython-compiled argument expressions
            "_getattr_": _restricted_getattr,
            "_getitem_": default_guarded_getitem,
            "_getiter_": default_guarded_getiter,
            "_iter_unpack_sequence_": guarded_iter_unpack_sequence,
            "_unpack_sequence_": guarded_unpack_sequence,
            "_write_": full_write_guard,
            "_inplacevar_": _inplace_operation,
            "_apply_": _apply,
            "_print_": PrintCollector,
        }

    def _make_importer(self, facade: types.SimpleNamespace):
        allowed = self._allowed_modules

        def _import(name, globals=None, locals=None, fromlist=(), level=0):
            if level != 0:
                raise ImportError("relative imports are not available")
            root = name.partition(".")[0]
            if root == "asyncio":
                return facade
            if root not in allowed:
                raise ImportError(f"module '{name}' is not available")
            module = builtins.__import__(name, globals, locals, fromlist, level)
            return self._facade(module)

        return _import

    def _print(self, *values, sep=" ", end="\n", **kwargs):
        text = (sep if sep is not None else " ").join(str(v) for v in values)
        self.output.append(text)
        output_logger.info(f"[function output] {text}")
