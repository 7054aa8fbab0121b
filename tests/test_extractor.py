"""Tests for the signature extractor."""

from pathlib import Path

import pytest

from function_lab.errors import SyntaxFailure
from function_lab.extractor import extract, extract_file, find_descriptor
from function_lab.models import DescriptorKind, Parameter


@pytest.fixture
def fixtures_path():
    """Path to test fixtures."""
    return Path(__file__).parent / "fixtures" / "sample_sources"


def by_name(descriptors, name):
    return next(d for d in descriptors if d.name == name)


class TestModuleFunctions:
    """Tests for module-level def and async def."""

    def given_functions_file(self, fixtures_path):
        self.descriptors = extract_file(fixtures_path / "functions.py")

    def then_names_are(self, names):
        assert [d.name for d in self.descriptors] == names

    def test_extracts_functions_in_declaration_order(self, fixtures_path):
        """Every module-level function is found, in document order."""
        self.given_functions_file(fixtures_path)
        self.then_names_are(
            ["add", "greet", "fetch_double", "create_multiplier", "total"]
        )

    def test_extracts_annotated_parameters(self, fixtures_path):
        """Parameter types and return type are the verbatim annotations."""
        self.given_functions_file(fixtures_path)

        add = by_name(self.descriptors, "add")

        assert add.parameters == [
            Parameter(name="a", type="int", optional=False),
            Parameter(name="b", type="int", optional=False),
        ]
        assert add.return_type == "int"
        assert add.kind is DescriptorKind.FUNCTION
        assert add.owner is None

    def test_marks_defaulted_parameters_optional(self, fixtures_path):
        """Parameters with defaults are optional."""
        self.given_functions_file(fixtures_path)

        greet = by_name(self.descriptors, "greet")

        assert [p.optional for p in greet.parameters] == [False, True]

    def test_unannotated_parameters_are_any(self, fixtures_path):
        """Missing annotations fall back to 'any'."""
        self.given_functions_file(fixtures_path)

        multiplier = by_name(self.descriptors, "create_multiplier")

        assert multiplier.parameters == [Parameter(name="factor", type="any")]
        assert multiplier.return_type == "any"

    def test_detects_async_functions(self, fixtures_path):
        """async def is reported as asynchronous."""
        self.given_functions_file(fixtures_path)

        assert by_name(self.descriptors, "fetch_double").is_async is True
        assert by_name(self.descriptors, "add").is_async is False

    def test_keeps_variadic_star(self, fixtures_path):
        """*args keeps its star and is optional."""
        self.given_functions_file(fixtures_path)

        total = by_name(self.descriptors, "total")

        assert total.parameters == [
            Parameter(name="*numbers", type="float", optional=True)
        ]
        assert total.parameters[0].is_variadic

    def test_tracks_line_span_and_source(self, fixtures_path):
        """Line span is 1-based inclusive and source text is the exact slice."""
        self.given_functions_file(fixtures_path)

        add = by_name(self.descriptors, "add")

        assert (add.start_line, add.end_line) == (6, 7)
        assert add.source_text == "def add(a: int, b: int) -> int:\n    return a + b"


class TestLambdaBindings:
    """Tests for name = lambda bindings."""

    def given_bindings_file(self, fixtures_path):
        self.descriptors = extract_file(fixtures_path / "bindings.py")

    def test_extracts_only_single_name_lambda_bindings(self, fixtures_path):
        """Constants and tuple unpacking are skipped."""
        self.given_bindings_file(fixtures_path)

        assert [d.name for d in self.descriptors] == ["square", "scale", "shout"]
        assert all(d.kind is DescriptorKind.BINDING for d in self.descriptors)

    def test_takes_types_from_callable_annotation(self, fixtures_path):
        """A Callable[[...], R] annotation types the lambda's parameters."""
        self.given_bindings_file(fixtures_path)

        scale = by_name(self.descriptors, "scale")

        assert scale.parameters == [
            Parameter(name="value", type="float", optional=False),
            Parameter(name="factor", type="float", optional=True),
        ]
        assert scale.return_type == "float"

    def test_multiline_binding_span(self, fixtures_path):
        """A binding spanning several lines keeps its full text."""
        self.given_bindings_file(fixtures_path)

        shout = by_name(self.descriptors, "shout")

        assert (shout.start_line, shout.end_line) == (13, 15)
        assert shout.source_text.startswith("shout = lambda text: (")
        assert shout.source_text.endswith(")")


class TestClasses:
    """Tests for class constructor and method descriptors."""

    def given_shapes_file(self, fixtures_path):
        self.descriptors = extract_file(fixtures_path / "shapes.py")

    def test_constructor_precedes_methods(self, fixtures_path):
        """Each class yields its constructor, then its methods in order."""
        self.given_shapes_file(fixtures_path)

        assert [(d.name, d.kind) for d in self.descriptors] == [
            ("Stack", DescriptorKind.CONSTRUCTOR),
            ("Stack.push", DescriptorKind.METHOD),
            ("Stack.describe", DescriptorKind.METHOD),
            ("Stack.of", DescriptorKind.METHOD),
            ("Stack.drain", DescriptorKind.METHOD),
            ("Point", DescriptorKind.CONSTRUCTOR),
            ("Point.norm", DescriptorKind.METHOD),
        ]

    def test_constructor_uses_init_parameters_without_self(self, fixtures_path):
        """The constructor takes __init__'s parameters and returns the class."""
        self.given_shapes_file(fixtures_path)

        stack = by_name(self.descriptors, "Stack")

        assert stack.parameters == [
            Parameter(name="capacity", type="int", optional=True),
            Parameter(name="label", type="str", optional=True),
        ]
        assert stack.return_type == "Stack"
        assert stack.owner == "Stack"
        assert (stack.start_line, stack.end_line) == (4, 31)

    def test_class_without_init_has_no_parameters(self, fixtures_path):
        """A class with no __init__ gets an empty constructor signature."""
        self.given_shapes_file(fixtures_path)

        assert by_name(self.descriptors, "Point").parameters == []

    def test_methods_carry_full_class_source(self, fixtures_path):
        """Method source text is the whole class so it can be re-defined."""
        self.given_shapes_file(fixtures_path)

        push = by_name(self.descriptors, "Stack.push")
        stack = by_name(self.descriptors, "Stack")

        assert push.source_text == stack.source_text
        assert push.source_text.startswith("class Stack:")
        assert (push.start_line, push.end_line) == (12, 16)
        assert push.parameters == [Parameter(name="item", type="any")]

    def test_static_method_keeps_first_parameter(self, fixtures_path):
        """staticmethod has no receiver to drop."""
        self.given_shapes_file(fixtures_path)

        describe = by_name(self.descriptors, "Stack.describe")

        assert describe.parameters == [Parameter(name="kind", type="str")]
        assert describe.start_line == 18

    def test_class_method_drops_cls(self, fixtures_path):
        """classmethod drops cls and keeps a quoted return annotation verbatim."""
        self.given_shapes_file(fixtures_path)

        of = by_name(self.descriptors, "Stack.of")

        assert of.parameters == [Parameter(name="*items", type="any", optional=True)]
        assert of.return_type == '"Stack"'

    def test_async_method(self, fixtures_path):
        """async methods are reported as asynchronous."""
        self.given_shapes_file(fixtures_path)

        assert by_name(self.descriptors, "Stack.drain").is_async is True


class TestExtractEdgeCases:
    def given_source(self, source):
        self.source = source

    def when_extracted(self):
        self.descriptors = extract(self.source, "sample.py")

    def when_extraction_fails(self):
        with pytest.raises(SyntaxFailure) as exc_info:
            extract(self.source, "sample.py")
        self.error = exc_info.value

    def test_counts_generated_functions(self):
        """N module-level functions give exactly N descriptors."""
        self.given_source(
            "\n\n".join(f"def f{i}(x):\n    return x + {i}" for i in range(7))
        )
        self.when_extracted()
        assert [d.name for d in self.descriptors] == [f"f{i}" for i in range(7)]

    def test_decorators_belong_to_the_declaration(self):
        """A decorated function's span starts at its first decorator."""
        self.given_source(
            "import functools\n"
            "\n"
            "@functools.lru_cache\n"
            "def cached(n):\n"
            "    return n\n"
        )
        self.when_extracted()

        cached = self.descriptors[0]
        assert (cached.start_line, cached.end_line) == (3, 5)
        assert cached.source_text.startswith("@functools.lru_cache\n")

    def test_nested_functions_are_not_listed(self):
        """Only module-level declarations are recognized."""
        self.given_source("def outer():\n    def inner():\n        pass\n    return inner\n")
        self.when_extracted()
        assert [d.name for d in self.descriptors] == ["outer"]

    def test_keyword_only_and_kwargs(self):
        """Keyword-only parameters follow *args; **kwargs comes last."""
        self.given_source("def f(a, /, b, *rest, key=None, flag, **extra):\n    pass\n")
        self.when_extracted()

        assert [(p.name, p.optional) for p in self.descriptors[0].parameters] == [
            ("a", False),
            ("b", False),
            ("*rest", True),
            ("key", True),
            ("flag", False),
            ("**extra", True),
        ]

    def test_empty_source_has_no_descriptors(self):
        self.given_source("")
        self.when_extracted()
        assert self.descriptors == []

    def test_syntax_error_is_reported_once(self):
        """An unparseable file raises SyntaxFailure with its location."""
        self.given_source("def ok():\n    pass\n\ndef broken(:\n    return 1\n")
        self.when_extraction_fails()

        assert self.error.file_identifier == "sample.py"
        assert self.error.line == 4

    def test_repeated_calls_do_not_interact(self):
        """The extractor keeps no state between calls."""
        first = extract("def a():\n    pass\n")
        second = extract("def b():\n    pass\n")
        assert [d.name for d in first] == ["a"]
        assert [d.name for d in second] == ["b"]


class TestFindDescriptor:
    def test_finds_descriptor_by_name(self, fixtures_path):
        """Navigation resolves an entry name to its descriptor."""
        descriptors = extract_file(fixtures_path / "shapes.py")

        push = find_descriptor(descriptors, "Stack.push")

        assert push is not None
        assert push.start_line == 12

    def test_returns_none_for_unknown_name(self, fixtures_path):
        descriptors = extract_file(fixtures_path / "shapes.py")
        assert find_descriptor(descriptors, "Queue") is None

    def test_returns_first_of_duplicates(self):
        """Duplicate names are kept; lookup returns the first."""
        descriptors = extract("def f():\n    return 1\n\ndef f():\n    return 2\n")

        assert [d.name for d in descriptors] == ["f", "f"]
        assert find_descriptor(descriptors, "f").start_line == 1
