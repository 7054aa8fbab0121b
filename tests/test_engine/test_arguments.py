# tests/test_engine/test_arguments.py
"""Tests for follow-up splitting and call shaping."""

from function_lab.engine.arguments import shape_call, split_top_level
from function_lab.models import MISSING


def pair(a, b=2):
    return a, b


def total(*numbers):
    return sum(numbers)


def labelled(value, *, label="x", sep=":"):
    return f"{label}{sep}{value}"


def head_and_rest(first, *rest, flag=False):
    return first, rest, flag


def defaults(a=1, b=2, c=3):
    return a, b, c


def positional_only(a=1, /, b=2):
    return a, b


class TestSplitTopLevel:
    def test_splits_on_top_level_commas(self):
        assert split_top_level("1, [2, 3], 'a,b'") == ["1", "[2, 3]", "'a,b'"]

    def test_keeps_nested_mappings_whole(self):
        assert split_top_level('{"x": 1, "y": (2, 3)}, 4') == [
            '{"x": 1, "y": (2, 3)}',
            "4",
        ]

    def test_drops_blank_pieces(self):
        assert split_top_level(" a,, b , ") == ["a", "b"]

    def test_empty_text(self):
        assert split_top_level("") == []
        assert split_top_level("   ") == []

    def test_escaped_backslash_closes_string(self):
        """A string ending in an escaped backslash still ends at its quote."""
        assert split_top_level("'a\\\\', 2") == ["'a\\\\'", "2"]

    def test_escaped_quote_stays_inside_string(self):
        assert split_top_level("'it\\'s, ok', 3") == ["'it\\'s, ok'", "3"]


class TestShapeCall:
    """Tests for turning materialized values into call arguments."""

    def test_trailing_missing_lets_defaults_apply(self):
        args, kwargs = shape_call(pair, [1, MISSING])

        assert (args, kwargs) == ([1], {})
        assert pair(*args, **kwargs) == (1, 2)

    def test_interior_missing_without_default_becomes_none(self):
        assert shape_call(pair, [MISSING, 5]) == ([None, 5], {})

    def test_interior_missing_lets_default_apply(self):
        """Values after a blank one are passed by name so the default is kept."""
        args, kwargs = shape_call(defaults, [MISSING, 5])

        assert (args, kwargs) == ([], {"b": 5})
        assert defaults(*args, **kwargs) == (1, 5, 3)

    def test_value_after_blank_goes_by_name(self):
        args, kwargs = shape_call(defaults, [0, MISSING, 7])

        assert (args, kwargs) == ([0], {"c": 7})
        assert defaults(*args, **kwargs) == (0, 2, 7)

    def test_positional_only_missing_becomes_none(self):
        assert shape_call(positional_only, [MISSING, 5]) == ([None, 5], {})

    def test_single_list_is_spread_into_variadic(self):
        """A lone list argument fills *args element by element."""
        args, kwargs = shape_call(total, [[1, 2, 3]])

        assert args == [1, 2, 3]
        assert total(*args, **kwargs) == 6

    def test_single_tuple_is_spread_into_variadic(self):
        assert shape_call(total, [(4, 5)]) == ([4, 5], {})

    def test_several_values_pass_through_to_variadic(self):
        assert shape_call(total, [1, 2]) == ([1, 2], {})

    def test_variadic_followed_by_keyword_only_still_spreads(self):
        args, _ = shape_call(head_and_rest, [[1, 2]])

        assert args == [1, 2]

    def test_non_variadic_target_keeps_list_whole(self):
        assert shape_call(pair, [[1, 2]]) == ([[1, 2]], {})

    def test_extra_values_fill_keyword_only_parameters(self):
        args, kwargs = shape_call(labelled, [7, "n", "="])

        assert (args, kwargs) == ([7], {"label": "n", "sep": "="})
        assert labelled(*args, **kwargs) == "n=7"

    def test_overflow_stays_positional(self):
        args, kwargs = shape_call(labelled, [1, 2, 3, 4])

        assert args == [1, 4]
        assert kwargs == {"label": 2, "sep": 3}

    def test_all_missing_gives_empty_call(self):
        assert shape_call(pair, [MISSING, MISSING]) == ([], {})
