"""Unit tests for runtime type matching (Match/Case)."""

from collections.abc import Sized
from typing import Protocol, runtime_checkable

import pytest

from schemaflow.exceptions import ParseError, SchemaFlowError, ValidationError
from schemaflow.matching import case, match, otherwise


@runtime_checkable
class HasName(Protocol):
    name: str


class Named:
    def __init__(self) -> None:
        self.name = "n"


class TestMatch:
    """Exact type identity, declaration order, no fallthrough."""

    @pytest.mark.unit
    def test_first_exact_match_fires_once(self):
        fired: list[str] = []

        matched = match(
            42,
            case(42, lambda: fired.append("int")),
            case(0, lambda: fired.append("second int")),
            case("x", lambda: fired.append("str")),
        )

        assert matched
        assert fired == ["int"]

    @pytest.mark.unit
    def test_type_exemplars_match_instances(self):
        fired: list[str] = []
        match("hello", case(int, lambda: fired.append("int")), case(str, lambda: fired.append("str")))
        assert fired == ["str"]

    @pytest.mark.unit
    def test_subclasses_do_not_match(self):
        fired: list[str] = []

        match(True, case(1, lambda: fired.append("int")))
        match(ParseError("x"), case(SchemaFlowError, lambda: fired.append("base")))

        assert fired == []

    @pytest.mark.unit
    def test_errors_match_by_exact_class(self):
        fired: list[str] = []
        error = ValidationError("too low")

        match(
            error,
            case(ParseError, lambda: fired.append("parse")),
            case(ValidationError("other"), lambda: fired.append("validation")),
        )

        assert fired == ["validation"]

    @pytest.mark.unit
    def test_no_match_is_silent(self):
        fired: list[str] = []
        assert match("y", case(1, lambda: fired.append("int"))) is False
        assert match("y") is False
        assert fired == []

    @pytest.mark.unit
    def test_case_without_action_is_skipped(self):
        fired: list[str] = []

        match(3, case(int), case(5, lambda: fired.append("int")))

        assert fired == ["int"]

    @pytest.mark.unit
    def test_otherwise_fires_only_without_earlier_match(self):
        fired: list[str] = []

        match(1.5, case(1, lambda: fired.append("int")), otherwise(lambda: fired.append("default")))
        match(1, case(1, lambda: fired.append("int")), otherwise(lambda: fired.append("default")))

        assert fired == ["default", "int"]

    @pytest.mark.unit
    def test_open_shapes_match_structurally(self):
        fired: list[str] = []

        match(Named(), case(HasName, lambda: fired.append("named")))
        match([1, 2], case(Sized, lambda: fired.append("sized")))

        assert fired == ["named", "sized"]
