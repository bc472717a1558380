"""Unit tests for structural type description and schema analysis."""

from collections.abc import Callable
import dataclasses
from enum import Enum
from typing import Annotated, Literal, NamedTuple, NotRequired, Protocol, TypedDict
import warnings

from pydantic import BaseModel, Field, create_model
import pytest

from schemaflow.analysis import (
    SchemaAnalyzer,
    ShapeKind,
    clear_caches,
    describe,
    json_schema,
    require_supported,
)
from schemaflow.exceptions import UnsupportedTypeError


class Person(BaseModel):
    name: str
    age: int
    email: str | None = None


class Contact(BaseModel):
    full_name: str = Field(alias="fullName")


class Color(Enum):
    RED = "red"
    GREEN = "green"


@dataclasses.dataclass
class Node:
    value: int
    children: list["Node"] = dataclasses.field(default_factory=list)


class Movie(TypedDict):
    title: str
    year: NotRequired[int]


class Point(NamedTuple):
    x: float
    y: float = 0.0


class Greeter(Protocol):
    def greet(self) -> str: ...


class TestDescribe:
    """Shapes produced for the supported families of types."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        ("tp", "name"),
        [
            (str, "string"),
            (int, "integer"),
            (float, "number"),
            (bool, "boolean"),
            (bytes, "bytes"),
        ],
    )
    def test_primitives_use_canonical_names(self, tp, name):
        descriptor = describe(tp)
        assert descriptor.kind is ShapeKind.PRIMITIVE
        assert descriptor.name == name

    @pytest.mark.unit
    def test_pydantic_model_becomes_struct_with_optional_flags(self):
        descriptor = describe(Person)

        assert descriptor.kind is ShapeKind.STRUCT
        assert [f.name for f in descriptor.fields] == ["name", "age", "email"]
        assert [f.optional for f in descriptor.fields] == [False, False, True]
        assert [f.name for f in descriptor.required_fields] == ["name", "age"]

    @pytest.mark.unit
    def test_struct_render_is_stable_schema_text(self):
        assert describe(Person).render() == (
            "Person {\n"
            "  name: string (required)\n"
            "  age: integer (required)\n"
            "  email: string or null (optional)\n"
            "}"
        )

    @pytest.mark.unit
    def test_model_alias_is_wire_name(self):
        (field,) = describe(Contact).fields
        assert field.name == "fullName"
        assert field.attr == "full_name"

    @pytest.mark.unit
    def test_collections(self):
        assert describe(list[int]).render() == "array of integer"
        assert describe(tuple[int, ...]).kind is ShapeKind.SEQUENCE
        mapping = describe(dict[str, float])
        assert mapping.kind is ShapeKind.MAPPING
        assert mapping.render() == "object mapping string to number"

    @pytest.mark.unit
    def test_optional_and_union(self):
        optional = describe(int | None)
        assert optional.kind is ShapeKind.OPTIONAL
        assert optional.element is not None
        assert optional.element.name == "integer"

        union = describe(int | str)
        assert union.kind is ShapeKind.PRIMITIVE
        assert union.name == "integer | string"

    @pytest.mark.unit
    def test_enums_and_literals_list_their_values(self):
        assert describe(Color).values == ("red", "green")
        literal = describe(Literal["a", "b"])
        assert literal.kind is ShapeKind.ENUM
        assert literal.render() == 'one of ["a", "b"]'

    @pytest.mark.unit
    def test_annotated_is_transparent(self):
        assert describe(Annotated[int, "meta"]).name == "integer"

    @pytest.mark.unit
    def test_typeddict_and_namedtuple(self):
        movie = describe(Movie)
        assert movie.kind is ShapeKind.STRUCT
        assert {f.name: f.optional for f in movie.fields} == {
            "title": False,
            "year": True,
        }

        point = describe(Point)
        assert {f.name: f.optional for f in point.fields} == {"x": False, "y": True}

    @pytest.mark.unit
    def test_self_referential_type_uses_back_reference(self):
        descriptor = describe(Node)

        children = next(f for f in descriptor.fields if f.name == "children")
        assert children.shape.kind is ShapeKind.SEQUENCE
        assert children.shape.element is not None
        assert children.shape.element.kind is ShapeKind.REFERENCE
        assert "(recursive reference)" in descriptor.render()


class TestUnsupportedTargets:
    """Targets that cannot be decoded fail when described, not when called."""

    @pytest.mark.unit
    def test_callable_target_is_unsupported(self):
        descriptor = describe(Callable[[int], int])
        assert descriptor.kind is ShapeKind.UNSUPPORTED
        with pytest.raises(UnsupportedTypeError, match="unsupported target type"):
            require_supported(Callable[[int], int])

    @pytest.mark.unit
    def test_nested_unsupported_field_is_reported(self):
        @dataclasses.dataclass
        class Job:
            name: str
            run: Callable[[], None]

        with pytest.raises(UnsupportedTypeError) as exc_info:
            require_supported(Job)
        assert "callables" in exc_info.value.reason

    @pytest.mark.unit
    def test_protocol_is_unsupported(self):
        assert describe(Greeter).kind is ShapeKind.UNSUPPORTED


class TestDescriptorCache:
    """Descriptors are computed once per type and stay deterministic."""

    @pytest.mark.unit
    def test_repeated_describe_returns_cached_descriptor(self):
        assert describe(Person) is describe(Person)

    @pytest.mark.unit
    def test_recomputed_descriptor_is_equal(self):
        first = describe(Person)
        clear_caches()
        assert describe(Person) == first

    @pytest.mark.unit
    def test_json_schema_for_structured_targets(self):
        schema = json_schema(Person)
        assert schema is not None
        assert set(schema["properties"]) == {"name", "age", "email"}


class TestSchemaAnalyzer:
    """Complexity warnings for targets that tend to degrade model output."""

    @pytest.mark.unit
    def test_simple_target_has_no_findings(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            assert SchemaAnalyzer().analyze(Person) == []

    @pytest.mark.unit
    def test_wide_target_warns(self):
        wide = create_model("Wide", **{f"f{i}": (int, ...) for i in range(45)})

        with pytest.warns(UserWarning, match="complex"):
            findings = SchemaAnalyzer().analyze(wide)

        assert any("45 fields" in f for f in findings)

    @pytest.mark.unit
    def test_nesting_depth_counts_struct_levels(self):
        class Inner(BaseModel):
            value: int

        class Outer(BaseModel):
            inner: Inner
            items: list[Inner]

        analyzer = SchemaAnalyzer()
        assert analyzer.nesting_depth(describe(Inner)) == 1
        assert analyzer.nesting_depth(describe(Outer)) == 2
