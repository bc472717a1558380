"""Structural descriptions of caller-defined target types.

``describe`` walks a Python type (pydantic model, dataclass, TypedDict,
NamedTuple, typing generics, enums and primitives) into a ``TypeDescriptor``
built from a closed set of shape kinds. Descriptors are cached per type for
the lifetime of the process and are rendered into the schema text used by
prompts.
"""

from __future__ import annotations

import collections
import collections.abc
import dataclasses
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum, StrEnum
import json
import logging
import threading
import types
import typing
from typing import Any
from uuid import UUID

from pydantic import BaseModel, TypeAdapter
from pydantic.errors import PydanticSchemaGenerationError, PydanticUserError

from schemaflow.exceptions import UnsupportedTypeError

log = logging.getLogger(__name__)


class ShapeKind(StrEnum):
    """Closed set of shapes a descriptor node can take."""

    PRIMITIVE = "primitive"
    STRUCT = "struct"
    SEQUENCE = "sequence"
    MAPPING = "mapping"
    OPTIONAL = "optional"
    ENUM = "enum"
    UNSUPPORTED = "unsupported"
    REFERENCE = "reference"  # back-reference to an enclosing struct


@dataclasses.dataclass(frozen=True, slots=True)
class FieldDescriptor:
    """One named field of a struct shape."""

    name: str
    shape: TypeDescriptor
    optional: bool = False
    attribute: str = ""  # Python attribute when it differs from the wire name

    @property
    def attr(self) -> str:
        return self.attribute or self.name


@dataclasses.dataclass(frozen=True, slots=True)
class TypeDescriptor:
    """Recursive structural description of a type.

    ``element`` holds the sequence element, the optional inner type, or the
    mapping value; ``key`` holds the mapping key.
    """

    kind: ShapeKind
    name: str
    fields: tuple[FieldDescriptor, ...] = ()
    element: TypeDescriptor | None = None
    key: TypeDescriptor | None = None
    values: tuple[Any, ...] = ()
    reason: str = ""

    @property
    def required_fields(self) -> tuple[FieldDescriptor, ...]:
        return tuple(f for f in self.fields if not f.optional)

    @property
    def is_structured(self) -> bool:
        """True for shapes decoded from a JSON object or array."""
        return self.kind in (ShapeKind.STRUCT, ShapeKind.SEQUENCE, ShapeKind.MAPPING)

    @property
    def is_string(self) -> bool:
        return self.kind is ShapeKind.PRIMITIVE and self.name == "string"

    def walk(self) -> collections.abc.Iterator[TypeDescriptor]:
        """Yield this node and every nested node, depth first."""
        yield self
        for f in self.fields:
            yield from f.shape.walk()
        for child in (self.key, self.element):
            if child is not None:
                yield from child.walk()

    def unsupported_reasons(self) -> list[str]:
        return [
            f"{node.name}: {node.reason}"
            for node in self.walk()
            if node.kind is ShapeKind.UNSUPPORTED
        ]

    @property
    def is_supported(self) -> bool:
        return not self.unsupported_reasons()

    def render(self, indent: int = 0) -> str:
        """Render the shape as indented schema text for prompts."""
        if self.kind is ShapeKind.STRUCT:
            inner = "  " * (indent + 1)
            lines = [f"{self.name} {{"]
            for f in self.fields:
                marker = "optional" if f.optional else "required"
                lines.append(f"{inner}{f.name}: {f.shape.render(indent + 1)} ({marker})")
            lines.append("  " * indent + "}")
            return "\n".join(lines)
        if self.kind is ShapeKind.SEQUENCE and self.element is not None:
            return f"array of {self.element.render(indent)}"
        if self.kind is ShapeKind.MAPPING and self.key and self.element:
            return (
                f"object mapping {self.key.render(indent)} "
                f"to {self.element.render(indent)}"
            )
        if self.kind is ShapeKind.OPTIONAL and self.element is not None:
            return f"{self.element.render(indent)} or null"
        if self.kind is ShapeKind.ENUM:
            options = ", ".join(json.dumps(v, default=str) for v in self.values)
            return f"one of [{options}]"
        if self.kind is ShapeKind.REFERENCE:
            return f"{self.name} (recursive reference)"
        if self.kind is ShapeKind.UNSUPPORTED:
            return f"{self.name} (unsupported)"
        return self.name


# --- Describer ---

_PRIMITIVE_NAMES: dict[Any, str] = {
    str: "string",
    bool: "boolean",
    int: "integer",
    float: "number",
    Decimal: "number",
    bytes: "bytes",
    datetime: "datetime (ISO 8601)",
    date: "date (ISO 8601)",
    time: "time (ISO 8601)",
    timedelta: "duration (ISO 8601)",
    UUID: "string (uuid)",
    types.NoneType: "null",
}

_SEQUENCE_ORIGINS = (
    list,
    set,
    frozenset,
    collections.deque,
    collections.abc.Sequence,
    collections.abc.MutableSequence,
    collections.abc.Set,
    collections.abc.MutableSet,
    collections.abc.Collection,
    collections.abc.Iterable,
)

_MAPPING_ORIGINS = (
    dict,
    collections.OrderedDict,
    collections.defaultdict,
    collections.abc.Mapping,
    collections.abc.MutableMapping,
)

_UNSUPPORTED_ORIGINS = {
    collections.abc.Callable: "callables cannot be decoded from model output",
    collections.abc.Awaitable: "awaitables cannot be decoded from model output",
    collections.abc.Coroutine: "coroutines cannot be decoded from model output",
    collections.abc.Generator: "generators cannot be decoded from model output",
    collections.abc.Iterator: "iterators cannot be decoded from model output",
    collections.abc.AsyncIterator: "iterators cannot be decoded from model output",
    type: "class objects cannot be decoded from model output",
}

_ANY = TypeDescriptor(ShapeKind.PRIMITIVE, "any")


def _type_name(tp: Any) -> str:
    return getattr(tp, "__name__", None) or repr(tp)


def _is_optional_annotation(tp: Any) -> bool:
    return typing.get_origin(tp) in (typing.Union, types.UnionType) and (
        types.NoneType in typing.get_args(tp)
    )


class _Describer:
    """Single-use visitor; tracks the structs on the current path."""

    def __init__(self) -> None:
        self._active: set[Any] = set()

    def visit(self, tp: Any) -> TypeDescriptor:
        if tp is Any or tp is object:
            return _ANY
        if tp is None:
            tp = types.NoneType
        if isinstance(tp, (str, typing.ForwardRef)):
            return self._unsupported(tp, "unresolved forward reference")
        if isinstance(tp, typing.TypeVar):
            return self._unsupported(tp, "unbound type variable")

        origin = typing.get_origin(tp)
        if origin is typing.Annotated:
            return self.visit(typing.get_args(tp)[0])
        if origin is not None:
            return self._visit_generic(tp, origin, typing.get_args(tp))
        if isinstance(tp, type):
            return self._visit_class(tp)
        return self._unsupported(tp, "not a type")

    # --- generics ---

    def _visit_generic(
        self, tp: Any, origin: Any, args: tuple[Any, ...]
    ) -> TypeDescriptor:
        if origin in (typing.Union, types.UnionType):
            return self._visit_union(args)
        if origin is typing.Literal:
            return TypeDescriptor(ShapeKind.ENUM, "literal", values=args)
        if origin in _UNSUPPORTED_ORIGINS:
            return self._unsupported(tp, _UNSUPPORTED_ORIGINS[origin])
        if origin is tuple:
            return self._visit_tuple(args)
        if origin in _SEQUENCE_ORIGINS:
            element = self.visit(args[0]) if args else _ANY
            return TypeDescriptor(
                ShapeKind.SEQUENCE, f"array of {element.name}", element=element
            )
        if origin in _MAPPING_ORIGINS:
            key = self.visit(args[0]) if args else _ANY
            value = self.visit(args[1]) if len(args) > 1 else _ANY
            return TypeDescriptor(
                ShapeKind.MAPPING,
                f"mapping of {key.name} to {value.name}",
                key=key,
                element=value,
            )
        if isinstance(origin, type) and issubclass(origin, BaseModel):
            # Parametrized generic models are classes themselves
            return self._visit_class(tp)
        return self._unsupported(tp, f"generic origin {_type_name(origin)}")

    def _visit_union(self, args: tuple[Any, ...]) -> TypeDescriptor:
        present = [a for a in args if a is not types.NoneType]
        if len(present) < len(args):
            inner = self._visit_union(tuple(present)) if len(present) > 1 else (
                self.visit(present[0])
            )
            return TypeDescriptor(
                ShapeKind.OPTIONAL, f"{inner.name} (optional)", element=inner
            )
        variants = [self.visit(a) for a in args]
        for variant in variants:
            if variant.kind is ShapeKind.UNSUPPORTED:
                return variant
        return TypeDescriptor(
            ShapeKind.PRIMITIVE, " | ".join(v.render() for v in variants)
        )

    def _visit_tuple(self, args: tuple[Any, ...]) -> TypeDescriptor:
        if len(args) == 2 and args[1] is Ellipsis:
            element = self.visit(args[0])
        elif args and args != ((),):
            variants = {self.visit(a) for a in args}
            element = variants.pop() if len(variants) == 1 else _ANY
        else:
            element = _ANY
        return TypeDescriptor(
            ShapeKind.SEQUENCE, f"array of {element.name}", element=element
        )

    # --- classes ---

    def _visit_class(self, tp: Any) -> TypeDescriptor:
        if tp in _PRIMITIVE_NAMES:
            return TypeDescriptor(ShapeKind.PRIMITIVE, _PRIMITIVE_NAMES[tp])
        if isinstance(tp, type) and issubclass(tp, Enum):
            return TypeDescriptor(
                ShapeKind.ENUM, tp.__name__, values=tuple(m.value for m in tp)
            )
        if tp in (list, set, frozenset, tuple):
            return TypeDescriptor(ShapeKind.SEQUENCE, "array of any", element=_ANY)
        if tp is dict:
            return TypeDescriptor(
                ShapeKind.MAPPING, "mapping of any to any", key=_ANY, element=_ANY
            )

        is_model = isinstance(tp, type) and issubclass(tp, BaseModel)
        is_struct = (
            is_model
            or dataclasses.is_dataclass(tp)
            or typing.is_typeddict(tp)
            or (isinstance(tp, type) and issubclass(tp, tuple) and hasattr(tp, "_fields"))
        )
        if is_struct:
            if tp in self._active:
                return TypeDescriptor(ShapeKind.REFERENCE, _type_name(tp))
            self._active.add(tp)
            try:
                return self._visit_struct(tp, is_model=is_model)
            finally:
                self._active.discard(tp)

        if isinstance(tp, type):
            if getattr(tp, "_is_protocol", False):
                return self._unsupported(
                    tp, "interface types describe behaviour, not data"
                )
            # str/int subclasses keep their base shape
            for base, name in _PRIMITIVE_NAMES.items():
                if base is not types.NoneType and issubclass(tp, base):
                    return TypeDescriptor(ShapeKind.PRIMITIVE, name)
        return self._unsupported(tp, "no structural schema available")

    def _visit_struct(self, tp: Any, *, is_model: bool) -> TypeDescriptor:
        fields: list[FieldDescriptor] = []
        if is_model:
            if not tp.__pydantic_complete__:
                return self._unsupported(tp, "model is not fully defined")
            for name, info in tp.model_fields.items():
                fields.append(
                    FieldDescriptor(
                        name=info.alias or name,
                        shape=self.visit(info.annotation),
                        optional=not info.is_required()
                        or _is_optional_annotation(info.annotation),
                        attribute=name,
                    )
                )
            return TypeDescriptor(ShapeKind.STRUCT, tp.__name__, fields=tuple(fields))

        try:
            hints = typing.get_type_hints(tp)
        except (NameError, TypeError) as e:
            return self._unsupported(tp, f"annotations cannot be resolved ({e})")

        if dataclasses.is_dataclass(tp):
            for f in dataclasses.fields(tp):
                if not f.init:
                    continue
                annotation = hints.get(f.name, Any)
                has_default = (
                    f.default is not dataclasses.MISSING
                    or f.default_factory is not dataclasses.MISSING
                )
                fields.append(
                    FieldDescriptor(
                        f.name,
                        self.visit(annotation),
                        has_default or _is_optional_annotation(annotation),
                    )
                )
        elif typing.is_typeddict(tp):
            required_keys = getattr(tp, "__required_keys__", frozenset(hints))
            for name, annotation in hints.items():
                fields.append(
                    FieldDescriptor(
                        name,
                        self.visit(annotation),
                        name not in required_keys
                        or _is_optional_annotation(annotation),
                    )
                )
        else:
            defaults = getattr(tp, "_field_defaults", {})
            for name in tp._fields:
                annotation = hints.get(name, Any)
                fields.append(
                    FieldDescriptor(
                        name,
                        self.visit(annotation),
                        name in defaults or _is_optional_annotation(annotation),
                    )
                )
        return TypeDescriptor(ShapeKind.STRUCT, _type_name(tp), fields=tuple(fields))

    def _unsupported(self, tp: Any, reason: str) -> TypeDescriptor:
        return TypeDescriptor(ShapeKind.UNSUPPORTED, _type_name(tp), reason=reason)


# --- Cached entry points ---

_descriptor_cache: dict[Any, TypeDescriptor] = {}
_adapter_cache: dict[Any, TypeAdapter[Any]] = {}
_cache_lock = threading.Lock()


def _hashable(tp: Any) -> bool:
    try:
        hash(tp)
    except TypeError:
        return False
    return True


def describe(tp: Any) -> TypeDescriptor:
    """Describe ``tp`` as a structural schema, caching the result.

    Concurrent misses may both compute; the first stored result wins and the
    computation is pure, so either result is identical.
    """
    if not _hashable(tp):
        return _Describer().visit(tp)
    with _cache_lock:
        cached = _descriptor_cache.get(tp)
    if cached is not None:
        return cached
    descriptor = _Describer().visit(tp)
    with _cache_lock:
        return _descriptor_cache.setdefault(tp, descriptor)


def require_supported(tp: Any) -> TypeDescriptor:
    """Describe ``tp`` and raise if any part of it cannot be decoded."""
    descriptor = describe(tp)
    reasons = descriptor.unsupported_reasons()
    if reasons:
        raise UnsupportedTypeError(tp, "; ".join(reasons))
    return descriptor


def type_adapter(tp: Any) -> TypeAdapter[Any]:
    """Return a cached pydantic ``TypeAdapter`` for ``tp``."""
    if not _hashable(tp):
        return TypeAdapter(tp)
    with _cache_lock:
        cached = _adapter_cache.get(tp)
    if cached is not None:
        return cached
    try:
        adapter: TypeAdapter[Any] = TypeAdapter(tp)
    except (PydanticSchemaGenerationError, PydanticUserError) as e:
        raise UnsupportedTypeError(tp, str(e)) from e
    with _cache_lock:
        return _adapter_cache.setdefault(tp, adapter)


def json_schema(tp: Any) -> dict[str, Any] | None:
    """JSON schema for ``tp`` when pydantic can produce one."""
    try:
        return type_adapter(tp).json_schema()
    except (UnsupportedTypeError, PydanticUserError) as e:
        log.debug("No JSON schema for %s: %s", _type_name(tp), e)
        return None


def clear_caches() -> None:
    """Drop cached descriptors and adapters (test isolation)."""
    with _cache_lock:
        _descriptor_cache.clear()
        _adapter_cache.clear()
