"""Type introspection and schema analysis."""

from .schema_analyzer import SchemaAnalyzer
from .type_descriptor import (
    FieldDescriptor,
    ShapeKind,
    TypeDescriptor,
    clear_caches,
    describe,
    json_schema,
    require_supported,
    type_adapter,
)

__all__ = [
    "FieldDescriptor",
    "SchemaAnalyzer",
    "ShapeKind",
    "TypeDescriptor",
    "clear_caches",
    "describe",
    "json_schema",
    "require_supported",
    "type_adapter",
]
