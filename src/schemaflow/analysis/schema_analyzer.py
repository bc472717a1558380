from typing import Any  # noqa: D100
import warnings

from schemaflow.analysis.type_descriptor import ShapeKind, TypeDescriptor, describe
from schemaflow.constants import SCHEMA_MAX_DEPTH, SCHEMA_MAX_FIELDS


class SchemaAnalyzer:
    """Analyzes a target type for complexity that tends to degrade model output."""

    # Complexity thresholds (tunable)
    MAX_NESTING_DEPTH = SCHEMA_MAX_DEPTH
    MAX_FIELDS = SCHEMA_MAX_FIELDS
    WARN_FIELD_NAME_LEN = 30

    def analyze(self, target: Any) -> list[str]:  # noqa: ANN401
        """
        Analyzes the target and issues a warning if complexity thresholds are exceeded.

        Returns the individual findings so callers can attach them to results.
        """  # noqa: D212
        descriptor = target if isinstance(target, TypeDescriptor) else describe(target)
        findings: list[str] = []

        nesting_depth = self.nesting_depth(descriptor)
        if nesting_depth > self.MAX_NESTING_DEPTH:
            findings.append(
                f"nesting depth of {nesting_depth} (max recommended: {self.MAX_NESTING_DEPTH})"  # noqa: E501
            )

        num_fields = sum(len(node.fields) for node in descriptor.walk())
        if num_fields > self.MAX_FIELDS:
            findings.append(
                f"{num_fields} fields (max recommended: {self.MAX_FIELDS})"
            )

        for node in descriptor.walk():
            long_names = [f.name for f in node.fields if len(f.name) > self.WARN_FIELD_NAME_LEN]
            if long_names:
                findings.append(f"long field name '{long_names[0]}'")
                break  # Warn only once for long names

        if findings:
            message = (
                f"Schema '{descriptor.name}' is complex and may yield low-confidence results due to: "  # noqa: E501
                f"{'; '.join(findings)}. Consider simplifying the schema."
            )
            warnings.warn(message, UserWarning)  # noqa: B028
        return findings

    def nesting_depth(self, descriptor: TypeDescriptor, depth: int = 1) -> int:
        """Maximum number of nested struct levels, counting ``descriptor`` itself."""
        if depth > self.MAX_NESTING_DEPTH:
            return depth

        children: list[TypeDescriptor] = [f.shape for f in descriptor.fields]
        children.extend(c for c in (descriptor.key, descriptor.element) if c is not None)

        max_child_depth = 0
        for child in children:
            step = 1 if child.kind is ShapeKind.STRUCT else 0
            max_child_depth = max(max_child_depth, self.nesting_depth(child, depth + step))
        return max(depth, max_child_depth)
