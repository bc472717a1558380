"""Span tracing and telemetry reporter interfaces.

Spans form a tree through context propagation: a span started while another
is active becomes its child, across ``await`` points and threads that copy
the context. Finished spans land in the tracer's bounded ledger and are
forwarded to reporters. Telemetry never interrupts the traced operation:
reporter and tagging failures are logged and swallowed.
"""

from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
import logging
import threading
import time
from typing import Any, Protocol, runtime_checkable
import uuid

from schemaflow.constants import MAX_RECORDED_SPANS

log = logging.getLogger(__name__)

_current_span_var: ContextVar["Span | None"] = ContextVar(
    "schemaflow_current_span",
    default=None,
)


@runtime_checkable
class TelemetryReporter(Protocol):
    """Duck-typed protocol for telemetry reporters."""

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None: ...  # noqa: D102
    def record_metric(self, scope: str, value: Any, **metadata: Any) -> None: ...  # noqa: D102


@dataclass(frozen=True, slots=True)
class SpanEvent:
    """A timestamped point of interest within a span."""

    name: str
    timestamp: datetime
    attributes: dict[str, Any] = field(default_factory=dict)


class Span:
    """A timed unit of work with tags and events."""

    __slots__ = (
        "end_time",
        "events",
        "name",
        "parent_id",
        "path",
        "span_id",
        "start_time",
        "tags",
        "trace_id",
        "_started",
    )

    def __init__(self, name: str, parent: "Span | None" = None, **tags: Any) -> None:
        self.span_id = uuid.uuid4().hex[:16]
        self.parent_id = parent.span_id if parent else None
        self.trace_id = parent.trace_id if parent else uuid.uuid4().hex
        self.path = f"{parent.path}.{name}" if parent else name
        self.name = name
        self.tags: dict[str, Any] = dict(tags)
        self.events: list[SpanEvent] = []
        self.start_time = datetime.now(UTC)
        self.end_time: datetime | None = None
        self._started = time.perf_counter()

    def set_tags(self, **tags: Any) -> None:
        self.tags.update(tags)

    def add_event(self, name: str, **attributes: Any) -> None:
        self.events.append(SpanEvent(name, datetime.now(UTC), attributes))

    def end(self) -> float:
        """Close the span (idempotent); returns its duration in seconds."""
        if self.end_time is None:
            self.end_time = datetime.now(UTC)
            self.tags.setdefault("duration", time.perf_counter() - self._started)
        return float(self.tags["duration"])

    @property
    def is_ended(self) -> bool:
        return self.end_time is not None

    @property
    def duration(self) -> float | None:
        return self.tags.get("duration") if self.is_ended else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "span_id": self.span_id,
            "parent_id": self.parent_id,
            "trace_id": self.trace_id,
            "name": self.name,
            "tags": dict(self.tags),
            "events": [
                {"name": e.name, "timestamp": e.timestamp.isoformat(), **e.attributes}
                for e in self.events
            ],
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
        }

    def __repr__(self) -> str:
        return f"Span(name={self.name!r}, span_id={self.span_id!r}, parent_id={self.parent_id!r})"


def current_span() -> Span | None:
    """The span active in the current context, if any."""
    return _current_span_var.get()


def get_span_id(span: Span | None = None) -> str | None:
    """Id of ``span``, or of the active span when omitted."""
    target = span if span is not None else current_span()
    return target.span_id if target is not None else None


class Tracer:
    """Creates spans, keeps finished ones in a bounded ledger, feeds reporters.

    A disabled tracer still hands out spans (so ids and tags work for the
    caller) but records and reports nothing.
    """

    def __init__(
        self,
        *reporters: TelemetryReporter,
        enabled: bool = True,
        max_spans: int = MAX_RECORDED_SPANS,
    ) -> None:
        self.reporters = reporters
        self.enabled = enabled
        self._finished: deque[Span] = deque(maxlen=max_spans)
        self._lock = threading.Lock()

    @contextmanager
    def start_span(self, name: str, **tags: Any) -> Iterator[Span]:
        """Start a child of the active span; it is ended on every exit path."""
        if not name or not isinstance(name, str):
            raise ValueError("Span name must be a non-empty string")

        span = Span(name, _current_span_var.get(), **tags)
        token = _current_span_var.set(span)
        try:
            yield span
        except BaseException as e:
            self.add_span_tags(span, status="error", error_type=type(e).__name__)
            self.record_span_event(span, "exception", message=str(e))
            raise
        finally:
            _current_span_var.reset(token)
            duration = span.end()
            span.tags.setdefault("status", "ok")
            if self.enabled:
                self._finish(span, duration)

    def _finish(self, span: Span, duration: float) -> None:
        with self._lock:
            self._finished.append(span)
        metadata = {
            "depth": span.path.count("."),
            "parent_scope": span.path.rpartition(".")[0] or None,
            **span.tags,
        }
        metadata.pop("duration", None)
        for reporter in self.reporters:
            try:
                reporter.record_timing(span.path, duration, **metadata)
            except Exception as e:
                log.error(
                    "Telemetry reporter '%s' failed: %s",
                    type(reporter).__name__,
                    e,
                    exc_info=True,
                )

    def add_span_tags(self, span: Span | None, **tags: Any) -> None:
        """Tag ``span`` (or the active span); never raises."""
        target = span if span is not None else current_span()
        if target is None:
            return
        try:
            target.set_tags(**tags)
        except Exception as e:
            log.error("Failed to tag span '%s': %s", target.name, e, exc_info=True)

    def record_span_event(self, span: Span | None, name: str, **attributes: Any) -> None:
        """Add an event to ``span`` (or the active span); never raises."""
        target = span if span is not None else current_span()
        if target is None:
            return
        try:
            target.add_event(name, **attributes)
        except Exception as e:
            log.error("Failed to record span event '%s': %s", name, e, exc_info=True)

    def metric(self, name: str, value: Any, **metadata: Any) -> None:
        """Record a metric scoped under the active span."""
        if not self.enabled:
            return
        active = current_span()
        scope_path = f"{active.path}.{name}" if active else name
        for reporter in self.reporters:
            try:
                reporter.record_metric(scope_path, value, **metadata)
            except Exception as e:
                log.error(
                    "Telemetry reporter '%s' failed: %s",
                    type(reporter).__name__,
                    e,
                    exc_info=True,
                )

    def spans(self, name: str | None = None, trace_id: str | None = None) -> list[Span]:
        """Finished spans, oldest first, optionally filtered."""
        with self._lock:
            snapshot = list(self._finished)
        return [
            s
            for s in snapshot
            if (name is None or s.name == name)
            and (trace_id is None or s.trace_id == trace_id)
        ]

    def clear(self) -> None:
        with self._lock:
            self._finished.clear()


class SimpleReporter:
    """Built-in reporter for development use.

    This reporter collects timings and metrics in memory. To view the
    collected data, call ``get_report()`` and print the result.
    """

    def __init__(self, max_entries_per_scope: int = 1000):
        self.max_entries = max_entries_per_scope
        self.timings: dict[str, deque[tuple[float, dict[str, Any]]]] = {}
        self.metrics: dict[str, deque[tuple[Any, dict[str, Any]]]] = {}

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None:
        if scope not in self.timings:
            self.timings[scope] = deque(maxlen=self.max_entries)
        self.timings[scope].append((duration, metadata))

    def record_metric(self, scope: str, value: Any, **metadata: Any) -> None:
        if scope not in self.metrics:
            self.metrics[scope] = deque(maxlen=self.max_entries)
        self.metrics[scope].append((value, metadata))

    def get_report(self) -> str:
        """Generate hierarchical telemetry report."""
        lines = ["=== Telemetry Report ===\n"]

        timing_tree = self._build_hierarchy(self.timings)
        self._format_tree(timing_tree, lines, "Timings")

        if self.metrics:
            lines.append("\n--- Metrics ---")
            for scope, values in sorted(self.metrics.items()):
                total = sum(v[0] for v in values if isinstance(v[0], int | float))
                lines.append(
                    f"{scope:<40} | Count: {len(values):<4} | Total: {total:,.4f}",
                )

        return "\n".join(lines)

    def _build_hierarchy(
        self,
        data: dict[str, deque[tuple[float, dict[str, Any]]]],
    ) -> dict[str, Any]:
        """Build tree structure from dot-separated scope names.

        A scope that is both a leaf and a parent keeps its own timings under
        the ``""`` key of its subtree.
        """
        tree: dict[str, Any] = {}
        for scope, values in data.items():
            parts = scope.split(".")
            current = tree
            for part in parts[:-1]:
                node = current.setdefault(part, {})
                if not isinstance(node, dict):
                    node = current[part] = {"": node}
                current = node
            leaf = parts[-1]
            if isinstance(current.get(leaf), dict):
                current[leaf][""] = values
            else:
                current[leaf] = values
        return tree

    def _format_tree(
        self,
        tree: dict[str, Any],
        lines: list[str],
        title: str,
        depth: int = 0,
    ) -> None:
        """Format hierarchical tree with indentation."""
        if depth == 0:
            lines.append(f"\n--- {title} ---")

        for key, value in sorted(tree.items()):
            indent = "  " * depth
            if isinstance(value, dict):
                lines.append(f"{indent}{key}:")
                self._format_tree(value, lines, title, depth + 1)
            else:
                durations = [v[0] for v in value]
                avg_time = sum(durations) / len(durations)
                total_time = sum(durations)
                lines.append(
                    f"{indent}{key or '(self)':<30} | "
                    f"Calls: {len(durations):<4} | "
                    f"Avg: {avg_time:.4f}s | "
                    f"Total: {total_time:.4f}s",
                )
