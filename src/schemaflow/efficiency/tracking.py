"""
Cost ledger: append-only, thread-safe records of per-call spend.

Ledgers are explicit objects rather than module globals so each dispatcher
(and each test) can own an isolated one. Aggregate queries work on a
snapshot taken under the lock, so concurrent appends are never lost or
double counted.
"""  # noqa: D212

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping
import csv
from dataclasses import dataclass, field
from datetime import UTC, datetime
import io
import json
import logging
import math
from pathlib import Path
import threading
from types import MappingProxyType
from typing import Any, Literal, Protocol, runtime_checkable

from schemaflow.constants import BUDGET_ALERT_RATIO, HIGH_COST_THRESHOLD
from schemaflow.core.types import CostInfo, TokenUsage

log = logging.getLogger(__name__)

type BudgetPeriod = Literal["daily", "weekly", "monthly"]
type BudgetAlert = Callable[[BudgetPeriod, float, float], None]

_RECORD_FIELDS = ("operation", "model", "provider", "request_id")


@dataclass(frozen=True, slots=True)
class CostRecord:
    """One ledger entry; immutable once appended."""

    timestamp: datetime
    operation: str
    model: str
    provider: str
    cost: CostInfo
    usage: TokenUsage = field(default_factory=TokenUsage)
    request_id: str = ""
    tags: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        if not isinstance(self.tags, MappingProxyType):
            object.__setattr__(self, "tags", MappingProxyType(dict(self.tags)))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "operation": self.operation,
            "model": self.model,
            "provider": self.provider,
            "request_id": self.request_id,
            "prompt_tokens": self.usage.prompt_tokens,
            "completion_tokens": self.usage.completion_tokens,
            "total_tokens": self.usage.total_tokens,
            "prompt_cost": self.cost.prompt_cost,
            "completion_cost": self.cost.completion_cost,
            "total_cost": self.cost.total,
            "currency": self.cost.currency,
            "tags": dict(self.tags),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CostRecord:
        """Create from dictionary."""
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            operation=data["operation"],
            model=data["model"],
            provider=data["provider"],
            request_id=data.get("request_id", ""),
            usage=TokenUsage(
                prompt_tokens=data.get("prompt_tokens", 0),
                completion_tokens=data.get("completion_tokens", 0),
                total_tokens=data.get("total_tokens", 0),
            ),
            cost=CostInfo(
                total=data["total_cost"],
                prompt_cost=data.get("prompt_cost", 0.0),
                completion_cost=data.get("completion_cost", 0.0),
                currency=data.get("currency", "USD"),
                model=data["model"],
                provider=data["provider"],
            ),
            tags=data.get("tags", {}),
        )


@dataclass(frozen=True, slots=True)
class CostBreakdown:
    """Aggregated spend grouped by model, operation and provider."""

    total: float
    record_count: int
    by_model: Mapping[str, float]
    by_operation: Mapping[str, float]
    by_provider: Mapping[str, float]


@runtime_checkable
class CostSink(Protocol):
    """Receives every appended record (export, persistence)."""

    def write(self, record: CostRecord) -> None: ...  # noqa: D102


class JsonlCostSink:
    """Appends records to a JSON Lines file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def write(self, record: CostRecord) -> None:
        line = json.dumps(record.to_dict(), sort_keys=True)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")

    def read(self) -> list[CostRecord]:
        if not self.path.exists():
            return []
        with self.path.open(encoding="utf-8") as f:
            return [CostRecord.from_dict(json.loads(line)) for line in f if line.strip()]


def matches_filters(record: CostRecord, filters: Mapping[str, Any] | None) -> bool:
    """True iff every filter key maps to an equal value on the record.

    ``operation``, ``model``, ``provider`` and ``request_id`` compare record
    fields; any other key compares the record's tags. No filters match all.
    """
    if not filters:
        return True
    for key, expected in filters.items():
        if key in _RECORD_FIELDS:
            actual = getattr(record, key)
        else:
            actual = record.tags.get(key)
        if actual != expected:
            return False
    return True


def _as_utc(moment: datetime) -> datetime:
    return moment.replace(tzinfo=UTC) if moment.tzinfo is None else moment


def _period_keys(moment: datetime) -> dict[BudgetPeriod, str]:
    year, week, _ = moment.isocalendar()
    return {
        "daily": moment.strftime("%Y-%m-%d"),
        "weekly": f"{year}-W{week:02d}",
        "monthly": moment.strftime("%Y-%m"),
    }


class CostLedger:
    """In-memory, append-only cost ledger with optional sinks and budgets."""

    def __init__(
        self,
        *,
        sinks: Iterable[CostSink] = (),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._records: list[CostRecord] = []
        self._period_totals: dict[tuple[BudgetPeriod, str], float] = defaultdict(float)
        self._budgets: dict[BudgetPeriod, float] = {}
        self._alerted: set[tuple[BudgetPeriod, str]] = set()
        self._on_alert: BudgetAlert | None = None
        self._sinks = tuple(sinks)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    # --- writes ---

    def track_cost(
        self,
        cost: CostInfo,
        metadata: Mapping[str, Any] | None = None,
        *,
        usage: TokenUsage | None = None,
    ) -> CostRecord:
        """Record ``cost`` with call metadata.

        Recognized metadata keys are ``operation``, ``request_id``, ``model``,
        ``provider`` and ``tags`` (a mapping); any other key becomes a tag.
        """
        meta = dict(metadata or {})
        tags = {str(k): str(v) for k, v in dict(meta.pop("tags", None) or {}).items()}
        record = CostRecord(
            timestamp=_as_utc(self._clock()),
            operation=str(meta.pop("operation", "")),
            model=str(meta.pop("model", "") or cost.model),
            provider=str(meta.pop("provider", "") or cost.provider),
            request_id=str(meta.pop("request_id", "")),
            cost=cost,
            usage=usage or TokenUsage(),
            tags={**tags, **{str(k): str(v) for k, v in meta.items()}},
        )
        self.append(record)
        return record

    def append(self, record: CostRecord) -> None:
        """Append a prepared record; it is never modified afterwards."""
        alerts: list[tuple[BudgetPeriod, float, float]] = []
        with self._lock:
            self._records.append(record)
            for period, key in _period_keys(_as_utc(record.timestamp)).items():
                slot = (period, key)
                self._period_totals[slot] += record.cost.total
                limit = self._budgets.get(period)
                spent = self._period_totals[slot]
                if (
                    limit is not None
                    and spent >= limit * BUDGET_ALERT_RATIO
                    and slot not in self._alerted
                ):
                    self._alerted.add(slot)
                    alerts.append((period, spent, limit))
            on_alert = self._on_alert

        log.debug(
            "Tracked $%.6f for %s on %s (request %s)",
            record.cost.total,
            record.operation or "unknown operation",
            record.model,
            record.request_id,
        )
        if record.cost.total > HIGH_COST_THRESHOLD:
            log.warning(
                "High cost operation: %s on %s cost $%.4f",
                record.operation,
                record.model,
                record.cost.total,
            )
        for period, spent, limit in alerts:
            log.warning(
                "Budget alert: %s spend $%.4f has reached %.0f%% of $%.2f",
                period,
                spent,
                BUDGET_ALERT_RATIO * 100,
                limit,
            )
            if on_alert is not None:
                try:
                    on_alert(period, spent, limit)
                except Exception as e:
                    log.error("Budget alert callback failed: %s", e, exc_info=True)
        for sink in self._sinks:
            try:
                sink.write(record)
            except Exception as e:
                log.error(
                    "Cost sink '%s' failed: %s", type(sink).__name__, e, exc_info=True
                )

    def set_budget(
        self,
        *,
        daily: float | None = None,
        weekly: float | None = None,
        monthly: float | None = None,
        on_alert: BudgetAlert | None = None,
    ) -> None:
        """Set spend limits; ``on_alert`` fires once per period at 80% of a limit."""
        with self._lock:
            for period, limit in (
                ("daily", daily),
                ("weekly", weekly),
                ("monthly", monthly),
            ):
                if limit is not None:
                    if limit <= 0:
                        raise ValueError(f"{period} budget must be positive")
                    self._budgets[period] = limit
            self._on_alert = on_alert

    # --- reads ---

    def records(
        self,
        since: datetime | None = None,
        filters: Mapping[str, Any] | None = None,
    ) -> list[CostRecord]:
        """Snapshot of records at or after ``since`` passing ``filters``."""
        with self._lock:
            snapshot = list(self._records)
        cutoff = _as_utc(since) if since is not None else None
        return [
            r
            for r in snapshot
            if (cutoff is None or r.timestamp >= cutoff) and matches_filters(r, filters)
        ]

    def get_total_cost(
        self,
        since: datetime | None = None,
        filters: Mapping[str, Any] | None = None,
    ) -> float:
        """Sum of ``cost.total`` over matching records."""
        return math.fsum(r.cost.total for r in self.records(since, filters))

    def get_period_total(self, period: BudgetPeriod, at: datetime | None = None) -> float:
        """Rolling total for the daily, weekly or monthly period containing ``at``."""
        key = _period_keys(_as_utc(at or self._clock()))[period]
        with self._lock:
            return self._period_totals.get((period, key), 0.0)

    def get_cost_breakdown(self, since: datetime | None = None) -> CostBreakdown:
        by_model: dict[str, float] = defaultdict(float)
        by_operation: dict[str, float] = defaultdict(float)
        by_provider: dict[str, float] = defaultdict(float)
        selected = self.records(since)
        for r in selected:
            by_model[r.model] += r.cost.total
            by_operation[r.operation] += r.cost.total
            by_provider[r.provider] += r.cost.total
        return CostBreakdown(
            total=math.fsum(r.cost.total for r in selected),
            record_count=len(selected),
            by_model=dict(by_model),
            by_operation=dict(by_operation),
            by_provider=dict(by_provider),
        )

    def export_report(
        self,
        since: datetime | None = None,
        fmt: Literal["csv", "json"] = "csv",
    ) -> str:
        """Render matching records as CSV (with header) or a JSON array."""
        rows = [r.to_dict() for r in self.records(since)]
        if fmt == "json":
            return json.dumps(rows, indent=2, sort_keys=True)
        if fmt != "csv":
            raise ValueError(f"Unsupported report format: {fmt!r}")

        buffer = io.StringIO()
        columns = [
            "timestamp",
            "operation",
            "model",
            "provider",
            "request_id",
            "prompt_tokens",
            "completion_tokens",
            "total_tokens",
            "total_cost",
            "currency",
        ]
        writer = csv.DictWriter(
            buffer, fieldnames=columns, extrasaction="ignore", lineterminator="\n"
        )
        writer.writeheader()
        writer.writerows(rows)
        return buffer.getvalue()
