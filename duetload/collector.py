from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

import pandas as pd

from .config import MODE_DUET, MODE_SINGLE, ConfigError

UNIT_MS = "ms"
UNIT_PERCENT = "%"

REPORT_PERCENTILES: tuple[int, ...] = (50, 90, 95, 99)

REQUEST_COLUMNS = [
    "request",
    "unit",
    "count",
    "completed",
    "failed",
    "success_rate",
    "average",
    "p50",
    "p90",
    "p95",
    "p99",
]


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """Nearest-rank percentile of an ascending sequence; 0 when empty."""
    if not sorted_values:
        return 0
    index = math.ceil((p / 100) * len(sorted_values)) - 1
    return sorted_values[max(0, min(index, len(sorted_values) - 1))]


def relative_change(old_ms: float, latest_ms: float) -> float:
    """Percentage change of ``latest_ms`` over ``old_ms`` (150 vs 100 -> 50)."""
    if old_ms == 0:
        return 0.0 if latest_ms == 0 else math.inf
    return latest_ms / old_ms * 100 - 100


@dataclass
class DuetSamples:
    """Raw per-target latencies (ms) kept for significance testing."""

    old_samples: list[float] = field(default_factory=list)
    latest_samples: list[float] = field(default_factory=list)


@dataclass
class RequestStats:
    """Counters and recorded samples for one request name (or the whole run).

    ``unit`` tags what ``response_times`` holds: absolute latencies in ``ms``
    for single target runs, relative deltas in ``%`` for duet runs.
    """

    unit: str = UNIT_MS
    count: int = 0
    failed: int = 0
    response_times: list[float] = field(default_factory=list)
    duet: DuetSamples | None = None

    @classmethod
    def for_mode(cls, mode: str) -> "RequestStats":
        if mode == MODE_DUET:
            return cls(unit=UNIT_PERCENT, duet=DuetSamples())
        return cls(unit=UNIT_MS)

    @property
    def completed(self) -> int:
        return self.count - self.failed

    def record_attempt(self) -> None:
        self.count += 1

    def record_failure(self) -> None:
        self.failed += 1

    def record_latency(self, duration_ms: float) -> None:
        if self.duet is not None:
            raise ValueError("absolute latencies cannot be recorded on duet stats")
        self.response_times.append(duration_ms)

    def record_duet(self, old_ms: float, latest_ms: float) -> float:
        if self.duet is None:
            raise ValueError("duet samples require duet stats")
        change = relative_change(old_ms, latest_ms)
        self.response_times.append(change)
        self.duet.old_samples.append(old_ms)
        self.duet.latest_samples.append(latest_ms)
        return change

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "unit": self.unit,
            "count": self.count,
            "failed": self.failed,
            "response_times": list(self.response_times),
        }
        if self.duet is not None:
            data["duet"] = {
                "old_samples": list(self.duet.old_samples),
                "latest_samples": list(self.duet.latest_samples),
            }
        return data


class LoadTestStats:
    """Shared aggregate for one run: ``overall`` plus lazily created per-request entries."""

    def __init__(
        self,
        mode: str = MODE_SINGLE,
        overall: RequestStats | None = None,
        per_request: dict[str, RequestStats] | None = None,
    ) -> None:
        if mode not in (MODE_SINGLE, MODE_DUET):
            raise ConfigError(f"Unknown execution mode: {mode}")
        self.mode = mode
        self.overall = overall if overall is not None else RequestStats.for_mode(mode)
        self.per_request: dict[str, RequestStats] = per_request if per_request is not None else {}

    @property
    def unit(self) -> str:
        return self.overall.unit

    def request(self, name: str) -> RequestStats:
        stats = self.per_request.get(name)
        if stats is None:
            stats = RequestStats.for_mode(self.mode)
            self.per_request[name] = stats
        return stats

    def record_attempt(self, name: str) -> RequestStats:
        entry = self.request(name)
        self.overall.record_attempt()
        entry.record_attempt()
        return entry

    def record_failure(self, name: str) -> None:
        self.overall.record_failure()
        self.request(name).record_failure()

    def record_latency(self, name: str, duration_ms: float) -> None:
        self.overall.record_latency(duration_ms)
        self.request(name).record_latency(duration_ms)

    def record_duet(self, name: str, old_ms: float, latest_ms: float) -> float:
        self.overall.record_duet(old_ms, latest_ms)
        return self.request(name).record_duet(old_ms, latest_ms)


@dataclass
class LoadTestReport:
    total_requests: int
    completed: int
    failed: int
    success_rate: float
    average: float
    p50: float
    p90: float
    p95: float
    p99: float
    unit: str
    overall: RequestStats
    per_request: dict[str, RequestStats]

    @property
    def is_duet(self) -> bool:
        return self.unit == UNIT_PERCENT

    def to_stats(self) -> LoadTestStats:
        mode = MODE_DUET if self.is_duet else MODE_SINGLE
        return LoadTestStats(mode, overall=self.overall, per_request=self.per_request)

    def to_dict(self, include_samples: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "total_requests": self.total_requests,
            "completed": self.completed,
            "failed": self.failed,
            "success_rate": self.success_rate,
            "average": self.average,
            "p50": self.p50,
            "p90": self.p90,
            "p95": self.p95,
            "p99": self.p99,
            "unit": self.unit,
        }
        if include_samples:
            data["overall"] = self.overall.to_dict()
            data["per_request"] = {
                name: stats.to_dict() for name, stats in self.per_request.items()
            }
        return data


def summarize(stats: LoadTestStats) -> LoadTestReport:
    overall = stats.overall
    figures = _describe(overall)
    return LoadTestReport(
        total_requests=overall.count,
        completed=overall.completed,
        failed=overall.failed,
        unit=overall.unit,
        overall=overall,
        per_request=stats.per_request,
        **figures,
    )


def build_request_dataframe(stats: LoadTestStats) -> pd.DataFrame:
    rows = []
    for name, entry in stats.per_request.items():
        row: dict[str, Any] = {
            "request": name,
            "unit": entry.unit,
            "count": entry.count,
            "completed": entry.completed,
            "failed": entry.failed,
        }
        row.update(_describe(entry))
        rows.append(row)
    if not rows:
        return pd.DataFrame(columns=REQUEST_COLUMNS)
    return pd.DataFrame(rows, columns=REQUEST_COLUMNS)


def build_samples_dataframe(stats: LoadTestStats) -> pd.DataFrame:
    columns = ["request", "sample", "value", "unit"]
    if stats.mode == MODE_DUET:
        columns += ["old_ms", "latest_ms"]

    rows = []
    for name, entry in stats.per_request.items():
        for index, value in enumerate(entry.response_times):
            row: dict[str, Any] = {
                "request": name,
                "sample": index,
                "value": value,
                "unit": entry.unit,
            }
            if entry.duet is not None:
                row["old_ms"] = entry.duet.old_samples[index]
                row["latest_ms"] = entry.duet.latest_samples[index]
            rows.append(row)
    return pd.DataFrame(rows, columns=columns)


def compare_samples(
    stats: LoadTestStats,
    analyse: Callable[[Sequence[float], Sequence[float]], Any],
) -> dict[str, Any]:
    """Hand every duet sample pair to an external significance test."""
    if stats.mode != MODE_DUET:
        raise ConfigError("sample comparison is only available for duet runs")

    verdicts: dict[str, Any] = {}
    entries = [("overall", stats.overall), *stats.per_request.items()]
    for name, entry in entries:
        if entry.duet is None or not entry.duet.old_samples:
            continue
        verdicts[name] = analyse(
            list(entry.duet.old_samples), list(entry.duet.latest_samples)
        )
    return verdicts


def _describe(entry: RequestStats) -> dict[str, float]:
    sorted_values = sorted(entry.response_times)
    if entry.count:
        success_rate = entry.completed / entry.count * 100
    else:
        success_rate = math.nan
    average = sum(sorted_values) / (len(sorted_values) or 1)

    figures = {
        "success_rate": round(success_rate, 2),
        "average": round(average, 2),
    }
    for p in REPORT_PERCENTILES:
        figures[f"p{p}"] = round(percentile(sorted_values, p), 2)
    return figures
