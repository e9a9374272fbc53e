from __future__ import annotations

from dataclasses import asdict, dataclass, field

from .collector import UNIT_MS, LoadTestReport


@dataclass
class DataframeMetric:
    metric: str
    value: float
    unit: str | None
    specifier: str | None
    type: str = "dataframe"


@dataclass
class TimeSeriesMetric:
    metric: str
    values: list[float]
    unit: str
    timestamps: list[int] = field(default_factory=list)
    type: str = "time_series"

    def __post_init__(self) -> None:
        if not self.timestamps:
            self.timestamps = list(range(len(self.values)))


@dataclass
class ReportMetrics:
    metrics: list[DataframeMetric | TimeSeriesMetric]
    samples: list[dict[str, TimeSeriesMetric]] = field(default_factory=list)

    def to_dict(self) -> dict[str, list]:
        return {
            "metrics": [asdict(metric) for metric in self.metrics],
            "samples": [
                {side: asdict(series) for side, series in pair.items()}
                for pair in self.samples
            ],
        }


def format_report(report: LoadTestReport) -> str:
    unit = report.unit
    lines = [
        "=== Load Test Results ===",
        f"Total Requests:    {report.total_requests}",
        f"Completed:         {report.completed}",
        f"Failed:            {report.failed}",
        f"Success Rate:      {report.success_rate:.2f}%",
    ]
    for name in ("average", "p50", "p90", "p95", "p99"):
        label = f"{name.capitalize() if name == 'average' else name} ({unit}):"
        lines.append(f"{label:<19}{getattr(report, name):.2f}")
    return "\n".join(lines)


def report_metrics(report: LoadTestReport) -> ReportMetrics:
    """Convert a report to the latency metrics published for a run."""
    metric = "latency_diff" if report.is_duet else "latency"
    metrics: list[DataframeMetric | TimeSeriesMetric] = [
        TimeSeriesMetric(
            metric=metric,
            values=list(report.overall.response_times),
            unit=report.unit,
        ),
        DataframeMetric(
            metric=metric,
            value=report.p50,
            unit=report.unit,
            specifier="median",
        ),
    ]

    samples: list[dict[str, TimeSeriesMetric]] = []
    duet = report.overall.duet
    if duet is not None:
        samples.append(
            {
                "old": TimeSeriesMetric(
                    metric="latency", values=list(duet.old_samples), unit=UNIT_MS
                ),
                "latest": TimeSeriesMetric(
                    metric="latency", values=list(duet.latest_samples), unit=UNIT_MS
                ),
            }
        )
    return ReportMetrics(metrics=metrics, samples=samples)
