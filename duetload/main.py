from __future__ import annotations

import argparse
import asyncio
import json
import logging
import math
import os
import sys
from pathlib import Path

from .charts import render_report_charts
from .collector import LoadTestReport, build_request_dataframe, build_samples_dataframe
from .config import MODE_DUET, MODE_SINGLE, ConfigError, TestConfig, load_plan
from .http_client import TargetUnavailableError, wait_for_targets
from .report import format_report, report_metrics
from .runner import run_duet, run_load_test, run_single

LOGGER = logging.getLogger("duetload")

EXIT_OK = 0
EXIT_TARGETS_UNAVAILABLE = 1
EXIT_CONFIG_ERROR = 2


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="HTTP load generator with duet comparison")
    parser.add_argument(
        "--plan",
        default=os.environ.get("DUETLOAD_PLAN_PATH"),
        required=os.environ.get("DUETLOAD_PLAN_PATH") is None,
        help="JSON file describing targets, phases and scenarios",
    )
    parser.add_argument(
        "--mode",
        choices=("auto", MODE_SINGLE, MODE_DUET),
        default="auto",
        help="Execution mode; 'auto' picks duet when the plan defines targets",
    )
    parser.add_argument(
        "--output-dir",
        default=os.environ.get("DUETLOAD_OUTPUT_DIR", "duetload-results"),
        help="Directory to store the report, CSV files and charts",
    )
    parser.add_argument(
        "--wait-timeout",
        type=float,
        default=float(os.environ.get("DUETLOAD_WAIT_TIMEOUT", "0")),
        help="Seconds to wait for targets to become reachable before starting (0 disables)",
    )
    parser.add_argument(
        "--no-charts",
        action="store_true",
        help="Skip rendering latency charts",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only print the planned phases and scenarios without sending traffic",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("DUETLOAD_LOG_LEVEL", "INFO"),
        help="Logging level",
    )
    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def target_urls(config: TestConfig) -> list[str]:
    if config.target is not None:
        return [config.target.url]
    return [target.url for _, target in config.targets.items()]


async def execute(config: TestConfig, mode: str, wait_timeout: float) -> LoadTestReport:
    if wait_timeout > 0:
        await wait_for_targets(target_urls(config), timeout_s=wait_timeout)
    if mode == MODE_SINGLE:
        return await run_single(config)
    if mode == MODE_DUET:
        return await run_duet(config)
    return await run_load_test(config)


def write_results(report: LoadTestReport, mode: str, output_dir: Path, charts: bool) -> dict:
    output_dir.mkdir(parents=True, exist_ok=True)
    stats = report.to_stats()

    requests_path = output_dir / "requests.csv"
    build_request_dataframe(stats).to_csv(requests_path, index=False)
    samples_path = output_dir / "samples.csv"
    build_samples_dataframe(stats).to_csv(samples_path, index=False)
    LOGGER.info("Saved per-request breakdown to %s", requests_path)
    LOGGER.info("Saved raw samples to %s", samples_path)

    chart_paths = render_report_charts(stats, output_dir) if charts else []

    manifest = {
        "mode": mode,
        "summary": report.to_dict(include_samples=False),
        "metrics": report_metrics(report).to_dict(),
        "files": {
            "requests": str(requests_path),
            "samples": str(samples_path),
            "charts": [str(path) for path in chart_paths],
        },
    }
    manifest_path = output_dir / "report.json"
    with open(manifest_path, "w", encoding="utf-8") as f:
        json.dump(_finite_or_null(manifest), f, indent=2, allow_nan=False)
    LOGGER.info("Report written to %s", manifest_path)
    return manifest


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        config = load_plan(args.plan)
        mode = config.mode if args.mode == "auto" else args.mode
        config.require_mode(mode)
    except ConfigError as exc:
        LOGGER.error("Invalid test plan: %s", exc)
        return EXIT_CONFIG_ERROR

    LOGGER.info("Test plan: %s (%s mode)", args.plan, mode)
    LOGGER.info("Targets: %s", ", ".join(target_urls(config)))

    if args.dry_run:
        _print_plan(config, mode)
        return EXIT_OK

    try:
        report = asyncio.run(execute(config, args.mode, args.wait_timeout))
    except TargetUnavailableError as exc:
        LOGGER.error("%s", exc)
        return EXIT_TARGETS_UNAVAILABLE

    print(format_report(report))
    write_results(report, mode, Path(args.output_dir), charts=not args.no_charts)
    return EXIT_OK


def _finite_or_null(value):
    """Replace NaN and infinities with None so the manifest stays strict JSON."""
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, dict):
        return {key: _finite_or_null(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_finite_or_null(item) for item in value]
    return value


def _print_plan(config: TestConfig, mode: str) -> None:
    print(f"Mode: {mode} ({', '.join(target_urls(config))})")
    for index, phase in enumerate(config.phases, start=1):
        cap = phase.concurrency if phase.concurrency else "unbounded"
        print(
            f"  Phase #{index}: duration={phase.duration:g}s "
            f"arrival_rate={phase.arrival_rate:g}/s concurrency={cap}"
        )
    for scenario in config.scenarios:
        print(f"  Scenario {scenario.name}:")
        for step in scenario.requests:
            think = f" think={step.think_time:g}ms" if step.think_time else ""
            print(f"    - {step.method} {step.url} as {step.stats_name}{think}")


if __name__ == "__main__":
    sys.exit(main())
