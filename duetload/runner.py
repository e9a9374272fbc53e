from __future__ import annotations

import contextlib
import functools
import logging
import random
from typing import Awaitable, Callable

from .collector import LoadTestReport, LoadTestStats, summarize
from .config import MODE_DUET, MODE_SINGLE, Scenario, TestConfig
from .http_client import HttpClient
from .load import PhaseScheduler, PhaseStatistics
from .scenario import RequestSender, run_scenario, run_scenario_duet

LOGGER = logging.getLogger("duetload.runner")


async def run_load_test(
    config: TestConfig,
    client: RequestSender | None = None,
    rng: random.Random | None = None,
) -> LoadTestReport:
    """Run every phase of ``config`` in the mode its target fields select."""
    return await _run(config, config.mode, client, rng)


async def run_single(
    config: TestConfig,
    client: RequestSender | None = None,
    rng: random.Random | None = None,
) -> LoadTestReport:
    return await _run(config, MODE_SINGLE, client, rng)


async def run_duet(
    config: TestConfig,
    client: RequestSender | None = None,
    rng: random.Random | None = None,
) -> LoadTestReport:
    return await _run(config, MODE_DUET, client, rng)


async def _run(
    config: TestConfig,
    mode: str,
    client: RequestSender | None,
    rng: random.Random | None,
) -> LoadTestReport:
    config.require_mode(mode)
    stats = LoadTestStats(mode)
    rng = rng or random.Random()
    executor = run_scenario_duet if mode == MODE_DUET else run_scenario

    async with contextlib.AsyncExitStack() as stack:
        if client is None:
            client = await stack.enter_async_context(HttpClient(timeout_ms=config.timeout))

        LOGGER.info(
            "Starting %s load test: %d phase(s), %d scenario(s)",
            mode,
            len(config.phases),
            len(config.scenarios),
        )
        phase_results: list[PhaseStatistics] = []
        for index, phase in enumerate(config.phases, start=1):
            LOGGER.info(
                "Running phase #%d: %ss @ %s RPS%s",
                index,
                _fmt(phase.duration),
                _fmt(phase.arrival_rate),
                f" (max concurrency {phase.concurrency})" if phase.concurrency else "",
            )
            scheduler = PhaseScheduler(
                phase,
                config.scenarios,
                functools.partial(_execute, executor, stats, config, client),
                serialize=config.serialize_scenarios,
                rng=rng,
            )
            phase_results.append(await scheduler.run())

    LOGGER.info(
        "Load test completed: %d scenario(s), %d request(s), %d failed",
        sum(result.launched for result in phase_results),
        stats.overall.count,
        stats.overall.failed,
    )
    return summarize(stats)


async def _execute(
    executor: Callable[[Scenario, LoadTestStats, TestConfig, RequestSender], Awaitable[None]],
    stats: LoadTestStats,
    config: TestConfig,
    client: RequestSender,
    scenario: Scenario,
) -> None:
    await executor(scenario, stats, config, client)


def _fmt(value: float) -> str:
    return f"{value:g}"
