from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from .collector import LoadTestStats
from .config import MODE_DUET, MODE_SINGLE, RequestStep, Scenario, TestConfig
from .http_client import PreparedRequest, RequestOutcome

LOGGER = logging.getLogger("duetload.scenario")


class RequestSender(Protocol):
    async def send(self, request: PreparedRequest) -> RequestOutcome: ...


async def run_scenario(
    scenario: Scenario,
    stats: LoadTestStats,
    config: TestConfig,
    client: RequestSender,
) -> None:
    """Replay every step of ``scenario`` against the single configured target."""
    config.require_mode(MODE_SINGLE)
    target = config.target

    for step in scenario.requests:
        name = step.stats_name
        stats.record_attempt(name)

        outcome = await client.send(PreparedRequest.build(target, step))
        if outcome.responded:
            stats.record_latency(name, outcome.duration_ms)
        if not outcome.ok:
            _log_failure(scenario, step, outcome)
            stats.record_failure(name)

        await _think(step)


async def run_scenario_duet(
    scenario: Scenario,
    stats: LoadTestStats,
    config: TestConfig,
    client: RequestSender,
) -> None:
    """Replay ``scenario`` against old and latest side by side, step by step."""
    config.require_mode(MODE_DUET)
    targets = config.targets

    for step in scenario.requests:
        name = step.stats_name
        stats.record_attempt(name)

        old, latest = await asyncio.gather(
            client.send(PreparedRequest.build(targets.old, step)),
            client.send(PreparedRequest.build(targets.latest, step)),
        )
        if old.ok and latest.ok:
            stats.record_duet(name, old.duration_ms, latest.duration_ms)
        else:
            for label, outcome in (("old", old), ("latest", latest)):
                if not outcome.ok:
                    _log_failure(scenario, step, outcome, label)
            stats.record_failure(name)

        await _think(step)


async def _think(step: RequestStep) -> None:
    if step.think_time and step.think_time > 0:
        await asyncio.sleep(step.think_time / 1000.0)


def _log_failure(
    scenario: Scenario,
    step: RequestStep,
    outcome: RequestOutcome,
    side: str | None = None,
) -> None:
    LOGGER.debug(
        "Scenario %s step %s failed%s: status=%s error=%s",
        scenario.name,
        step.stats_name,
        f" on {side}" if side else "",
        outcome.status,
        outcome.error,
    )
