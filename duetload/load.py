from __future__ import annotations

import asyncio
import functools
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from .config import Phase, Scenario

LOGGER = logging.getLogger("duetload.load")

ScenarioExecutor = Callable[[Scenario], Awaitable[None]]


@dataclass
class PhaseStatistics:
    launched: int
    completed: int
    started_at: float
    finished_at: float
    peak_active: int = 0

    @property
    def duration_s(self) -> float:
        return max(self.finished_at - self.started_at, 0.0)

    @property
    def throughput_per_second(self) -> float:
        if self.duration_s == 0:
            return 0.0
        return self.launched / self.duration_s


class PhaseScheduler:
    """Launches scenarios at the phase arrival rate, bounded by its concurrency cap.

    Arrivals are paced at ``1 / arrival_rate`` seconds. With a cap set, a
    semaphore of that size admits launches; an arrival waits for a free slot
    instead of being dropped. Scenarios run as independent tasks so several can
    be in flight at once. With ``serialize`` the scheduler instead waits for each
    scenario to finish before pacing the next one.
    """

    def __init__(
        self,
        phase: Phase,
        scenarios: Sequence[Scenario],
        execute: ScenarioExecutor,
        serialize: bool = False,
        rng: random.Random | None = None,
    ) -> None:
        if not scenarios:
            raise ValueError("PhaseScheduler needs at least one scenario")
        self._phase = phase
        self._scenarios = list(scenarios)
        self._execute = execute
        self._serialize = serialize
        self._rng = rng or random.Random()

        self._tasks: set[asyncio.Task[None]] = set()
        self._active = 0
        self._peak_active = 0
        self._completed = 0

    @property
    def active(self) -> int:
        return self._active

    async def run(self) -> PhaseStatistics:
        loop = asyncio.get_running_loop()
        started_at = loop.time()
        deadline = started_at + self._phase.duration
        interval = self._phase.interval_s
        gate = (
            asyncio.Semaphore(self._phase.concurrency)
            if self._phase.concurrency
            else None
        )
        last_arrival = started_at
        launched = 0

        try:
            while loop.time() < deadline:
                if gate is not None and not await _admit(gate, deadline - loop.time()):
                    break

                wait = last_arrival + interval - loop.time()
                if wait > 0:
                    await asyncio.sleep(wait)

                now = loop.time()
                if now >= deadline:
                    if gate is not None:
                        gate.release()
                    break

                last_arrival = now
                self._launch(gate)
                launched += 1
                if self._serialize:
                    await self._drain()
        finally:
            await self._drain()

        stats = PhaseStatistics(
            launched=launched,
            completed=self._completed,
            started_at=started_at,
            finished_at=loop.time(),
            peak_active=self._peak_active,
        )
        LOGGER.info(
            "Phase finished: %d scenarios in %.2fs (%.2f/s, peak concurrency %d)",
            stats.launched,
            stats.duration_s,
            stats.throughput_per_second,
            stats.peak_active,
        )
        return stats

    def _launch(self, gate: asyncio.Semaphore | None) -> None:
        scenario = self._rng.choice(self._scenarios)
        self._active += 1
        self._peak_active = max(self._peak_active, self._active)
        task = asyncio.create_task(self._run_one(scenario))
        self._tasks.add(task)
        task.add_done_callback(functools.partial(self._on_done, gate))

    def _on_done(self, gate: asyncio.Semaphore | None, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        self._active -= 1
        self._completed += 1
        if gate is not None:
            gate.release()

    async def _run_one(self, scenario: Scenario) -> None:
        try:
            await self._execute(scenario)
        except Exception:
            LOGGER.exception("Scenario %s aborted unexpectedly", scenario.name)

    async def _drain(self) -> None:
        while self._tasks:
            await asyncio.wait(set(self._tasks))


async def _admit(gate: asyncio.Semaphore, remaining_s: float) -> bool:
    if remaining_s <= 0:
        return False
    try:
        await asyncio.wait_for(gate.acquire(), timeout=remaining_s)
    except asyncio.TimeoutError:
        return False
    return True
