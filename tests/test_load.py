import asyncio
import random
import unittest

from duetload.config import Phase, RequestStep
from duetload.load import PhaseScheduler, PhaseStatistics

from fakes import make_scenario

HOME = make_scenario(RequestStep(url="/"), name="home")
SEARCH = make_scenario(RequestStep(url="/search"), name="search")


class Recorder:
    """Scenario executor that tracks how many runs overlap."""

    def __init__(self, hold_s: float = 0.0) -> None:
        self.hold_s = hold_s
        self.started: list[str] = []
        self.finished = 0
        self.running = 0
        self.peak = 0

    async def __call__(self, scenario) -> None:
        self.started.append(scenario.name)
        self.running += 1
        self.peak = max(self.peak, self.running)
        try:
            if self.hold_s:
                await asyncio.sleep(self.hold_s)
        finally:
            self.running -= 1
            self.finished += 1


class PhaseSchedulerTest(unittest.IsolatedAsyncioTestCase):
    async def test_zero_duration_launches_nothing(self) -> None:
        recorder = Recorder()
        stats = await PhaseScheduler(Phase(duration=0, arrival_rate=100), [HOME], recorder).run()
        self.assertEqual(stats.launched, 0)
        self.assertEqual(recorder.started, [])

    async def test_arrivals_follow_rate(self) -> None:
        recorder = Recorder()
        stats = await PhaseScheduler(Phase(duration=1, arrival_rate=10), [HOME], recorder).run()
        self.assertGreaterEqual(stats.launched, 7)
        self.assertLessEqual(stats.launched, 11)
        self.assertEqual(len(recorder.started), stats.launched)
        self.assertGreaterEqual(stats.duration_s, 1.0)

    async def test_scenarios_overlap_without_cap(self) -> None:
        recorder = Recorder(hold_s=0.3)
        stats = await PhaseScheduler(Phase(duration=0.5, arrival_rate=20), [HOME], recorder).run()
        self.assertGreater(recorder.peak, 1)
        self.assertGreaterEqual(stats.peak_active, recorder.peak)

    async def test_concurrency_cap_is_never_exceeded(self) -> None:
        recorder = Recorder(hold_s=0.2)
        phase = Phase(duration=0.6, arrival_rate=100, concurrency=3)
        stats = await PhaseScheduler(phase, [HOME], recorder).run()
        self.assertLessEqual(recorder.peak, 3)
        self.assertEqual(recorder.peak, 3)
        self.assertLessEqual(stats.peak_active, 3)
        # slots free up every 200ms, so well under the 60 arrivals the rate asks for
        self.assertLess(stats.launched, 15)

    async def test_serialized_mode_runs_one_at_a_time(self) -> None:
        recorder = Recorder(hold_s=0.1)
        stats = await PhaseScheduler(
            Phase(duration=0.5, arrival_rate=50), [HOME], recorder, serialize=True
        ).run()
        self.assertEqual(recorder.peak, 1)
        self.assertGreater(stats.launched, 1)

    async def test_in_flight_scenarios_finish_before_run_returns(self) -> None:
        recorder = Recorder(hold_s=0.25)
        stats = await PhaseScheduler(Phase(duration=0.3, arrival_rate=10), [HOME], recorder).run()
        self.assertEqual(recorder.running, 0)
        self.assertEqual(recorder.finished, stats.launched)
        self.assertEqual(stats.completed, stats.launched)

    async def test_scenario_errors_are_logged_not_raised(self) -> None:
        async def explode(scenario) -> None:
            raise RuntimeError("boom")

        with self.assertLogs("duetload.load", level="ERROR") as logs:
            stats = await PhaseScheduler(Phase(duration=0.35, arrival_rate=10), [HOME], explode).run()
        self.assertGreaterEqual(stats.launched, 2)
        self.assertIn("home", logs.output[0])

    async def test_picks_every_scenario(self) -> None:
        recorder = Recorder()
        await PhaseScheduler(
            Phase(duration=0.5, arrival_rate=100),
            [HOME, SEARCH],
            recorder,
            rng=random.Random(7),
        ).run()
        self.assertEqual(set(recorder.started), {"home", "search"})

    def test_requires_scenarios(self) -> None:
        with self.assertRaises(ValueError):
            PhaseScheduler(Phase(duration=1, arrival_rate=1), [], Recorder())


class PhaseStatisticsTest(unittest.TestCase):
    def test_throughput(self) -> None:
        stats = PhaseStatistics(launched=20, completed=20, started_at=10.0, finished_at=12.0)
        self.assertEqual(stats.duration_s, 2.0)
        self.assertEqual(stats.throughput_per_second, 10.0)

    def test_zero_duration_throughput(self) -> None:
        stats = PhaseStatistics(launched=0, completed=0, started_at=5.0, finished_at=5.0)
        self.assertEqual(stats.throughput_per_second, 0.0)


if __name__ == "__main__":
    unittest.main()
