import random
import unittest

from duetload.config import ConfigError, Phase, RequestStep
from duetload.http_client import RequestOutcome
from duetload.runner import run_duet, run_load_test, run_single

from fakes import FakeClient, by_host, duet_config, make_scenario, single_config


class RunLoadTestTest(unittest.IsolatedAsyncioTestCase):
    async def test_single_run_accumulates_all_phases(self) -> None:
        scenario = make_scenario(RequestStep(url="/a", name="a"), RequestStep(url="/b", name="b"))
        config = single_config(
            scenario,
            phases=(Phase(duration=0.25, arrival_rate=20), Phase(duration=0.25, arrival_rate=20)),
        )
        client = FakeClient()

        report = await run_load_test(config, client=client, rng=random.Random(1))

        self.assertEqual(report.unit, "ms")
        self.assertGreater(report.total_requests, 4)
        self.assertEqual(report.total_requests, len(client.requests))
        self.assertEqual(report.total_requests, sum(s.count for s in report.per_request.values()))
        self.assertEqual(report.failed, sum(s.failed for s in report.per_request.values()))
        self.assertEqual(report.per_request["a"].count, report.per_request["b"].count)
        self.assertEqual(report.success_rate, 100.0)
        self.assertEqual(report.p50, 10.0)
        self.assertIsNone(report.overall.duet)

    async def test_duet_run_returns_raw_series(self) -> None:
        client = FakeClient(
            by_host(
                RequestOutcome(status=200, duration_ms=100.0),
                RequestOutcome(status=200, duration_ms=150.0),
            )
        )
        report = await run_load_test(duet_config(), client=client)

        self.assertTrue(report.is_duet)
        self.assertEqual(report.p50, 50.0)
        self.assertEqual(report.average, 50.0)
        samples = report.overall.duet
        self.assertEqual(len(samples.old_samples), report.completed)
        self.assertEqual(set(samples.old_samples), {100.0})
        self.assertEqual(set(samples.latest_samples), {150.0})

    async def test_failures_are_reported_as_data(self) -> None:
        client = FakeClient(lambda request: RequestOutcome(error="connection refused"))
        report = await run_single(single_config(), client=client)
        self.assertGreater(report.total_requests, 0)
        self.assertEqual(report.success_rate, 0.0)
        self.assertEqual(report.failed, report.total_requests)
        self.assertEqual(report.overall.response_times, [])

    async def test_mode_mismatch_fails_before_any_traffic(self) -> None:
        client = FakeClient()
        with self.assertRaises(ConfigError):
            await run_single(duet_config(), client=client)
        with self.assertRaises(ConfigError):
            await run_duet(single_config(), client=client)
        self.assertEqual(client.requests, [])

    async def test_serialized_scenarios_never_overlap(self) -> None:
        client = FakeClient(delay_s=0.05)
        config = single_config(phases=(Phase(duration=0.3, arrival_rate=50),), serialize_scenarios=True)
        report = await run_single(config, client=client)
        self.assertEqual(client.peak_in_flight, 1)
        self.assertGreater(report.total_requests, 1)

    async def test_phase_progress_is_logged(self) -> None:
        with self.assertLogs("duetload.runner", level="INFO") as logs:
            await run_load_test(single_config(), client=FakeClient())
        self.assertTrue(any("Running phase #1: 0.2s @ 20 RPS" in line for line in logs.output))


if __name__ == "__main__":
    unittest.main()
