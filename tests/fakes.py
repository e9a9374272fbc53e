from __future__ import annotations

import asyncio
from typing import Callable

from duetload.config import Phase, RequestStep, Scenario, Target, TargetPair, TestConfig
from duetload.http_client import PreparedRequest, RequestOutcome

OLD_URL = "http://old.test"
LATEST_URL = "http://latest.test"
SINGLE_URL = "http://single.test"


class FakeClient:
    """In-memory stand-in for HttpClient that answers via ``responder``."""

    def __init__(
        self,
        responder: Callable[[PreparedRequest], RequestOutcome] | None = None,
        delay_s: float = 0.0,
    ) -> None:
        self._responder = responder or (lambda request: RequestOutcome(status=200, duration_ms=10.0))
        self._delay_s = delay_s
        self.requests: list[PreparedRequest] = []
        self.sent_at: list[float] = []
        self.in_flight = 0
        self.peak_in_flight = 0

    async def send(self, request: PreparedRequest) -> RequestOutcome:
        self.requests.append(request)
        self.sent_at.append(asyncio.get_running_loop().time())
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            if self._delay_s:
                await asyncio.sleep(self._delay_s)
            return self._responder(request)
        finally:
            self.in_flight -= 1


def by_host(old: RequestOutcome, latest: RequestOutcome) -> Callable[[PreparedRequest], RequestOutcome]:
    def responder(request: PreparedRequest) -> RequestOutcome:
        return old if request.url.startswith(OLD_URL) else latest

    return responder


def make_scenario(*steps: RequestStep, name: str = "browse") -> Scenario:
    if not steps:
        steps = (RequestStep(url="/items", name="list-items"),)
    return Scenario(name=name, requests=tuple(steps))


def single_config(*scenarios: Scenario, phases: tuple[Phase, ...] | None = None, **kwargs) -> TestConfig:
    return TestConfig(
        phases=phases or (Phase(duration=0.2, arrival_rate=20),),
        scenarios=scenarios or (make_scenario(),),
        target=Target(url=SINGLE_URL + "/", default_headers={"X-Env": "bench", "Accept": "*/*"}),
        **kwargs,
    )


def duet_config(*scenarios: Scenario, phases: tuple[Phase, ...] | None = None, **kwargs) -> TestConfig:
    return TestConfig(
        phases=phases or (Phase(duration=0.2, arrival_rate=20),),
        scenarios=scenarios or (make_scenario(),),
        targets=TargetPair(
            old=Target(url=OLD_URL, default_query_params={"version": "v1"}),
            latest=Target(url=LATEST_URL + "//", default_query_params={"version": 2}),
        ),
        **kwargs,
    )
