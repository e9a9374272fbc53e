from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

import aiohttp

from .config import RequestStep, Target

LOGGER = logging.getLogger("duetload.http")

USER_AGENT = "duetload/0.1"
WAIT_TIMEOUT_S_DEFAULT = 180.0
WAIT_DELAY_S_DEFAULT = 5.0


class TargetUnavailableError(RuntimeError):
    """Raised when a service under test never became reachable."""

    def __init__(self, urls: Iterable[str], timeout_s: float) -> None:
        super().__init__(
            f"targets not reachable after {timeout_s:.0f}s: {', '.join(urls)}"
        )


@dataclass(frozen=True)
class PreparedRequest:
    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    params: Mapping[str, str] = field(default_factory=dict)
    body: Any = None

    @classmethod
    def build(cls, target: Target, step: RequestStep) -> "PreparedRequest":
        """Join a step onto a target, step headers overriding the target's."""
        headers = dict(target.default_headers)
        headers.update(step.headers)
        return cls(
            method=step.method or "GET",
            url=target.resolve(step.url),
            headers=headers,
            params=target.query_params(),
            body=step.body,
        )


@dataclass(frozen=True)
class RequestOutcome:
    """Result of one request; ``duration_ms`` is None when no response arrived."""

    status: int | None = None
    duration_ms: float | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is not None and 200 <= self.status < 400

    @property
    def responded(self) -> bool:
        return self.status is not None and self.duration_ms is not None


class HttpClient:
    """Timed request sender sharing one aiohttp session for a whole run."""

    def __init__(
        self,
        timeout_ms: float | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._timeout_ms = timeout_ms
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "HttpClient":
        if self._session is None:
            # no pool limit: the phase concurrency cap is the only bound on in-flight requests
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(limit=0),
                headers={"User-Agent": USER_AGENT},
            )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    def _request_timeout(self) -> aiohttp.ClientTimeout:
        if self._timeout_ms is None:
            return aiohttp.ClientTimeout(total=None)
        return aiohttp.ClientTimeout(total=self._timeout_ms / 1000.0)

    async def send(self, request: PreparedRequest) -> RequestOutcome:
        if self._session is None:
            raise RuntimeError("HttpClient must be entered before sending requests")

        kwargs: dict[str, Any] = {
            "headers": dict(request.headers),
            "timeout": self._request_timeout(),
        }
        if request.params:
            kwargs["params"] = dict(request.params)
        if isinstance(request.body, (str, bytes)):
            kwargs["data"] = request.body
        elif request.body is not None:
            kwargs["json"] = request.body

        started = time.perf_counter()
        try:
            async with self._session.request(request.method, request.url, **kwargs) as resp:
                duration_ms = (time.perf_counter() - started) * 1000.0
                return RequestOutcome(status=resp.status, duration_ms=duration_ms)
        except asyncio.TimeoutError:
            LOGGER.debug("%s %s timed out after %sms", request.method, request.url, self._timeout_ms)
            return RequestOutcome(error=f"timed out after {self._timeout_ms}ms")
        except aiohttp.ClientError as exc:
            LOGGER.debug("%s %s failed: %s", request.method, request.url, exc)
            return RequestOutcome(error=str(exc) or exc.__class__.__name__)
        except (TypeError, ValueError) as exc:
            LOGGER.warning("%s %s could not be sent: %r", request.method, request.url, exc)
            return RequestOutcome(error=f"{exc.__class__.__name__}: {exc}")


def _is_reachable(status: int) -> bool:
    return 200 <= status < 300 or status == 404


async def wait_for_targets(
    urls: Iterable[str],
    timeout_s: float = WAIT_TIMEOUT_S_DEFAULT,
    delay_s: float = WAIT_DELAY_S_DEFAULT,
) -> None:
    """Poll every URL until each answers 2xx (or 404), else give up after ``timeout_s``."""
    pending = list(urls)
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_s
    probe_timeout = aiohttp.ClientTimeout(total=max(min(delay_s, 10.0), 1.0))

    async with aiohttp.ClientSession(timeout=probe_timeout) as session:

        async def probe(url: str) -> bool:
            try:
                async with session.get(url) as resp:
                    return _is_reachable(resp.status)
            except (aiohttp.ClientError, asyncio.TimeoutError):
                return False

        while loop.time() < deadline:
            results = await asyncio.gather(*(probe(url) for url in pending))
            if all(results):
                LOGGER.info("Targets ready: %s", ", ".join(pending))
                return
            LOGGER.info("Waiting for targets: %s", ", ".join(
                url for url, ready in zip(pending, results) if not ready
            ))
            await asyncio.sleep(max(min(delay_s, deadline - loop.time()), 0.0))

    raise TargetUnavailableError(pending, timeout_s)
