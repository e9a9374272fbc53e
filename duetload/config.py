from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Sequence

MODE_SINGLE = "single"
MODE_DUET = "duet"

QueryValue = str | int | float


class ConfigError(ValueError):
    """Raised when a test plan does not fit the requested execution mode."""


@dataclass(frozen=True)
class Target:
    """Base URL of a service under test plus request defaults."""

    url: str
    default_headers: Mapping[str, str] = field(default_factory=dict)
    default_query_params: Mapping[str, QueryValue] = field(default_factory=dict)

    def base_url(self) -> str:
        return self.url.rstrip("/")

    def resolve(self, path: str) -> str:
        return self.base_url() + path

    def query_params(self) -> dict[str, str]:
        return {key: str(value) for key, value in self.default_query_params.items()}


@dataclass(frozen=True)
class TargetPair:
    """The two deployments compared in duet mode."""

    old: Target
    latest: Target

    def items(self) -> tuple[tuple[str, Target], tuple[str, Target]]:
        return (("old", self.old), ("latest", self.latest))


@dataclass(frozen=True)
class RequestStep:
    """One HTTP call in a scenario. ``think_time`` is in milliseconds."""

    url: str
    name: str | None = None
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    think_time: float = 0.0

    def __post_init__(self) -> None:
        if self.think_time < 0:
            raise ConfigError(f"thinkTime must be >= 0 (got {self.think_time})")

    @property
    def stats_name(self) -> str:
        return self.name or self.url


@dataclass(frozen=True)
class Scenario:
    """Named, ordered flow of request steps."""

    name: str
    requests: tuple[RequestStep, ...]

    def __post_init__(self) -> None:
        if not self.requests:
            raise ConfigError(f"scenario {self.name!r} must contain at least one request")


@dataclass(frozen=True)
class Phase:
    """Fixed-duration traffic segment with an arrival rate and optional cap."""

    duration: float
    arrival_rate: float
    concurrency: int | None = None

    def __post_init__(self) -> None:
        if self.duration < 0:
            raise ConfigError("phase duration must be >= 0 seconds")
        if self.arrival_rate <= 0:
            raise ConfigError("phase arrival_rate must be > 0")
        if self.concurrency is not None and self.concurrency <= 0:
            raise ConfigError("phase concurrency must be a positive integer")

    @property
    def interval_s(self) -> float:
        return 1.0 / self.arrival_rate


@dataclass(frozen=True)
class TestConfig:
    """Validated load test plan; exactly one of ``target``/``targets`` is set."""

    __test__ = False

    phases: tuple[Phase, ...]
    scenarios: tuple[Scenario, ...]
    target: Target | None = None
    targets: TargetPair | None = None
    timeout: float | None = None
    serialize_scenarios: bool = False

    def __post_init__(self) -> None:
        if not self.phases:
            raise ConfigError("at least one phase is required")
        if not self.scenarios:
            raise ConfigError("at least one scenario is required")
        if (self.target is None) == (self.targets is None):
            raise ConfigError("exactly one of 'target' or 'targets' must be configured")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigError("timeout must be a positive number of milliseconds")

    @property
    def mode(self) -> str:
        return MODE_SINGLE if self.target is not None else MODE_DUET

    def require_mode(self, mode: str) -> None:
        if mode == MODE_SINGLE and self.target is None:
            raise ConfigError("Target is required for single target execution")
        if mode == MODE_DUET and self.targets is None:
            raise ConfigError("Targets (old and latest) are required for duet comparison")
        if mode not in (MODE_SINGLE, MODE_DUET):
            raise ConfigError(f"Unknown execution mode: {mode}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TestConfig":
        if not isinstance(data, Mapping):
            raise ConfigError("test plan must be a JSON object")
        target = _parse_target(data["target"], "target") if data.get("target") else None
        targets = None
        if data.get("targets"):
            pair = _require_mapping(data["targets"], "targets")
            targets = TargetPair(
                old=_parse_target(_require_key(pair, "old", "targets"), "targets.old"),
                latest=_parse_target(_require_key(pair, "latest", "targets"), "targets.latest"),
            )
        timeout = data.get("timeout")
        return cls(
            phases=tuple(_parse_phase(item) for item in _require_list(data, "phases")),
            scenarios=tuple(_parse_scenario(item) for item in _require_list(data, "scenarios")),
            target=target,
            targets=targets,
            timeout=float(timeout) if timeout is not None else None,
            serialize_scenarios=bool(data.get("serialize_scenarios", False)),
        )


def load_plan(path: str | Path) -> TestConfig:
    plan_path = Path(path)
    if not plan_path.exists():
        raise ConfigError(f"test plan not found: {plan_path}")
    try:
        with plan_path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"test plan {plan_path} is not valid JSON: {exc}") from exc
    return TestConfig.from_dict(data)


def _parse_target(raw: Any, where: str) -> Target:
    data = _require_mapping(raw, where)
    url = _require_key(data, "url", where)
    if not isinstance(url, str) or not url.strip():
        raise ConfigError(f"{where}.url must be a non-empty string")
    try:
        return Target(
            url=url,
            default_headers=dict(data.get("default_headers") or {}),
            default_query_params=dict(data.get("default_query_params") or {}),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid {where} definition {data!r}: {exc}") from exc


def _parse_phase(raw: Any) -> Phase:
    data = _require_mapping(raw, "phase")
    concurrency = data.get("concurrency")
    try:
        return Phase(
            duration=float(_require_key(data, "duration", "phase")),
            arrival_rate=float(_require_key(data, "arrival_rate", "phase")),
            concurrency=int(concurrency) if concurrency is not None else None,
        )
    except ConfigError:
        raise
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid phase definition {data!r}: {exc}") from exc


def _parse_scenario(raw: Any) -> Scenario:
    data = _require_mapping(raw, "scenario")
    name = _require_key(data, "name", "scenario")
    return Scenario(
        name=str(name),
        requests=tuple(_parse_step(item, name) for item in _require_list(data, "requests")),
    )


def _parse_step(raw: Any, scenario_name: str) -> RequestStep:
    where = f"scenario {scenario_name!r} request"
    data = _require_mapping(raw, where)
    url = _require_key(data, "url", where)
    think_time = data.get("thinkTime", data.get("think_time", 0))
    try:
        return RequestStep(
            url=str(url),
            name=data.get("name"),
            method=str(data.get("method") or "GET").upper(),
            headers=dict(data.get("headers") or {}),
            body=data.get("body"),
            think_time=float(think_time or 0),
        )
    except ConfigError:
        raise
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid {where} definition {data!r}: {exc}") from exc


def _require_mapping(raw: Any, where: str) -> Mapping[str, Any]:
    if not isinstance(raw, Mapping):
        raise ConfigError(f"{where} must be an object")
    return raw


def _require_key(data: Mapping[str, Any], key: str, where: str) -> Any:
    if key not in data:
        raise ConfigError(f"{where}.{key} is required")
    return data[key]


def _require_list(data: Mapping[str, Any], key: str) -> Sequence[Any]:
    value = data.get(key)
    if not isinstance(value, list) or not value:
        raise ConfigError(f"{key} must be a non-empty list")
    return value
