from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, Mapping, Sequence

DEFAULT_PORTS: dict[str, int] = {"udp": 5001}
PROTOCOLS: tuple[str, ...] = tuple(DEFAULT_PORTS)

DEFAULT_CLIENTS = 100
DEFAULT_DELAY_MS = 64
DEFAULT_WAIT_BETWEEN_TESTS_MS = 5000
DEFAULT_WINDOW_MS = 1000
DEFAULT_RUNS_REQUIRED = 5
DEFAULT_MAX_WINDOWS = 60


class ConfigError(ValueError):
    """Raised when targets or settings cannot be used for a benchmark."""


def parse_address(address: str, protocol: str = "udp") -> tuple[str, int]:
    """Split ``host[:port]`` (or ``[v6]:port``); the port defaults per protocol."""
    if protocol not in DEFAULT_PORTS:
        raise ConfigError(f"Unsupported protocol {protocol!r}; expected one of {PROTOCOLS}")
    address = address.strip()
    if not address:
        raise ConfigError("Target address must not be empty")

    if address.startswith("["):
        host, sep, rest = address[1:].partition("]")
        if not sep:
            raise ConfigError(f"Unterminated IPv6 address: {address!r}")
        port_str = rest[1:] if rest.startswith(":") else ""
    elif address.count(":") == 1:
        host, _, port_str = address.partition(":")
    else:
        host, port_str = address, ""

    if not port_str:
        return host, DEFAULT_PORTS[protocol]
    try:
        port = int(port_str)
    except ValueError as exc:
        raise ConfigError(f"Invalid port in address {address!r}") from exc
    if not 0 < port < 65536:
        raise ConfigError(f"Port out of range in address {address!r}")
    return host, port


@dataclass(frozen=True)
class ServerTarget:
    """One benchmark subject."""

    name: str
    address: str
    protocol: str = "udp"

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigError("ServerTarget name must not be empty")
        # Validates protocol and address eagerly.
        parse_address(self.address, self.protocol)

    @property
    def socket_address(self) -> tuple[str, int]:
        return parse_address(self.address, self.protocol)


@dataclass(frozen=True)
class BenchmarkSettings:
    """Load and sampling parameters shared by every server test."""

    clients: int = DEFAULT_CLIENTS
    delay_s: float = DEFAULT_DELAY_MS / 1000.0
    cooldown_s: float = DEFAULT_WAIT_BETWEEN_TESTS_MS / 1000.0
    window_s: float = DEFAULT_WINDOW_MS / 1000.0
    runs_required: int = DEFAULT_RUNS_REQUIRED
    max_windows: int = DEFAULT_MAX_WINDOWS
    warmup_s: float = 0.0
    bind_host: str = "0.0.0.0"
    log_messages: bool = False

    def __post_init__(self) -> None:
        if self.clients <= 0:
            raise ConfigError("clients must be > 0")
        if self.delay_s <= 0:
            raise ConfigError("delay must be > 0")
        if self.window_s <= 0:
            raise ConfigError("window must be > 0")
        if self.runs_required <= 0:
            raise ConfigError("runs must be > 0")
        if self.cooldown_s < 0 or self.warmup_s < 0:
            raise ConfigError("cooldown and warmup must be >= 0")
        if self.max_windows < 0:
            raise ConfigError("max_windows must be >= 0 (0 disables the ceiling)")
        if self.max_windows and self.max_windows < self.runs_required:
            raise ConfigError("max_windows must be >= runs when the ceiling is enabled")


@dataclass
class BenchmarkPlan:
    """Targets to test, in order, and the settings applied to each."""

    targets: list[ServerTarget] = field(default_factory=list)
    settings: BenchmarkSettings = field(default_factory=BenchmarkSettings)

    def __iter__(self) -> Iterator[ServerTarget]:
        return iter(self.targets)

    def __len__(self) -> int:
        return len(self.targets)


def default_targets() -> list[ServerTarget]:
    return [ServerTarget(name="Rust UDP", address="127.0.0.1:5001", protocol="udp")]


def parse_target_spec(spec: str) -> ServerTarget:
    """Parse ``NAME=HOST[:PORT]`` as given on the command line."""
    name, sep, address = spec.partition("=")
    if not sep:
        raise ConfigError(f"Target {spec!r} must look like NAME=HOST[:PORT]")
    return ServerTarget(name=name.strip(), address=address.strip())


def targets_from_json(data: object) -> list[ServerTarget]:
    if not isinstance(data, list):
        raise ConfigError("Plan file must contain a JSON list of targets")
    targets: list[ServerTarget] = []
    for idx, item in enumerate(data):
        if not isinstance(item, dict):
            raise ConfigError(f"Target #{idx} must be an object")
        try:
            targets.append(
                ServerTarget(
                    name=str(item["name"]),
                    address=str(item.get("address") or item["url"]),
                    protocol=str(item.get("protocol", "udp")),
                )
            )
        except KeyError as exc:
            raise ConfigError(f"Target #{idx} is missing {exc.args[0]!r}") from exc
    if not targets:
        raise ConfigError("Plan file lists no targets")
    return targets


def load_targets(path: str | Path | None, specs: Iterable[str] = ()) -> list[ServerTarget]:
    targets: list[ServerTarget] = []
    if path:
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Plan file {path} is not valid JSON: {exc}") from exc
        targets.extend(targets_from_json(data))
    targets.extend(parse_target_spec(spec) for spec in specs)
    return check_unique_names(targets) or default_targets()


def check_unique_names(targets: Sequence[ServerTarget]) -> list[ServerTarget]:
    """Results, window frames and CSV files are keyed by target name."""
    seen: set[str] = set()
    for target in targets:
        if target.name in seen:
            raise ConfigError(f"Duplicate target name {target.name!r}")
        seen.add(target.name)
    return list(targets)


def env_int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        print(f"invalid {name} value {value!r}; defaulting to {default}", file=sys.stderr)
        return default


def env_float(env: Mapping[str, str], name: str, default: float) -> float:
    value = env.get(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        print(f"invalid {name} value {value!r}; defaulting to {default}", file=sys.stderr)
        return default


def env_flag(env: Mapping[str, str], name: str) -> bool:
    return env.get(name, "").strip().lower() in {"1", "true", "yes", "on"}
