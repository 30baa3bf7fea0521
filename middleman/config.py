from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import json

try:
    import yaml  # type: ignore
except Exception:  # pragma: no cover - optional dependency
    yaml = None

from .errors import ConfigurationError
from .utils.parsing import collect_object_ids

# ECoS numbers its S88 feedback modules from object id 100 upwards.
MODULE_BASE_ID = 100
MODULE_POOL_SIZE = 32
# Object id of the station's S88 bus itself.
FEEDBACK_BUS_ID = 26

DEFAULT_HANDSHAKE = ("get(1, info)", "get(1, status)")


@dataclass(slots=True)
class ServerConfig:
    """Controller-facing listener."""

    host: str = "0.0.0.0"
    port: int = 15471
    refresh_interval: float = 2.5


@dataclass(slots=True)
class StationConfig:
    """Outbound connection to the ECoS command station."""

    host: Optional[str] = None
    port: int = 15471
    probe: str = "ping"
    probe_interval: float = 5.0
    probe_timeout: float = 1.0
    handshake: List[str] = field(default_factory=lambda: list(DEFAULT_HANDSHAKE))

    def validate(self) -> None:
        if self.probe not in {"ping", "tcp", "none"}:
            raise ConfigurationError(f"Unknown probe type: {self.probe}")
        if self.probe_interval <= 0:
            raise ConfigurationError("probeInterval must be positive")


@dataclass(slots=True)
class FeedbackBusConfig:
    """HSI-88 module counts per bus segment and the device to read from."""

    left: int = 0
    middle: int = 0
    right: int = 0
    device_path: Optional[str] = None
    baudrate: int = 9600

    @property
    def number_max(self) -> int:
        return self.left + self.middle + self.right

    def module_ids(self) -> List[int]:
        return [MODULE_BASE_ID + i for i in range(self.number_max)]

    def validate(self) -> None:
        for name in ("left", "middle", "right"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"hsi.{name} must not be negative")
        if self.number_max > MODULE_POOL_SIZE:
            raise ConfigurationError(
                f"At most {MODULE_POOL_SIZE} feedback modules are supported, got {self.number_max}"
            )


@dataclass(slots=True)
class DebounceConfig:
    """Debounce thresholds in milliseconds."""

    on_ms: float = 0.0
    off_ms: float = 0.0
    check_interval_ms: int = 50

    @property
    def poll_interval(self) -> float:
        interval = self.check_interval_ms
        if interval < 10:
            interval = 50
        return interval / 1000.0


@dataclass(slots=True)
class FilterConfig:
    """Object filter rule: explicit ids plus comparison expressions."""

    enabled: bool = False
    object_ids: List[int] = field(default_factory=list)
    object_id_ranges: List[str] = field(default_factory=list)


@dataclass(slots=True)
class BroadcastConfig:
    """WebSocket push channel for passive observers."""

    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 15472
    path: str = "/s88/"


@dataclass(slots=True)
class RuntimeFlags:
    is_simulation: bool = False
    is_s88_simulation: bool = False
    connect_to_ecos: bool = True


@dataclass(slots=True)
class GatewayConfig:
    """Top-level configuration for the gateway."""

    server: ServerConfig = field(default_factory=ServerConfig)
    station: StationConfig = field(default_factory=StationConfig)
    feedback: FeedbackBusConfig = field(default_factory=FeedbackBusConfig)
    debounce: DebounceConfig = field(default_factory=DebounceConfig)
    filter: FilterConfig = field(default_factory=FilterConfig)
    broadcast: BroadcastConfig = field(default_factory=BroadcastConfig)
    runtime: RuntimeFlags = field(default_factory=RuntimeFlags)

    def validate(self) -> None:
        self.station.validate()
        self.feedback.validate()

    @property
    def station_enabled(self) -> bool:
        return bool(self.runtime.connect_to_ecos and not self.runtime.is_simulation and self.station.host)


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Section '{name}' must be an object")
    return value


def _to_station(data: Dict[str, Any]) -> StationConfig:
    handshake = data.get("handshake")
    if handshake is None:
        handshake = list(DEFAULT_HANDSHAKE)
    elif not isinstance(handshake, list):
        raise ConfigurationError("ecos.handshake must be a list of frames")
    return StationConfig(
        host=data.get("ip"),
        port=int(data.get("port", 15471)),
        probe=str(data.get("probe", "ping")).lower(),
        probe_interval=float(data.get("probeInterval", 5.0)),
        probe_timeout=float(data.get("probeTimeout", 1.0)),
        handshake=[str(frame) for frame in handshake],
    )


def _to_filter(data: Dict[str, Any]) -> FilterConfig:
    ranges = data.get("objectIdRanges") or []
    if isinstance(ranges, str):
        ranges = [ranges]
    return FilterConfig(
        enabled=bool(data.get("enabled", False)),
        object_ids=collect_object_ids(data.get("objectIds")),
        object_id_ranges=[str(r) for r in ranges],
    )


def config_from_dict(raw: Dict[str, Any]) -> GatewayConfig:
    """Build a validated :class:`GatewayConfig` from a parsed JSON/YAML object."""
    if not isinstance(raw, dict):
        raise ConfigurationError("Configuration must be an object/dict")

    try:
        server = _section(raw, "server")
        hsi = _section(raw, "hsi")
        debounce = _section(raw, "debounce")
        ws = _section(raw, "websocket")
        runtime = _section(raw, "runtime")

        cfg = GatewayConfig(
            server=ServerConfig(
                host=server.get("bindingIp", "0.0.0.0"),
                port=int(server.get("listenPort", 15471)),
                refresh_interval=float(server.get("refreshInterval", 2.5)),
            ),
            station=_to_station(_section(raw, "ecos")),
            feedback=FeedbackBusConfig(
                left=int(hsi.get("left", 0)),
                middle=int(hsi.get("middle", 0)),
                right=int(hsi.get("right", 0)),
                device_path=hsi.get("devicePath"),
                baudrate=int(hsi.get("baudrate", 9600)),
            ),
            debounce=DebounceConfig(
                on_ms=float(debounce.get("on", 0)),
                off_ms=float(debounce.get("off", 0)),
                check_interval_ms=int(debounce.get("checkInterval", 50)),
            ),
            filter=_to_filter(_section(raw, "filter")),
            broadcast=BroadcastConfig(
                enabled=bool(ws.get("enabled", False)),
                host=ws.get("bindingIp", "0.0.0.0"),
                port=int(ws.get("port", 15472)),
                path=ws.get("path", "/s88/"),
            ),
            runtime=RuntimeFlags(
                is_simulation=bool(runtime.get("isSimulation", False)),
                is_s88_simulation=bool(runtime.get("isS88Simulation", False)),
                connect_to_ecos=bool(runtime.get("connectToEcos", True)),
            ),
        )
    except ConfigurationError:
        raise
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid configuration value: {exc}") from exc

    cfg.validate()
    return cfg


def load_config(path: str | Path) -> GatewayConfig:
    """Parse a YAML/JSON config file into a structured config object."""

    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(file_path)

    text = file_path.read_text(encoding="utf-8")
    if file_path.suffix.lower() in {".yaml", ".yml"}:
        if yaml is None:
            raise RuntimeError("PyYAML is required to load YAML configs")
        raw = yaml.safe_load(text) or {}
    else:
        raw = json.loads(text or "{}")

    return config_from_dict(raw)
