from __future__ import annotations

import json
from pathlib import Path

import pytest

from middleman.config import GatewayConfig, config_from_dict, load_config
from middleman.errors import ConfigurationError


def test_load_config_parses_all_sections(tmp_path: Path) -> None:
    cfg_path = tmp_path / "middleman.json"
    payload = {
        "server": {"bindingIp": "127.0.0.1", "listenPort": 15480},
        "ecos": {"ip": "192.168.1.50", "port": 15471, "probe": "TCP"},
        "hsi": {"left": 2, "middle": 1, "right": 0, "devicePath": "/dev/ttyUSB0"},
        "debounce": {"on": 20, "off": 250, "checkInterval": 5},
        "filter": {"enabled": True, "objectIds": [1, "5-7"], "objectIdRanges": [">= 1000"]},
        "websocket": {"enabled": True, "port": 15999},
        "runtime": {"isSimulation": False, "isS88Simulation": True, "connectToEcos": True},
    }
    cfg_path.write_text(json.dumps(payload), encoding="utf-8")

    cfg = load_config(cfg_path)

    assert cfg.server.host == "127.0.0.1"
    assert cfg.server.port == 15480
    assert cfg.station.host == "192.168.1.50"
    assert cfg.station.probe == "tcp"
    assert cfg.station.handshake == ["get(1, info)", "get(1, status)"]
    assert cfg.feedback.number_max == 3
    assert cfg.feedback.module_ids() == [100, 101, 102]
    assert cfg.feedback.device_path == "/dev/ttyUSB0"
    assert cfg.debounce.on_ms == 20
    assert cfg.debounce.off_ms == 250
    # intervals below 10 ms fall back to 50 ms
    assert cfg.debounce.poll_interval == pytest.approx(0.05)
    assert cfg.filter.enabled
    assert cfg.filter.object_ids == [1, 5, 6, 7]
    assert cfg.filter.object_id_ranges == [">= 1000"]
    assert cfg.broadcast.enabled
    assert cfg.broadcast.port == 15999
    assert cfg.broadcast.path == "/s88/"
    assert cfg.runtime.is_s88_simulation
    assert cfg.station_enabled


def test_load_yaml_config(tmp_path: Path) -> None:
    cfg_path = tmp_path / "middleman.yaml"
    cfg_path.write_text(
        "server:\n  listenPort: 4711\nhsi:\n  left: 1\ndebounce:\n  checkInterval: 100\n",
        encoding="utf-8",
    )
    cfg = load_config(cfg_path)
    assert cfg.server.port == 4711
    assert cfg.feedback.number_max == 1
    assert cfg.debounce.poll_interval == pytest.approx(0.1)


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.json")


def test_empty_config_uses_defaults() -> None:
    cfg = config_from_dict({})
    assert cfg.server.port == 15471
    assert cfg.station.port == 15471
    assert cfg.station.probe_interval == 5.0
    assert cfg.broadcast.port == 15472
    assert cfg.feedback.number_max == 0
    assert not cfg.station_enabled


def test_station_disabled_by_runtime_flags() -> None:
    cfg = config_from_dict({"ecos": {"ip": "10.0.0.1"}, "runtime": {"isSimulation": True}})
    assert not cfg.station_enabled
    cfg = config_from_dict({"ecos": {"ip": "10.0.0.1"}, "runtime": {"connectToEcos": False}})
    assert not cfg.station_enabled


def test_too_many_modules() -> None:
    with pytest.raises(ConfigurationError):
        config_from_dict({"hsi": {"left": 16, "middle": 16, "right": 1}})


def test_negative_module_count() -> None:
    with pytest.raises(ConfigurationError):
        config_from_dict({"hsi": {"left": -1}})


def test_unknown_reachability_mode() -> None:
    with pytest.raises(ConfigurationError):
        config_from_dict({"ecos": {"probe": "carrier-pigeon"}})


def test_bad_values_raise_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        config_from_dict({"server": {"listenPort": "abc"}})
    with pytest.raises(ConfigurationError):
        config_from_dict({"hsi": "left"})
    with pytest.raises(ConfigurationError):
        config_from_dict(["not", "an", "object"])


def test_configuration_error_is_value_error() -> None:
    with pytest.raises(ValueError):
        config_from_dict({"ecos": {"handshake": "get(1, info)"}})


def test_defaults_are_independent() -> None:
    a = GatewayConfig()
    b = GatewayConfig()
    a.station.handshake.append("get(1, foo)")
    assert b.station.handshake == ["get(1, info)", "get(1, status)"]
