"""Runtime configuration for the acquisition bridge."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, MutableMapping, Optional

import yaml

from ..core.models import DEFAULT_FRAGMENT_SIZE
from ..errors import ConfigurationError

DEFAULT_BUFFER_TARGET = "buffer://localhost:1972"
SOURCE_KINDS = ("simulated", "remote")


@dataclass(slots=True)
class TargetConfig:
    """Where data and events are written (``buffer://host:port`` or a file)."""

    datafile: str = DEFAULT_BUFFER_TARGET
    dataformat: Optional[str] = None
    eventfile: str = DEFAULT_BUFFER_TARGET
    eventformat: Optional[str] = None
    timeout_s: float = 5.0


@dataclass(slots=True)
class RemoteConfig:
    """SSH access to the exporter running on the acquisition computer."""

    user: str = "acq"
    port: int = 22
    password: Optional[str] = None
    key_filename: Optional[str] = None
    command: str = "nlx-export"
    cwd: Optional[str] = None
    timeout_s: float = 10.0


@dataclass(slots=True)
class SimulationConfig:
    """Parameters of the built-in synthetic source."""

    n_channels: int = 4
    sample_rate: float = 32000.0
    records_per_poll: int = 4
    delay_probability: float = 0.0
    invalid_probability: float = 0.0
    event_every: int = 16
    seed: Optional[int] = None


@dataclass(slots=True)
class BridgeConfig:
    """
    Tuning knobs for one bridge run.

    The defaults mirror a Cheetah style setup: 512-sample records streamed
    to a FieldTrip buffer on the local machine.
    """

    acquisition: str = "fcdc284"
    source: str = "simulated"
    application_name: str = "rtbridge"
    channel: list[str] = field(default_factory=lambda: ["all"])
    fragment_size: int = DEFAULT_FRAGMENT_SIZE
    sample_rate: Optional[float] = None
    poll_interval_s: float = 0.0
    max_cycles: Optional[int] = None

    target: TargetConfig = field(default_factory=TargetConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)

    def sanitized(self) -> BridgeConfig:
        """Return a copy with derived limits applied."""
        source = str(self.source).strip().lower()
        if source not in SOURCE_KINDS:
            raise ConfigurationError(
                f"Unknown source {self.source!r}, expected one of {', '.join(SOURCE_KINDS)}"
            )
        channel = self.channel
        if isinstance(channel, str):
            channel = [channel]
        sim = self.simulation
        return BridgeConfig(
            acquisition=str(self.acquisition),
            source=source,
            application_name=str(self.application_name),
            channel=[str(item) for item in channel] or ["all"],
            fragment_size=max(1, int(self.fragment_size)),
            sample_rate=None if self.sample_rate is None else max(0.0, float(self.sample_rate)),
            poll_interval_s=max(0.0, float(self.poll_interval_s)),
            max_cycles=None if self.max_cycles is None else max(0, int(self.max_cycles)),
            target=TargetConfig(
                datafile=str(self.target.datafile),
                dataformat=self.target.dataformat or None,
                eventfile=str(self.target.eventfile),
                eventformat=self.target.eventformat or None,
                timeout_s=max(0.1, float(self.target.timeout_s)),
            ),
            remote=RemoteConfig(
                user=str(self.remote.user),
                port=int(self.remote.port),
                password=self.remote.password,
                key_filename=self.remote.key_filename,
                command=str(self.remote.command),
                cwd=self.remote.cwd,
                timeout_s=max(0.1, float(self.remote.timeout_s)),
            ),
            simulation=SimulationConfig(
                n_channels=max(1, int(sim.n_channels)),
                sample_rate=max(1.0, float(sim.sample_rate)),
                records_per_poll=max(1, int(sim.records_per_poll)),
                delay_probability=min(1.0, max(0.0, float(sim.delay_probability))),
                invalid_probability=min(1.0, max(0.0, float(sim.invalid_probability))),
                event_every=max(0, int(sim.event_every)),
                seed=None if sim.seed is None else int(sim.seed),
            ),
        )


def _known(cls: type, data: Mapping[str, Any]) -> dict[str, Any]:
    """Keep only the keys that are fields of dataclass ``cls``."""
    names = {f.name for f in fields(cls)}
    return {key: data[key] for key in data.keys() & names}


def _section(cls: type, data: Any, name: str):
    if data is None:
        return cls()
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Expected mapping for {name!r}, got {type(data).__name__}")
    return cls(**_known(cls, data))


def _normalize_mapping(data: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """Flatten a top-level ``bridge`` key if present."""
    if "bridge" in data and isinstance(data["bridge"], Mapping):
        merged: MutableMapping[str, Any] = {}
        for key, value in data.items():
            if key == "bridge":
                merged.update(value)
            else:
                merged[key] = value
        return merged
    return dict(data)


def config_from_mapping(data: Mapping[str, Any] | None) -> BridgeConfig:
    """Build :class:`BridgeConfig` from ``data`` (ignoring unknown keys)."""
    if not data:
        return BridgeConfig().sanitized()
    normalized = _normalize_mapping(data)
    payload = _known(BridgeConfig, normalized)
    payload["target"] = _section(TargetConfig, normalized.get("target"), "target")
    payload["remote"] = _section(RemoteConfig, normalized.get("remote"), "remote")
    payload["simulation"] = _section(SimulationConfig, normalized.get("simulation"), "simulation")
    try:
        return BridgeConfig(**payload).sanitized()
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid bridge configuration: {exc}") from exc


def load_config(path: str | Path | None) -> BridgeConfig:
    """
    Load configuration from ``path``.

    Missing files fall back to default :class:`BridgeConfig`.
    """
    if path is None:
        return BridgeConfig().sanitized()
    cfg_path = Path(path)
    if not cfg_path.exists():
        return BridgeConfig().sanitized()
    with cfg_path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"Expected mapping in {cfg_path}, got {type(raw).__name__}")
    return config_from_mapping(raw)


__all__ = [
    "BridgeConfig",
    "RemoteConfig",
    "SimulationConfig",
    "TargetConfig",
    "config_from_mapping",
    "load_config",
]
