"""Configuration objects and helpers for the bridge.

A single YAML file describes one run: which acquisition source to poll,
which channels to stream and where data and events go. The resulting typed
dataclasses (see :mod:`runtime`) are used by the CLI to wire the poll loop.
"""

from .runtime import (
    BridgeConfig,
    RemoteConfig,
    SimulationConfig,
    TargetConfig,
    config_from_mapping,
    load_config,
)

__all__ = [
    "BridgeConfig",
    "RemoteConfig",
    "SimulationConfig",
    "TargetConfig",
    "config_from_mapping",
    "load_config",
]
