"""Acquisition sources that feed fragments and events into the bridge.

- :mod:`base` defines the :class:`FragmentSource` protocol and poll results.
- :mod:`simulated` generates synthetic data in-process.
- :mod:`remote` reads an exporter's JSON lines from the acquisition host.
"""

from .base import (
    CONTINUOUS_KIND,
    EVENT_KIND,
    AcquisitionObject,
    ContinuousPoll,
    EventPoll,
    FragmentSource,
)
from .remote import JsonlFragmentDecoder, RemoteSource
from .simulated import SimulatedSource, SimulationSettings

__all__ = [
    "CONTINUOUS_KIND",
    "EVENT_KIND",
    "AcquisitionObject",
    "ContinuousPoll",
    "EventPoll",
    "FragmentSource",
    "JsonlFragmentDecoder",
    "RemoteSource",
    "SimulatedSource",
    "SimulationSettings",
]
