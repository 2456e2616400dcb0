"""Synthetic acquisition system for dry runs, demos and tests."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List

import numpy as np

from ..core.models import DEFAULT_FRAGMENT_SIZE, EventRecord, Fragment
from .base import (
    CONTINUOUS_KIND,
    EVENT_KIND,
    AcquisitionObject,
    ContinuousPoll,
    EventPoll,
)

logger = logging.getLogger(__name__)

EVENT_OBJECT_NAME = "Events"
TICKS_PER_SECOND = 1_000_000


@dataclass
class SimulationSettings:
    """
    Knobs for :class:`SimulatedSource`.

    ``delay_probability`` holds a fragment back until the next poll of its
    object, ``invalid_probability`` marks it as not fully valid. Both make
    records arrive incomplete and exercise the flush policy.
    """

    n_channels: int = 4
    sample_rate: float = 32000.0
    fragment_size: int = DEFAULT_FRAGMENT_SIZE
    records_per_poll: int = 4
    delay_probability: float = 0.0
    invalid_probability: float = 0.0
    event_every: int = 0
    start_timestamp: int = 1_000_000
    noise: float = 0.05
    seed: int | None = None

    @property
    def ticks_per_record(self) -> int:
        return int(round(self.fragment_size * TICKS_PER_SECOND / self.sample_rate))


class SimulatedSource:
    """
    In-process stand-in for a Cheetah-like acquisition server.

    Each continuous object ``CSC<n>`` produces ``records_per_poll`` new
    fragments per poll; a single ``Events`` object emits a TTL event every
    ``event_every`` records.
    """

    def __init__(self, settings: SimulationSettings | None = None, *, connectable: bool = True) -> None:
        self.settings = settings or SimulationSettings()
        if self.settings.n_channels <= 0:
            raise ValueError("n_channels must be positive")
        if self.settings.sample_rate <= 0.0:
            raise ValueError("sample_rate must be positive")
        self._rng = np.random.default_rng(self.settings.seed)
        self._connectable = connectable
        self._connected = False
        self._objects = [
            AcquisitionObject(name=f"CSC{i + 1}", kind=CONTINUOUS_KIND, channel_id=i)
            for i in range(self.settings.n_channels)
        ]
        self._objects.append(AcquisitionObject(name=EVENT_OBJECT_NAME, kind=EVENT_KIND))
        self._by_name = {obj.name: obj for obj in self._objects}
        self._open: set[str] = set()
        self._next_record: Dict[str, int] = {}
        self._backlog: Dict[str, List[Fragment]] = {}
        self.application_name: str | None = None

    # ------------------------------------------------------------------ connection
    def connect(self) -> bool:
        self._connected = self._connectable
        return self._connected

    def identify(self, application_name: str) -> bool:
        self.application_name = application_name
        return self._connected

    def list_objects(self) -> list[AcquisitionObject]:
        return list(self._objects)

    def open_stream(self, name: str) -> bool:
        if not self._connected or name not in self._by_name:
            return False
        self._open.add(name)
        self._next_record.setdefault(name, 0)
        self._backlog.setdefault(name, [])
        return True

    def close(self) -> None:
        self._connected = False
        self._open.clear()

    # ------------------------------------------------------------------ polling
    def _timestamp(self, record_index: int) -> int:
        return self.settings.start_timestamp + record_index * self.settings.ticks_per_record

    def _samples(self, channel_id: int, record_index: int) -> np.ndarray:
        cfg = self.settings
        start = record_index * cfg.fragment_size
        t = (start + np.arange(cfg.fragment_size)) / cfg.sample_rate
        freq = 5.0 + 3.0 * channel_id
        signal = np.sin(2.0 * np.pi * freq * t)
        if cfg.noise > 0:
            signal = signal + self._rng.normal(0.0, cfg.noise, cfg.fragment_size)
        return signal

    def poll_continuous(self, name: str) -> ContinuousPoll:
        obj = self._by_name.get(name)
        if obj is None or not obj.is_continuous or name not in self._open:
            return ContinuousPoll(ok=False)

        cfg = self.settings
        assert obj.channel_id is not None
        fragments = self._backlog[name]
        self._backlog[name] = []

        first = self._next_record[name]
        for index in range(first, first + cfg.records_per_poll):
            fragment = Fragment(
                channel_id=obj.channel_id,
                timestamp=self._timestamp(index),
                samples=self._samples(obj.channel_id, index),
                valid=bool(self._rng.random() >= cfg.invalid_probability),
                sample_rate=cfg.sample_rate,
            )
            if self._rng.random() < cfg.delay_probability:
                self._backlog[name].append(fragment)
            else:
                fragments.append(fragment)
        self._next_record[name] = first + cfg.records_per_poll

        return ContinuousPoll(ok=True, fragments=fragments, dropped=0)

    def poll_events(self, name: str) -> EventPoll:
        obj = self._by_name.get(name)
        if obj is None or not obj.is_event or name not in self._open:
            return EventPoll(ok=False)

        cfg = self.settings
        first = self._next_record[name]
        self._next_record[name] = first + cfg.records_per_poll
        if cfg.event_every <= 0:
            return EventPoll(ok=True)

        records = [
            EventRecord(
                timestamp=self._timestamp(index),
                event_id=index // cfg.event_every,
                ttl_value=(index // cfg.event_every) % 255 + 1,
                label=f"TTL record {index}",
            )
            for index in range(first, first + cfg.records_per_poll)
            if index % cfg.event_every == 0
        ]
        return EventPoll(ok=True, records=records)


__all__ = ["EVENT_OBJECT_NAME", "SimulationSettings", "SimulatedSource"]
