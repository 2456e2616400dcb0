"""Shared dataclasses for fragments, records, headers and events."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

DEFAULT_FRAGMENT_SIZE = 512


@dataclass(slots=True)
class Fragment:
    """One polled block of samples for a single channel and timestamp."""

    channel_id: int
    timestamp: int
    samples: np.ndarray
    valid: bool = True
    sample_rate: float = 0.0


@dataclass(slots=True)
class Record:
    """
    Reassembly slot for one hardware timestamp across the selected channels.

    ``data`` rows follow the order of the selected channel set, so row ``i``
    belongs to the ``i``-th selected channel regardless of its hardware id.
    """

    timestamp: int
    data: np.ndarray
    present: np.ndarray
    complete: bool = False
    fragment_count: int = 0
    forced: bool = False

    @classmethod
    def empty(cls, timestamp: int, n_channels: int, fragment_size: int) -> "Record":
        return cls(
            timestamp=int(timestamp),
            data=np.zeros((n_channels, fragment_size), dtype=np.float64),
            present=np.zeros(n_channels, dtype=bool),
        )

    @property
    def missing(self) -> int:
        """Number of selected channels that have not reported yet."""
        return int(self.present.size - np.count_nonzero(self.present))


@dataclass(frozen=True)
class StreamHeader:
    """Layout of the continuous stream, written once with the first data block."""

    sample_rate: float
    labels: tuple[str, ...]
    n_samples: int = 0
    n_samples_pre: int = 0
    n_trials: int = 1

    @property
    def channel_count(self) -> int:
        return len(self.labels)


@dataclass(slots=True)
class EventRecord:
    """Raw event as reported by an event acquisition object."""

    timestamp: int
    event_id: int = 0
    ttl_value: int = 0
    label: str = ""


@dataclass(slots=True)
class Event:
    """Event aligned to the output stream's sample axis."""

    type: str
    value: int
    sample: float
    timestamp: int
    offset: int = 0
    duration: int = 0
    label: str = ""


@dataclass(slots=True)
class FlushBatch:
    """Records evicted from the pool in one flush, concatenated along time."""

    timestamps: tuple[int, ...]
    data: np.ndarray
    partial_timestamps: tuple[int, ...] = ()

    @property
    def record_count(self) -> int:
        return len(self.timestamps)

    @property
    def sample_count(self) -> int:
        return int(self.data.shape[1])

    @property
    def has_partial(self) -> bool:
        return bool(self.partial_timestamps)


@dataclass(slots=True)
class CycleStats:
    """Per-pass counters reported by the poll loop."""

    pass_number: int
    duration_ms: float = 0.0
    fragments_merged: int = 0
    fragments_invalid: int = 0
    records_flushed: int = 0
    records_partial: int = 0
    records_remaining: int = 0
    events_written: int = 0
    events_skipped: int = 0
    objects_failed: list[str] = field(default_factory=list)
    write_failed: bool = False
    header_written: Optional[StreamHeader] = None


__all__ = [
    "DEFAULT_FRAGMENT_SIZE",
    "Fragment",
    "Record",
    "StreamHeader",
    "EventRecord",
    "Event",
    "FlushBatch",
    "CycleStats",
]
