"""In-memory sink used for dry runs and tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from ..core.models import Event, StreamHeader
from ..errors import SinkWriteError


@dataclass(slots=True)
class DataWrite:
    samples: np.ndarray
    header: Optional[StreamHeader]
    append: bool


@dataclass
class MemorySink:
    """
    Keep every write in lists instead of sending it anywhere.

    ``fail_writes`` makes the next that many ``write_data`` calls raise
    :class:`SinkWriteError`, which is handy for exercising error paths.
    """

    writes: List[DataWrite] = field(default_factory=list)
    events: List[Event] = field(default_factory=list)
    fail_writes: int = 0
    closed: bool = False

    def write_data(
        self,
        samples: np.ndarray,
        *,
        header: Optional[StreamHeader] = None,
        append: bool = True,
    ) -> None:
        if self.fail_writes > 0:
            self.fail_writes -= 1
            raise SinkWriteError("simulated write failure")
        self.writes.append(DataWrite(np.array(samples, copy=True), header, append))

    def write_events(self, events: Sequence[Event]) -> None:
        self.events.extend(events)

    def close(self) -> None:
        self.closed = True

    @property
    def headers(self) -> list[StreamHeader]:
        return [w.header for w in self.writes if w.header is not None]

    def concatenated(self) -> np.ndarray:
        """All written samples as one ``channels x samples`` array."""
        if not self.writes:
            return np.empty((0, 0))
        return np.concatenate([w.samples for w in self.writes], axis=1)


__all__ = ["DataWrite", "MemorySink"]
