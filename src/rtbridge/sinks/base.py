"""Interface between the poll loop and the output stream."""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

import numpy as np

from ..core.models import Event, StreamHeader


class StreamSink(Protocol):
    """
    Destination for assembled data blocks and events.

    ``write_data`` receives a ``channels x samples`` block. The first call of a
    run passes ``append=False`` together with the header; later calls append.
    Implementations raise :class:`~rtbridge.errors.SinkWriteError` when a
    write does not go through.
    """

    def write_data(
        self,
        samples: np.ndarray,
        *,
        header: Optional[StreamHeader] = None,
        append: bool = True,
    ) -> None:  # pragma: no cover - protocol
        ...

    def write_events(self, events: Sequence[Event]) -> None:  # pragma: no cover - protocol
        ...

    def close(self) -> None:  # pragma: no cover - protocol
        ...


__all__ = ["StreamSink"]
