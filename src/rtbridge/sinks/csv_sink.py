"""CSV file sink: one row per sample, one column per channel."""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Optional, Sequence

import numpy as np

from ..core.models import Event, StreamHeader
from ..errors import SinkWriteError

logger = logging.getLogger(__name__)

EVENT_COLUMNS = ("sample", "type", "value", "offset", "duration", "timestamp", "label")


def events_path_for(path: Path) -> Path:
    """Return the sibling file used for events, ``<stem>_events.csv``."""
    return path.with_name(f"{path.stem}_events.csv")


class CsvSink:
    """
    Write the continuous stream to ``path`` and events to a sibling file.

    Starting a new stream (``append=False``) truncates both files and writes a
    header row of channel labels.
    """

    def __init__(self, path: str | Path, *, events_path: str | Path | None = None) -> None:
        self.path = Path(path).expanduser()
        self.events_path = Path(events_path).expanduser() if events_path else events_path_for(self.path)
        self.samples_written = 0
        self._events_started = False

    def write_data(
        self,
        samples: np.ndarray,
        *,
        header: Optional[StreamHeader] = None,
        append: bool = True,
    ) -> None:
        block = np.asarray(samples)
        mode = "a" if append else "w"
        if not append and header is None:
            raise SinkWriteError("a header is required when starting a new stream")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open(mode, newline="", encoding="utf-8") as fh:
                writer = csv.writer(fh)
                if not append:
                    assert header is not None
                    writer.writerow(["sample", *header.labels])
                    self.samples_written = 0
                first = self.samples_written
                for offset, column in enumerate(block.T):
                    writer.writerow([first + offset, *(f"{value:.9g}" for value in column)])
        except OSError as exc:
            raise SinkWriteError(f"failed to write {self.path}: {exc}") from exc
        self.samples_written += block.shape[1]

    def write_events(self, events: Sequence[Event]) -> None:
        if not events:
            return
        mode = "a" if self._events_started else "w"
        try:
            self.events_path.parent.mkdir(parents=True, exist_ok=True)
            with self.events_path.open(mode, newline="", encoding="utf-8") as fh:
                writer = csv.writer(fh)
                if not self._events_started:
                    writer.writerow(EVENT_COLUMNS)
                for event in events:
                    writer.writerow(
                        [
                            f"{event.sample:.3f}",
                            event.type,
                            event.value,
                            event.offset,
                            event.duration,
                            event.timestamp,
                            event.label,
                        ]
                    )
        except OSError as exc:
            raise SinkWriteError(f"failed to write {self.events_path}: {exc}") from exc
        self._events_started = True

    def close(self) -> None:
        return


__all__ = ["CsvSink", "EVENT_COLUMNS", "events_path_for"]
