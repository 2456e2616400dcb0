"""Mapping between hardware timestamps and sample indices of the output stream."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

from .models import FlushBatch


@dataclass(frozen=True)
class StreamTimingState:
    """
    Immutable timing information accumulated over successful flushes.

    ``first_sample_timestamp`` is the hardware timestamp of sample 0 in the
    output stream. ``timestamp_per_sample`` is estimated from the first and the
    most recently written record and stays ``None`` until at least two records
    have been written.
    """

    first_sample_timestamp: Optional[int] = None
    timestamp_per_sample: Optional[float] = None
    samples_written: int = 0

    @property
    def established(self) -> bool:
        """True once event timestamps can be converted to sample offsets."""
        return (
            self.first_sample_timestamp is not None
            and self.timestamp_per_sample is not None
            and self.timestamp_per_sample > 0
        )

    def advance(self, batch: FlushBatch, fragment_size: int) -> "StreamTimingState":
        """Return the state after ``batch`` has been appended to the stream."""
        if batch.record_count == 0:
            return self

        first = self.first_sample_timestamp
        if first is None:
            first = int(batch.timestamps[0])

        # sample index of the first sample of the last record in this batch
        last_index = self.samples_written + (batch.record_count - 1) * fragment_size
        per_sample = self.timestamp_per_sample
        if last_index > 0:
            per_sample = (int(batch.timestamps[-1]) - first) / last_index

        return replace(
            self,
            first_sample_timestamp=first,
            timestamp_per_sample=per_sample,
            samples_written=self.samples_written + batch.sample_count,
        )

    def sample_offset(self, timestamp: int) -> Optional[float]:
        """Convert a hardware timestamp to a (fractional) sample index."""
        if not self.established:
            return None
        assert self.first_sample_timestamp is not None
        assert self.timestamp_per_sample is not None
        return (int(timestamp) - self.first_sample_timestamp) / self.timestamp_per_sample


__all__ = ["StreamTimingState"]
