"""Decide which prefix of the record pool can be written out."""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from .assembler import RecordPool
from .models import FlushBatch

logger = logging.getLogger(__name__)


def select_flushable(pool: RecordPool) -> Optional[int]:
    """
    Return the index of the last complete record, or ``None``.

    Every record at or before the returned index is flushed, complete or not.
    Records after it stay in the pool.
    """
    for index in range(len(pool) - 1, -1, -1):
        if pool[index].complete:
            return index
    return None


class FlushPolicy:
    """Evict the flushable prefix and concatenate it into one sample block."""

    def __init__(self, fragment_size: int) -> None:
        self.fragment_size = int(fragment_size)
        self.forced_total = 0

    def flush(self, pool: RecordPool) -> FlushBatch | None:
        last = select_flushable(pool)
        if last is None:
            return None

        records = pool.pop_prefix(last + 1)
        n_channels = records[0].data.shape[0]
        data = np.zeros((n_channels, len(records) * self.fragment_size), dtype=np.float64)

        partial: list[int] = []
        for i, record in enumerate(records):
            begin = i * self.fragment_size
            data[:, begin : begin + self.fragment_size] = record.data
            if not record.complete:
                record.forced = True
                partial.append(record.timestamp)
                logger.warning(
                    "Writing incomplete record with timestamp %d (%d channels missing)",
                    record.timestamp,
                    record.missing,
                )

        self.forced_total += len(partial)
        return FlushBatch(
            timestamps=tuple(record.timestamp for record in records),
            data=data,
            partial_timestamps=tuple(partial),
        )


__all__ = ["select_flushable", "FlushPolicy"]
