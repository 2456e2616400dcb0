"""Reassembly of per-channel fragments into multi-channel records.

Fragments for one hardware timestamp arrive in any order, possibly spread
over several poll cycles. :class:`RecordAssembler` keeps an insertion-ordered
pool of in-flight records and merges each fragment into the record with the
exact same timestamp, creating it on first sight.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Dict, Iterable, Iterator, Sequence

import numpy as np

from .models import DEFAULT_FRAGMENT_SIZE, Fragment, Record

logger = logging.getLogger(__name__)


class RecordPool:
    """
    Insertion-ordered records with exact-timestamp lookup.

    Records are only ever appended at the tail and evicted from the head, so
    the pool order equals the order in which timestamps were first seen.
    """

    def __init__(self) -> None:
        self._records: Deque[Record] = deque()
        self._by_stamp: Dict[int, Record] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Record]:
        return iter(self._records)

    def __getitem__(self, index: int) -> Record:
        return self._records[index]

    def get(self, timestamp: int) -> Record | None:
        return self._by_stamp.get(int(timestamp))

    def append(self, record: Record) -> None:
        if record.timestamp in self._by_stamp:
            raise ValueError(f"record for timestamp {record.timestamp} already pooled")
        self._records.append(record)
        self._by_stamp[record.timestamp] = record

    def pop_prefix(self, count: int) -> list[Record]:
        """Remove and return the ``count`` oldest records."""
        if count < 0 or count > len(self._records):
            raise IndexError("prefix length out of range")
        evicted: list[Record] = []
        for _ in range(count):
            record = self._records.popleft()
            del self._by_stamp[record.timestamp]
            evicted.append(record)
        return evicted

    def timestamps(self) -> list[int]:
        return [record.timestamp for record in self._records]


class RecordAssembler:
    """Merge fragments for the selected channels into the record pool."""

    def __init__(
        self,
        channel_ids: Sequence[int],
        *,
        fragment_size: int = DEFAULT_FRAGMENT_SIZE,
        pool: RecordPool | None = None,
    ) -> None:
        if fragment_size <= 0:
            raise ValueError("fragment_size must be positive")
        self.channel_ids = tuple(int(cid) for cid in channel_ids)
        if len(set(self.channel_ids)) != len(self.channel_ids):
            raise ValueError("channel ids must be unique")
        self.fragment_size = int(fragment_size)
        self.pool = pool if pool is not None else RecordPool()
        self._rows = {cid: row for row, cid in enumerate(self.channel_ids)}

        self.invalid_count = 0
        self.duplicate_count = 0
        self.unselected_count = 0

    @property
    def n_channels(self) -> int:
        return len(self.channel_ids)

    def merge(self, fragment: Fragment) -> bool:
        """
        Merge one fragment into its record.

        Returns ``False`` when the fragment was rejected (invalid, wrong length
        or not part of the channel selection).
        """
        row = self._rows.get(int(fragment.channel_id))
        if row is None:
            self.unselected_count += 1
            logger.debug(
                "Ignoring fragment for unselected channel %d at %d",
                fragment.channel_id,
                fragment.timestamp,
            )
            return False

        samples = np.asarray(fragment.samples).reshape(-1)
        if not fragment.valid or samples.size != self.fragment_size:
            self.invalid_count += 1
            logger.warning(
                "Dropping invalid fragment for channel %d at %d (%d samples)",
                fragment.channel_id,
                fragment.timestamp,
                samples.size,
            )
            return False

        record = self.pool.get(fragment.timestamp)
        if record is None:
            record = Record.empty(fragment.timestamp, self.n_channels, self.fragment_size)
            self.pool.append(record)
        elif record.present[row]:
            # last write wins
            self.duplicate_count += 1
            logger.debug(
                "Duplicate fragment for channel %d at %d overwrites earlier data",
                fragment.channel_id,
                fragment.timestamp,
            )

        record.data[row, :] = samples
        record.present[row] = True
        record.fragment_count += 1
        record.complete = record.complete or bool(np.all(record.present))
        return True

    def merge_many(self, fragments: Iterable[Fragment]) -> int:
        """Merge a batch of fragments and return how many were accepted."""
        accepted = 0
        for fragment in fragments:
            if self.merge(fragment):
                accepted += 1
        return accepted

    def complete_flags(self) -> list[bool]:
        return [record.complete for record in self.pool]


__all__ = ["RecordPool", "RecordAssembler"]
