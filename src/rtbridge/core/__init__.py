"""Core streaming pipeline: reassembly, flushing and stream timing.

This package sits between an acquisition source and an output sink. It
collects per-channel fragments into timestamp-aligned records, decides which
records are ready to be written and tracks how hardware timestamps map onto
the output sample axis.
"""

from .assembler import RecordAssembler, RecordPool
from .channels import ChannelSelection, select_channels
from .flush import FlushPolicy, select_flushable
from .models import (
    DEFAULT_FRAGMENT_SIZE,
    CycleStats,
    Event,
    EventRecord,
    FlushBatch,
    Fragment,
    Record,
    StreamHeader,
)
from .timing import StreamTimingState

__all__ = [
    "DEFAULT_FRAGMENT_SIZE",
    "ChannelSelection",
    "CycleStats",
    "Event",
    "EventRecord",
    "FlushBatch",
    "FlushPolicy",
    "Fragment",
    "Record",
    "RecordAssembler",
    "RecordPool",
    "StreamHeader",
    "StreamTimingState",
    "select_channels",
    "select_flushable",
]
