"""
Real-time acquisition bridge.

Polls an acquisition system for fixed-size per-channel fragments, reassembles
them into timestamp-aligned multichannel records and streams completed
records to a FieldTrip buffer (or another sink).

Components:
- RecordAssembler: merges fragments into the record pool
- FlushPolicy: decides which prefix of the pool is written
- PollLoop: drives source -> assembler -> flush -> sink
- Sources: SimulatedSource, RemoteSource
- Sinks: FieldTripBufferSink, CsvSink, MemorySink
"""

__version__ = "0.3.0"

from .core import (
    FlushPolicy,
    Fragment,
    Record,
    RecordAssembler,
    RecordPool,
    StreamHeader,
    StreamTimingState,
    select_channels,
    select_flushable,
)
from .errors import BridgeError, ConfigurationError, ConnectionFailedError, SinkWriteError
from .proxy import BridgeState, PollLoop

__all__ = [
    # Pipeline
    "PollLoop", "BridgeState", "RecordAssembler", "RecordPool", "FlushPolicy",

    # Data classes
    "Fragment", "Record", "StreamHeader", "StreamTimingState",

    # Helpers
    "select_channels", "select_flushable",

    # Errors
    "BridgeError", "ConfigurationError", "ConnectionFailedError", "SinkWriteError",
]
