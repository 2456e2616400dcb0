"""Output sinks for the assembled stream.

:func:`open_sink` picks an implementation from a target string, the same way
FieldTrip tools autodetect ``buffer://host:port`` targets:

- ``buffer://host:port`` -> :class:`FieldTripBufferSink`
- ``*.csv`` or ``dataformat="csv"`` -> :class:`CsvSink`
- ``memory://`` -> :class:`MemorySink`
"""

from __future__ import annotations

from typing import Optional

from ..errors import ConfigurationError
from .base import StreamSink
from .csv_sink import CsvSink
from .fieldtrip import FieldTripBufferSink
from .memory import MemorySink

_FORMAT_ALIASES = {
    "fcdc_buffer": "buffer",
    "fieldtrip_buffer": "buffer",
    "buffer": "buffer",
    "csv": "csv",
    "memory": "memory",
}


def detect_format(target: str, dataformat: Optional[str] = None) -> str:
    """Return ``buffer``, ``csv`` or ``memory`` for a target."""
    if dataformat:
        key = str(dataformat).strip().lower()
        if key not in _FORMAT_ALIASES:
            raise ConfigurationError(f"Unsupported output format {dataformat!r}")
        return _FORMAT_ALIASES[key]
    text = str(target).strip()
    if text.startswith("buffer://"):
        return "buffer"
    if text.startswith("memory://"):
        return "memory"
    if text.lower().endswith(".csv"):
        return "csv"
    raise ConfigurationError(f"Cannot determine output format for {target!r}")


def open_sink(target: str, dataformat: Optional[str] = None, **kwargs) -> StreamSink:
    """Create a sink for ``target``; extra keyword arguments go to the sink class."""
    fmt = detect_format(target, dataformat)
    if fmt == "buffer":
        return FieldTripBufferSink.from_target(target, **kwargs)
    if fmt == "csv":
        return CsvSink(target, **kwargs)
    return MemorySink()


__all__ = [
    "CsvSink",
    "FieldTripBufferSink",
    "MemorySink",
    "StreamSink",
    "detect_format",
    "open_sink",
]
