"""Exception types shared by the bridge, its sources and its sinks."""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for all errors raised by :mod:`rtbridge`."""


class ConnectionFailedError(BridgeError):
    """The acquisition system could not be reached while starting up."""


class SinkWriteError(BridgeError):
    """A write to the output stream failed; the batch being written is lost."""


class ConfigurationError(BridgeError):
    """Configuration data is malformed or refers to things that do not exist."""


__all__ = [
    "BridgeError",
    "ConnectionFailedError",
    "SinkWriteError",
    "ConfigurationError",
]
