"""
Client side of the FieldTrip realtime buffer protocol (version 1).

Only the write half is implemented: ``PUT_HDR``, ``PUT_DAT`` and ``PUT_EVT``.
Every request is a fixed ``version, command, bufsize`` message header
followed by a command specific payload; the server answers with a message
header whose command is ``PUT_OK`` or ``PUT_ERR``.
"""

from __future__ import annotations

import logging
import socket
import struct
from typing import Optional, Sequence
from urllib.parse import urlsplit

import numpy as np

from ..core.models import Event, StreamHeader
from ..errors import ConfigurationError, SinkWriteError

logger = logging.getLogger(__name__)

VERSION = 1
PUT_HDR = 0x0101
PUT_DAT = 0x0102
PUT_EVT = 0x0103
PUT_OK = 0x0104
PUT_ERR = 0x0105

DATATYPE_CHAR = 0
DATATYPE_INT32 = 7
DATATYPE_FLOAT32 = 9
DATATYPE_FLOAT64 = 10

CHUNK_CHANNEL_NAMES = 1

DEFAULT_PORT = 1972

_MESSAGE = struct.Struct("<HHI")
_HEADER_DEF = struct.Struct("<IIIfII")
_DATA_DEF = struct.Struct("<IIII")
_EVENT_DEF = struct.Struct("<IIIIiiiI")
_CHUNK_DEF = struct.Struct("<II")

_DTYPES = {
    np.dtype(np.float32): DATATYPE_FLOAT32,
    np.dtype(np.float64): DATATYPE_FLOAT64,
}


def parse_buffer_target(target: str) -> tuple[str, int]:
    """Split ``buffer://host:port`` into host and port."""
    parts = urlsplit(target)
    if parts.scheme != "buffer":
        raise ConfigurationError(f"Not a FieldTrip buffer target: {target!r}")
    host = parts.hostname or "localhost"
    try:
        port = parts.port or DEFAULT_PORT
    except ValueError as exc:
        raise ConfigurationError(f"Invalid port in {target!r}") from exc
    return host, port


def _serialize_value(value: object) -> tuple[int, int, bytes]:
    if isinstance(value, str):
        raw = value.encode("utf-8")
        return DATATYPE_CHAR, len(raw), raw
    return DATATYPE_INT32, 1, struct.pack("<i", int(value))


def encode_header(header: StreamHeader, dtype: np.dtype) -> bytes:
    blob = b"".join(label.encode("utf-8") + b"\0" for label in header.labels)
    chunks = _CHUNK_DEF.pack(CHUNK_CHANNEL_NAMES, len(blob)) + blob if blob else b""
    definition = _HEADER_DEF.pack(
        header.channel_count,
        0,
        0,
        float(header.sample_rate),
        _DTYPES[dtype],
        len(chunks),
    )
    payload = definition + chunks
    return _MESSAGE.pack(VERSION, PUT_HDR, len(payload)) + payload


def encode_data(samples: np.ndarray, dtype: np.dtype) -> bytes:
    """Encode a ``channels x samples`` block; the buffer stores samples row by row."""
    block = np.ascontiguousarray(np.asarray(samples).T, dtype=dtype)
    n_samples, n_channels = block.shape
    raw = block.tobytes()
    payload = _DATA_DEF.pack(n_channels, n_samples, _DTYPES[dtype], len(raw)) + raw
    return _MESSAGE.pack(VERSION, PUT_DAT, len(payload)) + payload


def encode_events(events: Sequence[Event]) -> bytes:
    parts: list[bytes] = []
    for event in events:
        type_type, type_numel, type_buf = _serialize_value(event.type)
        value_type, value_numel, value_buf = _serialize_value(event.value)
        parts.append(
            _EVENT_DEF.pack(
                type_type,
                type_numel,
                value_type,
                value_numel,
                int(round(event.sample)),
                int(event.offset),
                int(event.duration),
                len(type_buf) + len(value_buf),
            )
        )
        parts.append(type_buf)
        parts.append(value_buf)
    payload = b"".join(parts)
    return _MESSAGE.pack(VERSION, PUT_EVT, len(payload)) + payload


class FieldTripBufferSink:
    """Write headers, data and events to a FieldTrip buffer server."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = DEFAULT_PORT,
        *,
        timeout: float = 5.0,
        dtype: np.dtype | type = np.float32,
        sock: Optional[socket.socket] = None,
    ) -> None:
        self.host = host
        self.port = int(port)
        self.timeout = float(timeout)
        self.dtype = np.dtype(dtype)
        if self.dtype not in _DTYPES:
            raise ValueError(f"unsupported sample dtype {self.dtype}")
        self._sock = sock

    @classmethod
    def from_target(cls, target: str, **kwargs) -> "FieldTripBufferSink":
        host, port = parse_buffer_target(target)
        return cls(host, port, **kwargs)

    # ------------------------------------------------------------------ connection
    def _ensure_socket(self) -> socket.socket:
        if self._sock is None:
            logger.info("Connecting to FieldTrip buffer at %s:%d", self.host, self.port)
            self._sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        return self._sock

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def _recv_exact(self, sock: socket.socket, size: int) -> bytes:
        chunks: list[bytes] = []
        remaining = size
        while remaining > 0:
            chunk = sock.recv(remaining)
            if not chunk:
                raise ConnectionError("buffer server closed the connection")
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def _request(self, message: bytes, what: str) -> None:
        try:
            sock = self._ensure_socket()
            sock.sendall(message)
            version, status, bufsize = _MESSAGE.unpack(self._recv_exact(sock, _MESSAGE.size))
            if bufsize:
                self._recv_exact(sock, bufsize)
        except OSError as exc:
            # drop the connection, the next write reconnects
            self.close()
            raise SinkWriteError(f"failed to write {what} to {self.host}:{self.port}: {exc}") from exc
        if version != VERSION or status != PUT_OK:
            raise SinkWriteError(
                f"buffer server rejected {what} (version={version}, status=0x{status:04x})"
            )

    # ------------------------------------------------------------------ sink API
    def write_data(
        self,
        samples: np.ndarray,
        *,
        header: Optional[StreamHeader] = None,
        append: bool = True,
    ) -> None:
        if not append:
            if header is None:
                raise SinkWriteError("a header is required when starting a new stream")
            # a new header resets the buffer contents
            self._request(encode_header(header, self.dtype), "header")
        self._request(encode_data(samples, self.dtype), "data")
        logger.debug("Wrote %d samples to %s:%d", np.shape(samples)[1], self.host, self.port)

    def write_events(self, events: Sequence[Event]) -> None:
        if not events:
            return
        self._request(encode_events(events), "events")


__all__ = [
    "DEFAULT_PORT",
    "FieldTripBufferSink",
    "encode_data",
    "encode_events",
    "encode_header",
    "parse_buffer_target",
]
