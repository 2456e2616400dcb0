from __future__ import annotations

import socket
import struct

import numpy as np
import pytest

from rtbridge.core.models import Event, StreamHeader
from rtbridge.errors import ConfigurationError, SinkWriteError
from rtbridge.sinks.fieldtrip import (
    DEFAULT_PORT,
    PUT_DAT,
    PUT_ERR,
    PUT_EVT,
    PUT_HDR,
    PUT_OK,
    FieldTripBufferSink,
    encode_data,
    encode_events,
    encode_header,
    parse_buffer_target,
)

OK = struct.pack("<HHI", 1, PUT_OK, 0)


def _read_message(sock: socket.socket) -> tuple[int, bytes]:
    head = b""
    while len(head) < 8:
        head += sock.recv(8 - len(head))
    _, command, size = struct.unpack("<HHI", head)
    body = b""
    while len(body) < size:
        body += sock.recv(size - len(body))
    return command, body


@pytest.fixture
def pair():
    client, server = socket.socketpair()
    client.settimeout(2.0)
    server.settimeout(2.0)
    yield client, server
    client.close()
    server.close()


def test_parse_buffer_target() -> None:
    assert parse_buffer_target("buffer://acq-host:1973") == ("acq-host", 1973)
    assert parse_buffer_target("buffer://localhost") == ("localhost", DEFAULT_PORT)
    with pytest.raises(ConfigurationError):
        parse_buffer_target("tcp://localhost:1972")


def test_encode_header_layout() -> None:
    header = StreamHeader(sample_rate=32000.0, labels=("CSC1", "CSC2"))
    message = encode_header(header, np.dtype(np.float32))

    version, command, size = struct.unpack_from("<HHI", message)
    assert (version, command) == (1, PUT_HDR)
    assert size == len(message) - 8

    nchans, nsamples, nevents, fsample, dtype, bufsize = struct.unpack_from("<IIIfII", message, 8)
    assert (nchans, nsamples, nevents) == (2, 0, 0)
    assert fsample == pytest.approx(32000.0)
    assert dtype == 9
    chunk_type, chunk_size = struct.unpack_from("<II", message, 32)
    assert chunk_type == 1
    assert message[40:40 + chunk_size] == b"CSC1\0CSC2\0"
    assert bufsize == 8 + chunk_size


def test_encode_data_is_sample_major() -> None:
    samples = np.array([[1.0, 2.0, 3.0], [10.0, 20.0, 30.0]])
    message = encode_data(samples, np.dtype(np.float32))

    _, command, _ = struct.unpack_from("<HHI", message)
    nchans, nsamples, dtype, bufsize = struct.unpack_from("<IIII", message, 8)
    assert command == PUT_DAT
    assert (nchans, nsamples, dtype, bufsize) == (2, 3, 9, 24)
    values = np.frombuffer(message[24:], dtype="<f4")
    np.testing.assert_array_equal(values, [1, 10, 2, 20, 3, 30])


def test_encode_events_string_type_and_int_value() -> None:
    message = encode_events([Event(type="ttl", value=3, sample=41.6, timestamp=0)])

    _, command, size = struct.unpack_from("<HHI", message)
    fields = struct.unpack_from("<IIIIiiiI", message, 8)
    assert command == PUT_EVT
    assert fields == (0, 3, 7, 1, 42, 0, 0, 7)
    assert message[40:43] == b"ttl"
    assert struct.unpack_from("<i", message, 43) == (3,)
    assert size == 32 + 7


def test_first_write_sends_header_then_data(pair) -> None:
    client, server = pair
    server.sendall(OK * 3)
    sink = FieldTripBufferSink(sock=client)
    header = StreamHeader(sample_rate=1000.0, labels=("A",))

    sink.write_data(np.ones((1, 4)), header=header, append=False)
    sink.write_data(np.zeros((1, 4)))

    commands = [_read_message(server)[0] for _ in range(3)]
    assert commands == [PUT_HDR, PUT_DAT, PUT_DAT]


def test_server_error_raises_sink_write_error(pair) -> None:
    client, server = pair
    server.sendall(struct.pack("<HHI", 1, PUT_ERR, 0))
    sink = FieldTripBufferSink(sock=client)

    with pytest.raises(SinkWriteError):
        sink.write_events([Event(type="ttl", value=1, sample=0.0, timestamp=0)])


def test_closed_connection_raises_and_resets(pair) -> None:
    client, server = pair
    server.close()
    sink = FieldTripBufferSink(sock=client)

    with pytest.raises(SinkWriteError):
        sink.write_data(np.ones((1, 4)))
    assert sink._sock is None


def test_new_stream_requires_header(pair) -> None:
    client, _ = pair
    sink = FieldTripBufferSink(sock=client)
    with pytest.raises(SinkWriteError):
        sink.write_data(np.ones((1, 4)), append=False)


def test_empty_event_list_sends_nothing(pair) -> None:
    client, _ = pair
    sink = FieldTripBufferSink(sock=client)
    sink.write_events([])
    assert sink._sock is client
