from __future__ import annotations

import json

import paramiko

from rtbridge.proxy import PollLoop
from rtbridge.remote.ssh_client import Host, LineChannel
from rtbridge.sinks.memory import MemorySink
from rtbridge.sources.base import CONTINUOUS_KIND, EVENT_KIND
from rtbridge.sources.remote import JsonlFragmentDecoder, RemoteSource, parse_object_list


def _csc(name: str, channel: int, timestamp: int, samples, nvalid=None) -> str:
    payload = {
        "object": name,
        "kind": "csc",
        "channel": channel,
        "timestamp": timestamp,
        "fs": 32000.0,
        "samples": samples,
    }
    if nvalid is not None:
        payload["nvalid"] = nvalid
    return json.dumps(payload)


class FakeChannel:
    def __init__(self, chunks, stderr=b"", exited=False):
        self.chunks = list(chunks)
        self.stderr = stderr
        self.exited = exited
        self.closed = False

    def recv_ready(self):
        return bool(self.chunks)

    def recv(self, size):
        return self.chunks.pop(0)

    def recv_stderr_ready(self):
        return bool(self.stderr)

    def recv_stderr(self, size):
        data, self.stderr = self.stderr, b""
        return data

    def exit_status_ready(self):
        return self.exited

    def close(self):
        self.closed = True


class FakeClient:
    def __init__(self, listing="[]", lines=None, fail_connect=False):
        self.listing = listing
        self.lines = lines
        self.fail_connect = fail_connect
        self.commands: list[str] = []
        self.stream_starts = 0

    def connect(self):
        if self.fail_connect:
            raise paramiko.SSHException("no route")

    def run(self, command, *, cwd=None):
        self.commands.append(command)
        return self.listing

    def open_lines(self, command, *, cwd=None):
        self.commands.append(command)
        self.stream_starts += 1
        if isinstance(self.lines, list):
            return self.lines.pop(0)
        return self.lines

    def close(self):
        pass


def test_parse_object_list_normalizes_kinds() -> None:
    objects = parse_object_list(
        '[{"name": "CSC1", "kind": "csc", "channel": 0},'
        ' {"name": "Events", "kind": "EventAcqEnt"}, {"kind": "csc"}]'
    )
    assert [o.name for o in objects] == ["CSC1", "Events"]
    assert objects[0].kind == CONTINUOUS_KIND and objects[0].channel_id == 0
    assert objects[1].kind == EVENT_KIND and objects[1].channel_id is None


def test_decoder_queues_per_object() -> None:
    decoder = JsonlFragmentDecoder()
    decoder.feed(_csc("CSC1", 0, 10, [1, 2, 3]))
    decoder.feed(_csc("CSC2", 1, 10, [4, 5, 6], nvalid=2))
    decoder.feed('{"object": "CSC1", "kind": "dropped", "count": 2}')
    decoder.feed('{"object": "Events", "kind": "event", "timestamp": 11, "ttl": 4}')

    fragments, dropped = decoder.take_fragments("CSC1")
    assert dropped == 2
    assert fragments[0].timestamp == 10
    assert fragments[0].valid
    assert fragments[0].sample_rate == 32000.0

    (partial,), _ = decoder.take_fragments("CSC2")
    assert not partial.valid

    events, _ = decoder.take_events("Events")
    assert events[0].ttl_value == 4
    assert decoder.take_fragments("CSC1") == ([], 0)


def test_decoder_counts_malformed_lines() -> None:
    decoder = JsonlFragmentDecoder()
    decoder.feed("not json")
    decoder.feed('{"kind": "csc"}')
    decoder.feed('{"object": "CSC1", "kind": "csc", "channel": 0}')
    decoder.feed("   ")
    assert decoder.malformed == 3


def test_line_channel_keeps_partial_lines_and_logs_stderr(caplog) -> None:
    channel = FakeChannel([b'{"a": 1}\n{"b"', b': 2}\n'], stderr=b"warning here\n")
    reader = LineChannel(channel)

    assert reader.read_lines() == ['{"a": 1}', '{"b": 2}']
    assert "warning here" in caplog.text
    assert reader.read_lines() == []
    assert not reader.finished


def test_remote_source_streams_opened_objects() -> None:
    listing = json.dumps(
        [
            {"name": "CSC1", "kind": "CscAcqEnt", "channel": 0},
            {"name": "Events", "kind": "EventAcqEnt"},
        ]
    )
    lines = LineChannel(FakeChannel([(_csc("CSC1", 0, 5, [0.5, 0.25]) + "\n").encode()]))
    client = FakeClient(listing=listing, lines=lines)
    source = RemoteSource(Host("rig", "rig", "acq"), "nlx-export --fast", client=client)

    assert source.connect()
    assert source.identify("bridge")
    assert [o.name for o in source.list_objects()] == ["CSC1", "Events"]
    assert source.open_stream("CSC1")
    assert source.open_stream("Events")
    assert not source.open_stream("CSC9")

    result = source.poll_continuous("CSC1")
    assert result.ok and result.returned == 1
    assert client.commands[-1] == (
        "nlx-export --fast --stream --name bridge --object CSC1 --object Events"
    )
    assert source.poll_events("Events").ok


def test_remote_source_connect_failure_returns_false() -> None:
    source = RemoteSource(Host("rig", "rig", "acq"), "nlx-export", client=FakeClient(fail_connect=True))
    assert not source.connect()


def test_exporter_is_restarted_after_it_exits() -> None:
    exited = FakeChannel([], exited=True)
    dead = LineChannel(exited)
    alive = LineChannel(FakeChannel([(_csc("CSC1", 0, 7, [1.0, 2.0]) + "\n").encode()]))
    client = FakeClient(
        listing='[{"name": "CSC1", "kind": "csc", "channel": 0}]',
        lines=[dead, alive],
    )
    source = RemoteSource(Host("rig", "rig", "acq"), "nlx-export", client=client)
    source.list_objects()
    source.open_stream("CSC1")

    first = source.poll_continuous("CSC1")
    second = source.poll_continuous("CSC1")

    assert not first.ok
    assert second.ok and second.returned == 1
    assert client.stream_starts == 2
    assert exited.closed


def test_decoder_discards_objects_outside_accept_set() -> None:
    decoder = JsonlFragmentDecoder(accept={"CSC1"})
    decoder.feed(_csc("CSC1", 0, 1, [1.0]))
    decoder.feed(_csc("CSC2", 1, 1, [2.0]))

    assert decoder.queued("CSC1") == 1
    assert decoder.queued("CSC2") == 0
    assert decoder.ignored == 1


def test_excluded_channel_is_neither_requested_nor_queued() -> None:
    listing = json.dumps(
        [
            {"name": "CSC1", "kind": "csc", "channel": 0},
            {"name": "CSC2", "kind": "csc", "channel": 1},
        ]
    )
    channel = FakeChannel([])
    client = FakeClient(listing=listing, lines=LineChannel(channel))
    source = RemoteSource(Host("rig", "rig", "acq"), "exp", client=client)
    sink = MemorySink()
    loop = PollLoop(source, sink, channel=["-CSC2"], fragment_size=2)

    for stamp in range(100):
        # an exporter that ignores --object still sends both channels
        lines = _csc("CSC1", 0, stamp, [1.0, 2.0]) + "\n" + _csc("CSC2", 1, stamp, [3.0, 4.0]) + "\n"
        channel.chunks.append(lines.encode())
        loop.run_cycle()

    assert client.commands[-1] == "exp --stream --name rtbridge --object CSC1"
    assert source.decoder.queued("CSC2") == 0
    assert source.decoder.ignored == 100
    assert sink.concatenated().shape == (1, 200)
