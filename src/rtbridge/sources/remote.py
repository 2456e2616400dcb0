"""
Acquisition source that talks to an exporter process over SSH.

The exporter runs on the acquisition computer and prints one JSON object per
line on stdout:

  - continuous data ::

      {"object": "CSC1", "kind": "csc", "channel": 0, "timestamp": 123456,
       "fs": 32000.0, "nvalid": 512, "samples": [...]}

  - events ::

      {"object": "Events", "kind": "event", "timestamp": 123999,
       "id": 11, "ttl": 1, "label": "TTL Input on port 0"}

  - dropped-record notices ::

      {"object": "CSC1", "kind": "dropped", "count": 3}

``<command> --list`` prints a JSON array describing the available objects,
``[{"name": "CSC1", "kind": "CscAcqEnt", "channel": 0}, ...]``.
"""

from __future__ import annotations

import json
import logging
import shlex
from collections import defaultdict
from typing import Any, Collection, Dict, List, Mapping, Optional

import numpy as np
import paramiko

from ..core.models import EventRecord, Fragment
from ..remote.ssh_client import Host, LineChannel, SSHClient
from .base import (
    CONTINUOUS_KIND,
    EVENT_KIND,
    AcquisitionObject,
    ContinuousPoll,
    EventPoll,
)

logger = logging.getLogger(__name__)

_KIND_ALIASES = {
    "csc": CONTINUOUS_KIND,
    "cscacqent": CONTINUOUS_KIND,
    "event": EVENT_KIND,
    "events": EVENT_KIND,
    "eventacqent": EVENT_KIND,
}


def normalize_kind(kind: Any) -> str:
    text = str(kind or "").strip()
    return _KIND_ALIASES.get(text.lower(), text)


def parse_object_list(payload: str) -> list[AcquisitionObject]:
    """Parse the JSON array printed by ``<command> --list``."""
    raw = json.loads(payload)
    if not isinstance(raw, list):
        raise ValueError(f"Expected a JSON list of objects, got {type(raw).__name__}")
    objects: list[AcquisitionObject] = []
    for item in raw:
        if not isinstance(item, Mapping) or "name" not in item:
            logger.warning("Skipping malformed object description: %r", item)
            continue
        channel = item.get("channel")
        objects.append(
            AcquisitionObject(
                name=str(item["name"]),
                kind=normalize_kind(item.get("kind")),
                channel_id=None if channel is None else int(channel),
            )
        )
    return objects


class JsonlFragmentDecoder:
    """
    Sort exporter lines into per-object queues until they are polled.

    When ``accept`` is given, lines for any other object are counted in
    ``ignored`` and discarded, so queues only exist for objects someone polls.
    """

    def __init__(self, accept: Optional[Collection[str]] = None) -> None:
        self._fragments: Dict[str, List[Fragment]] = defaultdict(list)
        self._events: Dict[str, List[EventRecord]] = defaultdict(list)
        self._dropped: Dict[str, int] = defaultdict(int)
        self.accept = accept
        self.malformed = 0
        self.ignored = 0

    def feed(self, line: str) -> None:
        text = line.strip()
        if not text:
            return
        try:
            record = json.loads(text)
        except json.JSONDecodeError as exc:
            self.malformed += 1
            logger.warning("Dropping malformed exporter line: %r (%s)", text[:80], exc)
            return
        if not isinstance(record, Mapping) or "object" not in record:
            self.malformed += 1
            logger.debug("Skipping exporter payload without object: %r", record)
            return

        name = str(record["object"])
        if self.accept is not None and name not in self.accept:
            self.ignored += 1
            return
        kind = normalize_kind(record.get("kind"))
        try:
            if kind == CONTINUOUS_KIND:
                self._fragments[name].append(self._to_fragment(record))
            elif kind == EVENT_KIND:
                self._events[name].append(self._to_event(record))
            elif kind == "dropped":
                self._dropped[name] += int(record.get("count", 0))
            else:
                self.malformed += 1
                logger.debug("Unknown exporter record kind %r", kind)
        except (KeyError, TypeError, ValueError) as exc:
            self.malformed += 1
            logger.warning("Bad field in exporter record for %s (%s)", name, exc)

    @staticmethod
    def _to_fragment(record: Mapping[str, Any]) -> Fragment:
        samples = np.asarray(record["samples"], dtype=np.float64)
        n_valid = int(record.get("nvalid", samples.size))
        return Fragment(
            channel_id=int(record["channel"]),
            timestamp=int(record["timestamp"]),
            samples=samples,
            valid=n_valid == samples.size,
            sample_rate=float(record.get("fs", 0.0)),
        )

    @staticmethod
    def _to_event(record: Mapping[str, Any]) -> EventRecord:
        return EventRecord(
            timestamp=int(record["timestamp"]),
            event_id=int(record.get("id", 0)),
            ttl_value=int(record.get("ttl", 0)),
            label=str(record.get("label", "")),
        )

    def take_fragments(self, name: str) -> tuple[list[Fragment], int]:
        return self._fragments.pop(name, []), self._dropped.pop(name, 0)

    def take_events(self, name: str) -> tuple[list[EventRecord], int]:
        return self._events.pop(name, []), self._dropped.pop(name, 0)

    def queued(self, name: str) -> int:
        """Number of fragments and events waiting for ``name``."""
        return len(self._fragments.get(name, ())) + len(self._events.get(name, ()))


class RemoteSource:
    """
    Poll an acquisition computer through an exporter command run over SSH.

    The exporter is started on the first poll, after all objects have been
    opened, and restarted on the poll after it exits. Its output is read
    without blocking on every poll.
    """

    def __init__(
        self,
        host: Host,
        command: str,
        *,
        cwd: Optional[str] = None,
        client: Optional[SSHClient] = None,
    ) -> None:
        self.host = host
        self.command = command
        self.cwd = cwd
        self._client = client or SSHClient(host)
        self._lines: Optional[LineChannel] = None
        self._objects: Dict[str, AcquisitionObject] = {}
        self._opened: list[str] = []
        self.decoder = JsonlFragmentDecoder(accept=self._opened)
        self.application_name = "rtbridge"

    # ------------------------------------------------------------------ connection
    def connect(self) -> bool:
        try:
            self._client.connect()
        except (paramiko.SSHException, OSError) as exc:
            logger.error("Failed to connect to %s: %s", self.host.host, exc)
            return False
        return True

    def identify(self, application_name: str) -> bool:
        self.application_name = application_name
        return True

    def list_objects(self) -> list[AcquisitionObject]:
        try:
            output = self._client.run(f"{self.command} --list", cwd=self.cwd)
            objects = parse_object_list(output)
        except (paramiko.SSHException, OSError, RuntimeError, ValueError) as exc:
            logger.error("Failed to list acquisition objects on %s: %s", self.host.host, exc)
            return []
        self._objects = {obj.name: obj for obj in objects}
        return objects

    def open_stream(self, name: str) -> bool:
        if name not in self._objects:
            return False
        if name not in self._opened:
            self._opened.append(name)
        return True

    def close(self) -> None:
        if self._lines is not None:
            self._lines.close()
            self._lines = None
        self._client.close()

    # ------------------------------------------------------------------ polling
    def _stream_command(self) -> str:
        args = ["--stream", "--name", self.application_name]
        for name in self._opened:
            args.extend(["--object", name])
        # command itself may carry its own arguments, only quote what we add
        return " ".join([self.command, *(shlex.quote(arg) for arg in args)])

    def _pump(self) -> bool:
        """Pull buffered exporter output; False when the stream is gone."""
        try:
            if self._lines is None:
                self._lines = self._client.open_lines(self._stream_command(), cwd=self.cwd)
            for line in self._lines.read_lines():
                self.decoder.feed(line)
        except (paramiko.SSHException, OSError) as exc:
            logger.error("Lost exporter stream on %s: %s", self.host.host, exc)
            self._lines = None
            return False
        if self._lines.finished:
            # the next poll starts a fresh exporter
            logger.warning("Exporter on %s exited, restarting on next poll", self.host.host)
            self._lines.close()
            self._lines = None
            return False
        return True

    def poll_continuous(self, name: str) -> ContinuousPoll:
        alive = self._pump()
        fragments, dropped = self.decoder.take_fragments(name)
        if not alive and not fragments:
            return ContinuousPoll(ok=False, dropped=dropped)
        return ContinuousPoll(ok=True, fragments=fragments, dropped=dropped)

    def poll_events(self, name: str) -> EventPoll:
        alive = self._pump()
        records, dropped = self.decoder.take_events(name)
        if not alive and not records:
            return EventPoll(ok=False, dropped=dropped)
        return EventPoll(ok=True, records=records, dropped=dropped)


__all__ = [
    "JsonlFragmentDecoder",
    "RemoteSource",
    "normalize_kind",
    "parse_object_list",
]
