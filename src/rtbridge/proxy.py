"""The poll loop that moves data from an acquisition source to a sink.

One cycle ("pass") polls every event object and every selected continuous
object, merges the fragments into the record pool, flushes the completed
prefix to the sink and reports what happened. Everything runs on the calling
thread; cancellation is checked between cycles only.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from typing import Iterable, Optional, Sequence

from .core.assembler import RecordAssembler
from .core.channels import ChannelSelection, select_channels
from .core.flush import FlushPolicy
from .core.models import (
    DEFAULT_FRAGMENT_SIZE,
    CycleStats,
    Event,
    EventRecord,
    FlushBatch,
    Fragment,
    StreamHeader,
)
from .core.timing import StreamTimingState
from .errors import ConnectionFailedError, SinkWriteError
from .sinks.base import StreamSink
from .sources.base import AcquisitionObject, FragmentSource

logger = logging.getLogger(__name__)


class BridgeState(enum.Enum):
    INIT = "init"
    STREAMING = "streaming"
    ABORTED = "aborted"


class PollLoop:
    """
    Drive source -> assembler -> flush policy -> sink, one cycle at a time.

    Parameters
    ----------
    source:
        Acquisition system implementing :class:`FragmentSource`.
    sink:
        Destination for continuous data.
    event_sink:
        Destination for events; defaults to ``sink``.
    channel:
        Channel allow-list, see :func:`select_channels`.
    sample_rate:
        Used for the stream header when the source does not report one.
    """

    def __init__(
        self,
        source: FragmentSource,
        sink: StreamSink,
        *,
        event_sink: Optional[StreamSink] = None,
        channel: str | Iterable[str] | None = None,
        application_name: str = "rtbridge",
        fragment_size: int = DEFAULT_FRAGMENT_SIZE,
        sample_rate: Optional[float] = None,
        poll_interval: float = 0.0,
    ) -> None:
        self.source = source
        self.sink = sink
        self.event_sink = event_sink if event_sink is not None else sink
        self.requested_channels = channel
        self.application_name = application_name
        self.fragment_size = int(fragment_size)
        self.poll_interval = max(0.0, float(poll_interval))

        self.state = BridgeState.INIT
        self.timing = StreamTimingState()
        self.header: Optional[StreamHeader] = None
        self.header_written = False
        self.pass_number = 0

        self.selection: Optional[ChannelSelection] = None
        self.labels: tuple[str, ...] = ()
        self.assembler: Optional[RecordAssembler] = None
        self.flush_policy = FlushPolicy(self.fragment_size)
        self._continuous: list[AcquisitionObject] = []
        self._events: list[AcquisitionObject] = []
        self._configured_rate = sample_rate
        self._reported_rate: Optional[float] = None

    # ------------------------------------------------------------------ startup
    def start(self) -> None:
        """Connect, discover objects, open streams and resolve the channel selection."""
        if self.state is not BridgeState.INIT:
            return

        if not self.source.connect():
            self.state = BridgeState.ABORTED
            raise ConnectionFailedError("failed to connect to the acquisition system")

        if self.source.identify(self.application_name):
            logger.info("Registered with acquisition system as %r", self.application_name)
        else:
            logger.warning("Failed to set the application name")

        objects = self.source.list_objects()
        if not objects:
            logger.warning("Acquisition system reported no objects")

        continuous = [obj for obj in objects if obj.is_continuous]
        self.selection = select_channels(self.requested_channels, [obj.name for obj in continuous])
        selected = [obj for obj in continuous if obj.name in self.selection]

        # never-polled objects stay closed so nothing queues up for them
        opened: list[AcquisitionObject] = []
        for obj in objects:
            if not (obj.is_event or obj in selected):
                continue
            if self.source.open_stream(obj.name):
                opened.append(obj)
            else:
                logger.error("Failed to open stream for %s", obj.name)

        self._continuous = [obj for obj in selected if obj in opened]
        self._events = [obj for obj in opened if obj.is_event]

        closed = [obj.name for obj in selected if obj not in self._continuous]
        if closed:
            logger.warning("Leaving out channels whose stream did not open: %s", ", ".join(closed))
        self.labels = tuple(obj.name for obj in self._continuous)

        channel_ids = [
            obj.channel_id if obj.channel_id is not None else continuous.index(obj)
            for obj in self._continuous
        ]
        self.assembler = RecordAssembler(channel_ids, fragment_size=self.fragment_size)
        self.state = BridgeState.STREAMING
        logger.info(
            "Streaming %d channels (%s) and %d event objects",
            len(self.labels),
            ", ".join(self.labels),
            len(self._events),
        )

    # ------------------------------------------------------------------ header
    @property
    def sample_rate(self) -> float:
        if self._reported_rate is not None:
            return self._reported_rate
        if self._configured_rate:
            return float(self._configured_rate)
        return 0.0

    def build_header(self) -> StreamHeader:
        if self.sample_rate <= 0.0:
            logger.warning("Sample rate unknown, writing header with fsample=0")
        return StreamHeader(sample_rate=self.sample_rate, labels=self.labels)

    # ------------------------------------------------------------------ cycle steps
    def _translate_events(self, records: Sequence[EventRecord]) -> list[Event]:
        events: list[Event] = []
        for record in records:
            sample = self.timing.sample_offset(record.timestamp)
            if sample is None:
                continue
            events.append(
                Event(
                    type="ttl",
                    value=record.ttl_value,
                    sample=sample,
                    timestamp=record.timestamp,
                    label=record.label,
                )
            )
        return events

    def _poll_events(self, stats: CycleStats) -> None:
        for obj in self._events:
            result = self.source.poll_events(obj.name)
            if not result.ok:
                logger.warning(
                    "Failed to get new events from stream %s on pass %d", obj.name, stats.pass_number
                )
                stats.objects_failed.append(obj.name)
                continue
            if result.returned == 0:
                logger.debug("No new events from %s on pass %d", obj.name, stats.pass_number)
                continue
            logger.info(
                "Retrieved %d new events from %s with %d dropped.",
                result.returned,
                obj.name,
                result.dropped,
            )

            events = self._translate_events(result.records)
            stats.events_skipped += result.returned - len(events)
            if not events:
                logger.debug("Stream timing not known yet, dropping %d events", result.returned)
                continue
            try:
                self.event_sink.write_events(events)
            except SinkWriteError as exc:
                logger.error("Failed to write %d events: %s", len(events), exc)
                continue
            stats.events_written += len(events)

    def _poll_continuous(self, stats: CycleStats) -> list[Fragment]:
        fragments: list[Fragment] = []
        for obj in self._continuous:
            result = self.source.poll_continuous(obj.name)
            if not result.ok or result.returned == 0:
                logger.warning(
                    "Failed to get new data for stream %s on pass %d", obj.name, stats.pass_number
                )
                stats.objects_failed.append(obj.name)
                continue
            logger.info(
                "Retrieved %d records for %s with %d dropped.",
                result.returned,
                obj.name,
                result.dropped,
            )
            if not all(fragment.valid for fragment in result.fragments):
                logger.warning("Some samples from %s were not valid", obj.name)
            if self._reported_rate is None:
                for fragment in result.fragments:
                    if fragment.sample_rate > 0:
                        self._reported_rate = float(fragment.sample_rate)
                        break
            fragments.extend(result.fragments)
        return fragments

    def _write_batch(self, batch: FlushBatch, stats: CycleStats) -> None:
        first = not self.header_written
        try:
            if first:
                if self.header is None:
                    self.header = self.build_header()
                self.sink.write_data(batch.data, header=self.header, append=False)
            else:
                self.sink.write_data(batch.data, append=True)
        except SinkWriteError as exc:
            stats.write_failed = True
            logger.error(
                "Failed to write %d records (%d samples), data is lost: %s",
                batch.record_count,
                batch.sample_count,
                exc,
            )
            return

        if first:
            self.header_written = True
            stats.header_written = self.header
        self.timing = self.timing.advance(batch, self.fragment_size)

    def run_cycle(self) -> CycleStats:
        """Run a single poll cycle and return its statistics."""
        if self.state is BridgeState.INIT:
            self.start()
        if self.state is not BridgeState.STREAMING:
            raise RuntimeError(f"cannot poll in state {self.state.value}")
        assert self.assembler is not None

        self.pass_number += 1
        stats = CycleStats(pass_number=self.pass_number)
        started = time.perf_counter()

        self._poll_events(stats)

        fragments = self._poll_continuous(stats)
        invalid_before = self.assembler.invalid_count
        stats.fragments_merged = self.assembler.merge_many(fragments)
        stats.fragments_invalid = self.assembler.invalid_count - invalid_before

        batch = self.flush_policy.flush(self.assembler.pool)
        if batch is not None:
            stats.records_flushed = batch.record_count
            stats.records_partial = len(batch.partial_timestamps)
            logger.info("writing %d records", batch.record_count)
            self._write_batch(batch, stats)

        stats.records_remaining = len(self.assembler.pool)
        stats.duration_ms = (time.perf_counter() - started) * 1000.0
        logger.info(
            "pass %d, there are %d records remaining in the pool",
            self.pass_number,
            stats.records_remaining,
        )
        logger.debug(
            "pass %d took %.3f ms: %d fragments merged, %d invalid, %d records flushed (%d partial)",
            self.pass_number,
            stats.duration_ms,
            stats.fragments_merged,
            stats.fragments_invalid,
            stats.records_flushed,
            stats.records_partial,
        )
        return stats

    # ------------------------------------------------------------------ main loop
    def run(
        self,
        stop_event: Optional[threading.Event] = None,
        *,
        max_cycles: Optional[int] = None,
    ) -> int:
        """
        Poll until ``stop_event`` is set or ``max_cycles`` cycles have run.

        Returns the number of cycles executed by this call.
        """
        stop = stop_event or threading.Event()
        self.start()
        cycles = 0
        while not stop.is_set():
            if max_cycles is not None and cycles >= max_cycles:
                break
            self.run_cycle()
            cycles += 1
            if self.poll_interval > 0.0:
                stop.wait(self.poll_interval)
        logger.info(
            "Stopped after %d passes, %d incomplete records were written",
            self.pass_number,
            self.flush_policy.forced_total,
        )
        return cycles

    def close(self) -> None:
        """Release the source and the sinks."""
        self.source.close()
        self.sink.close()
        if self.event_sink is not self.sink:
            self.event_sink.close()


__all__ = ["BridgeState", "PollLoop"]
