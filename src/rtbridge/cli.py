"""Command line entry point: ``rtbridge --config bridge.yaml``.

Press Ctrl-C to stop; the current cycle finishes before the bridge exits.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import Optional, Sequence

from .config import BridgeConfig, load_config
from .errors import BridgeError, ConnectionFailedError
from .proxy import PollLoop
from .remote.ssh_client import Host
from .sinks import StreamSink, detect_format, open_sink
from .sources.base import FragmentSource
from .sources.remote import RemoteSource
from .sources.simulated import SimulatedSource, SimulationSettings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Stream data from an acquisition system into a FieldTrip buffer"
    )
    parser.add_argument("--config", "-c", help="YAML configuration file")
    parser.add_argument(
        "--source",
        choices=("simulated", "remote"),
        help="Override the acquisition source from the config",
    )
    parser.add_argument("--acquisition", help="Host name of the acquisition computer")
    parser.add_argument(
        "--channel",
        action="append",
        help="Channel label or pattern to stream (repeatable, default: all)",
    )
    parser.add_argument("--target", help="Data target, e.g. buffer://localhost:1972 or out.csv")
    parser.add_argument("--event-target", help="Event target (defaults to the data target)")
    parser.add_argument("--max-cycles", type=int, help="Stop after this many poll cycles")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser


def _apply_overrides(cfg: BridgeConfig, args: argparse.Namespace) -> BridgeConfig:
    if args.source:
        cfg.source = args.source
    if args.acquisition:
        cfg.acquisition = args.acquisition
    if args.channel:
        cfg.channel = list(args.channel)
    if args.target:
        cfg.target.datafile = args.target
        cfg.target.dataformat = None
        if not args.event_target:
            cfg.target.eventfile = args.target
            cfg.target.eventformat = None
    if args.event_target:
        cfg.target.eventfile = args.event_target
        cfg.target.eventformat = None
    if args.max_cycles is not None:
        cfg.max_cycles = args.max_cycles
    return cfg.sanitized()


def build_source(cfg: BridgeConfig) -> FragmentSource:
    if cfg.source == "remote":
        remote = cfg.remote
        host = Host(
            name=cfg.acquisition,
            host=cfg.acquisition,
            user=remote.user,
            password=remote.password,
            port=remote.port,
            key_filename=remote.key_filename,
            timeout=remote.timeout_s,
        )
        return RemoteSource(host, remote.command, cwd=remote.cwd)

    sim = cfg.simulation
    settings = SimulationSettings(
        n_channels=sim.n_channels,
        sample_rate=sim.sample_rate,
        fragment_size=cfg.fragment_size,
        records_per_poll=sim.records_per_poll,
        delay_probability=sim.delay_probability,
        invalid_probability=sim.invalid_probability,
        event_every=sim.event_every,
        seed=sim.seed,
    )
    return SimulatedSource(settings)


def _sink_kwargs(target: str, dataformat: Optional[str], timeout: float) -> dict:
    if detect_format(target, dataformat) == "buffer":
        return {"timeout": timeout}
    return {}


def build_sinks(cfg: BridgeConfig) -> tuple[StreamSink, StreamSink]:
    """Return (data sink, event sink); one object when both point to the same target."""
    target = cfg.target
    data_sink = open_sink(
        target.datafile,
        target.dataformat,
        **_sink_kwargs(target.datafile, target.dataformat, target.timeout_s),
    )
    same = target.eventfile == target.datafile and target.eventformat == target.dataformat
    if same:
        return data_sink, data_sink
    event_sink = open_sink(
        target.eventfile,
        target.eventformat,
        **_sink_kwargs(target.eventfile, target.eventformat, target.timeout_s),
    )
    return data_sink, event_sink


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_arg_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format=LOG_FORMAT,
    )

    try:
        cfg = _apply_overrides(load_config(args.config), args)
        source = build_source(cfg)
        data_sink, event_sink = build_sinks(cfg)
    except BridgeError as exc:
        logger.error("Configuration error: %s", exc)
        return 2

    loop = PollLoop(
        source,
        data_sink,
        event_sink=event_sink,
        channel=cfg.channel,
        application_name=cfg.application_name,
        fragment_size=cfg.fragment_size,
        sample_rate=cfg.sample_rate,
        poll_interval=cfg.poll_interval_s,
    )

    stop_event = threading.Event()

    def _request_stop(signum, _frame) -> None:
        logger.info("Received signal %d, stopping after the current pass", signum)
        stop_event.set()

    previous = {
        signum: signal.signal(signum, _request_stop) for signum in (signal.SIGINT, signal.SIGTERM)
    }

    logger.info("Connecting to %s (%s source)", cfg.acquisition, cfg.source)
    try:
        loop.run(stop_event, max_cycles=cfg.max_cycles)
    except ConnectionFailedError as exc:
        logger.error("FAILED to connect to %s: %s", cfg.acquisition, exc)
        return 1
    finally:
        loop.close()
        for signum, handler in previous.items():
            signal.signal(signum, handler)
    return 0


if __name__ == "__main__":  # pragma: no cover - manual entry point
    sys.exit(main())
