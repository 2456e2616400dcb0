from __future__ import annotations

import numpy as np

from rtbridge.sources.simulated import EVENT_OBJECT_NAME, SimulatedSource, SimulationSettings


def _open_all(source: SimulatedSource) -> list[str]:
    assert source.connect()
    names = [obj.name for obj in source.list_objects()]
    for name in names:
        assert source.open_stream(name)
    return names


def test_objects_and_timestamps() -> None:
    settings = SimulationSettings(n_channels=2, sample_rate=1000.0, fragment_size=10, records_per_poll=3, seed=1)
    source = SimulatedSource(settings)
    names = _open_all(source)

    assert names == ["CSC1", "CSC2", EVENT_OBJECT_NAME]
    first = source.poll_continuous("CSC1")
    second = source.poll_continuous("CSC1")

    stamps = [f.timestamp for f in first.fragments + second.fragments]
    assert stamps == [1_000_000 + i * 10_000 for i in range(6)]
    assert all(f.samples.shape == (10,) for f in first.fragments)
    assert all(f.sample_rate == 1000.0 for f in first.fragments)


def test_delayed_fragments_arrive_next_poll() -> None:
    settings = SimulationSettings(n_channels=1, records_per_poll=4, delay_probability=1.0, seed=3)
    source = SimulatedSource(settings)
    _open_all(source)

    assert source.poll_continuous("CSC1").returned == 0
    assert source.poll_continuous("CSC1").returned == 4


def test_invalid_fragments_are_flagged() -> None:
    settings = SimulationSettings(n_channels=1, invalid_probability=1.0, seed=3)
    source = SimulatedSource(settings)
    _open_all(source)

    result = source.poll_continuous("CSC1")
    assert result.ok
    assert not any(f.valid for f in result.fragments)


def test_events_every_nth_record() -> None:
    settings = SimulationSettings(n_channels=1, records_per_poll=8, event_every=4, seed=0)
    source = SimulatedSource(settings)
    _open_all(source)

    result = source.poll_events(EVENT_OBJECT_NAME)
    assert [r.ttl_value for r in result.records] == [1, 2]
    assert result.records[1].timestamp - result.records[0].timestamp == 4 * settings.ticks_per_record


def test_unopened_or_unknown_object_fails() -> None:
    source = SimulatedSource(SimulationSettings(n_channels=1))
    assert not source.poll_continuous("CSC1").ok
    source.connect()
    assert not source.open_stream("CSC7")
    assert not source.poll_events("nope").ok


def test_unreachable_source_does_not_connect() -> None:
    source = SimulatedSource(connectable=False)
    assert not source.connect()
    assert not source.open_stream("CSC1")


def test_same_seed_gives_same_signal() -> None:
    a = SimulatedSource(SimulationSettings(n_channels=1, seed=42))
    b = SimulatedSource(SimulationSettings(n_channels=1, seed=42))
    _open_all(a)
    _open_all(b)
    np.testing.assert_array_equal(
        a.poll_continuous("CSC1").fragments[0].samples,
        b.poll_continuous("CSC1").fragments[0].samples,
    )
