from __future__ import annotations

import numpy as np
import pytest

from rtbridge.core.assembler import RecordAssembler, RecordPool
from rtbridge.core.models import Fragment, Record

SIZE = 8


def _fragment(channel: int, timestamp: int, value: float = 1.0, *, valid: bool = True) -> Fragment:
    return Fragment(
        channel_id=channel,
        timestamp=timestamp,
        samples=np.full(SIZE, value),
        valid=valid,
    )


def test_first_fragment_creates_zero_filled_record() -> None:
    asm = RecordAssembler([0, 1], fragment_size=SIZE)
    assert asm.merge(_fragment(0, 100, 2.0))

    assert len(asm.pool) == 1
    record = asm.pool[0]
    assert record.timestamp == 100
    np.testing.assert_array_equal(record.data[0], np.full(SIZE, 2.0))
    np.testing.assert_array_equal(record.data[1], np.zeros(SIZE))
    assert record.present.tolist() == [True, False]
    assert not record.complete


def test_fragments_with_same_timestamp_share_a_record() -> None:
    asm = RecordAssembler([0, 1], fragment_size=SIZE)
    asm.merge_many([_fragment(0, 100), _fragment(0, 200), _fragment(1, 100)])

    assert asm.pool.timestamps() == [100, 200]
    assert asm.complete_flags() == [True, False]


def test_rows_follow_selection_order_not_channel_ids() -> None:
    asm = RecordAssembler([7, 3], fragment_size=SIZE)
    asm.merge(_fragment(3, 50, 3.0))
    asm.merge(_fragment(7, 50, 7.0))

    record = asm.pool.get(50)
    assert record is not None
    assert record.data[0, 0] == 7.0
    assert record.data[1, 0] == 3.0
    assert record.complete


def test_invalid_fragment_never_reaches_the_record() -> None:
    asm = RecordAssembler([0, 1], fragment_size=SIZE)
    asm.merge(_fragment(0, 100, 1.0))
    assert not asm.merge(_fragment(1, 100, 9.0, valid=False))

    record = asm.pool.get(100)
    assert record is not None
    assert record.present.tolist() == [True, False]
    np.testing.assert_array_equal(record.data[1], np.zeros(SIZE))
    assert asm.invalid_count == 1

    asm.merge(_fragment(1, 100, 4.0))
    assert record.complete


def test_wrong_length_fragment_is_rejected() -> None:
    asm = RecordAssembler([0], fragment_size=SIZE)
    fragment = Fragment(channel_id=0, timestamp=1, samples=np.ones(SIZE - 1))

    assert not asm.merge(fragment)
    assert len(asm.pool) == 0


def test_unselected_channel_is_ignored() -> None:
    asm = RecordAssembler([0, 1], fragment_size=SIZE)

    assert not asm.merge(_fragment(5, 100))
    assert len(asm.pool) == 0
    assert asm.unselected_count == 1


def test_duplicate_fragment_overwrites_and_keeps_complete() -> None:
    asm = RecordAssembler([0], fragment_size=SIZE)
    asm.merge(_fragment(0, 100, 1.0))
    asm.merge(_fragment(0, 100, 5.0))

    record = asm.pool[0]
    assert record.complete
    assert record.fragment_count == 2
    assert asm.duplicate_count == 1
    np.testing.assert_array_equal(record.data[0], np.full(SIZE, 5.0))


def test_pool_rejects_second_record_for_same_timestamp() -> None:
    pool = RecordPool()
    pool.append(Record.empty(10, 1, SIZE))
    with pytest.raises(ValueError):
        pool.append(Record.empty(10, 1, SIZE))


def test_pool_pop_prefix_keeps_tail_order_and_index() -> None:
    pool = RecordPool()
    for stamp in (30, 10, 20):
        pool.append(Record.empty(stamp, 1, SIZE))

    evicted = pool.pop_prefix(2)

    assert [r.timestamp for r in evicted] == [30, 10]
    assert pool.timestamps() == [20]
    assert pool.get(30) is None
    assert pool.get(20) is not None


def test_assembler_rejects_duplicate_channel_ids() -> None:
    with pytest.raises(ValueError):
        RecordAssembler([1, 1])
