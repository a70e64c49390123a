import threading
import time

import pytest

from tether.protocol import OutboundRecord, encode
from tether.window import RetransmitTimer, SendWindow

DEST = ("127.0.0.1", 6000)


def _record(seq):
    return OutboundRecord(seq, encode(seq, seq & 0xFF), DEST)


def test_capacity_is_enforced():
    window = SendWindow(2)
    assert window.try_append(_record(0))
    assert window.try_append(_record(1))
    assert window.is_full()
    assert not window.try_append(_record(2))
    assert window.sequence_numbers() == [0, 1]


def test_records_must_be_contiguous():
    window = SendWindow(4)
    window.try_append(_record(5))
    with pytest.raises(ValueError):
        window.try_append(_record(7))


def test_drain_prefix_removes_oldest():
    window = SendWindow(4)
    for seq in (5, 6, 7, 8):
        window.try_append(_record(seq))

    drained = window.drain_prefix(2)

    assert [r.sequence_number for r in drained] == [5, 6]
    assert window.sequence_numbers() == [7, 8]
    assert window.peek_oldest().sequence_number == 7


def test_wait_until_wakes_on_drain():
    window = SendWindow(1)
    window.try_append(_record(0))
    result = {}

    def waiter():
        result["empty"] = window.wait_until(window.is_empty, timeout=5.0)

    t = threading.Thread(target=waiter)
    t.start()
    t.join(timeout=0.1)
    assert t.is_alive()

    window.drain_prefix(1)
    t.join(timeout=2.0)
    assert not t.is_alive()
    assert result["empty"] is True


def test_wait_until_times_out():
    window = SendWindow(1)
    window.try_append(_record(0))
    assert window.wait_until(window.is_empty, timeout=0.05) is False


def test_timer_generations():
    fired = []
    timer = RetransmitTimer(60.0, fired.append)

    timer.arm()
    first = timer._generation
    assert timer.armed
    assert timer.is_current(first)

    # arm() on a running timer keeps it
    timer.arm()
    assert timer.is_current(first)

    timer.rearm()
    assert not timer.is_current(first)

    timer.cancel()
    assert not timer.armed
    assert fired == []


def test_timer_fires_with_its_generation():
    fired = []
    done = threading.Event()

    def callback(generation):
        fired.append(generation)
        done.set()

    timer = RetransmitTimer(0.01, callback)
    timer.arm()
    generation = timer._generation

    assert done.wait(timeout=2.0)
    assert fired == [generation]
    assert timer.is_current(generation)
    timer.cancel()
    time.sleep(0.02)
    assert fired == [generation]
