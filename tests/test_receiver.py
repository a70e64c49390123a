import queue
import time

from tether.network_io import TransportClosed
from tether.protocol import decode, encode, encode_ack
from tether.receiver import ReliableReceiver

PEER = ("127.0.0.1", 5001)
OTHER_PEER = ("127.0.0.1", 5002)


class DummyNet:
    def __init__(self):
        self.sent = []

    def transmit(self, data, addr):
        self.sent.append((data, addr))
        return True

    def acks(self):
        return [decode(data).sequence_number for data, _ in self.sent]


def _make_receiver():
    net = DummyNet()
    delivered = []
    receiver = ReliableReceiver(net, delivered.append)
    return receiver, net, delivered


def test_in_order_frames_are_delivered_and_acked():
    receiver, net, delivered = _make_receiver()

    for seq, value in enumerate(b"hi"):
        assert receiver.handle_datagram(encode(seq, value), PEER)
    assert receiver.handle_datagram(encode(2), PEER)

    assert delivered == [ord("h"), ord("i"), None]
    assert net.sent == [
        (encode_ack(0), PEER),
        (encode_ack(1), PEER),
        (encode_ack(2), PEER),
    ]
    assert receiver.expected_sequence_number == 3
    assert receiver.stats.end_markers == 1


def test_gap_replays_last_ack():
    receiver, net, delivered = _make_receiver()
    for seq in range(3):
        receiver.handle_datagram(encode(seq, 0x30 + seq), PEER)
    net.sent.clear()

    assert not receiver.handle_datagram(encode(5, 0x35), PEER)

    assert delivered == [0x30, 0x31, 0x32]
    assert net.acks() == [2]
    assert receiver.expected_sequence_number == 3


def test_duplicate_is_not_delivered_twice():
    receiver, net, delivered = _make_receiver()
    receiver.handle_datagram(encode(0, 0x41), PEER)
    receiver.handle_datagram(encode(0, 0x41), PEER)

    assert delivered == [0x41]
    assert net.acks() == [0, 0]
    assert receiver.stats.acks_resent == 1


def test_nothing_to_replay_before_first_delivery():
    receiver, net, delivered = _make_receiver()

    assert not receiver.resend_last_ack()
    assert not receiver.handle_datagram(encode(1, 0x41), PEER)

    assert net.sent == []
    assert delivered == []


def test_corrupt_frame_is_dropped_silently():
    receiver, net, delivered = _make_receiver()
    raw = bytearray(encode(0, 0x41))
    raw[0] ^= 0x80

    assert not receiver.handle_datagram(bytes(raw), PEER)
    assert not receiver.handle_datagram(b"", PEER)

    assert delivered == []
    assert net.sent == []
    assert receiver.peer is None
    assert receiver.stats.corrupt_frames == 2


def test_new_peer_restarts_sequence_space():
    receiver, net, delivered = _make_receiver()
    receiver.handle_datagram(encode(0, 0x41), PEER)
    receiver.handle_datagram(encode(1, 0x42), PEER)

    assert receiver.handle_datagram(encode(0, 0x61), OTHER_PEER)

    assert receiver.peer == OTHER_PEER
    assert receiver.expected_sequence_number == 1
    assert delivered == [0x41, 0x42, 0x61]
    assert net.sent[-1] == (encode_ack(0), OTHER_PEER)
    assert receiver.stats.peer_resets == 1


def test_new_peer_mid_stream_gets_no_stale_ack():
    receiver, net, delivered = _make_receiver()
    receiver.handle_datagram(encode(0, 0x41), PEER)
    net.sent.clear()

    assert not receiver.handle_datagram(encode(4, 0x45), OTHER_PEER)

    assert net.sent == []
    assert receiver.expected_sequence_number == 0


def test_status_reports_counters():
    receiver, net, delivered = _make_receiver()
    receiver.handle_datagram(encode(0, 1), PEER)
    receiver.handle_datagram(encode(3, 1), PEER)

    status = receiver.status()
    assert status["peer"] == PEER
    assert status["expected_sequence_number"] == 1
    assert status["delivered"] == 1
    assert status["out_of_order"] == 1
    assert status["acks_sent"] == 1
    assert status["acks_resent"] == 1


class QueueNet(DummyNet):
    """DummyNet whose receive() serves an inbox queue until close()."""

    def __init__(self):
        super().__init__()
        self.inbox = queue.Queue()

    def receive(self):
        item = self.inbox.get()
        if item is None:
            raise TransportClosed()
        return item

    def close(self):
        self.inbox.put(None)


def test_failing_sink_does_not_stop_listening():
    net = QueueNet()
    calls = []

    def sink(payload):
        calls.append(payload)
        if len(calls) == 1:
            raise OSError("disk full")

    receiver = ReliableReceiver(net, sink)
    receiver.start()
    try:
        net.inbox.put((encode(0, 0x41), PEER))
        net.inbox.put((encode(0, 0x41), PEER))

        deadline = time.time() + 2.0
        while not net.sent and time.time() < deadline:
            time.sleep(0.005)

        assert receiver._thread.is_alive()
        assert calls == [0x41, 0x41]
        assert receiver.expected_sequence_number == 1
        assert receiver.stats.delivered == 1
        assert net.sent == [(encode_ack(0), PEER)]
    finally:
        receiver.close()

    assert not receiver._thread.is_alive()
