import threading
import logging
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Optional, Tuple

from .network_io import TransportClosed
from .protocol import decode, encode_ack

logger = logging.getLogger(__name__)

PayloadSink = Callable[[Optional[int]], None]


@dataclass
class ReceiverStats:
    delivered: int = 0
    end_markers: int = 0
    out_of_order: int = 0
    acks_sent: int = 0
    acks_resent: int = 0
    corrupt_frames: int = 0
    peer_resets: int = 0


@dataclass(frozen=True)
class _SentAck:
    sequence_number: int
    raw: bytes
    addr: Tuple[str, int]


class ReliableReceiver:
    """
    In-order receiver for a single peer.

    Only the frame carrying exactly the expected sequence number is delivered
    to ``on_payload``; everything else triggers a replay of the last ACK so
    the sender can tell where the receiver is. A frame from a different
    address than the current peer starts a new stream at sequence 0.

    ``on_payload`` gets the byte value of each frame, or None for the
    end-of-stream marker. It runs on the receive loop's thread.
    """

    def __init__(self, transport, on_payload: PayloadSink):
        self.transport = transport
        self.on_payload = on_payload
        self.stats = ReceiverStats()

        self.peer: Optional[Tuple[str, int]] = None
        self.expected_sequence_number = 0
        self._last_ack: Optional[_SentAck] = None

        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Receive loop
    # ------------------------------------------------------------------

    def listen(self) -> None:
        """Handle datagrams until stop() or close() closes the transport."""
        logger.info("Receiver listening")
        while True:
            try:
                data, addr = self.transport.receive()
            except TransportClosed:
                break

            # A failing sink leaves the frame unacknowledged; the sender
            # will retransmit it.
            try:
                self.handle_datagram(data, addr)
            except Exception as e:
                logger.error("Error handling datagram from %s: %s", addr, e)
        logger.info("Receiver stopped listening")

    def start(self) -> None:
        """Run listen() on a background thread."""
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self.listen, name="receiver", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self.transport.close()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=1.0)

    close = stop

    def __enter__(self) -> "ReliableReceiver":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Sequencing
    # ------------------------------------------------------------------

    def handle_datagram(self, data: bytes, addr: Tuple[str, int]) -> bool:
        """
        Process one inbound datagram. Returns True if it was delivered.
        """
        frame = decode(data)
        if frame is None:
            with self._lock:
                self.stats.corrupt_frames += 1
            logger.debug("Dropping malformed datagram of %d bytes from %s", len(data), addr)
            return False

        with self._lock:
            if addr != self.peer:
                if self.peer is not None:
                    self.stats.peer_resets += 1
                logger.info("New peer %s, expecting sequence number 0", addr)
                self.peer = addr
                self.expected_sequence_number = 0
                self._last_ack = None

            if frame.sequence_number != self.expected_sequence_number:
                self.stats.out_of_order += 1
                logger.debug(
                    "Unexpected sequence number %d, expecting %d",
                    frame.sequence_number,
                    self.expected_sequence_number,
                )
                self._resend_last_ack()
                return False

            self.on_payload(frame.payload)

            if frame.payload is None:
                self.stats.end_markers += 1
                logger.info("End of stream from %s at sequence number %d", addr, frame.sequence_number)
            else:
                self.stats.delivered += 1
                logger.debug("Received byte %d with sequence number %d", frame.payload, frame.sequence_number)

            ack = _SentAck(frame.sequence_number, encode_ack(frame.sequence_number), addr)
            self._last_ack = ack
            self.expected_sequence_number += 1
            logger.debug("Sending ACK for %d", ack.sequence_number)
            self.transport.transmit(ack.raw, ack.addr)
            self.stats.acks_sent += 1
            return True

    def resend_last_ack(self) -> bool:
        """Replay the most recent ACK. Does nothing before the first delivery."""
        with self._lock:
            return self._resend_last_ack()

    def _resend_last_ack(self) -> bool:
        if self._last_ack is None:
            return False
        logger.debug("Re-sending ACK for %d", self._last_ack.sequence_number)
        self.transport.transmit(self._last_ack.raw, self._last_ack.addr)
        self.stats.acks_resent += 1
        return True

    # ------------------------------------------------------------------

    def status(self) -> Dict[str, Any]:
        with self._lock:
            status: Dict[str, Any] = {
                "peer": self.peer,
                "expected_sequence_number": self.expected_sequence_number,
            }
            status.update(asdict(self.stats))
            return status
