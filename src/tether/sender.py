import threading
import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional, Tuple

from .network_io import TransportClosed
from .protocol import MAX_SEQUENCE_NUMBER, OutboundRecord, decode, encode
from .window import RetransmitTimer, SendWindow

logger = logging.getLogger(__name__)


class SenderClosedError(Exception):
    """The sender was closed while (or before) the caller used it."""


class SequenceSpaceExhausted(Exception):
    """Every 32-bit sequence number has been used on this sender."""


class RetransmitLimitExceeded(Exception):
    """The configured number of retransmission rounds passed without an ACK."""


@dataclass
class SenderStats:
    frames_sent: int = 0
    retransmissions: int = 0
    timeouts: int = 0
    acks_accepted: int = 0
    stale_acks: int = 0
    future_acks: int = 0
    idle_acks: int = 0
    corrupt_frames: int = 0


class ReliableSender:
    """
    Go-back-N sender: sliding window, cumulative ACKs, batch retransmission.

    send() appends to a bounded window and blocks while it is full. A
    background thread listens for ACKs on the same transport and drains the
    window; a single timer resends everything outstanding whenever no ACK has
    advanced the window for ``retransmit_interval_ms``.

    The sender owns the transport and closes it in close().
    """

    def __init__(
        self,
        transport,
        destination: Tuple[str, int],
        window_size: int = 5,
        retransmit_interval_ms: int = 2000,
        max_retransmits: Optional[int] = None,
        start: bool = True,
    ):
        self.transport = transport
        self.destination = destination
        self.max_retransmits = max_retransmits
        self.window = SendWindow(window_size)
        self.timer = RetransmitTimer(retransmit_interval_ms / 1000.0, self._on_timeout)
        self.stats = SenderStats()

        self._next_sequence = 0
        self._rounds_without_progress = 0
        self._failure: Optional[RetransmitLimitExceeded] = None
        self._closed = False
        self._listener: Optional[threading.Thread] = None

        if start:
            self.start()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the acknowledgment listener."""
        if self._listener is not None:
            return
        self._listener = threading.Thread(
            target=self._listen, name="ack-listener", daemon=True
        )
        self._listener.start()
        logger.debug("Acknowledgment listener started for %s:%d", *self.destination)

    def close(self) -> None:
        """
        Stop the timer and the listener and release the transport.

        Outstanding frames are not waited for; call wait_until_empty() first
        for a clean shutdown. Safe to call more than once.
        """
        with self.window.guard:
            if self._closed:
                return
            self._closed = True
            self.timer.cancel()
            outstanding = self.window.size()
            self.window.notify_all()

        if outstanding:
            logger.warning("Closing sender with %d unacknowledged frames", outstanding)

        self.transport.close()
        if self._listener is not None and self._listener is not threading.current_thread():
            self._listener.join(timeout=1.0)

        logger.info("Sender closed")

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "ReliableSender":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Send path
    # ------------------------------------------------------------------

    def send(self, payload: Optional[int] = None) -> int:
        """
        Queue and transmit one frame, returning its sequence number.

        ``payload`` is a single byte value; None sends the end-of-stream
        marker. Blocks while the window is full.
        """
        with self.window.guard:
            self.window.wait_until(
                lambda: self._closed or self._failure is not None or not self.window.is_full()
            )
            self._raise_if_unusable()

            if self._next_sequence > MAX_SEQUENCE_NUMBER:
                raise SequenceSpaceExhausted(
                    f"sequence space exhausted after {MAX_SEQUENCE_NUMBER + 1} frames"
                )

            sequence_number = self._next_sequence
            record = OutboundRecord(
                sequence_number=sequence_number,
                raw=encode(sequence_number, payload),
                destination=self.destination,
            )
            self.window.try_append(record)

            logger.debug("Sending frame with sequence number %d", sequence_number)
            self._transmit(record)
            self.stats.frames_sent += 1
            self._next_sequence += 1

            self.timer.arm()
            return sequence_number

    def wait_until_empty(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every sent frame has been acknowledged.

        Returns False if ``timeout`` expires first.
        """
        with self.window.guard:
            logger.info(
                "Waiting for %d outstanding frames to be acknowledged", self.window.size()
            )
            drained = self.window.wait_until(
                lambda: self.window.is_empty() or self._closed or self._failure is not None,
                timeout=timeout,
            )
            if self.window.is_empty():
                return True
            if drained:
                self._raise_if_unusable()
            return False

    def _raise_if_unusable(self) -> None:
        if self._failure is not None:
            raise self._failure
        if self._closed:
            raise SenderClosedError("sender is closed")

    def _transmit(self, record: OutboundRecord) -> bool:
        return self.transport.transmit(record.raw, record.destination)

    # ------------------------------------------------------------------
    # Retransmission
    # ------------------------------------------------------------------

    def _on_timeout(self, generation: int) -> None:
        with self.window.guard:
            if self._closed or not self.timer.is_current(generation):
                return

            if self.window.is_empty():
                self.timer.cancel()
                return

            self.stats.timeouts += 1
            self._rounds_without_progress += 1
            if (
                self.max_retransmits is not None
                and self._rounds_without_progress > self.max_retransmits
            ):
                self._give_up()
                return

            logger.info("Time out. Resending unacknowledged frames.")
            self.retransmit_outstanding()
            self.timer.rearm()

    def retransmit_outstanding(self) -> int:
        """Resend every outstanding frame, oldest first. Returns how many."""
        with self.window.guard:
            records = self.window.snapshot()
            for record in records:
                self._transmit(record)
                self.stats.retransmissions += 1
                logger.debug("Re-sent frame %d", record.sequence_number)
            return len(records)

    def _give_up(self) -> None:
        oldest = self.window.peek_oldest()
        self._failure = RetransmitLimitExceeded(
            f"no acknowledgment for frame {oldest.sequence_number if oldest else '?'} "
            f"after {self.max_retransmits} retransmission rounds"
        )
        self.timer.cancel()
        self.window.notify_all()
        logger.error("%s; giving up", self._failure)

    # ------------------------------------------------------------------
    # Acknowledgments
    # ------------------------------------------------------------------

    def handle_ack(self, sequence_number: int) -> int:
        """
        Apply a cumulative acknowledgment.

        Acknowledging N acknowledges every outstanding frame up to and
        including N. Stale ACKs (below the window base) and ACKs for frames
        never sent are ignored. Returns the number of frames released.
        """
        with self.window.guard:
            oldest = self.window.peek_oldest()
            if oldest is None:
                self.stats.idle_acks += 1
                logger.debug(
                    "Ignoring ACK %d, there are no unacknowledged frames", sequence_number
                )
                return 0

            base = oldest.sequence_number
            if sequence_number < base:
                self.stats.stale_acks += 1
                logger.debug("Frame %d has already been acknowledged", sequence_number)
                return 0

            count = sequence_number - base + 1
            if count > self.window.size():
                self.stats.future_acks += 1
                logger.debug("Frame %d has never been sent", sequence_number)
                return 0

            self.window.drain_prefix(count)
            self.stats.acks_accepted += 1
            self._rounds_without_progress = 0

            if count == 1:
                logger.debug("Frame %d has been acknowledged", sequence_number)
            else:
                logger.debug(
                    "%d frames between %d and %d have been acknowledged",
                    count,
                    base,
                    sequence_number,
                )

            if self.window.is_empty():
                self.timer.cancel()
                logger.debug("All frames acknowledged")
            else:
                self.timer.rearm()
            return count

    def _listen(self) -> None:
        """Acknowledgment listener loop; exits when the transport closes."""
        while True:
            try:
                data, addr = self.transport.receive()
            except TransportClosed:
                break

            try:
                self._handle_datagram(data, addr)
            except Exception as e:
                logger.error("Error handling datagram from %s: %s", addr, e)

        logger.debug("Acknowledgment listener stopped")

    def _handle_datagram(self, data: bytes, addr: Tuple[str, int]) -> None:
        frame = decode(data)
        with self.window.guard:
            if frame is None:
                self.stats.corrupt_frames += 1
                logger.debug("Dropping malformed datagram of %d bytes from %s", len(data), addr)
                return
            if self.window.is_empty():
                self.stats.idle_acks += 1
                logger.debug("Ignoring datagram, there are no unacknowledged frames")
                return
            self.handle_ack(frame.sequence_number)

    # ------------------------------------------------------------------

    def status(self) -> Dict[str, Any]:
        """Snapshot of the window and counters."""
        with self.window.guard:
            oldest = self.window.peek_oldest()
            status: Dict[str, Any] = {
                "destination": self.destination,
                "base": oldest.sequence_number if oldest else self._next_sequence,
                "next_sequence_number": self._next_sequence,
                "window_size": self.window.capacity,
                "outstanding": self.window.size(),
                "timer_armed": self.timer.armed,
                "closed": self._closed,
                "failed": self._failure is not None,
            }
            status.update(asdict(self.stats))
            return status
