import random
import socket
import threading
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

Address = Tuple[str, int]


class TransportClosed(Exception):
    """Raised by UdpTransport.receive() once the transport has been closed."""


@dataclass
class Impairment:
    """
    Simulated channel damage applied to outgoing datagrams.

    Used by the CLI and the tests to exercise retransmission without a real
    lossy network.
    """

    loss_rate: float = 0.0
    delay_ms: int = 0
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        self._random = random.Random(self.seed)

    def should_drop(self) -> bool:
        return self.loss_rate > 0.0 and self._random.random() < self.loss_rate

    @property
    def delay_seconds(self) -> float:
        return max(0, self.delay_ms) / 1000.0


class UdpTransport:
    """
    Thin UDP datagram layer.

    transmit() is fire-and-forget. receive() blocks until a datagram arrives
    and raises TransportClosed after close(), which is how the background
    loops on either side learn that they should exit.
    """

    def __init__(
        self,
        bind_host: str = "0.0.0.0",
        bind_port: int = 0,
        max_datagram_size: int = 64,
        poll_interval_ms: int = 100,
        impairment: Optional[Impairment] = None,
    ):
        self.max_datagram_size = max_datagram_size
        self.impairment = impairment or Impairment()
        self._closed = threading.Event()

        self.socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            self.socket.bind((bind_host, bind_port))
        except OSError:
            self.socket.close()
            raise
        # recvfrom() is not woken by close() from another thread on every
        # platform, so receive() wakes up periodically to notice it.
        self.socket.settimeout(poll_interval_ms / 1000.0)

        logger.info("UDP transport bound to %s:%d", *self.address)

    @property
    def address(self) -> Address:
        return self.socket.getsockname()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    # ------------------------------------------------------------------

    def transmit(self, data: bytes, dest_addr: Address) -> bool:
        """Send one datagram. Failures are logged and reported as False."""
        if self.closed:
            logger.debug("Transport closed, not sending %d bytes to %s", len(data), dest_addr)
            return False

        if self.impairment.should_drop():
            logger.debug("Impairment dropped %d bytes to %s", len(data), dest_addr)
            return True

        delay = self.impairment.delay_seconds
        if delay > 0:
            # The datagram is late, the caller is not.
            timer = threading.Timer(delay, self._sendto, args=(data, dest_addr))
            timer.daemon = True
            timer.start()
            return True

        return self._sendto(data, dest_addr)

    def _sendto(self, data: bytes, dest_addr: Address) -> bool:
        try:
            self.socket.sendto(data, dest_addr)
            return True
        except OSError as e:
            if self.closed:
                logger.debug("Transport closed before delayed send to %s", dest_addr)
            else:
                logger.error("Failed to send datagram to %s: %s", dest_addr, e)
            return False

    def receive(self) -> Tuple[bytes, Address]:
        """
        Block until a datagram arrives or the transport is closed.

        Socket errors on an open transport (an ICMP port-unreachable showing
        up as ConnectionResetError, for instance) are logged and skipped.
        """
        while not self.closed:
            try:
                return self.socket.recvfrom(self.max_datagram_size)
            except socket.timeout:
                continue
            except OSError as e:
                if self.closed:
                    break
                logger.error("Error in receive loop: %s", e)
        raise TransportClosed("transport closed")

    # ------------------------------------------------------------------

    def close(self) -> None:
        if self.closed:
            return
        self._closed.set()
        self.socket.close()
        logger.info("UDP transport closed")

    def __enter__(self) -> "UdpTransport":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
