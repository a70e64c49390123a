"""
Glue between the protocol endpoints and the outside world.

Builds senders and receivers from a TetherConfig, feeds files into a sender
one byte per frame, and collects delivered bytes back into whole streams on
the receiving side.
"""

import os
import logging
from typing import Callable, Iterable, List, Optional

from .config import TetherConfig, load_config
from .network_io import Impairment, UdpTransport
from .receiver import ReliableReceiver
from .sender import ReliableSender

logger = logging.getLogger(__name__)


def _make_transport(config: TetherConfig, host: str = "0.0.0.0", port: int = 0) -> UdpTransport:
    transport_cfg = config.transport
    return UdpTransport(
        bind_host=host,
        bind_port=port,
        max_datagram_size=transport_cfg.max_datagram_size,
        poll_interval_ms=transport_cfg.poll_interval_ms,
        impairment=Impairment(
            loss_rate=transport_cfg.loss_rate,
            delay_ms=transport_cfg.delay_ms,
        ),
    )


def create_sender(
    dest_host: str,
    dest_port: int,
    config: Optional[TetherConfig] = None,
    config_path: Optional[str] = None,
    window_size: Optional[int] = None,
) -> ReliableSender:
    """Create a sender bound to an ephemeral local port."""
    config = config or load_config(config_path)
    sender_cfg = config.sender

    return ReliableSender(
        _make_transport(config),
        (dest_host, dest_port),
        window_size=window_size if window_size is not None else sender_cfg.window_size,
        retransmit_interval_ms=sender_cfg.retransmit_interval_ms,
        max_retransmits=sender_cfg.max_retransmits,
    )


def create_receiver(
    on_payload: Callable[[Optional[int]], None],
    port: Optional[int] = None,
    config: Optional[TetherConfig] = None,
    config_path: Optional[str] = None,
) -> ReliableReceiver:
    """Create a receiver listening on the configured (or given) port."""
    config = config or load_config(config_path)
    if port is None:
        port = config.receiver.port

    transport = _make_transport(config, config.receiver.host, port)
    return ReliableReceiver(transport, on_payload)


# ---------------------------------------------------------------------------

def send_bytes(sender: ReliableSender, data: Iterable[int], end_stream: bool = True) -> int:
    """Send each byte as its own frame, then the end marker. Returns the byte count."""
    count = 0
    for value in data:
        sender.send(value)
        count += 1
    if end_stream:
        sender.send(None)
    return count


def send_file(
    sender: ReliableSender,
    file_path: str,
    timeout: Optional[float] = None,
) -> bool:
    """Stream a file through ``sender`` and wait until it is fully acknowledged."""
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"File not found: {file_path}")

    with open(file_path, "rb") as f:
        content = f.read()

    logger.info(
        "Sending %s (%d bytes) to %s:%d with a window size %d",
        file_path,
        len(content),
        sender.destination[0],
        sender.destination[1],
        sender.window.capacity,
    )
    send_bytes(sender, content)

    if not sender.wait_until_empty(timeout=timeout):
        logger.warning("Timeout waiting for %s to be acknowledged", file_path)
        return False

    logger.info("Done")
    return True


class StreamCollector:
    """
    Receiver sink that buffers bytes until the end-of-stream marker.

    Every byte is logged as it arrives and every completed stream is logged
    as text. Completed streams are appended to ``streams`` and, when an
    ``output_dir`` is set, written to the first free ``stream_<n>.bin``
    inside it, so earlier runs into the same directory are kept.
    """

    def __init__(
        self,
        output_dir: Optional[str] = None,
        on_stream: Optional[Callable[[bytes], None]] = None,
    ):
        self.output_dir = output_dir
        self.on_stream = on_stream
        self.streams: List[bytes] = []
        self._buffer = bytearray()
        self._next_index = 0

        if self.output_dir:
            os.makedirs(self.output_dir, exist_ok=True)

    def __call__(self, payload: Optional[int]) -> None:
        if payload is not None:
            self._buffer.append(payload)
            logger.info("Received byte %d", payload)
            return

        content = bytes(self._buffer)
        self._buffer.clear()
        self.streams.append(content)
        logger.info("Total received data: %s", content.decode("utf-8", errors="replace"))

        if self.output_dir:
            path = self._next_stream_path()
            with open(path, "wb") as f:
                f.write(content)
            logger.info("Wrote %d bytes to %s", len(content), path)

        if self.on_stream:
            self.on_stream(content)

    def _next_stream_path(self) -> str:
        while True:
            path = os.path.join(self.output_dir, f"stream_{self._next_index}.bin")
            self._next_index += 1
            if not os.path.exists(path):
                return path

    @property
    def pending(self) -> bytes:
        return bytes(self._buffer)
