"""
Wire format for Tether frames.

Every frame is a fixed 8 byte header optionally followed by one payload byte:

  I   sequence_number
  I   checksum (CRC-32 of sequence_number + payload)
  B   payload (optional)

The same layout carries data and acknowledgments. A frame without a payload
means "ACK" when it reaches the sender and "end of stream" when it reaches
the receiver.
"""

import struct
import zlib
from dataclasses import dataclass
from typing import Optional, Tuple

HEADER = struct.Struct("!II")
HEADER_SIZE = HEADER.size
MAX_FRAME_SIZE = HEADER_SIZE + 1
MAX_SEQUENCE_NUMBER = 0xFFFFFFFF

_SEQUENCE = struct.Struct("!I")


@dataclass(frozen=True)
class Frame:
    sequence_number: int
    checksum: int
    payload: Optional[int] = None

    @property
    def has_payload(self) -> bool:
        return self.payload is not None


@dataclass(frozen=True)
class OutboundRecord:
    """A transmitted frame kept by the sender until it is acknowledged."""

    sequence_number: int
    raw: bytes
    destination: Tuple[str, int]


def compute_checksum(sequence_number: int, payload: Optional[int] = None) -> int:
    data = _SEQUENCE.pack(sequence_number)
    if payload is not None:
        data += bytes((payload,))
    return zlib.crc32(data) & 0xFFFFFFFF


def encode(sequence_number: int, payload: Optional[int] = None) -> bytes:
    if not 0 <= sequence_number <= MAX_SEQUENCE_NUMBER:
        raise ValueError(f"sequence number out of range: {sequence_number}")
    if payload is not None and not 0 <= payload <= 0xFF:
        raise ValueError(f"payload must be a single byte: {payload}")

    header = HEADER.pack(sequence_number, compute_checksum(sequence_number, payload))
    if payload is None:
        return header
    return header + bytes((payload,))


def encode_ack(sequence_number: int) -> bytes:
    return encode(sequence_number)


def decode(data: bytes) -> Optional[Frame]:
    """
    Parse a datagram into a Frame.

    Returns None for anything that could not have come out of encode():
    short datagrams, oversized datagrams and checksum mismatches. Never
    raises, so a garbled datagram is indistinguishable from a lost one.
    """
    if len(data) < HEADER_SIZE or len(data) > MAX_FRAME_SIZE:
        return None

    sequence_number, checksum = HEADER.unpack_from(data)
    payload = data[HEADER_SIZE] if len(data) > HEADER_SIZE else None

    if compute_checksum(sequence_number, payload) != checksum:
        return None

    return Frame(sequence_number=sequence_number, checksum=checksum, payload=payload)
