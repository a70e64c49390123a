"""
Tether: reliable, in-order byte streams over UDP

This package implements a go-back-N ARQ protocol with:
- CRC-32 checked frames carrying one byte each
- A bounded sliding window with cumulative acknowledgments
- Timeout-driven retransmission of the whole outstanding window
- An in-order receiver that replays its last ACK on anything unexpected
"""

__version__ = "0.1.0"

from .config import TetherConfig, load_config
from .receiver import ReliableReceiver
from .sender import ReliableSender
from .transfer import create_receiver, create_sender

__all__ = [
    'ReliableSender',
    'ReliableReceiver',
    'create_sender',
    'create_receiver',
    'TetherConfig',
    'load_config',
]
