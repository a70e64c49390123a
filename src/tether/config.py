import os
import yaml
from dataclasses import dataclass, field
from typing import Optional

@dataclass
class SenderConfig:
    window_size: int = 5
    retransmit_interval_ms: int = 2000
    # None keeps retransmitting for as long as the sender is open
    max_retransmits: Optional[int] = None

@dataclass
class ReceiverConfig:
    host: str = "0.0.0.0"
    port: int = 5000

@dataclass
class TransportConfig:
    max_datagram_size: int = 64
    poll_interval_ms: int = 100
    loss_rate: float = 0.0
    delay_ms: int = 0

@dataclass
class TetherConfig:
    sender: SenderConfig = field(default_factory=SenderConfig)
    receiver: ReceiverConfig = field(default_factory=ReceiverConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)

def load_config(config_path: Optional[str] = None) -> TetherConfig:
    """Load configuration from a YAML file or use defaults."""
    if config_path and os.path.exists(config_path):
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}

        return TetherConfig(
            sender=SenderConfig(**(config_data.get('sender') or {})),
            receiver=ReceiverConfig(**(config_data.get('receiver') or {})),
            transport=TransportConfig(**(config_data.get('transport') or {})),
        )

    return TetherConfig()
