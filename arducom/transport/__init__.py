"""Transport layer for USB serial bridging."""

from .base import Transport
from .bridge import UsbSerialBridge
from .engine import TransferEngine

__all__ = ["Transport", "UsbSerialBridge", "TransferEngine"]
