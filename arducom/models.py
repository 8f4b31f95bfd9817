"""Immutable data models shared by the bridge, its workers and observers.

All models are frozen dataclasses so they can cross thread boundaries
without copying. They are the contract between the transfer engine and
whatever renders or consumes the byte streams.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from .errors import BridgeError

USB_ID_MAX = 0xFFFF


@dataclass(frozen=True)
class DeviceIdentity:
    """USB vendor/product pair used to recognize a device.

    Attributes:
        vendor_id: USB Vendor ID (unsigned 16-bit)
        product_id: USB Product ID (unsigned 16-bit)
    """
    vendor_id: int
    product_id: int

    def __post_init__(self):
        for name in ("vendor_id", "product_id"):
            value = getattr(self, name)
            if not 0 <= value <= USB_ID_MAX:
                raise ValueError(f"{name} must be in 0..0xFFFF, got {value!r}")

    def __str__(self) -> str:
        return f"{self.vendor_id:04X}:{self.product_id:04X}"


class Direction(Enum):
    """Direction of a transfer relative to the host."""
    RECEIVED = "received"
    SENT = "sent"


@dataclass(frozen=True)
class TransferChunk:
    """One payload moved across the bridge.

    Consecutive chunks with the same direction form a logical group;
    ``starts_new_group`` is True on the first chunk of each group.

    Attributes:
        payload: Bytes received from or written to the device
        direction: RECEIVED or SENT
        starts_new_group: Whether the direction changed from the previous chunk
    """
    payload: bytes
    direction: Direction
    starts_new_group: bool = False

    def __len__(self) -> int:
        return len(self.payload)


# Send worker commands

@dataclass(frozen=True)
class SendPayload:
    """Write ``data`` to the outbound endpoint."""
    data: bytes


@dataclass(frozen=True)
class Shutdown:
    """Stop the send worker once everything queued before it is written."""
    pass


OutboundCommand = Union[SendPayload, Shutdown]


class SessionState(Enum):
    """Lifecycle state of the bridge."""
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"
    DETACHED = "detached"
    FAILED = "failed"


@dataclass(frozen=True)
class BridgeStatus:
    """Lifecycle notification published to status subscribers.

    Attributes:
        state: New lifecycle state
        error: Failure that caused a FAILED state, None otherwise
        device: Identity of the device the status refers to, if known
        timestamp: Unix timestamp when the status was produced
    """
    state: SessionState
    error: Optional[BridgeError] = None
    device: Optional[DeviceIdentity] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def is_running(self) -> bool:
        return self.state is SessionState.RUNNING

    @classmethod
    def idle(cls) -> BridgeStatus:
        """Status of a bridge that never started a session."""
        return cls(state=SessionState.IDLE)
