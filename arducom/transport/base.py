"""Abstract base class for the transport layer.

The Transport interface is what front-ends program against: start a
session on a device, push bytes to it, and observe both byte streams and
lifecycle changes through callbacks.

Key principles:
- Immutable notifications (TransferChunk, BridgeStatus)
- Queue-based sending (submit never waits for the device)
- Pub/sub for data and status
- At most one active session per transport
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

from ..models import BridgeStatus, TransferChunk


class Transport(ABC):
    """Abstract transport interface for a USB serial device.

    Transports are responsible for:
    1. Managing the session lifecycle
    2. Relaying outbound payloads to the device
    3. Publishing transferred chunks and status changes to subscribers

    Transports do not interpret the byte stream.
    """

    @abstractmethod
    def start(self, device, permission_granted: bool = True) -> None:
        """Open a session on ``device`` and start streaming.

        Raises:
            AlreadyRunningError: If a session is already active
            SessionStartError: If the session could not be started
        """
        pass

    @abstractmethod
    def stop(self) -> None:
        """End the active session.

        Should be safe to call multiple times.
        Should clean up all resources (threads, USB handles).
        """
        pass

    @abstractmethod
    def is_running(self) -> bool:
        """Check if a session is currently active."""
        pass

    @abstractmethod
    def submit(self, data: bytes) -> None:
        """Queue raw bytes for the device.

        Raises:
            SendRejectedError: If no session is active or ``data`` is empty
        """
        pass

    @abstractmethod
    def subscribe_chunks(
        self,
        callback: Callable[[TransferChunk], None]
    ) -> Callable[[], None]:
        """Subscribe to received and sent chunks.

        Callbacks run on worker threads and should not block.

        Returns:
            Unsubscribe function to remove this callback
        """
        pass

    @abstractmethod
    def subscribe_status(
        self,
        callback: Callable[[BridgeStatus], None]
    ) -> Callable[[], None]:
        """Subscribe to lifecycle notifications.

        Returns:
            Unsubscribe function to remove this callback
        """
        pass

    def __enter__(self) -> Transport:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager support - stop on exit."""
        self.stop()
