"""USB serial bridge: one DeviceSession plus its TransferEngine.

Implements the Transport interface on top of the device layer. The bridge
owns at most one session at a time, turns the external permission and
detachment signals into session lifecycle transitions, and publishes
every transition (including each startup failure) to status subscribers.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from ..device import CDC_DATA_INTERFACE, DEFAULT_BAUDRATE, DeviceInfo, DeviceSession, encode_line_coding
from ..errors import (
    AlreadyRunningError,
    BridgeError,
    ConnectionFailedError,
    PermissionDeniedError,
    SendRejectedError,
    SessionStartError,
)
from ..models import BridgeStatus, DeviceIdentity, SessionState, TransferChunk
from .base import Transport
from .engine import READ_TIMEOUT_MS, THREAD_JOIN_TIMEOUT, WRITE_TIMEOUT_MS, TransferEngine

logger = logging.getLogger(__name__)


def _identity_of(device) -> Optional[DeviceIdentity]:
    try:
        return DeviceIdentity(device.idVendor, device.idProduct)
    except (AttributeError, TypeError, ValueError):
        return None


class UsbSerialBridge(Transport):
    """Transport relaying raw bytes to and from one USB CDC board.

    Responsibilities:
    - Reject a second session while one is active
    - Open the DeviceSession and start the TransferEngine
    - Tear both down on stop or detachment
    - Fan out chunks and status changes to subscribers

    Example:
        >>> from arducom.device import find_single_device
        >>> bridge = UsbSerialBridge()
        >>> bridge.subscribe_chunks(print)
        <function>
        >>> bridge.start(find_single_device())
        >>> bridge.submit(b"hello")
        >>> bridge.stop()
    """

    def __init__(
        self,
        baudrate: int = DEFAULT_BAUDRATE,
        interface: int = CDC_DATA_INTERFACE,
        read_timeout_ms: int = READ_TIMEOUT_MS,
        write_timeout_ms: int = WRITE_TIMEOUT_MS,
        join_timeout: float = THREAD_JOIN_TIMEOUT,
        session_factory: Optional[Callable[..., DeviceSession]] = None,
    ):
        """Initialize the bridge.

        Args:
            baudrate: Line rate configured on each new session
            interface: CDC data interface to claim
            read_timeout_ms: Bulk read timeout, 0 waits indefinitely
            write_timeout_ms: Bulk write timeout, 0 waits indefinitely
            join_timeout: Upper bound for waiting on each worker at teardown
            session_factory: Replacement for ``DeviceSession.open``

        Raises:
            ValueError: If ``baudrate`` cannot be encoded as a line coding
        """
        encode_line_coding(baudrate)
        self._baudrate = baudrate
        self._interface = interface
        self._read_timeout_ms = read_timeout_ms
        self._write_timeout_ms = write_timeout_ms
        self._join_timeout = join_timeout
        self._session_factory = session_factory or DeviceSession.open

        self._lifecycle_lock = threading.RLock()
        self._session: Optional[DeviceSession] = None
        self._engine: Optional[TransferEngine] = None
        self._status = BridgeStatus.idle()

        self._chunk_callbacks: List[Callable[[TransferChunk], None]] = []
        self._status_callbacks: List[Callable[[BridgeStatus], None]] = []
        self._callback_lock = threading.Lock()

    def start(self, device, permission_granted: bool = True) -> None:
        """Start a session on ``device``.

        Args:
            device: pyusb device handle, or a DeviceInfo from discovery
            permission_granted: Outcome of the front-end's permission request

        Raises:
            AlreadyRunningError: A session is already active (it is left untouched)
            PermissionDeniedError: Permission was not granted
            SessionStartError: Opening the session failed (unexpected errors
                from the session factory surface as ConnectionFailedError)
        """
        if isinstance(device, DeviceInfo):
            device = device.device

        with self._lifecycle_lock:
            if self._engine is not None:
                logger.warning("Bridge already running, ignoring start request")
                raise AlreadyRunningError("A session is already active")

            identity = _identity_of(device)

            if not permission_granted:
                logger.info(f"Permission denied for {identity}")
                self._abort(PermissionDeniedError(f"Permission denied for device {identity}"), identity)

            try:
                session = self._session_factory(
                    device,
                    baudrate=self._baudrate,
                    interface=self._interface,
                )
            except SessionStartError as e:
                logger.error(f"Init of device {identity} failed: {e}")
                self._abort(e, identity)
            except Exception as e:
                logger.error(f"Unexpected error opening device {identity}: {e}")
                self._abort(ConnectionFailedError(f"Opening device {identity} failed: {e}"), identity, cause=e)

            engine = TransferEngine(
                session,
                read_timeout_ms=self._read_timeout_ms,
                write_timeout_ms=self._write_timeout_ms,
                on_device_lost=lambda: self._on_device_lost(engine),
            )
            engine.subscribe_chunks(self._notify_chunk_callbacks)

            self._session = session
            self._engine = engine
            engine.start()

            logger.info(f"Receiving from {session.identity}")
            self._publish(BridgeStatus(state=SessionState.RUNNING, device=session.identity))

    def stop(self) -> None:
        """End the active session, if any.

        Each worker is waited for at most ``join_timeout``. With the default
        ``read_timeout_ms=0`` a receiver blocked in a bulk read on a silent
        device cannot see the stop signal: the session is closed underneath
        it and the thread stays parked in libusb until the read returns or
        the process exits. Pass a finite ``read_timeout_ms`` to have the
        receiver exit within one timeout of ``stop``.
        """
        self._teardown(SessionState.STOPPED)

    def on_device_detached(self) -> None:
        """External signal: the physical device is gone."""
        logger.info("Device detached")
        self._teardown(SessionState.DETACHED)

    def is_running(self) -> bool:
        engine = self._engine
        return engine is not None and engine.is_running()

    @property
    def status(self) -> BridgeStatus:
        """Most recently published status."""
        return self._status

    @property
    def engine(self) -> Optional[TransferEngine]:
        """Engine of the active session, None when idle."""
        return self._engine

    def submit(self, data: bytes) -> None:
        """Queue ``data`` for the device.

        Raises:
            SendRejectedError: If no session is active or ``data`` is empty
        """
        engine = self._engine
        if engine is None:
            raise SendRejectedError("No active session")
        engine.submit(data)

    def subscribe_chunks(
        self,
        callback: Callable[[TransferChunk], None]
    ) -> Callable[[], None]:
        """Subscribe to chunks of every session started on this bridge."""
        return self._subscribe(self._chunk_callbacks, callback)

    def subscribe_status(
        self,
        callback: Callable[[BridgeStatus], None]
    ) -> Callable[[], None]:
        """Subscribe to lifecycle notifications."""
        return self._subscribe(self._status_callbacks, callback)

    # Internal methods

    def _subscribe(self, callbacks: list, callback: Callable) -> Callable[[], None]:
        with self._callback_lock:
            callbacks.append(callback)

        def unsubscribe():
            with self._callback_lock:
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def _abort(self, error: BridgeError, identity: Optional[DeviceIdentity],
               cause: Optional[BaseException] = None) -> None:
        """Publish a FAILED status for ``error`` and raise it."""
        self._publish(BridgeStatus(state=SessionState.FAILED, error=error, device=identity))
        if cause is not None:
            raise error from cause
        raise error

    def _on_device_lost(self, engine: TransferEngine) -> None:
        """Called from the receiver thread when a read reports the device gone."""
        if engine is not self._engine:
            return
        self._teardown(SessionState.DETACHED)

    def _teardown(self, state: SessionState) -> None:
        with self._lifecycle_lock:
            engine, session = self._engine, self._session
            if engine is None:
                return
            self._engine = None
            self._session = None

            engine.stop(timeout=self._join_timeout)
            session.close()
            self._publish(BridgeStatus(state=state, device=session.identity))

    def _publish(self, status: BridgeStatus) -> None:
        self._status = status

        with self._callback_lock:
            callbacks = list(self._status_callbacks)

        for callback in callbacks:
            try:
                callback(status)
            except Exception as e:
                logger.error(f"Error in status callback: {e}")

    def _notify_chunk_callbacks(self, chunk: TransferChunk) -> None:
        with self._callback_lock:
            callbacks = list(self._chunk_callbacks)

        for callback in callbacks:
            try:
                callback(chunk)
            except Exception as e:
                logger.error(f"Error in chunk callback: {e}")
