"""Concurrent transfer loops over an open DeviceSession.

The engine runs two daemon threads per session:

- ``ArducomReceiver`` performs blocking bulk reads and publishes RECEIVED
  chunks as they arrive.
- ``ArducomSender`` drains an ordered command queue, performs one bulk
  write per payload and publishes a SENT chunk for each.

Stopping sets a ``threading.Event`` (the receive loop exits at its next
iteration boundary) and enqueues a ``Shutdown`` marker behind any pending
sends, so queued payloads are written before the sender exits.
"""
from __future__ import annotations

import errno
import logging
import queue
import threading
from typing import Callable, List, Optional

import usb.core

from ..errors import SendRejectedError, TransferFailedError
from ..models import Direction, OutboundCommand, SendPayload, Shutdown, TransferChunk

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096  # bytes
READ_TIMEOUT_MS = 0  # wait indefinitely
WRITE_TIMEOUT_MS = 0  # wait indefinitely
TRANSFER_ERROR_BACKOFF = 0.1  # seconds
THREAD_JOIN_TIMEOUT = 1.0  # seconds

# errno values libusb reports once the device has been unplugged
DEVICE_GONE_ERRNOS = frozenset({errno.ENODEV, errno.ESHUTDOWN})


class TransferEngine:
    """Receive and send workers for one DeviceSession.

    The engine is single-use: ``start`` once, ``stop`` once the session
    ends. Chunks are delivered to subscribers from the worker thread that
    produced them, one at a time.

    Example:
        >>> engine = TransferEngine(session)
        >>> engine.subscribe_chunks(lambda c: print(c.direction, c.payload))
        <function>
        >>> engine.start()
        >>> engine.submit(b"hello")
        >>> engine.stop()
    """

    def __init__(self,
                 session,
                 read_size: int = READ_CHUNK_SIZE,
                 read_timeout_ms: int = READ_TIMEOUT_MS,
                 write_timeout_ms: int = WRITE_TIMEOUT_MS,
                 on_device_lost: Optional[Callable[[], None]] = None):
        """Initialize the engine.

        Args:
            session: Open DeviceSession (anything with read/write)
            read_size: Maximum bytes per bulk read
            read_timeout_ms: Bulk read timeout, 0 waits indefinitely
            write_timeout_ms: Bulk write timeout, 0 waits indefinitely
            on_device_lost: Called once from the receiver thread when the
                device disappears underneath a read
        """
        self._session = session
        self._read_size = read_size
        self._read_timeout_ms = read_timeout_ms
        self._write_timeout_ms = write_timeout_ms
        self._on_device_lost = on_device_lost

        # Threading
        self._stop_event = threading.Event()
        # Orders the running check in submit against the Shutdown marker
        self._submit_lock = threading.Lock()
        self._command_queue: queue.Queue[OutboundCommand] = queue.Queue()
        self._reader_thread: Optional[threading.Thread] = None
        self._sender_thread: Optional[threading.Thread] = None

        # Callbacks
        self._chunk_callbacks: List[Callable[[TransferChunk], None]] = []
        self._callback_lock = threading.Lock()

        # Serializes chunk construction and delivery across both workers
        self._delivery_lock = threading.Lock()
        self._last_direction: Optional[Direction] = None

        # Statistics
        self._bytes_received = 0
        self._bytes_sent = 0
        self._failed_transfers = 0
        self._last_error: Optional[TransferFailedError] = None

    def start(self) -> None:
        """Start the receiver and sender threads."""
        if self._reader_thread is not None:
            raise RuntimeError("TransferEngine can only be started once")

        self._reader_thread = threading.Thread(
            target=self._reader_loop,
            daemon=True,
            name="ArducomReceiver"
        )
        self._sender_thread = threading.Thread(
            target=self._sender_loop,
            daemon=True,
            name="ArducomSender"
        )
        self._reader_thread.start()
        self._sender_thread.start()
        logger.info("Transfer engine started")

    def stop(self, timeout: float = THREAD_JOIN_TIMEOUT) -> None:
        """Stop both workers.

        Sends queued before this call are still written. Each join is
        bounded by ``timeout``, so a receiver stuck in an indefinite read
        cannot block the caller. Safe to call from a worker thread.

        A receiver blocked in an indefinite read (``read_timeout_ms=0``)
        outlives the join and exits only once that read returns.
        """
        if self._sender_thread is None:
            self._stop_event.set()
            return

        self._enqueue_shutdown()

        current = threading.current_thread()
        for thread in (self._sender_thread, self._reader_thread):
            if thread is None or thread is current or not thread.is_alive():
                continue
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning(f"{thread.name} still running after {timeout}s")

        logger.info(
            f"Transfer engine stopped ({self._bytes_received} bytes received, "
            f"{self._bytes_sent} bytes sent, {self._failed_transfers} failed transfers)"
        )

    def is_running(self) -> bool:
        """True between ``start`` and ``stop``."""
        return self._reader_thread is not None and not self._stop_event.is_set()

    def submit(self, data: bytes) -> None:
        """Queue ``data`` for the sender thread.

        Raises:
            SendRejectedError: If the payload is empty or the engine is not running
        """
        if not data:
            raise SendRejectedError("Refusing to send an empty payload")
        with self._submit_lock:
            if not self.is_running():
                raise SendRejectedError("Transfer engine is not running")
            self._command_queue.put(SendPayload(bytes(data)))

    def subscribe_chunks(self,
                         callback: Callable[[TransferChunk], None]
                         ) -> Callable[[], None]:
        """Subscribe to chunks in both directions.

        Returns:
            Unsubscribe function
        """
        with self._callback_lock:
            self._chunk_callbacks.append(callback)

        def unsubscribe():
            with self._callback_lock:
                if callback in self._chunk_callbacks:
                    self._chunk_callbacks.remove(callback)

        return unsubscribe

    @property
    def bytes_received(self) -> int:
        return self._bytes_received

    @property
    def bytes_sent(self) -> int:
        return self._bytes_sent

    @property
    def failed_transfers(self) -> int:
        return self._failed_transfers

    @property
    def last_error(self) -> Optional[TransferFailedError]:
        """Most recent absorbed transfer failure, if any."""
        return self._last_error

    # Internal methods

    def _reader_loop(self) -> None:
        """Read from the IN endpoint until stopped or the device vanishes."""
        logger.debug("Receiver thread started")

        while not self._stop_event.is_set():
            try:
                data = self._session.read(self._read_size, self._read_timeout_ms)
            except usb.core.USBTimeoutError:
                continue
            except usb.core.USBError as e:
                if self._stop_event.is_set():
                    break
                if e.errno in DEVICE_GONE_ERRNOS:
                    logger.warning(f"Device gone during bulk read: {e}")
                    self._handle_device_lost()
                    break
                self._record_failure(f"Bulk read failed: {e}")
                self._stop_event.wait(TRANSFER_ERROR_BACKOFF)
                continue
            except Exception as e:
                if self._stop_event.is_set():
                    break
                self._record_failure(f"Receiver error: {e}")
                self._stop_event.wait(TRANSFER_ERROR_BACKOFF)
                continue

            if not data:
                continue

            if self._stop_event.is_set():
                logger.debug(f"Dropping {len(data)} bytes read after stop")
                break

            self._bytes_received += len(data)
            self._emit(Direction.RECEIVED, data)

        logger.debug("Receiver thread exiting")

    def _sender_loop(self) -> None:
        """Write queued payloads in submission order until Shutdown."""
        logger.debug("Sender thread started")

        while True:
            command = self._command_queue.get()
            if isinstance(command, Shutdown):
                break

            data = command.data
            try:
                written = self._session.write(data, self._write_timeout_ms)
            except Exception as e:
                self._record_failure(f"Bulk write of {len(data)} bytes failed: {e}")
                continue

            if written != len(data):
                logger.warning(f"Short write: {written} of {len(data)} bytes sent")
            else:
                logger.debug(f"{written} of {len(data)} bytes sent")

            self._bytes_sent += len(data)
            self._emit(Direction.SENT, data)

        logger.debug("Sender thread exiting")

    def _emit(self, direction: Direction, payload: bytes) -> None:
        """Build the next chunk and hand it to subscribers."""
        with self._delivery_lock:
            starts_new_group = direction is not self._last_direction
            self._last_direction = direction
            chunk = TransferChunk(
                payload=bytes(payload),
                direction=direction,
                starts_new_group=starts_new_group,
            )
            self._notify_chunk_callbacks(chunk)

    def _notify_chunk_callbacks(self, chunk: TransferChunk) -> None:
        with self._callback_lock:
            callbacks = list(self._chunk_callbacks)

        for callback in callbacks:
            try:
                callback(chunk)
            except Exception as e:
                logger.error(f"Error in chunk callback: {e}")

    def _enqueue_shutdown(self) -> None:
        """Set the stop signal and queue Shutdown behind every accepted send."""
        with self._submit_lock:
            self._stop_event.set()
            self._command_queue.put(Shutdown())

    def _record_failure(self, message: str) -> None:
        self._failed_transfers += 1
        self._last_error = TransferFailedError(message)
        logger.error(message)

    def _handle_device_lost(self) -> None:
        """Stop both loops and tell the owner the device is gone.

        Runs on the receiver thread, so it must not join it.
        """
        self._enqueue_shutdown()

        if self._on_device_lost is not None:
            try:
                self._on_device_lost()
            except Exception as e:
                logger.error(f"Error in device-lost handler: {e}")
