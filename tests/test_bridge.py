"""Tests for UsbSerialBridge (session lifecycle and relaying)."""
import errno
import queue
import threading
import time
import unittest
from unittest.mock import MagicMock, Mock, patch

import usb.core
import usb.util

from arducom.device import DeviceInfo
from arducom.errors import (
    AlreadyRunningError,
    ConnectionFailedError,
    NoOutboundEndpointError,
    PermissionDeniedError,
    SendRejectedError,
)
from arducom.models import DeviceIdentity, Direction, SessionState
from arducom.transport import Transport, UsbSerialBridge

IDENTITY = DeviceIdentity(0x2341, 0x0043)


class FakeSession:
    """Minimal DeviceSession double."""

    def __init__(self):
        self.identity = IDENTITY
        self.incoming = queue.Queue()
        self.writes = []
        self.close = Mock()

    def read(self, size, timeout_ms=0):
        try:
            item = self.incoming.get(timeout=0.01)
        except queue.Empty:
            return b""
        if isinstance(item, Exception):
            raise item
        return item

    def write(self, data, timeout_ms=0):
        self.writes.append(data)
        return len(data)


def make_device():
    device = MagicMock()
    device.idVendor = IDENTITY.vendor_id
    device.idProduct = IDENTITY.product_id
    return device


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


class TestUsbSerialBridge(unittest.TestCase):
    """Lifecycle tests with a fake session factory."""

    def setUp(self):
        self.session = FakeSession()
        self.factory = Mock(return_value=self.session)
        self.bridge = UsbSerialBridge(session_factory=self.factory)
        self.statuses = []
        self.chunks = []
        self.bridge.subscribe_status(self.statuses.append)
        self.bridge.subscribe_chunks(self.chunks.append)
        self.device = make_device()

    def tearDown(self):
        self.bridge.stop()

    def test_is_transport(self):
        self.assertIsInstance(self.bridge, Transport)

    def test_initial_state(self):
        self.assertFalse(self.bridge.is_running())
        self.assertIs(self.bridge.status.state, SessionState.IDLE)
        self.assertIsNone(self.bridge.engine)

    def test_start(self):
        self.bridge.start(self.device)

        self.assertTrue(self.bridge.is_running())
        self.factory.assert_called_once_with(self.device, baudrate=9600, interface=1)
        self.assertEqual([s.state for s in self.statuses], [SessionState.RUNNING])
        self.assertEqual(self.statuses[0].device, IDENTITY)

    def test_start_with_device_info(self):
        """A DeviceInfo from discovery is unwrapped to its handle."""
        info = DeviceInfo(identity=IDENTITY, name="Arduino Uno R3", device=self.device)

        self.bridge.start(info)

        self.factory.assert_called_once_with(self.device, baudrate=9600, interface=1)

    def test_custom_baudrate(self):
        bridge = UsbSerialBridge(baudrate=115200, session_factory=self.factory)
        bridge.start(self.device)
        try:
            self.factory.assert_called_once_with(self.device, baudrate=115200, interface=1)
        finally:
            bridge.stop()

    def test_second_start_rejected(self):
        """A second start fails fast and leaves the first session usable."""
        self.bridge.start(self.device)

        with self.assertRaises(AlreadyRunningError):
            self.bridge.start(make_device())

        self.assertEqual(self.factory.call_count, 1)
        self.assertTrue(self.bridge.is_running())
        self.bridge.submit(b"still here")
        self.assertTrue(wait_for(lambda: self.session.writes == [b"still here"]))
        self.assertEqual([s.state for s in self.statuses], [SessionState.RUNNING])

    def test_permission_denied(self):
        """Denied permission: one FAILED notification, no open attempt."""
        with self.assertRaises(PermissionDeniedError):
            self.bridge.start(self.device, permission_granted=False)

        self.factory.assert_not_called()
        self.assertEqual(len(self.statuses), 1)
        self.assertIs(self.statuses[0].state, SessionState.FAILED)
        self.assertIsInstance(self.statuses[0].error, PermissionDeniedError)
        self.assertFalse(self.bridge.is_running())

    def test_open_failure(self):
        """A session start error is published once and re-raised."""
        self.factory.side_effect = NoOutboundEndpointError("No out endpoint found")

        with self.assertRaises(NoOutboundEndpointError):
            self.bridge.start(self.device)

        self.assertEqual(len(self.statuses), 1)
        self.assertIs(self.statuses[0].state, SessionState.FAILED)
        self.assertIsInstance(self.statuses[0].error, NoOutboundEndpointError)
        self.assertFalse(self.bridge.is_running())

    def test_unexpected_factory_error(self):
        """Any other error from opening still gives exactly one FAILED status."""
        self.factory.side_effect = AttributeError("'NoneType' object has no attribute 'idVendor'")

        with self.assertRaises(ConnectionFailedError) as ctx:
            self.bridge.start(self.device)

        self.assertIsInstance(ctx.exception.__cause__, AttributeError)
        self.assertEqual([s.state for s in self.statuses], [SessionState.FAILED])
        self.assertIs(self.statuses[0].error, ctx.exception)
        self.assertFalse(self.bridge.is_running())

    def test_invalid_baudrate_rejected(self):
        """A baud rate outside the 32-bit line coding field fails at construction."""
        with self.assertRaises(ValueError):
            UsbSerialBridge(baudrate=-1, session_factory=self.factory)
        with self.assertRaises(ValueError):
            UsbSerialBridge(baudrate=2 ** 32, session_factory=self.factory)

        self.factory.assert_not_called()

    def test_retry_after_failure(self):
        self.factory.side_effect = [NoOutboundEndpointError("No out endpoint found"), self.session]

        with self.assertRaises(NoOutboundEndpointError):
            self.bridge.start(self.device)
        self.bridge.start(self.device)

        self.assertTrue(self.bridge.is_running())

    def test_submit_without_session(self):
        with self.assertRaises(SendRejectedError):
            self.bridge.submit(b"data")

    def test_submit_empty_payload(self):
        """Empty payloads are rejected and never written."""
        self.bridge.start(self.device)

        with self.assertRaises(SendRejectedError):
            self.bridge.submit(b"")
        with self.assertRaises(SendRejectedError):
            self.bridge.submit(None)

        self.bridge.stop()
        self.assertEqual(self.session.writes, [])

    def test_chunks_relayed(self):
        """Received and sent chunks reach bridge subscribers."""
        self.bridge.start(self.device)

        self.session.incoming.put(b"hello")
        self.assertTrue(wait_for(lambda: len(self.chunks) == 1))
        self.bridge.submit(b"world")
        self.assertTrue(wait_for(lambda: len(self.chunks) == 2))

        self.assertEqual([(c.direction, c.payload, c.starts_new_group) for c in self.chunks], [
            (Direction.RECEIVED, b"hello", True),
            (Direction.SENT, b"world", True),
        ])

    def test_new_session_starts_new_group(self):
        """Group tracking restarts with every session."""
        self.bridge.start(self.device)
        self.session.incoming.put(b"a")
        self.assertTrue(wait_for(lambda: len(self.chunks) == 1))
        self.bridge.stop()

        second = FakeSession()
        self.factory.return_value = second
        self.bridge.start(self.device)
        second.incoming.put(b"b")
        self.assertTrue(wait_for(lambda: len(self.chunks) == 2))

        self.assertTrue(self.chunks[1].starts_new_group)

    def test_detach(self):
        """Detachment tears down the session and stops delivery."""
        self.bridge.start(self.device)

        self.bridge.on_device_detached()

        self.assertFalse(self.bridge.is_running())
        self.session.close.assert_called_once()
        self.assertEqual([s.state for s in self.statuses],
                         [SessionState.RUNNING, SessionState.DETACHED])

        self.session.incoming.put(b"ghost")
        time.sleep(0.1)
        self.assertEqual(self.chunks, [])
        with self.assertRaises(SendRejectedError):
            self.bridge.submit(b"x")

    def test_detach_when_idle(self):
        self.bridge.on_device_detached()
        self.assertEqual(self.statuses, [])

    def test_device_lost_during_read(self):
        """ENODEV from a read is handled like a detachment."""
        self.bridge.start(self.device)

        self.session.incoming.put(usb.core.USBError("No such device", errno=errno.ENODEV))

        self.assertTrue(wait_for(lambda: self.bridge.status.state is SessionState.DETACHED))
        self.assertFalse(self.bridge.is_running())
        self.session.close.assert_called_once()

    def test_stop_is_idempotent(self):
        self.bridge.start(self.device)

        self.bridge.stop()
        self.bridge.stop()

        self.session.close.assert_called_once()
        self.assertEqual([s.state for s in self.statuses],
                         [SessionState.RUNNING, SessionState.STOPPED])

    def test_stop_drains_queued_sends(self):
        self.bridge.start(self.device)
        for i in range(5):
            self.bridge.submit(bytes([i + 1]))

        self.bridge.stop()

        self.assertEqual(self.session.writes, [b"\x01", b"\x02", b"\x03", b"\x04", b"\x05"])

    def test_status_callback_error_is_contained(self):
        def bad_callback(status):
            raise ValueError("Test exception")

        self.bridge.subscribe_status(bad_callback)
        self.bridge.start(self.device)

        self.assertTrue(self.bridge.is_running())
        self.assertEqual(len(self.statuses), 1)

    def test_unsubscribe_status(self):
        callback = Mock()
        unsub = self.bridge.subscribe_status(callback)
        unsub()

        self.bridge.start(self.device)
        callback.assert_not_called()

    def test_context_manager(self):
        with UsbSerialBridge(session_factory=self.factory) as bridge:
            bridge.start(self.device)
            self.assertTrue(bridge.is_running())
        self.assertFalse(bridge.is_running())
        self.session.close.assert_called_once()


@patch('usb.util.dispose_resources')
@patch('usb.util.release_interface')
@patch('usb.util.claim_interface')
class TestUsbSerialBridgeWithDeviceSession(unittest.TestCase):
    """Bridge on top of the real DeviceSession with a mocked pyusb device."""

    def _device(self, endpoints):
        device = make_device()
        device.is_kernel_driver_active.return_value = False
        intf = MagicMock()
        intf.endpoints.return_value = tuple(endpoints)
        cfg = MagicMock()
        cfg.__getitem__.return_value = intf
        device.get_active_configuration.return_value = cfg
        return device

    def test_missing_out_endpoint(self, mock_claim, mock_release, mock_dispose):
        """Only bulk IN: start fails, one FAILED status, handle closed."""
        in_ep = MagicMock(bEndpointAddress=0x83, bmAttributes=usb.util.ENDPOINT_TYPE_BULK)
        device = self._device((in_ep,))
        bridge = UsbSerialBridge()
        statuses = []
        bridge.subscribe_status(statuses.append)

        with self.assertRaises(NoOutboundEndpointError):
            bridge.start(device)

        self.assertEqual([s.state for s in statuses], [SessionState.FAILED])
        mock_dispose.assert_called_once_with(device)
        self.assertFalse(bridge.is_running())

    def test_device_info_without_handle(self, mock_claim, mock_release, mock_dispose):
        """A DeviceInfo with no pyusb handle fails with one FAILED status."""
        info = DeviceInfo(identity=IDENTITY, name="Arduino Uno R3", device=None)
        bridge = UsbSerialBridge()
        statuses = []
        bridge.subscribe_status(statuses.append)

        with self.assertRaises(ConnectionFailedError):
            bridge.start(info)

        self.assertEqual([s.state for s in statuses], [SessionState.FAILED])
        mock_claim.assert_not_called()
        self.assertFalse(bridge.is_running())

    def test_round_trip(self, mock_claim, mock_release, mock_dispose):
        """Bytes written by the device come back as chunks; sends hit the OUT endpoint."""
        in_ep = MagicMock(bEndpointAddress=0x83, bmAttributes=usb.util.ENDPOINT_TYPE_BULK)
        out_ep = MagicMock(bEndpointAddress=0x04, bmAttributes=usb.util.ENDPOINT_TYPE_BULK)
        replies = [b"ready"]

        def read(size, timeout=None):
            if replies:
                return bytearray(replies.pop(0))
            time.sleep(0.01)
            return bytearray()

        in_ep.read.side_effect = read
        out_ep.write.side_effect = lambda data, timeout=None: len(data)

        device = self._device((out_ep, in_ep))
        bridge = UsbSerialBridge()
        chunks = []
        bridge.subscribe_chunks(chunks.append)

        bridge.start(device)
        try:
            self.assertTrue(wait_for(lambda: len(chunks) == 1))
            bridge.submit(b"ping")
            self.assertTrue(wait_for(lambda: len(chunks) == 2))
        finally:
            bridge.stop()

        self.assertEqual([c.payload for c in chunks], [b"ready", b"ping"])
        out_ep.write.assert_called_once_with(b"ping", timeout=0)
        in_ep.read.assert_any_call(4096, timeout=0)
        mock_dispose.assert_called_once_with(device)


if __name__ == '__main__':
    unittest.main()
