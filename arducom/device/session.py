"""USB CDC session with an Arduino-class board.

An Arduino exposes a CDC ACM function split across two interfaces:
interface 0 carries the notification endpoint, interface 1 the bulk data
endpoints. The session claims the data interface directly (bypassing the
kernel cdc_acm driver), configures the line, and exposes blocking bulk
read/write helpers for the transfer engine.

Opening sequence:
  1. Use the active configuration (set the default one if unconfigured).
  2. Force-claim interface 1 (detach a bound kernel driver first).
  3. SET_CONTROL_LINE_STATE, then SET_LINE_CODING(9600 8N1).
  4. Pick the first bulk IN and the first bulk OUT endpoint.

A session returned by ``DeviceSession.open`` is always fully initialized;
every failure releases what was acquired before raising.
"""
from __future__ import annotations

import errno
import logging
import threading
from typing import Optional, Tuple

import usb.core
import usb.util

from ..errors import (
    ConnectionFailedError,
    InterfaceClaimError,
    NoInboundEndpointError,
    NoOutboundEndpointError,
    PermissionDeniedError,
)
from ..models import DeviceIdentity
from .line_coding import encode_line_coding

logger = logging.getLogger(__name__)

DEFAULT_BAUDRATE = 9600
CDC_DATA_INTERFACE = 1
CONTROL_TIMEOUT_MS = 1000

# Class-specific, host-to-device, recipient interface
CDC_REQUEST_TYPE = 0x21
SET_LINE_CODING = 0x20
SET_CONTROL_LINE_STATE = 0x22
CONTROL_LINE_STATE_IDLE = 0x00  # DTR and RTS deasserted


def _reattach_kernel_driver(device, interface: int) -> None:
    try:
        device.attach_kernel_driver(interface)
    except (usb.core.USBError, NotImplementedError) as e:
        logger.debug(f"Re-attaching kernel driver to interface {interface} failed: {e}")


def _release(device, interface: int, claimed: bool, reattach: bool) -> None:
    """Undo whatever ``DeviceSession.open`` acquired. Never raises."""
    if claimed:
        try:
            usb.util.release_interface(device, interface)
        except usb.core.USBError as e:
            logger.debug(f"Releasing interface {interface} failed: {e}")

    if reattach:
        _reattach_kernel_driver(device, interface)

    try:
        usb.util.dispose_resources(device)
    except usb.core.USBError as e:
        logger.error(f"Error closing USB device: {e}")


def _active_configuration(device):
    """Return the active configuration, configuring the device if needed."""
    try:
        return device.get_active_configuration()
    except usb.core.USBError as e:
        if e.errno == errno.EACCES:
            raise
        logger.debug(f"No active configuration ({e}), setting default")
        device.set_configuration()
        return device.get_active_configuration()


def _claim(device, interface: int) -> bool:
    """Claim ``interface``, detaching a kernel driver bound to it.

    Returns:
        True if a kernel driver was detached and should be re-attached on close.
    """
    detached = False
    try:
        if device.is_kernel_driver_active(interface):
            device.detach_kernel_driver(interface)
            detached = True
            logger.debug(f"Detached kernel driver from interface {interface}")
    except NotImplementedError:
        # No kernel driver concept on this platform/backend
        pass

    try:
        usb.util.claim_interface(device, interface)
    except usb.core.USBError:
        if detached:
            _reattach_kernel_driver(device, interface)
        raise
    return detached


def _find_bulk_endpoints(intf) -> Tuple[Optional[object], Optional[object]]:
    """Return the first bulk IN and first bulk OUT endpoint of ``intf``."""
    ep_in = None
    ep_out = None
    for ep in intf.endpoints():
        if usb.util.endpoint_type(ep.bmAttributes) != usb.util.ENDPOINT_TYPE_BULK:
            continue
        if usb.util.endpoint_direction(ep.bEndpointAddress) == usb.util.ENDPOINT_IN:
            if ep_in is None:
                ep_in = ep
        elif ep_out is None:
            ep_out = ep
    return ep_in, ep_out


class DeviceSession:
    """Open connection to the CDC data interface of one device.

    Use ``DeviceSession.open`` to create one. ``close`` may be called from
    any thread, any number of times.

    Example:
        >>> session = DeviceSession.open(device)
        >>> session.write(b"ping")
        4
        >>> session.read(4096)
        b'pong'
        >>> session.close()
    """

    def __init__(self, device, interface_number: int, ep_in, ep_out,
                 baudrate: int, reattach_kernel_driver: bool = False):
        self._device = device
        self._interface_number = interface_number
        self._ep_in = ep_in
        self._ep_out = ep_out
        self._baudrate = baudrate
        self._reattach = reattach_kernel_driver
        self._identity = DeviceIdentity(device.idVendor, device.idProduct)
        self._lock = threading.Lock()

    @classmethod
    def open(cls,
             device,
             baudrate: int = DEFAULT_BAUDRATE,
             interface: int = CDC_DATA_INTERFACE,
             control_timeout_ms: int = CONTROL_TIMEOUT_MS) -> DeviceSession:
        """Open ``device`` and prepare it for streaming.

        Args:
            device: pyusb ``usb.core.Device`` the caller has permission to open
            baudrate: Line rate sent with SET_LINE_CODING
            interface: CDC data interface number
            control_timeout_ms: Timeout for the two handshake requests

        Returns:
            Fully initialized DeviceSession

        Raises:
            PermissionDeniedError: The OS refused access to the device
            ConnectionFailedError: The device could not be opened/configured
            InterfaceClaimError: The data interface could not be claimed
            NoInboundEndpointError: No bulk IN endpoint on the interface
            NoOutboundEndpointError: No bulk OUT endpoint on the interface
            ValueError: ``baudrate`` does not fit the line coding field
        """
        identity = DeviceIdentity(device.idVendor, device.idProduct)
        line_coding = encode_line_coding(baudrate)

        try:
            cfg = _active_configuration(device)
        except usb.core.USBError as e:
            _release(device, interface, claimed=False, reattach=False)
            if e.errno == errno.EACCES:
                logger.error(f"Access to {identity} denied: {e}")
                raise PermissionDeniedError(f"Access to device {identity} denied") from e
            logger.error(f"Opening USB device {identity} failed: {e}")
            raise ConnectionFailedError(f"Opening device {identity} failed: {e}") from e

        try:
            intf = cfg[(interface, 0)]
            reattach = _claim(device, interface)
        except (usb.core.USBError, IndexError, KeyError) as e:
            logger.error(f"Claiming interface {interface} of {identity} failed: {e}")
            _release(device, interface, claimed=False, reattach=False)
            raise InterfaceClaimError(
                f"Claiming interface {interface} of {identity} failed: {e}"
            ) from e

        cls._configure_line(device, line_coding, control_timeout_ms)

        ep_in, ep_out = _find_bulk_endpoints(intf)
        if ep_in is None:
            logger.error(f"No bulk IN endpoint on interface {interface} of {identity}")
            _release(device, interface, claimed=True, reattach=reattach)
            raise NoInboundEndpointError(f"No in endpoint found on interface {interface}")
        if ep_out is None:
            logger.error(f"No bulk OUT endpoint on interface {interface} of {identity}")
            _release(device, interface, claimed=True, reattach=reattach)
            raise NoOutboundEndpointError(f"No out endpoint found on interface {interface}")

        logger.info(
            f"Opened {identity} (intf={interface}, EP IN=0x{ep_in.bEndpointAddress:02x}, "
            f"EP OUT=0x{ep_out.bEndpointAddress:02x}) @ {baudrate} baud"
        )
        return cls(device, interface, ep_in, ep_out, baudrate, reattach_kernel_driver=reattach)

    @staticmethod
    def _configure_line(device, line_coding: bytes, timeout_ms: int) -> None:
        """Send the CDC handshake. Request results are not verified."""
        requests = (
            ("SET_CONTROL_LINE_STATE", SET_CONTROL_LINE_STATE, CONTROL_LINE_STATE_IDLE, None),
            ("SET_LINE_CODING", SET_LINE_CODING, 0, line_coding),
        )
        for name, request, value, payload in requests:
            try:
                device.ctrl_transfer(CDC_REQUEST_TYPE, request, value, 0, payload,
                                     timeout=timeout_ms)
            except usb.core.USBError as e:
                logger.warning(f"{name} request failed, continuing: {e}")

    def close(self) -> None:
        """Release the interface and close the device. Idempotent."""
        with self._lock:
            if self._device is None:
                return
            device, self._device = self._device, None

        _release(device, self._interface_number, claimed=True, reattach=self._reattach)
        logger.info(f"Closed {self._identity}")

    @property
    def is_open(self) -> bool:
        return self._device is not None

    @property
    def identity(self) -> DeviceIdentity:
        return self._identity

    @property
    def baudrate(self) -> int:
        return self._baudrate

    @property
    def interface_number(self) -> int:
        return self._interface_number

    @property
    def in_endpoint_address(self) -> int:
        return self._ep_in.bEndpointAddress

    @property
    def out_endpoint_address(self) -> int:
        return self._ep_out.bEndpointAddress

    def read(self, size: int, timeout_ms: int = 0) -> bytes:
        """Blocking bulk read from the IN endpoint.

        Args:
            size: Maximum number of bytes to read
            timeout_ms: Timeout in milliseconds, 0 waits indefinitely

        Raises:
            usb.core.USBError: On transfer failure (including timeouts)
        """
        return bytes(self._ep_in.read(size, timeout=timeout_ms))

    def write(self, data: bytes, timeout_ms: int = 0) -> int:
        """Blocking bulk write to the OUT endpoint.

        Returns:
            Number of bytes the device accepted
        """
        return self._ep_out.write(data, timeout=timeout_ms)

    def __enter__(self) -> DeviceSession:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"<DeviceSession {self._identity} intf={self._interface_number} {state}>"
