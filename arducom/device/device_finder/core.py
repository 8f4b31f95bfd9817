from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

import usb.core

from ...errors import MultipleDevicesError, NoDeviceFoundError
from ...models import DeviceIdentity

logger = logging.getLogger(__name__)

ARDUINO_VENDOR_ID = 0x2341


@dataclass(frozen=True)
class KnownDevice:
    """One entry of the recognized-device table."""
    vendor_id: int
    product_id: int
    name: str

    @property
    def identity(self) -> DeviceIdentity:
        return DeviceIdentity(self.vendor_id, self.product_id)


# Boards with an on-board USB CDC function. Add a row to recognize a new board.
KNOWN_DEVICES = (
    KnownDevice(ARDUINO_VENDOR_ID, 0x0001, "Arduino Uno"),
    KnownDevice(ARDUINO_VENDOR_ID, 0x0010, "Arduino Mega 2560"),
    KnownDevice(ARDUINO_VENDOR_ID, 0x0042, "Arduino Mega 2560 R3"),
    KnownDevice(ARDUINO_VENDOR_ID, 0x0043, "Arduino Uno R3"),
    KnownDevice(ARDUINO_VENDOR_ID, 0x0044, "Arduino Mega 2560 ADK R3"),
    KnownDevice(ARDUINO_VENDOR_ID, 0x003F, "Arduino Mega 2560 ADK"),
)


@dataclass(frozen=True)
class DeviceInfo:
    """
    Representation of one attached USB device as seen by pyusb.

    Attributes:
        identity: USB vendor/product pair.
        name: Display name from the recognized-device table (or the USB
              product string for devices accepted by a custom matcher).
        bus: USB bus number, if known.
        address: Device address on the bus, if known.
        serial_number: USB serial string, if it could be read without
              opening the device.
        device: The pyusb device handle to pass to the bridge.
    """
    identity: DeviceIdentity
    name: str
    bus: Optional[int] = None
    address: Optional[int] = None
    serial_number: Optional[str] = None
    device: object = field(default=None, compare=False, repr=False)

    @property
    def vid(self) -> int:
        return self.identity.vendor_id

    @property
    def pid(self) -> int:
        return self.identity.product_id

    @property
    def location(self) -> str:
        """Bus/address pair, e.g. '001:004'."""
        if self.bus is None or self.address is None:
            return "unknown"
        return f"{self.bus:03d}:{self.address:03d}"


def lookup_known_device(
    vendor_id: int,
    product_id: int,
    known: Iterable[KnownDevice] = KNOWN_DEVICES,
) -> Optional[KnownDevice]:
    """Return the table entry for ``vendor_id``/``product_id``, or None."""
    for entry in known:
        if entry.vendor_id == vendor_id and entry.product_id == product_id:
            return entry
    return None


def _read_string(device, attribute: str) -> Optional[str]:
    """Read a string descriptor, tolerating devices we may not open yet."""
    try:
        return getattr(device, attribute)
    except (usb.core.USBError, ValueError, NotImplementedError) as e:
        logger.debug(f"Cannot read {attribute} of {device.idVendor:04X}:{device.idProduct:04X}: {e}")
        return None


def _device_to_info(device, name: str, with_serial: bool = True) -> DeviceInfo:
    """Convert a pyusb Device to DeviceInfo."""
    return DeviceInfo(
        identity=DeviceIdentity(device.idVendor, device.idProduct),
        name=name,
        bus=getattr(device, "bus", None),
        address=getattr(device, "address", None),
        serial_number=_read_string(device, "serial_number") if with_serial else None,
        device=device,
    )


def find_devices(
    *,
    known: Iterable[KnownDevice] = KNOWN_DEVICES,
    matcher: Optional[Callable[[object], bool]] = None,
    read_serial: bool = True,
) -> List[DeviceInfo]:
    """
    Find all recognized devices attached to this machine.

    By default a device is recognized when its vendor/product pair appears
    in ``known``. A custom ``matcher(device) -> bool`` receiving the raw
    pyusb device replaces the table lookup.

    Returns:
        List of DeviceInfo objects, in enumeration order.
    """
    known = tuple(known)
    results: List[DeviceInfo] = []

    for device in usb.core.find(find_all=True):
        logger.debug(
            f"Inspecting {device.idVendor:04X}:{device.idProduct:04X} "
            f"(class={getattr(device, 'bDeviceClass', '?')})"
        )
        if matcher is not None:
            if matcher(device):
                name = _read_string(device, "product") or "USB device"
                results.append(_device_to_info(device, name, read_serial))
            continue

        entry = lookup_known_device(device.idVendor, device.idProduct, known)
        if entry is not None:
            logger.info(f"{entry.name} found")
            results.append(_device_to_info(device, entry.name, read_serial))

    return results


def find_single_device(
    *,
    known: Iterable[KnownDevice] = KNOWN_DEVICES,
    matcher: Optional[Callable[[object], bool]] = None,
    read_serial: bool = True,
) -> DeviceInfo:
    """
    Find exactly one recognized device.

    Behaviour:
        - 0 matches  -> NoDeviceFoundError
        - 1 match    -> return it
        - >1 matches -> log error and raise MultipleDevicesError

    This is the function you typically call before starting a bridge.
    """
    matches = find_devices(known=known, matcher=matcher, read_serial=read_serial)

    if not matches:
        raise NoDeviceFoundError("No device found")

    if len(matches) > 1:
        # Only one session per bridge; do not pick one implicitly.
        logger.error(
            "Multiple recognized devices found; refusing to choose automatically. "
            "Devices: %s",
            matches,
        )
        raise MultipleDevicesError(
            f"Multiple recognized devices found ({len(matches)} devices)",
            devices=matches,
        )

    return matches[0]


def is_device_available(known: Iterable[KnownDevice] = KNOWN_DEVICES) -> bool:
    """Check whether at least one recognized device is attached."""
    try:
        return bool(find_devices(known=known, read_serial=False))
    except usb.core.NoBackendError as e:
        logger.error(f"No USB backend available: {e}")
        return False
