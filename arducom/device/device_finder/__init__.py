from .core import (
    ARDUINO_VENDOR_ID,
    KNOWN_DEVICES,
    DeviceInfo,
    KnownDevice,
    find_devices,
    find_single_device,
    is_device_available,
    lookup_known_device,
)
from ...errors import MultipleDevicesError, NoDeviceFoundError

__all__ = [
    "ARDUINO_VENDOR_ID",
    "KNOWN_DEVICES",
    "DeviceInfo",
    "KnownDevice",
    "find_devices",
    "find_single_device",
    "is_device_available",
    "lookup_known_device",
    "MultipleDevicesError",
    "NoDeviceFoundError",
]
