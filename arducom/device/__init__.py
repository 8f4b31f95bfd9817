"""Device layer for Arduino-class USB CDC boards.

This module provides:
- CDC line coding payloads (encode_line_coding, LineCoding)
- The open/claim/handshake/close lifecycle of one board (DeviceSession)
- Device discovery utilities (find_single_device, find_devices)
"""

from .line_coding import LineCoding, Parity, StopBits, encode_line_coding
from .session import CDC_DATA_INTERFACE, DEFAULT_BAUDRATE, DeviceSession
from .device_finder import (
    KNOWN_DEVICES,
    DeviceInfo,
    KnownDevice,
    MultipleDevicesError,
    NoDeviceFoundError,
    find_devices,
    find_single_device,
    is_device_available,
    lookup_known_device,
)

__all__ = [
    # Line coding
    'LineCoding',
    'Parity',
    'StopBits',
    'encode_line_coding',

    # Session
    'CDC_DATA_INTERFACE',
    'DEFAULT_BAUDRATE',
    'DeviceSession',

    # Finder
    'KNOWN_DEVICES',
    'DeviceInfo',
    'KnownDevice',
    'MultipleDevicesError',
    'NoDeviceFoundError',
    'find_devices',
    'find_single_device',
    'is_device_available',
    'lookup_known_device',
]
