"""arducom - USB serial bridge for Arduino-class CDC boards."""

from .errors import (
    AlreadyRunningError,
    BridgeError,
    ConnectionFailedError,
    InterfaceClaimError,
    MultipleDevicesError,
    NoDeviceFoundError,
    NoInboundEndpointError,
    NoOutboundEndpointError,
    PermissionDeniedError,
    SendRejectedError,
    SessionStartError,
    TransferFailedError,
)
from .models import (
    BridgeStatus,
    DeviceIdentity,
    Direction,
    SendPayload,
    SessionState,
    Shutdown,
    TransferChunk,
)
from .transport import Transport, UsbSerialBridge

__all__ = [
    "AlreadyRunningError",
    "BridgeError",
    "ConnectionFailedError",
    "InterfaceClaimError",
    "MultipleDevicesError",
    "NoDeviceFoundError",
    "NoInboundEndpointError",
    "NoOutboundEndpointError",
    "PermissionDeniedError",
    "SendRejectedError",
    "SessionStartError",
    "TransferFailedError",
    "BridgeStatus",
    "DeviceIdentity",
    "Direction",
    "SendPayload",
    "SessionState",
    "Shutdown",
    "TransferChunk",
    "Transport",
    "UsbSerialBridge",
]
