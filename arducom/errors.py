"""Error taxonomy for the USB serial bridge.

Session start failures share the ``SessionStartError`` base so a front-end
can report any of them with a single handler.
"""


class BridgeError(RuntimeError):
    """Base class for all bridge errors."""
    pass


class NoDeviceFoundError(BridgeError):
    """Raised when discovery yields no recognized device."""
    pass


class MultipleDevicesError(BridgeError):
    """Raised when more than one recognized device is attached."""
    def __init__(self, message, devices):
        super().__init__(message)
        self.devices = devices


class SessionStartError(BridgeError):
    """Base class for failures that abort session start."""
    pass


class PermissionDeniedError(SessionStartError):
    """Raised when access to the device was not granted."""
    pass


class ConnectionFailedError(SessionStartError):
    """Raised when the device connection could not be opened."""
    pass


class InterfaceClaimError(SessionStartError):
    """Raised when the CDC data interface could not be claimed."""
    pass


class NoInboundEndpointError(SessionStartError):
    """Raised when the claimed interface has no bulk IN endpoint."""
    pass


class NoOutboundEndpointError(SessionStartError):
    """Raised when the claimed interface has no bulk OUT endpoint."""
    pass


class AlreadyRunningError(BridgeError):
    """Raised when a session is requested while one is already active."""
    pass


class SendRejectedError(BridgeError):
    """Raised when a payload cannot be queued for sending."""
    pass


class TransferFailedError(BridgeError):
    """A single bulk transfer failed. Logged and retried, never fatal."""
    pass
