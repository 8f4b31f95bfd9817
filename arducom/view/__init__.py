"""Observer-side rendering of transferred data."""

from .buffer import GrowableByteBuffer, RenderMode
from .transfer_log import LogEntry, TransferLog

__all__ = ["GrowableByteBuffer", "RenderMode", "LogEntry", "TransferLog"]
