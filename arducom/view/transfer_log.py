"""Transfer log: the observer-side model of a bridge session.

Collects chunks into entries, one entry per group of consecutive chunks
travelling in the same direction, and renders each entry in its own hex
or ASCII mode. Subscribe ``TransferLog.on_chunk`` to a transport.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import List

from ..models import Direction, TransferChunk
from .buffer import GrowableByteBuffer, RenderMode

logger = logging.getLogger(__name__)

DIRECTION_MARKERS = {
    Direction.RECEIVED: "<<",
    Direction.SENT: ">>",
}


@dataclass
class LogEntry:
    """One group of same-direction chunks."""
    direction: Direction
    buffer: GrowableByteBuffer = field(default_factory=GrowableByteBuffer)

    def render(self) -> str:
        return f"{DIRECTION_MARKERS[self.direction]} {self.buffer.render()}"


class TransferLog:
    """Thread-safe list of LogEntry, fed from the bridge's worker threads."""

    def __init__(self):
        self._entries: List[LogEntry] = []
        self._lock = threading.Lock()

    def on_chunk(self, chunk: TransferChunk) -> None:
        """Append ``chunk``, opening a new entry at each group boundary."""
        with self._lock:
            if (chunk.starts_new_group
                    or not self._entries
                    or self._entries[-1].direction is not chunk.direction):
                self._entries.append(LogEntry(direction=chunk.direction))
                logger.debug(f"New {chunk.direction.value} entry #{len(self._entries)}")
            self._entries[-1].buffer.append(chunk.payload)

    def toggle(self, index: int) -> RenderMode:
        """Flip the render mode of entry ``index``. Returns the new mode."""
        with self._lock:
            return self._entries[index].buffer.toggle_mode()

    @property
    def entries(self) -> List[LogEntry]:
        with self._lock:
            return list(self._entries)

    def lines(self) -> List[str]:
        """One rendered line per entry, oldest first."""
        with self._lock:
            return [entry.render() for entry in self._entries]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
