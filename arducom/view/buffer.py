"""Growable byte buffer used to render transferred data.

Storage grows by doubling (starting at one byte) and never shrinks, so
appending costs amortized O(1) per byte over the buffer's lifetime.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional


class RenderMode(Enum):
    HEX = "hex"
    ASCII = "ascii"


INITIAL_CAPACITY = 1


class GrowableByteBuffer:
    """Append-only byte accumulator with hex and ASCII rendering.

    Not thread-safe: the owner serializes access.
    """

    def __init__(self, data: bytes = b"", mode: RenderMode = RenderMode.HEX):
        self._storage = bytearray(INITIAL_CAPACITY)
        self._length = 0
        self._mode = mode
        if data:
            self.append(data)

    def append(self, data: bytes) -> None:
        """Append ``data``, doubling capacity until it fits."""
        needed = self._length + len(data)
        if needed > len(self._storage):
            capacity = len(self._storage)
            while needed > capacity:
                capacity *= 2
            grown = bytearray(capacity)
            grown[:self._length] = self._storage[:self._length]
            self._storage = grown

        self._storage[self._length:needed] = data
        self._length = needed

    def render(self, mode: Optional[RenderMode] = None) -> str:
        """Render the contents.

        HEX gives two uppercase digits and a space per byte ("48 69 ").
        ASCII keeps ASCII letters and digits and shows everything else as '.'.
        """
        mode = mode or self._mode
        view = memoryview(self._storage)[:self._length]
        if mode is RenderMode.HEX:
            return "".join(f"{b:02X} " for b in view)
        return "".join(chr(b) if bytes((b,)).isalnum() else "." for b in view)

    def toggle_mode(self) -> RenderMode:
        """Switch between HEX and ASCII. Returns the new mode."""
        self._mode = RenderMode.ASCII if self._mode is RenderMode.HEX else RenderMode.HEX
        return self._mode

    @property
    def mode(self) -> RenderMode:
        return self._mode

    @property
    def capacity(self) -> int:
        """Allocated size in bytes (always a power of two)."""
        return len(self._storage)

    def to_bytes(self) -> bytes:
        return bytes(self._storage[:self._length])

    def __len__(self) -> int:
        return self._length

    def __str__(self) -> str:
        return self.render()

    def __repr__(self) -> str:
        return f"<GrowableByteBuffer len={self._length} capacity={self.capacity} mode={self._mode.value}>"
