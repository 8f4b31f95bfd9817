"""CDC line coding payloads.

The SET_LINE_CODING request carries a 7-byte structure (USB CDC PSTN
subclass, section 6.3.10):

  offset 0: dwDTERate    baud rate (LE u32)
  offset 4: bCharFormat  stop bits (0 = 1, 1 = 1.5, 2 = 2)
  offset 5: bParityType  parity (0 = none, 1 = odd, 2 = even, 3 = mark, 4 = space)
  offset 6: bDataBits    data bits (5, 6, 7, 8 or 16)
"""
from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum

LINE_CODING_FORMAT = "<IBBB"
LINE_CODING_SIZE = struct.calcsize(LINE_CODING_FORMAT)  # 7 bytes

MAX_BAUDRATE = 0xFFFFFFFF
VALID_DATA_BITS = (5, 6, 7, 8, 16)
DEFAULT_DATA_BITS = 8


class StopBits(IntEnum):
    ONE = 0
    ONE_POINT_FIVE = 1
    TWO = 2


class Parity(IntEnum):
    NONE = 0
    ODD = 1
    EVEN = 2
    MARK = 3
    SPACE = 4


@dataclass(frozen=True)
class LineCoding:
    """Serial line settings of a CDC ACM function.

    Attributes:
        baudrate: Bits per second
        stop_bits: Number of stop bits
        parity: Parity type
        data_bits: Bits per character
    """
    baudrate: int
    stop_bits: StopBits = StopBits.ONE
    parity: Parity = Parity.NONE
    data_bits: int = DEFAULT_DATA_BITS

    def __post_init__(self):
        if not 0 <= self.baudrate <= MAX_BAUDRATE:
            raise ValueError(f"Baud rate {self.baudrate} does not fit in 32 bits")
        if self.data_bits not in VALID_DATA_BITS:
            raise ValueError(f"Unsupported data bits: {self.data_bits}")
        # Coerce raw ints so the repr is readable.
        object.__setattr__(self, "stop_bits", StopBits(self.stop_bits))
        object.__setattr__(self, "parity", Parity(self.parity))

    def to_bytes(self) -> bytes:
        """Pack into the 7-byte SET_LINE_CODING payload."""
        return struct.pack(
            LINE_CODING_FORMAT,
            self.baudrate,
            self.stop_bits,
            self.parity,
            self.data_bits,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> LineCoding:
        """Parse a 7-byte line coding structure (e.g. a GET_LINE_CODING reply)."""
        if len(data) != LINE_CODING_SIZE:
            raise ValueError(
                f"Line coding must be {LINE_CODING_SIZE} bytes, got {len(data)}"
            )
        baudrate, stop_bits, parity, data_bits = struct.unpack(LINE_CODING_FORMAT, bytes(data))
        return cls(
            baudrate=baudrate,
            stop_bits=StopBits(stop_bits),
            parity=Parity(parity),
            data_bits=data_bits,
        )


def encode_line_coding(
    baudrate: int,
    stop_bits: StopBits = StopBits.ONE,
    parity: Parity = Parity.NONE,
    data_bits: int = DEFAULT_DATA_BITS,
) -> bytes:
    """Build the SET_LINE_CODING payload for ``baudrate``.

    Defaults give 8N1, so ``encode_line_coding(9600)`` is
    ``80 25 00 00 00 00 08``.

    Raises:
        ValueError: If the baud rate is negative or wider than 32 bits.
    """
    return LineCoding(baudrate, stop_bits, parity, data_bits).to_bytes()
