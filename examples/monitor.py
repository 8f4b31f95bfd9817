#!/usr/bin/env python3
"""
Interactive serial monitor for an attached Arduino board.

Finds the board, starts a bridge at 9600 baud, prints every chunk as it is
received or sent, and sends each line typed on stdin. Ctrl+D or Ctrl+C
stops the session and prints the transfer log.
"""

import sys
import logging
from pathlib import Path

# Add package to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from arducom import BridgeError, Direction, UsbSerialBridge
from arducom.device import find_single_device
from arducom.view import TransferLog

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)


def print_chunk(chunk):
    marker = "<<" if chunk.direction is Direction.RECEIVED else ">>"
    if chunk.starts_new_group:
        print()
    print(f"{marker} {chunk.payload!r}")


def print_status(status):
    if status.error is not None:
        print(f"[{status.state.value}] {status.error}")
    else:
        print(f"[{status.state.value}] {status.device or ''}")


def main():
    try:
        info = find_single_device()
    except BridgeError as e:
        print(f"{e}. Is the board plugged in?")
        return 1

    print(f"{info.name} found at {info.location}")

    bridge = UsbSerialBridge()
    log = TransferLog()
    bridge.subscribe_chunks(log.on_chunk)
    bridge.subscribe_chunks(print_chunk)
    bridge.subscribe_status(print_status)

    try:
        bridge.start(info)
    except BridgeError:
        return 1

    try:
        for line in sys.stdin:
            if not bridge.is_running():
                break
            bridge.submit(line.encode())
    except KeyboardInterrupt:
        print("\nInterrupted by user.")
    finally:
        bridge.stop()

    print("\nTransfer log:")
    for index, entry in enumerate(log.lines()):
        print(f"{index:3d} {entry}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
