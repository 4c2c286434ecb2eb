"""
IKEA Idåsen / Linak desk GATT protocol.

Protocol reverse-engineered from:
- https://github.com/anson-vandoren/linak-desk-spec
- https://github.com/j5lien/esphome-idasen-desk-controller
"""

import struct
from dataclasses import dataclass

from idasen_control.errors import FrameError

# === LINAK BLE UUIDS ===
UUID_POSITION_SERVICE = "99fa0020-338a-1024-8a49-009c0215f78a"
UUID_POSITION = "99fa0021-338a-1024-8a49-009c0215f78a"
UUID_CONTROL_SERVICE = "99fa0001-338a-1024-8a49-009c0215f78a"
UUID_CONTROL = "99fa0002-338a-1024-8a49-009c0215f78a"

# === COMMANDS ===
CMD_UP = bytes([0x47, 0x00])
CMD_DOWN = bytes([0x46, 0x00])
CMD_STOP = bytes([0xFF, 0x00])

POSITION_FRAME = struct.Struct("<hH")


@dataclass(frozen=True)
class PositionFrame:
    """A decoded position notification."""

    position: float
    speed: int


def decode_position(data: bytes) -> PositionFrame:
    """
    Decode a position characteristic payload.

    Bytes 0-1 hold the signed position in hundredths of a centimeter,
    bytes 2-3 the unsigned speed. Trailing bytes are ignored.

    Raises:
        FrameError: If the payload is shorter than four bytes
    """
    if len(data) < POSITION_FRAME.size:
        raise FrameError(f"Position frame too short: {bytes(data).hex()}")
    raw_position, speed = POSITION_FRAME.unpack_from(bytes(data))
    return PositionFrame(position=raw_position / 100, speed=speed)


def encode_position(position: float, speed: int = 0) -> bytes:
    """Build a position payload, the inverse of decode_position."""
    return POSITION_FRAME.pack(round(position * 100), speed)


def motor_command(moving_up: bool) -> bytes:
    return CMD_UP if moving_up else CMD_DOWN
