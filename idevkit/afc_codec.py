"""Wire format of AFC (Apple File Conduit) packets."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO, Optional

MAGIC = 0x4141504C36414643
HEADER_SIZE = 40

_HEADER = struct.Struct("<5Q")


class AfcOperation(IntEnum):
    """Operation codes carried in the packet header."""

    STATUS = 0x01
    DATA = 0x02
    READ_DIR = 0x03
    REMOVE_PATH = 0x08
    MAKE_DIR = 0x09
    FILE_INFO = 0x0A
    DEVICE_INFO = 0x0B
    FILE_OPEN = 0x0D
    FILE_OPEN_RESULT = 0x0E
    FILE_READ = 0x0F
    FILE_WRITE = 0x10
    FILE_CLOSE = 0x14
    REMOVE_PATH_AND_CONTENTS = 0x22


class AfcMode(IntEnum):
    """Modes for opening a file on the device."""

    RDONLY = 0x01
    RW = 0x02
    WRONLY = 0x03
    WR = 0x04
    APPEND = 0x05
    RDAPPEND = 0x06


_ERROR_NAMES = {
    1: "UnknownError",
    2: "OperationHeaderInvalid",
    3: "NoResources",
    4: "ReadError",
    5: "WriteError",
    6: "UnknownPacketType",
    7: "InvalidArgument",
    8: "ObjectNotFound",
    9: "ObjectIsDir",
    10: "PermDenied",
    11: "ServiceNotConnected",
    12: "OperationTimeout",
    13: "TooMuchData",
    14: "EndOfData",
    15: "OperationNotSupported",
    16: "ObjectExists",
    17: "ObjectBusy",
    18: "NoSpaceLeft",
    19: "OperationWouldBlock",
    20: "IoError",
    21: "OperationInterrupted",
    22: "OperationInProgress",
    23: "InternalError",
    30: "MuxError",
    31: "NoMemory",
    32: "NotEnoughData",
    33: "DirNotEmpty",
}


class AfcError(Exception):
    """An error status reported by the AFC service."""

    def __init__(self, code: int, message: Optional[str] = None) -> None:
        self.code = code
        self.name = _ERROR_NAMES.get(code, f"error {code}")
        super().__init__(message if message is not None else self.name)


def error_for_code(code: int) -> Optional[AfcError]:
    """Return the error for a status code, or None for success and unknown codes."""
    if code not in _ERROR_NAMES:
        return None
    return AfcError(code)


@dataclass
class AfcPacketHeader:
    magic: int
    entire_length: int
    this_length: int
    packet_num: int
    operation: int


@dataclass
class AfcPacket:
    header: AfcPacketHeader
    header_payload: bytes = b""
    payload: bytes = b""


def _read_exactly(reader: BinaryIO, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = reader.read(remaining)
        if not chunk:
            raise EOFError(f"expected {size} bytes, got {size - remaining}")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def decode(reader: BinaryIO) -> AfcPacket:
    """Read one packet from a binary stream."""
    fields = _HEADER.unpack(_read_exactly(reader, HEADER_SIZE))
    header = AfcPacketHeader(*fields)
    if header.magic != MAGIC:
        raise ValueError(f"Wrong magic:{header.magic:x} expected: {MAGIC:x}")
    if header.this_length < HEADER_SIZE or header.entire_length < header.this_length:
        raise ValueError(
            f"inconsistent packet lengths: this={header.this_length} "
            f"entire={header.entire_length}"
        )
    header_payload = _read_exactly(reader, header.this_length - HEADER_SIZE)
    payload = _read_exactly(reader, header.entire_length - header.this_length)
    return AfcPacket(header, header_payload, payload)


def encode(packet: AfcPacket, writer: BinaryIO) -> None:
    """Write one packet to a binary stream."""
    header = packet.header
    raw = _HEADER.pack(
        header.magic,
        header.entire_length,
        header.this_length,
        header.packet_num,
        header.operation,
    )
    writer.write(raw + bytes(packet.header_payload or b"") + bytes(packet.payload or b""))