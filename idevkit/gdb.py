"""Wire level GDB remote serial protocol."""

from __future__ import annotations

from typing import BinaryIO, Optional

_SUFFIX_LENGTH = 3  # len("#00")
_READ_SIZE = 4096


class InvalidPayloadError(ValueError):
    """The stream holds a packet end marker before its start marker."""

    def __init__(self) -> None:
        super().__init__("invalid payload")


def checksum(packet: str) -> str:
    """Two hex digits: the sum of the packet's characters modulo 256."""
    return f"{sum(ord(char) for char in packet) % 256:02x}"


def format_packet(packet: str) -> str:
    """Frame a packet with an acknowledgement, markers and checksum."""
    return f"+${packet}#{checksum(packet)}"


class GDBServer:
    """Sends and receives GDB remote packets over a binary stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self._buffer = bytearray()
        self._eof = False

    def _read_chunk(self) -> bytes:
        read = getattr(self._stream, "read1", None) or self._stream.read
        return read(_READ_SIZE)

    def _take_packet(self) -> Optional[str]:
        start = self._buffer.find(b"$")
        end = self._buffer.find(b"#")
        if start < 0 or end < 0 or len(self._buffer) < end + _SUFFIX_LENGTH:
            return None
        if end < start:
            raise InvalidPayloadError()
        packet = bytes(self._buffer[start + 1 : end])
        del self._buffer[: end + _SUFFIX_LENGTH]
        return packet.decode("utf-8", "surrogateescape")

    def recv(self) -> str:
        """Next packet's contents, or an empty string once the stream has ended."""
        while True:
            packet = self._take_packet()
            if packet is not None:
                return packet
            if self._eof:
                return ""
            chunk = self._read_chunk()
            if chunk:
                self._buffer += chunk
            else:
                self._eof = True

    def send(self, request: str) -> None:
        self._stream.write(format_packet(request).encode("utf-8"))
        flush = getattr(self._stream, "flush", None)
        if flush is not None:
            flush()

    def request(self, request: str) -> str:
        """Send a packet and wait for the reply."""
        self.send(request)
        return self.recv()