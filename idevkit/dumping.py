"""Connections and decoders that dump traffic to files."""

from __future__ import annotations

import logging
from typing import Any, BinaryIO, Optional

log = logging.getLogger(__name__)

_LINE_WIDTH = 16


def _printable(byte: int) -> str:
    return chr(byte) if 32 <= byte <= 126 else "."


def _hex_dump(data: bytes) -> str:
    """Canonical hex dump: offset, two groups of eight bytes, ASCII column."""
    lines = []
    for offset in range(0, len(data), _LINE_WIDTH):
        chunk = data[offset : offset + _LINE_WIDTH]
        cells = [f"{byte:02x} " for byte in chunk]
        cells += ["   "] * (_LINE_WIDTH - len(cells))
        left = "".join(cells[:8])
        right = "".join(cells[8:])
        text = "".join(_printable(byte) for byte in chunk)
        lines.append(f"{offset:08x}  {left} {right} |{text}|\n")
    return "".join(lines)


class DumpingConnection:
    """Wraps a socket-like connection and logs every transfer as a hex dump."""

    def __init__(self, file_path: str, conn: Any) -> None:
        self._conn = conn
        self._file: Optional[BinaryIO]
        try:
            self._file = open(file_path, "ab")
        except OSError as error:
            log.error("could not open dump file %s: %s", file_path, error)
            self._file = None

    def _write(self, text: str) -> None:
        if self._file is not None:
            self._file.write(text.encode("ascii", "replace"))
            self._file.flush()

    def recv(self, size: int) -> bytes:
        try:
            data = self._conn.recv(size)
        except OSError as error:
            self._write(f"\n\nError Reading{error}")
            raise
        self._write("\n\nReading------------->\n" + _hex_dump(data))
        return data

    def sendall(self, data: bytes) -> None:
        try:
            self._conn.sendall(data)
        except OSError as error:
            self._write(f"\n\nError Sending{error}")
            raise
        self._write("\n\nSending------------->\n" + _hex_dump(bytes(data)))

    def close(self) -> None:
        if self._file is not None:
            try:
                self._file.close()
            except OSError as error:
                log.warning("failed closing bin file handle: %s", error)
            self._file = None
        self._conn.close()

    def __enter__(self) -> "DumpingConnection":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class BinaryDumper:
    """Appends every chunk of traffic unchanged to one file."""

    def __init__(self, path: str) -> None:
        self.path = path

    def decode(self, data: bytes) -> None:
        with open(self.path, "ab") as handle:
            handle.write(data)