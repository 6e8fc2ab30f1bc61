"""File system access on a device through the AFC service."""

from __future__ import annotations

import os
import posixpath
import struct
from contextlib import contextmanager, suppress
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import BinaryIO, Dict, Iterator, List

from idevkit.afc_codec import (
    HEADER_SIZE,
    MAGIC,
    AfcError,
    AfcMode,
    AfcOperation,
    AfcPacket,
    AfcPacketHeader,
    decode,
    encode,
    error_for_code,
)

_CHUNK_SIZE = 64 * 1024
_U64 = struct.Struct("<Q")


@dataclass(frozen=True)
class StatInfo:
    size: int = 0
    blocks: int = 0
    ctime: int = 0
    mtime: int = 0
    nlink: str = ""
    ifmt: str = ""
    link_target: str = ""

    def is_dir(self) -> bool:
        return self.ifmt == "S_IFDIR"

    def is_link(self) -> bool:
        return self.ifmt == "S_IFLNK"


@dataclass(frozen=True)
class DeviceSpaceInfo:
    model: str
    total_bytes: int
    free_bytes: int
    block_size: int


def _encode_text(text: str) -> bytes:
    return text.encode("utf-8", "surrogateescape")


def _decode_text(raw: bytes) -> str:
    return raw.decode("utf-8", "surrogateescape")


def _parse_int(text: str) -> int:
    try:
        return int(text, 10)
    except ValueError:
        return 0


def _parse_uint(values: Dict[str, str], key: str) -> int:
    text = values.get(key, "")
    if not (text.isascii() and text.isdigit()):
        raise ValueError(f"invalid value for {key}: {text!r}")
    return int(text)


def _pairs(fields: List[str]) -> Dict[str, str]:
    return dict(zip(fields[0::2], fields[1::2]))


def _join(base: str, name: str) -> str:
    return posixpath.normpath(posixpath.join(base, name))


def _base(path: str) -> str:
    if not path:
        return "."
    stripped = path.rstrip("/")
    if not stripped:
        return "/"
    return posixpath.basename(stripped)


class AfcClient:
    """Client for the AFC service over a connected binary stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self._packet_number = 0

    def _request(
        self, operation: AfcOperation, header_payload: bytes = b"", payload: bytes = b""
    ) -> AfcPacket:
        this_length = HEADER_SIZE + len(header_payload)
        header = AfcPacketHeader(
            magic=MAGIC,
            entire_length=this_length + len(payload),
            this_length=this_length,
            packet_num=self._packet_number,
            operation=operation,
        )
        self._packet_number += 1
        encode(AfcPacket(header, header_payload, payload), self._stream)
        flush = getattr(self._stream, "flush", None)
        if flush is not None:
            flush()
        return decode(self._stream)

    @staticmethod
    def _check(response: AfcPacket, action: str) -> None:
        if response.header.operation != AfcOperation.STATUS:
            return
        (code,) = _U64.unpack_from(response.header_payload)
        error = error_for_code(code)
        if error is not None:
            raise AfcError(code, f"{action}: unexpected afc status: {error.name}")

    def remove(self, path: str) -> None:
        response = self._request(AfcOperation.REMOVE_PATH, _encode_text(path))
        self._check(response, "remove")

    def remove_path_and_contents(self, path: str) -> None:
        response = self._request(
            AfcOperation.REMOVE_PATH_AND_CONTENTS, _encode_text(path) + b"\0"
        )
        self._check(response, "remove")

    def remove_all(self, path: str) -> None:
        """Remove a path, descending into directories first."""
        if self.stat(path).is_dir():
            for name in self.list_dir(path):
                self.remove_all(_join(path, name))
        self.remove(path)

    def mkdir(self, path: str) -> None:
        response = self._request(AfcOperation.MAKE_DIR, _encode_text(path) + b"\0")
        self._check(response, "mkdir")

    def stat(self, path: str) -> StatInfo:
        response = self._request(AfcOperation.FILE_INFO, _encode_text(path))
        self._check(response, "stat")
        fields = [_decode_text(part) for part in response.payload.split(b"\0")]
        values = _pairs(fields)
        return StatInfo(
            size=_parse_int(values.get("st_size", "")),
            blocks=_parse_int(values.get("st_blocks", "")),
            ctime=_parse_int(values.get("st_birthtime", "")),
            mtime=_parse_int(values.get("st_mtime", "")),
            nlink=values.get("st_nlink", ""),
            ifmt=values.get("st_ifmt", ""),
            link_target=values.get("st_linktarget", ""),
        )

    def list_dir(self, path: str) -> List[str]:
        """Names in a directory, without '.' and '..'."""
        response = self._request(AfcOperation.READ_DIR, _encode_text(path))
        self._check(response, "list dir")
        return [
            name
            for name in (_decode_text(part) for part in response.payload.split(b"\0"))
            if name not in (".", "..", "")
        ]

    def space_info(self) -> DeviceSpaceInfo:
        response = self._request(AfcOperation.DEVICE_INFO)
        self._check(response, "device info")
        fields = [_decode_text(part) for part in response.payload.split(b"\0")[:-1]]
        values = _pairs(fields)
        return DeviceSpaceInfo(
            model=values.get("Model", ""),
            total_bytes=_parse_uint(values, "FSTotalBytes"),
            free_bytes=_parse_uint(values, "FSFreeBytes"),
            block_size=_parse_uint(values, "FSBlockSize"),
        )

    def list_files(self, cwd: str, pattern: str) -> List[str]:
        """Entries of a directory whose names match a shell pattern."""
        response = self._request(AfcOperation.READ_DIR, _encode_text(cwd))
        names = (_decode_text(part) for part in response.payload.split(b"\0"))
        return [name for name in names if name and fnmatchcase(name, pattern)]

    def tree_view(self, path: str, prefix: str, tree_point: bool) -> None:
        """Print the tree below a path to standard output."""
        info = self.stat(path)
        line_prefix = prefix + ("`--" if tree_point else "|--")
        if not info.is_dir():
            print(f"{line_prefix} {_base(path)}")
            return
        print(f"{line_prefix} {_base(path)}/")
        names = self.list_dir(path)
        child_prefix = prefix + ("    " if tree_point else "|   ")
        for position, name in enumerate(names, start=1):
            self.tree_view(_join(path, name), child_prefix, position == len(names))

    def open_file(self, path: str, mode: AfcMode) -> int:
        header_payload = _U64.pack(int(mode)) + _encode_text(path) + b"\0"
        response = self._request(AfcOperation.FILE_OPEN, header_payload)
        self._check(response, "open file")
        (fd,) = _U64.unpack_from(response.header_payload)
        if fd == 0:
            raise ValueError("file descriptor should not be zero")
        return fd

    def close_file(self, fd: int) -> None:
        response = self._request(AfcOperation.FILE_CLOSE, _U64.pack(fd))
        self._check(response, "close file")

    @contextmanager
    def _opened(self, path: str, mode: AfcMode) -> Iterator[int]:
        fd = self.open_file(path, mode)
        try:
            yield fd
        finally:
            with suppress(AfcError, OSError, EOFError):
                self.close_file(fd)

    def pull_single_file(self, src_path: str, dst_path: str) -> None:
        info = self.stat(src_path)
        if info.is_link():
            src_path = info.link_target
        with self._opened(src_path, AfcMode.RDONLY) as fd, open(dst_path, "wb") as target:
            remaining = info.size
            request = struct.pack("<QQ", fd, _CHUNK_SIZE)
            while remaining > 0:
                response = self._request(AfcOperation.FILE_READ, request)
                self._check(response, "read file")
                if not response.payload:
                    break
                remaining -= len(response.payload)
                target.write(response.payload)

    def pull(self, src_path: str, dst_path: str) -> None:
        """Copy a file or a whole directory tree from the device."""
        if not self.stat(src_path).is_dir():
            self.pull_single_file(src_path, dst_path)
            return
        os.makedirs(dst_path, exist_ok=True)
        for name in self.list_dir(src_path):
            self.pull(_join(src_path, name), os.path.join(dst_path, name))

    def push(self, src_path: str, dst_path: str) -> None:
        """Copy a local file to the device, into dst_path if it is a directory."""
        if not os.path.exists(src_path):
            raise FileNotFoundError(f"{src_path}: no such file.")
        with open(src_path, "rb") as source:
            try:
                info = self.stat(dst_path)
            except AfcError:
                info = None
            if info is not None and info.is_dir():
                dst_path = _join(dst_path, os.path.basename(os.path.normpath(src_path)))
            self.write_to_file(source, dst_path)

    def write_to_file(self, reader: BinaryIO, dst_path: str) -> None:
        try:
            info = self.stat(dst_path)
        except AfcError:
            info = None
        if info is not None and info.is_dir():
            raise IsADirectoryError(f"{dst_path} is a directory, cannot write to it as file")
        with self._opened(dst_path, AfcMode.WR) as fd:
            header_payload = _U64.pack(fd)
            while chunk := reader.read(_CHUNK_SIZE):
                response = self._request(AfcOperation.FILE_WRITE, header_payload, bytes(chunk))
                self._check(response, "write file")

    def close(self) -> None:
        self._stream.close()