import io
import posixpath
import struct

import pytest

from idevkit.afc import AfcClient, DeviceSpaceInfo, StatInfo
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
)


def norm(raw):
    text = raw.rstrip(b"\0").decode()
    return posixpath.normpath("/" + text.lstrip("/"))


class FakeAfcDevice:
    """In-memory AFC service speaking the wire protocol."""

    def __init__(self):
        self.dirs = {"/"}
        self.files = {}
        self.handles = {}
        self.next_fd = 1
        self.fixed_fd = None
        self.packet_numbers = []
        self.operations = []
        self.closed = False
        self.space = {
            "Model": "TestPhone",
            "FSTotalBytes": "1000",
            "FSFreeBytes": "400",
            "FSBlockSize": "4096",
        }
        self._incoming = bytearray()
        self._outgoing = bytearray()

    def add_file(self, path, data):
        self.make_dirs(posixpath.dirname(path))
        self.files[path] = data

    def make_dirs(self, path):
        while path not in self.dirs:
            self.dirs.add(path)
            path = posixpath.dirname(path)

    def children(self, path):
        return sorted(
            posixpath.basename(p)
            for p in self.dirs | set(self.files)
            if p != path and posixpath.dirname(p) == path
        )

    def read(self, size):
        chunk = bytes(self._outgoing[:size])
        del self._outgoing[:size]
        return chunk

    def write(self, data):
        self._incoming += data
        while len(self._incoming) >= HEADER_SIZE:
            entire = struct.unpack_from("<5Q", self._incoming)[1]
            if len(self._incoming) < entire:
                break
            packet = decode(io.BytesIO(bytes(self._incoming[:entire])))
            del self._incoming[:entire]
            self.packet_numbers.append(packet.header.packet_num)
            self.operations.append(packet.header.operation)
            operation, header_payload, payload = self.handle(packet)
            this_length = HEADER_SIZE + len(header_payload)
            header = AfcPacketHeader(
                MAGIC, this_length + len(payload), this_length, 0, operation
            )
            out = io.BytesIO()
            encode(AfcPacket(header, header_payload, payload), out)
            self._outgoing += out.getvalue()
        return len(data)

    def close(self):
        self.closed = True

    @staticmethod
    def status(code):
        return AfcOperation.STATUS, struct.pack("<Q", code), b""

    @staticmethod
    def strings(*items):
        return b"".join(str(item).encode() + b"\0" for item in items)

    def handle(self, packet):
        op = packet.header.operation
        hp = packet.header_payload
        if op == AfcOperation.READ_DIR:
            path = norm(hp)
            if path not in self.dirs:
                return self.status(8)
            return AfcOperation.DATA, b"", self.strings(".", "..", *self.children(path))
        if op == AfcOperation.FILE_INFO:
            path = norm(hp)
            if path in self.dirs:
                size, kind = 0, "S_IFDIR"
            elif path in self.files:
                size, kind = len(self.files[path]), "S_IFREG"
            else:
                return self.status(8)
            return AfcOperation.DATA, b"", self.strings(
                "st_size", size, "st_blocks", 8, "st_nlink", 1, "st_ifmt", kind,
                "st_mtime", 1700000000, "st_birthtime", 1600000000,
            )
        if op == AfcOperation.MAKE_DIR:
            self.make_dirs(norm(hp))
            return self.status(0)
        if op == AfcOperation.REMOVE_PATH:
            path = norm(hp)
            if path in self.files:
                del self.files[path]
            elif path in self.dirs:
                if self.children(path):
                    return self.status(33)
                self.dirs.discard(path)
            else:
                return self.status(8)
            return self.status(0)
        if op == AfcOperation.REMOVE_PATH_AND_CONTENTS:
            path = norm(hp)
            inside = lambda p: p == path or p.startswith(path + "/")
            self.files = {p: d for p, d in self.files.items() if not inside(p)}
            self.dirs = {p for p in self.dirs if not inside(p)} | {"/"}
            return self.status(0)
        if op == AfcOperation.DEVICE_INFO:
            items = [x for pair in self.space.items() for x in pair]
            return AfcOperation.DATA, b"", self.strings(*items)
        if op == AfcOperation.FILE_OPEN:
            (mode,) = struct.unpack_from("<Q", hp)
            path = norm(hp[8:])
            if path in self.dirs:
                return self.status(9)
            if mode == AfcMode.WR:
                self.files[path] = b""
            elif path not in self.files:
                return self.status(8)
            fd = self.fixed_fd if self.fixed_fd is not None else self.next_fd
            self.next_fd += 1
            self.handles[fd] = [path, 0]
            return AfcOperation.FILE_OPEN_RESULT, struct.pack("<Q", fd), b""
        if op == AfcOperation.FILE_READ:
            fd, size = struct.unpack("<QQ", hp)
            path, offset = self.handles[fd]
            data = self.files[path][offset:offset + size]
            self.handles[fd][1] += len(data)
            return AfcOperation.DATA, b"", data
        if op == AfcOperation.FILE_WRITE:
            (fd,) = struct.unpack("<Q", hp)
            path = self.handles[fd][0]
            self.files[path] += packet.payload
            return self.status(0)
        if op == AfcOperation.FILE_CLOSE:
            (fd,) = struct.unpack("<Q", hp)
            self.handles.pop(fd, None)
            return self.status(0)
        return self.status(6)


@pytest.fixture
def device():
    fake = FakeAfcDevice()
    fake.add_file("/DCIM/fsync.go", b"package afc\n")
    fake.add_file("/DCIM/architecture_diagram.png", b"\x89PNG" + bytes(range(200)))
    return fake


@pytest.fixture
def client(device):
    return AfcClient(device)


def test_remove(client, device):
    client.remove("/DCIM/fsync.go")
    assert "/DCIM/fsync.go" not in device.files
    assert client.list_dir("/DCIM") == ["architecture_diagram.png"]


def test_remove_missing_raises(client):
    with pytest.raises(AfcError) as info:
        client.remove("/DCIM/missing")
    assert info.value.code == 8
    assert "remove: unexpected afc status: ObjectNotFound" in str(info.value)


def test_remove_non_empty_dir_raises(client):
    with pytest.raises(AfcError) as info:
        client.remove("/DCIM")
    assert info.value.name == "DirNotEmpty"


def test_remove_all(client, device):
    device.add_file("/DCIM/TestDir/inner/a.txt", b"a")
    device.add_file("/DCIM/TestDir/b.txt", b"b")
    client.remove_all("/DCIM/TestDir")
    assert not any(p.startswith("/DCIM/TestDir") for p in device.dirs | set(device.files))
    assert client.list_dir("/DCIM") == ["architecture_diagram.png", "fsync.go"]
    with pytest.raises(AfcError):
        client.stat("/DCIM/TestDir")


def test_remove_path_and_contents(client, device):
    client.remove_path_and_contents("/DCIM")
    assert device.files == {}
    assert device.dirs == {"/"}
    with pytest.raises(AfcError) as info:
        client.stat("/DCIM")
    assert info.value.name == "ObjectNotFound"


def test_mkdir(client, device):
    client.mkdir("/DCIM/TestDir")
    assert "/DCIM/TestDir" in device.dirs
    assert client.stat("/DCIM/TestDir").is_dir()


def test_stat(client, device):
    info = client.stat("/DCIM/architecture_diagram.png")
    assert info.size == len(device.files["/DCIM/architecture_diagram.png"])
    assert info.ifmt == "S_IFREG"
    assert info.nlink == "1"
    assert info.blocks == 8
    assert info.mtime == 1700000000
    assert info.ctime == 1600000000
    assert not info.is_dir()


def test_stat_missing_raises(client):
    with pytest.raises(AfcError, match="stat"):
        client.stat("/nothing")


def test_stat_info_kinds():
    assert StatInfo(ifmt="S_IFLNK").is_link()
    assert not StatInfo(ifmt="S_IFDIR").is_link()
    assert StatInfo(ifmt="S_IFDIR").is_dir()


def test_list_dir(client):
    assert client.list_dir("/DCIM/") == ["architecture_diagram.png", "fsync.go"]


def test_list_files_with_pattern(client):
    assert client.list_files("/DCIM", "*.png") == ["architecture_diagram.png"]
    assert client.list_files("/DCIM", "*") == [
        ".", "..", "architecture_diagram.png", "fsync.go",
    ]


def test_space_info(client):
    assert client.space_info() == DeviceSpaceInfo("TestPhone", 1000, 400, 4096)


def test_space_info_missing_value_raises(client, device):
    del device.space["FSFreeBytes"]
    with pytest.raises(ValueError):
        client.space_info()


def test_tree_view(client, device, capsys):
    device.files.clear()
    device.add_file("/DCIM/a.png", b"x")
    device.add_file("/DCIM/sub/b.txt", b"y")
    client.tree_view("/DCIM/", "", True)
    assert capsys.readouterr().out.splitlines() == [
        "`-- DCIM/",
        "    |-- a.png",
        "    `-- sub/",
        "        `-- b.txt",
    ]


def test_open_and_close_file(client, device):
    fd = client.open_file("/DCIM/fsync.go", AfcMode.RDONLY)
    assert fd in device.handles
    client.close_file(fd)
    assert device.handles == {}


def test_open_file_zero_descriptor_rejected(client, device):
    device.fixed_fd = 0
    with pytest.raises(ValueError, match="should not be zero"):
        client.open_file("/DCIM/fsync.go", AfcMode.RDONLY)


def test_open_directory_raises(client):
    with pytest.raises(AfcError) as info:
        client.open_file("/DCIM", AfcMode.RDONLY)
    assert info.value.name == "ObjectIsDir"


def test_pull_single_file(client, device, tmp_path):
    target = tmp_path / "architecture_diagram.png"
    client.pull_single_file("/DCIM/architecture_diagram.png", str(target))
    assert target.read_bytes() == device.files["/DCIM/architecture_diagram.png"]
    assert device.handles == {}


def test_pull_large_file_in_chunks(client, device, tmp_path):
    data = bytes(range(256)) * 600
    device.add_file("/DCIM/big.bin", data)
    target = tmp_path / "big.bin"
    client.pull_single_file("/DCIM/big.bin", str(target))
    assert target.read_bytes() == data
    assert device.operations.count(AfcOperation.FILE_READ) > 1


def test_pull_directory(client, device, tmp_path):
    device.add_file("/DCIM/nested/deep.txt", b"deep")
    target = tmp_path / "TempRecv" / "DCIM"
    client.pull("/DCIM/", str(target))
    assert (target / "fsync.go").read_bytes() == b"package afc\n"
    assert (target / "nested" / "deep.txt").read_bytes() == b"deep"


def test_push_into_directory(client, device, tmp_path):
    source = tmp_path / "fsync.go"
    source.write_bytes(b"new contents")
    client.push(str(source), "/DCIM/")
    assert device.files["/DCIM/fsync.go"] == b"new contents"
    assert client.stat("/DCIM/fsync.go").size == len(b"new contents")


def test_push_to_new_path(client, device, tmp_path):
    source = tmp_path / "local.txt"
    source.write_bytes(b"hello")
    client.push(str(source), "/DCIM/remote.txt")
    assert device.files["/DCIM/remote.txt"] == b"hello"
    assert client.list_dir("/DCIM") == [
        "architecture_diagram.png", "fsync.go", "remote.txt",
    ]


def test_push_missing_source_raises(client, tmp_path):
    with pytest.raises(FileNotFoundError, match="no such file"):
        client.push(str(tmp_path / "absent"), "/DCIM/")


def test_write_to_file_round_trip(client, tmp_path):
    data = bytes(range(256)) * 400
    client.write_to_file(io.BytesIO(data), "/DCIM/upload.bin")
    target = tmp_path / "upload.bin"
    client.pull_single_file("/DCIM/upload.bin", str(target))
    assert target.read_bytes() == data


def test_write_to_directory_raises(client):
    with pytest.raises(IsADirectoryError):
        client.write_to_file(io.BytesIO(b"x"), "/DCIM")


def test_packet_numbers_increase(client, device):
    listing = client.list_dir("/DCIM")
    info = client.stat("/DCIM/fsync.go")
    client.mkdir("/DCIM/x")
    assert listing == ["architecture_diagram.png", "fsync.go"]
    assert info.size == len(b"package afc\n")
    assert device.packet_numbers == [0, 1, 2]


def test_close_closes_stream(client, device):
    listing = client.list_dir("/DCIM")
    client.close()
    assert listing == ["architecture_diagram.png", "fsync.go"]
    assert device.closed is True