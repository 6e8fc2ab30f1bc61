"""A stream connection to a device that can switch TLS on and off."""

from __future__ import annotations

import logging
import os
import socket
import ssl
import tempfile
from contextlib import suppress
from dataclasses import dataclass
from typing import Optional, Tuple, Union

log = logging.getLogger(__name__)

_READ_SIZE = 64 * 1024
_TLS_RECORD_HEADER_SIZE = 5

Address = Union[str, Tuple[str, int]]


@dataclass(frozen=True)
class PairRecord:
    """Certificates and keys shared between host and device when pairing."""

    host_certificate: bytes
    host_private_key: bytes
    device_certificate: bytes = b""
    host_id: str = ""


@dataclass
class _TlsSession:
    obj: ssl.SSLObject
    incoming: ssl.MemoryBIO
    outgoing: ssl.MemoryBIO


def socket_address(address: str) -> Tuple[int, Address]:
    """Split 'unix://path' or 'tcp://host:port' into a socket family and address.

    Paths under /var are taken as unix sockets.
    """
    if address.startswith("/var"):
        address = "unix://" + address
    scheme, separator, rest = address.partition("://")
    if not separator or not rest:
        raise ValueError(f"invalid socket address: {address!r}")
    if scheme == "unix":
        return socket.AF_UNIX, rest
    if scheme == "tcp":
        host, _, port = rest.rpartition(":")
        if not host or not port.isdigit():
            raise ValueError(f"invalid tcp address: {address!r}")
        return socket.AF_INET, (host, int(port))
    raise ValueError(f"unsupported socket scheme: {scheme!r}")


def _tls_context(pair_record: PairRecord, server_side: bool) -> ssl.SSLContext:
    if server_side:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    else:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        context.check_hostname = False
    # Whatever the phone presents is trusted.
    context.verify_mode = ssl.CERT_NONE
    with suppress(ssl.SSLError):
        context.set_ciphers("DEFAULT:@SECLEVEL=0")
    with tempfile.TemporaryDirectory() as directory:
        cert_path = os.path.join(directory, "host.crt")
        key_path = os.path.join(directory, "host.key")
        with open(cert_path, "wb") as handle:
            handle.write(pair_record.host_certificate)
        with open(key_path, "wb") as handle:
            handle.write(pair_record.host_private_key)
        try:
            context.load_cert_chain(cert_path, key_path)
        except ssl.SSLError as error:
            log.error("Error SSL: %s", error)
            raise
    return context


class DeviceConnection:
    """A socket to usbmuxd or a device service, optionally wrapped in TLS."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock
        self._tls: Optional[_TlsSession] = None

    @classmethod
    def open(cls, address: str) -> "DeviceConnection":
        """Connect to a socket address such as 'unix:///var/run/usbmuxd'."""
        family, target = socket_address(address)
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.connect(target)
        except OSError:
            sock.close()
            raise
        log.debug("Opening connection to %s", address)
        return cls(sock)

    def __enter__(self) -> "DeviceConnection":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        log.debug("Closing connection")
        self._sock.close()

    def _flush(self, session: _TlsSession) -> None:
        data = session.outgoing.read()
        if data:
            self._sock.sendall(data)

    def _pump(self, session: _TlsSession) -> bool:
        data = self._sock.recv(_READ_SIZE)
        if not data:
            return False
        session.incoming.write(data)
        return True

    def send(self, data: bytes) -> None:
        """Send all bytes; the connection is closed if sending fails."""
        try:
            if self._tls is None:
                self._sock.sendall(data)
            else:
                self._tls.obj.write(data)
                self._flush(self._tls)
        except (OSError, ssl.SSLError) as error:
            log.error("Failed sending: %s", error)
            self.close()
            raise

    def read(self, size: int) -> bytes:
        """Up to size bytes; an empty result means the peer closed the stream."""
        session = self._tls
        if session is None:
            return self._sock.recv(size)
        while True:
            try:
                return session.obj.read(size)
            except ssl.SSLWantReadError:
                self._flush(session)
                if not self._pump(session):
                    return b""
            except (ssl.SSLZeroReturnError, ssl.SSLEOFError):
                return b""

    def read_exactly(self, size: int) -> bytes:
        """Exactly size bytes, or EOFError if the stream ends first."""
        chunks = []
        remaining = size
        while remaining > 0:
            chunk = self.read(remaining)
            if not chunk:
                raise EOFError(f"expected {size} bytes, got {size - remaining}")
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def _handshake(self, pair_record: PairRecord, server_side: bool) -> _TlsSession:
        context = _tls_context(pair_record, server_side)
        incoming, outgoing = ssl.MemoryBIO(), ssl.MemoryBIO()
        session = _TlsSession(
            context.wrap_bio(incoming, outgoing, server_side=server_side), incoming, outgoing
        )
        while True:
            try:
                session.obj.do_handshake()
                break
            except ssl.SSLWantReadError:
                self._flush(session)
                if not self._pump(session):
                    raise ConnectionError("connection closed during TLS handshake")
        self._flush(session)
        return session

    def enable_session_ssl(self, pair_record: PairRecord) -> None:
        """Switch to TLS as a client for all further traffic."""
        self._tls = self._handshake(pair_record, server_side=False)

    def enable_session_ssl_server_mode(self, pair_record: PairRecord) -> None:
        """Switch to TLS as a server, presenting the host certificate."""
        self._tls = self._handshake(pair_record, server_side=True)

    def enable_session_ssl_handshake_only(self, pair_record: PairRecord) -> None:
        """Run a client TLS handshake, then carry on in plain text."""
        self._handshake(pair_record, server_side=False)

    def enable_session_ssl_server_mode_handshake_only(self, pair_record: PairRecord) -> None:
        """Run a server TLS handshake, then carry on in plain text."""
        self._handshake(pair_record, server_side=True)

    def disable_session_ssl(self) -> None:
        """Drop TLS without closing the connection.

        Sends our close notification, then reads and discards the peer's
        encrypted close record from the plain stream.
        """
        session = self._tls
        if session is None:
            raise RuntimeError("session SSL is not enabled")
        try:
            session.obj.unwrap()
        except ssl.SSLWantReadError:
            pass
        except ssl.SSLError as error:
            log.error("failed closewrite %s", error)
        try:
            self._flush(session)
        except OSError as error:
            log.error("failed sending close notification %s", error)
        self._tls = None
        try:
            header = self.read_exactly(_TLS_RECORD_HEADER_SIZE)
            log.debug("rcv tls header: %s", header.hex())
            length = int.from_bytes(header[3:5], "big")
            payload = self.read_exactly(length)
            log.debug("rcv tls payload: %s", payload.hex())
        except (OSError, EOFError) as error:
            log.error("failed reading TLS close record %s", error)