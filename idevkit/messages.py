"""usbmuxd request messages and helpers for connecting to device services."""

from __future__ import annotations

import plistlib
from typing import Any, Dict
from xml.parsers.expat import ExpatError

BUNDLE_ID = "go.ios.control"
CLIENT_VERSION = "go-usbmux-0.0.1"
PROG_NAME = "go-usbmux"
LIB_USBMUX_VERSION = 3

# Services that run a TLS handshake and then fall back to plain text.
HANDSHAKE_ONLY_SSL_SERVICES = frozenset(
    {
        "com.apple.instruments.remoteserver",
        "com.apple.accessibility.axAuditDaemon.remoteserver",
        "com.apple.testmanagerd.lockdown",
        "com.apple.debugserver",
    }
)


def ntohs(port: int) -> int:
    """Swap the two bytes of a 16-bit port number."""
    if not 0 <= port <= 0xFFFF:
        raise ValueError(f"port out of range: {port}")
    return ((port & 0xFF) << 8) | (port >> 8)


def _base_message(message_type: str) -> Dict[str, Any]:
    return {
        "BundleID": BUNDLE_ID,
        "ClientVersionString": CLIENT_VERSION,
        "MessageType": message_type,
        "ProgName": PROG_NAME,
        "kLibUSBMuxVersion": LIB_USBMUX_VERSION,
    }


def connect_message(device_id: int, port_number: int) -> Dict[str, Any]:
    """A Connect request for a device; port_number is in network byte order."""
    message = _base_message("Connect")
    message["DeviceID"] = device_id & 0xFFFFFFFF
    message["PortNumber"] = port_number & 0xFFFF
    return message


def read_buid_message() -> Dict[str, Any]:
    """A request for the host's BUID."""
    return _base_message("ReadBUID")


def parse_buid_response(data: bytes) -> str:
    """The BUID from a response plist, or an empty string if there is none."""
    try:
        values = plistlib.loads(data)
    except (ValueError, ExpatError):
        return ""
    if not isinstance(values, dict):
        return ""
    buid = values.get("BUID")
    return buid if isinstance(buid, str) else ""


def handshake_only_ssl(service_name: str) -> bool:
    """Whether a service uses TLS only for its handshake."""
    return service_name in HANDSHAKE_ONLY_SSL_SERVICES