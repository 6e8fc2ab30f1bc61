"""Bookkeeping for a proxy that records traffic between host and device."""

from __future__ import annotations

import base64
import dataclasses
import json
import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping

log = logging.getLogger(__name__)

CONNECTION_JSON_FILE_NAME = "connections.json"
JSON_DUMP_FILE_NAME = "jsondump.json"

DTX_DECODER = "dtx"
BINARY_DECODER = "bindump"


@dataclass(frozen=True)
class PhoneServiceInformation:
    """A service started on the phone through lockdown."""

    service_port: int
    service_name: str
    use_ssl: bool


@dataclass(frozen=True)
class ConnectionInfo:
    connection_path: str
    created_at: datetime
    id: str

    def _json(self) -> Dict[str, Any]:
        return {
            "ConnectionPath": self.connection_path,
            "CreatedAt": self.created_at.isoformat(),
            "ID": self.id,
        }


@dataclass(frozen=True)
class ServiceConfig:
    """Which decoder a service uses and whether SSL covers only the handshake."""

    decoder: str
    handshake_only_ssl: bool


SERVICE_CONFIGURATIONS: Dict[str, ServiceConfig] = {
    "com.apple.instruments.remoteserver": ServiceConfig(DTX_DECODER, True),
    "com.apple.accessibility.axAuditDaemon.remoteserver": ServiceConfig(DTX_DECODER, True),
    "com.apple.testmanagerd.lockdown": ServiceConfig(DTX_DECODER, True),
    "com.apple.debugserver": ServiceConfig(BINARY_DECODER, True),
    "com.apple.instruments.remoteserver.DVTSecureSocketProxy": ServiceConfig(DTX_DECODER, False),
    "com.apple.testmanagerd.lockdown.secure": ServiceConfig(DTX_DECODER, False),
    "bindumper": ServiceConfig(BINARY_DECODER, False),
}


def service_config_for_name(service_name: str) -> ServiceConfig:
    """The configuration for a service, falling back to plain binary dumping."""
    return SERVICE_CONFIGURATIONS.get(service_name, SERVICE_CONFIGURATIONS["bindumper"])


def _json_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, datetime):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    raise TypeError(f"cannot encode {type(value).__name__} as JSON")


def write_json_line(file_path: str, value: Any) -> None:
    """Append value as one line of JSON to a file."""
    try:
        line = json.dumps(value, default=_json_default)
    except (TypeError, ValueError) as error:
        log.warning("Error encoding '%s' to json: %s", value, error)
        line = ""
    with open(file_path, "a", encoding="utf-8") as handle:
        handle.write(line + "\n")


class ServiceRegistry:
    """Thread-safe record of the services started on the phone."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._services: List[PhoneServiceInformation] = []

    def store(self, info: PhoneServiceInformation) -> None:
        with self._lock:
            self._services.append(info)

    def by_port(self, port: int) -> PhoneServiceInformation:
        """The first service started on port; LookupError if there is none."""
        with self._lock:
            for info in self._services:
                if info.service_port == port:
                    return info
        raise LookupError(f"No Service found for port {port}")


def _timestamp(moment: datetime) -> str:
    return moment.strftime("%Y.%m.%d-%H.%M.%S.") + f"{moment.microsecond // 1000:03d}"


class DumpDirectory:
    """A timestamped directory holding one sub-directory per proxied connection."""

    def __init__(self, base: str = ".") -> None:
        now = datetime.now().astimezone()
        self.working_dir = os.path.join(base, "dump-" + _timestamp(now.utcnow()))
        os.makedirs(self.working_dir, exist_ok=True)
        self._lock = threading.Lock()
        self._counter = 0

    def new_connection(self) -> ConnectionInfo:
        """Create the directory for the next connection and record it."""
        with self._lock:
            self._counter += 1
            connection_id = f"#{self._counter}"
        now = datetime.now().astimezone()
        path = os.path.join(
            self.working_dir, f"connection-{connection_id}-{_timestamp(now.utcnow())}"
        )
        os.makedirs(path, exist_ok=True)
        info = ConnectionInfo(connection_path=path, created_at=now, id=connection_id)
        write_json_line(os.path.join(self.working_dir, CONNECTION_JSON_FILE_NAME), info._json())
        return info

    def log_message(
        self, info: ConnectionInfo, message: Mapping[str, Any], to_device: bool
    ) -> None:
        """Append a decoded message, tagged with its direction, to the connection's dump."""
        record = dict(message)
        record["direction"] = "host->device" if to_device else "device->host"
        write_json_line(os.path.join(info.connection_path, JSON_DUMP_FILE_NAME), record)