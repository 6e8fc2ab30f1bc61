"""Client for the diagnostics relay service and battery information."""

from __future__ import annotations

import plistlib
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Protocol
from xml.parsers.expat import ExpatError

SERVICE_NAME = "com.apple.mobile.diagnostics_relay"
BATTERY_DOMAIN = "com.apple.mobile.battery"

_BATTERY_FLAGS = {
    "BatteryIsCharging": "battery_is_charging",
    "ExternalChargeCapable": "external_charge_capable",
    "ExternalConnected": "external_connected",
    "FullyCharged": "fully_charged",
    "GasGaugeCapability": "gas_gauge_capability",
    "HasBattery": "has_battery",
}
BATTERY_KEYS = ("BatteryCurrentCapacity", *_BATTERY_FLAGS)


class DiagnosticsError(Exception):
    """The diagnostics service answered with something unusable."""


class _Transport(Protocol):
    def send(self, message: Mapping[str, Any]) -> None: ...

    def receive(self) -> bytes: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class WiFi:
    active: str = ""
    status: str = ""


@dataclass(frozen=True)
class NAND:
    status: str = ""


@dataclass(frozen=True)
class HDMI:
    connection: str = ""
    status: str = ""


@dataclass(frozen=True)
class GasGauge:
    cycle_count: int = 0
    design_capacity: int = 0
    full_charge_capacity: int = 0
    status: str = ""


@dataclass(frozen=True)
class DiagnosticsInfo:
    gas_gauge: GasGauge = field(default_factory=GasGauge)
    hdmi: HDMI = field(default_factory=HDMI)
    nand: NAND = field(default_factory=NAND)
    wifi: WiFi = field(default_factory=WiFi)


@dataclass(frozen=True)
class AllDiagnostics:
    diagnostics: DiagnosticsInfo = field(default_factory=DiagnosticsInfo)
    status: str = ""


@dataclass(frozen=True)
class BatteryInfo:
    battery_current_capacity: int
    battery_is_charging: bool
    external_charge_capable: bool
    external_connected: bool
    fully_charged: bool
    gas_gauge_capability: bool
    has_battery: bool


def reboot_request() -> Dict[str, Any]:
    return {
        "Request": "Restart",
        "WaitForDisconnect": True,
        "DisplayPass": True,
        "DisplayFail": True,
    }


def ioregistry_request(key: str) -> Dict[str, Any]:
    return {"Request": "IORegistry", "EntryName": key}


def gestalt_request(keys: Iterable[str]) -> Dict[str, Any]:
    return {"Request": "MobileGestalt", "MobileGestaltKeys": list(keys)}


def _section(values: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = values.get(key)
    return value if isinstance(value, dict) else {}


def _text(values: Mapping[str, Any], key: str) -> str:
    value = values.get(key)
    return value if isinstance(value, str) else ""


def _count(values: Mapping[str, Any], key: str) -> int:
    value = values.get(key)
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    return 0


def _parse_plist(data: bytes) -> Dict[str, Any]:
    try:
        values = plistlib.loads(data)
    except (ValueError, ExpatError) as error:
        raise DiagnosticsError(f"invalid plist response: {error}") from error
    if not isinstance(values, dict):
        raise DiagnosticsError(f"expected a dictionary, got {type(values).__name__}")
    return values


def parse_all_diagnostics(data: bytes) -> AllDiagnostics:
    """Decode an 'All' response; missing or unreadable parts stay empty."""
    try:
        values = plistlib.loads(data)
    except (ValueError, ExpatError):
        return AllDiagnostics()
    if not isinstance(values, dict):
        return AllDiagnostics()
    diagnostics = _section(values, "Diagnostics")
    gas_gauge = _section(diagnostics, "GasGauge")
    hdmi = _section(diagnostics, "HDMI")
    nand = _section(diagnostics, "NAND")
    wifi = _section(diagnostics, "WiFi")
    return AllDiagnostics(
        diagnostics=DiagnosticsInfo(
            gas_gauge=GasGauge(
                cycle_count=_count(gas_gauge, "CycleCount"),
                design_capacity=_count(gas_gauge, "DesignCapacity"),
                full_charge_capacity=_count(gas_gauge, "FullChargeCapacity"),
                status=_text(gas_gauge, "Status"),
            ),
            hdmi=HDMI(connection=_text(hdmi, "Connection"), status=_text(hdmi, "Status")),
            nand=NAND(status=_text(nand, "Status")),
            wifi=WiFi(active=_text(wifi, "Active"), status=_text(wifi, "Status")),
        ),
        status=_text(values, "Status"),
    )


def battery_info(values: Mapping[str, Any]) -> BatteryInfo:
    """Build battery information from the values of the battery lockdown domain."""
    capacity = values.get("BatteryCurrentCapacity")
    if not isinstance(capacity, int) or isinstance(capacity, bool) or capacity < 0:
        raise DiagnosticsError(f"invalid BatteryCurrentCapacity: {capacity!r}")
    flags = {}
    for key, attribute in _BATTERY_FLAGS.items():
        value = values.get(key)
        if not isinstance(value, bool):
            raise DiagnosticsError(f"invalid {key}: {value!r}")
        flags[attribute] = value
    return BatteryInfo(battery_current_capacity=capacity, **flags)


class DiagnosticsClient:
    """Requests to the diagnostics relay over a plist message transport.

    The transport sends dictionaries as plist messages and returns each
    response as raw plist bytes.
    """

    def __init__(self, transport: _Transport) -> None:
        self._transport = transport

    def __enter__(self) -> "DiagnosticsClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _exchange(self, request: Mapping[str, Any]) -> bytes:
        self._transport.send(request)
        return self._transport.receive()

    def reboot(self) -> None:
        """Ask the device to restart; raises unless it reports success."""
        response = _parse_plist(self._exchange(reboot_request()))
        if response.get("Status") != "Success":
            raise DiagnosticsError(f"could not reboot, response: {response}")

    def all_values(self) -> AllDiagnostics:
        return parse_all_diagnostics(self._exchange({"Request": "All"}))

    def ioreg_entry_query(self, key: str) -> Dict[str, Any]:
        return _parse_plist(self._exchange(ioregistry_request(key)))

    def mobile_gestalt_query(self, keys: Iterable[str]) -> Dict[str, Any]:
        return _parse_plist(self._exchange(gestalt_request(keys)))

    def close(self) -> None:
        """Say goodbye to the service and close the transport."""
        self._exchange({"Request": "Goodbye"})
        self._transport.close()