# idevkit

Protocol building blocks for the services an iOS device exposes over
usbmuxd. The package does the protocol work (framing, encoding, request
building and response parsing) over streams and transports that you
connect and hand to it. It has no runtime dependencies beyond the
standard library.

## Modules

| Module | Purpose |
| --- | --- |
| `idevkit.afc_codec` | AFC wire format: `AfcPacketHeader`, `AfcPacket`, `encode`, `decode`, the `AfcOperation` and `AfcMode` enums, and `AfcError` with `error_for_code`. |
| `idevkit.afc` | `AfcClient`: `stat` (returning `StatInfo`), `list_dir`, `list_files` with a shell pattern, `mkdir`, `remove`, `remove_path_and_contents`, `remove_all`, `open_file`, `close_file`, `pull_single_file`, `pull` of whole trees, `push`, `write_to_file`, `tree_view` printed to standard output, and `space_info` (returning `DeviceSpaceInfo`). |
| `idevkit.crashreport` | `await_mover_ping` for the crash report mover's greeting, and `list_reports`, `copy_reports` and `remove_reports` over an `AfcClient`. |
| `idevkit.gdb` | GDB remote serial protocol: `checksum`, `format_packet`, and `GDBServer` with `send`, `recv` and `request`. `InvalidPayloadError` is raised for a packet whose `#` comes before its `$`. |
| `idevkit.lldb` | `render_python_script` and `render_lldb_script` for the lldb helper and command scripts, `bundle_id_from_app` to read `CFBundleIdentifier` from an app's `Info.plist`, and `start_lldb`, which writes both scripts to `/tmp` and runs `/usr/bin/lldb -s <script>`. |
| `idevkit.socket_mover` | `move_socket` renames the usbmuxd socket to a unique side location; `move_back` restores it. |
| `idevkit.dumping` | `DumpingConnection` wraps a socket-like object and hex-dumps every `recv` and `sendall` to a file; `BinaryDumper` appends raw bytes to a file. |
| `idevkit.debugproxy` | Bookkeeping for a recording proxy: `ServiceRegistry` of started services (`PhoneServiceInformation`), `service_config_for_name` (`ServiceConfig`), `DumpDirectory` with per-connection directories (`ConnectionInfo`), and `write_json_line`. |
| `idevkit.deviceconnection` | `DeviceConnection`, a socket to usbmuxd or a device service that can switch to TLS with a `PairRecord`, as client or server, for the whole session or only the handshake, and drop TLS again with `disable_session_ssl`. `socket_address` parses `unix://` and `tcp://` addresses. |
| `idevkit.messages` | usbmuxd message dictionaries: `connect_message`, `read_buid_message`, `parse_buid_response`, plus `ntohs` and `handshake_only_ssl`. |
| `idevkit.diagnostics` | `DiagnosticsClient` for the diagnostics relay (`reboot`, `all_values`, `ioreg_entry_query`, `mobile_gestalt_query`, `close`), the request builders, `parse_all_diagnostics`, and `battery_info` building a `BatteryInfo`. |

## Examples

### Files over AFC

`AfcClient` works on any binary stream with `read` and `write`, such as a
file object made from a socket already connected to the device's AFC
service:

```python
from idevkit.afc import AfcClient

afc = AfcClient(sock.makefile("rwb"))

info = afc.stat("/DCIM")
if info.is_dir():
    for name in afc.list_dir("/DCIM"):
        print(name)

afc.pull("/DCIM", "photos")
afc.push("notes.txt", "/Downloads")
print(afc.space_info())
afc.close()
```

Error statuses from the service are raised as `AfcError`, whose `code` and
`name` identify the status.

### Connections and TLS

```python
from idevkit.deviceconnection import DeviceConnection, PairRecord

conn = DeviceConnection.open("unix:///var/run/usbmuxd")
pair = PairRecord(host_certificate=cert_pem, host_private_key=key_pem)
conn.enable_session_ssl(pair)
conn.send(b"...")
reply = conn.read(4096)
conn.close()
```

Paths beginning with `/var` are taken as unix sockets, so
`DeviceConnection.open("/var/run/usbmuxd")` works too.

### GDB remote protocol

```python
from idevkit.gdb import GDBServer, format_packet

print(format_packet("qSupported"))  # "+$qSupported#" followed by the checksum
server = GDBServer(stream)
reply = server.request("QStartNoAckMode")
```

`recv` returns an empty string once the stream has ended.

### Diagnostics

`DiagnosticsClient` takes a transport with `send(mapping)`, `receive()`
returning the response as plist bytes, and `close()`:

```python
from idevkit.diagnostics import DiagnosticsClient, battery_info

with DiagnosticsClient(transport) as client:
    values = client.all_values()
    print(values.diagnostics.gas_gauge.cycle_count)
    print(client.mobile_gestalt_query(["ProductType"]))

print(battery_info(battery_domain_values).has_battery)
```

Unusable responses and a failed reboot raise `DiagnosticsError`.

## What the package does not do

- It does not talk to usbmuxd itself: there is no device listing, no
  sending or reading of framed usbmuxd messages, no lockdown session and no
  starting of device services. `idevkit.messages` only builds and parses
  the message dictionaries; you connect the streams and transports.
- It has no command line program.
- The debug proxy pieces keep records and dump files; the package does not
  accept connections or forward traffic between host and device, and it has
  no DTX decoder (`ServiceConfig.decoder` only names which kind to use).

## Tests

The tests use pytest and need no device; `pip install .[test]` installs
it, then run `pytest`.