"""Protocol building blocks for iOS device services: AFC, crash reports, diagnostics, GDB and TLS connections."""

__version__ = "0.1.0"

__all__ = [
    "afc",
    "afc_codec",
    "crashreport",
    "debugproxy",
    "deviceconnection",
    "diagnostics",
    "dumping",
    "gdb",
    "lldb",
    "messages",
    "socket_mover",
]