"""Crash report retrieval from a device's crash report AFC service."""

from __future__ import annotations

import logging
import os
import posixpath
import stat as stat_module
from typing import BinaryIO, List

from idevkit.afc import AfcClient
from idevkit.afc_codec import AfcError

log = logging.getLogger(__name__)

MOVER_SERVICE = "com.apple.crashreportmover"
COPY_MOBILE_SERVICE = "com.apple.crashreportcopymobile"

_PING = b"ping"
_SPECIAL_NAMES = (".", "..")


def _device_join(cwd: str, name: str) -> str:
    return posixpath.normpath(posixpath.join(cwd, name))


def _require_pattern(pattern: str) -> None:
    if not pattern:
        raise ValueError("empty pattern not ok, just use *")


def await_mover_ping(stream: BinaryIO) -> None:
    """Wait for the crash report mover to answer with its 'ping' greeting."""
    log.debug("connected to mover, awaiting ping")
    received = b""
    while len(received) < len(_PING):
        chunk = stream.read(len(_PING) - len(received))
        if not chunk:
            raise EOFError(
                f"crashreport mover closed the connection after {received.hex()!r}"
            )
        received += chunk
    if received != _PING:
        raise ValueError(f"did not receive ping from crashreport mover: {received.hex()}")
    log.debug("ping received")


def copy_reports(afc: AfcClient, cwd: str, pattern: str, target_dir: str) -> None:
    """Copy reports in cwd matching pattern to target_dir.

    Directories are copied recursively with all of their contents; the
    pattern applies only to the top level.
    """
    _require_pattern(pattern)
    log.info("downloading dir=%s pattern=%s to=%s", cwd, pattern, target_dir)
    permissions = stat_module.S_IMODE(os.stat(target_dir).st_mode)
    files = afc.list_files(cwd, pattern)
    log.debug("files: %s", files)
    for name in files:
        if name in _SPECIAL_NAMES:
            continue
        device_path = _device_join(cwd, name)
        target_path = os.path.join(target_dir, name)
        log.info("downloading from=%s to=%s", device_path, target_path)
        try:
            info = afc.stat(device_path)
        except AfcError:
            log.warning("failed getting info for file: %s, skipping", name)
            continue
        if info.is_dir():
            os.mkdir(target_path, permissions)
            copy_reports(afc, device_path, "*", target_path)
            continue
        afc.pull_single_file(device_path, target_path)
        log.info("done from=%s to=%s", device_path, target_path)


def remove_reports(afc: AfcClient, cwd: str, pattern: str) -> None:
    """Delete the reports in cwd whose names match pattern."""
    _require_pattern(pattern)
    log.info("deleting cwd=%s pattern=%s", cwd, pattern)
    for name in afc.list_files(cwd, pattern):
        if name in _SPECIAL_NAMES:
            continue
        path = _device_join(cwd, name)
        log.info("delete path=%s", path)
        afc.remove(path)
    log.info("done deleting cwd=%s pattern=%s", cwd, pattern)


def list_reports(afc: AfcClient, pattern: str) -> List[str]:
    """Names of the reports at the top level matching pattern."""
    return afc.list_files(".", pattern)