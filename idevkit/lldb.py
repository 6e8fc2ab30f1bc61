"""Launching lldb against a device debug server."""

from __future__ import annotations

import logging
import os
import plistlib
import posixpath
import subprocess
from string import Template

log = logging.getLogger(__name__)

PY_PATH = "/tmp/idevkit_lldb.py"
SCRIPT_PATH = "/tmp/idevkit_lldb.sh"
LLDB_SHELL = "/usr/bin/lldb"
STOP_AT_ENTRY = "launchInfo.SetLaunchFlags(lldb.eLaunchFlagStopAtEntry)"

_ASYNC_COMMANDS = ("run", "autoexit", "safequit")

PY_TEMPLATE = Template(
    r"""
import os
import shlex
import sys
import time

import lldb

DEADLOCK_TIMEOUT = 0
OUTPUT_BITS = lldb.SBProcess.eBroadcastBitSTDOUT | lldb.SBProcess.eBroadcastBitSTDERR

listener = None
startup_error = lldb.SBError()


def connect_command(debugger, command, result, internal_dict):
    global listener
    # One listener shared by target and process keeps output handling race free.
    listener = lldb.SBListener("idevkit_listener")
    listener.StartListeningForEventClass(
        debugger,
        lldb.SBTarget.GetBroadcasterClassName(),
        lldb.SBProcess.eBroadcastBitStateChanged | OUTPUT_BITS,
    )
    error = lldb.SBError()
    target = debugger.GetSelectedTarget()
    process = target.ConnectRemote(listener, internal_dict["connect_url"], None, error)

    consumed = []
    state = process.GetState() or lldb.eStateInvalid
    while state != lldb.eStateConnected:
        event = lldb.SBEvent()
        if listener.WaitForEvent(1, event):
            state = process.GetStateFromEvent(event)
            consumed.append(event)
        else:
            state = lldb.eStateInvalid
    # lldb stalls unless the consumed events are handed back.
    for event in consumed:
        listener.AddEvent(event)


def run_command(debugger, command, result, internal_dict):
    target = debugger.GetSelectedTarget()
    target.modules[0].SetPlatformFileSpec(lldb.SBFileSpec(internal_dict["device_app"]))
    parts = command.split("--", 1)
    extra = shlex.split(parts[1]) if len(parts) > 1 else []

    launchInfo = lldb.SBLaunchInfo(extra)
    launchInfo.SetListener(listener)
    $stop_at_entry
    # Mirror NSLog, CFLog and os_log output to stderr.
    launchInfo.SetEnvironmentEntries(["OS_ACTIVITY_DT_MODE=enable"], True)
    launchInfo.SetEnvironmentEntries(list(extra), True)

    target.Launch(launchInfo, startup_error)
    if ": Locked" in str(startup_error):
        print("\nDevice Locked\n")
        os._exit(254)
    print(str(startup_error))


def safequit_command(debugger, command, result, internal_dict):
    process = debugger.GetSelectedTarget().process
    state = process.GetState()
    if state == lldb.eStateRunning:
        process.Detach()
        os._exit(0)
    if state > lldb.eStateRunning:
        os._exit(state)
    print("\nApplication has not been launched\n")
    os._exit(1)


def _drain(read, sink):
    chunk = read(1024)
    while chunk:
        sink.write(chunk)
        chunk = read(1024)


def autoexit_command(debugger, command, result, internal_dict):
    process = debugger.GetSelectedTarget().process
    if not startup_error.Success():
        print("\nPROCESS_NOT_STARTED\n")
        os._exit(254)

    out_path = internal_dict["output_path"]
    err_path = internal_dict["error_path"]
    out = open(out_path, "w") if out_path else None
    err = open(err_path, "w") if err_path else None
    stdout_sink = out or sys.stdout
    stderr_sink = err or sys.stdout

    backtrace_at = time.time() + DEADLOCK_TIMEOUT if DEADLOCK_TIMEOUT > 0 else None

    # Keep lldb's own listener off the output streams so writes stay ordered.
    debugger.GetListener().StopListeningForEvents(process.GetBroadcaster(), OUTPUT_BITS)

    def drain_all():
        _drain(process.GetSTDOUT, stdout_sink)
        _drain(process.GetSTDERR, stderr_sink)

    def finish(status, banner, backtrace=False):
        sys.stdout.write(banner)
        if backtrace:
            debugger.HandleCommand("bt")
        sys.stdout.flush()
        for handle in (out, err):
            if handle:
                handle.close()
        os._exit(status)

    event = lldb.SBEvent()
    while True:
        if listener.WaitForEvent(1, event) and lldb.SBProcess.EventIsProcessEvent(event):
            state = lldb.SBProcess.GetStateFromEvent(event)
            kind = event.GetType()
            if kind & lldb.SBProcess.eBroadcastBitSTDOUT:
                _drain(process.GetSTDOUT, stdout_sink)
            if kind & lldb.SBProcess.eBroadcastBitSTDERR:
                _drain(process.GetSTDERR, stderr_sink)
        else:
            state = process.GetState()

        if state != lldb.eStateRunning:
            drain_all()

        if state == lldb.eStateExited:
            finish(process.GetExitStatus(), "\nPROCESS_EXITED\n")
        elif backtrace_at is None and state == lldb.eStateStopped:
            finish(254, "\nPROCESS_STOPPED\n", backtrace=True)
        elif state == lldb.eStateCrashed:
            finish(254, "\nPROCESS_CRASHED\n", backtrace=True)
        elif state == lldb.eStateDetached:
            finish(254, "\nPROCESS_DETACHED\n")
        elif backtrace_at is not None and time.time() >= backtrace_at:
            sys.stdout.write("\nPRINT_BACKTRACE_TIMEOUT\n")
            for step in ("process interrupt", "bt all", "continue"):
                debugger.HandleCommand(step)
            backtrace_at = time.time() + 5
"""
)


def render_python_script(stop_at_entry: bool) -> str:
    """The helper module that lldb imports to drive the remote process."""
    return PY_TEMPLATE.substitute(stop_at_entry=STOP_AT_ENTRY if stop_at_entry else "")


def render_lldb_script(app_path: str, container: str, port: int, py_path: str) -> str:
    """The lldb command script that connects to the local debug proxy."""
    base = posixpath.basename(py_path)
    py_name = posixpath.splitext(base)[0] if "." in base else base
    commands = [
        "platform select remote-ios",
        f'target create "{app_path}"',
        f'script device_app="{container}"',
        f'script connect_url="connect://127.0.0.1:{int(port)}"',
        'script output_path=""',
        'script error_path=""',
        f'command script import "{py_path}"',
        f"command script add -f {py_name}.connect_command connect",
    ]
    commands.extend(
        f"command script add -s asynchronous -f {py_name}.{name}_command {name}"
        for name in _ASYNC_COMMANDS
    )
    commands.extend(["connect", "run"])
    return "\n" + "\n".join(commands) + "\n"


def bundle_id_from_app(app_path: str) -> str:
    """Read CFBundleIdentifier from an app bundle's Info.plist."""
    plist_path = os.path.join(app_path, "Info.plist")
    if not os.path.isfile(plist_path):
        raise FileNotFoundError("cannot find info.plist")
    with open(plist_path, "rb") as handle:
        values = plistlib.load(handle)
    bundle_id = values.get("CFBundleIdentifier") if isinstance(values, dict) else None
    if not isinstance(bundle_id, str):
        raise ValueError("cannot find CFBundleIdentifier in Info.plist")
    return bundle_id


def start_lldb(app_path: str, container: str, port: int, stop_at_entry: bool) -> None:
    """Write the scripts to their fixed paths and run lldb in the foreground."""
    with open(PY_PATH, "w", encoding="utf-8") as handle:
        handle.write(render_python_script(stop_at_entry))
    with open(SCRIPT_PATH, "w", encoding="utf-8") as handle:
        handle.write(render_lldb_script(app_path, container, port, PY_PATH))
    log.info("starting lldb with script %s", SCRIPT_PATH)
    subprocess.run([LLDB_SHELL, "-s", SCRIPT_PATH], check=True)