from __future__ import annotations

import re
from enum import Enum
from typing import Optional, Protocol

from ..journal.snapshots import ServiceStateSnapshot
from .native import check_native


class StartupType(str, Enum):
    BOOT = "Boot"
    SYSTEM = "System"
    AUTOMATIC = "Automatic"
    AUTOMATIC_DELAYED = "AutomaticDelayedStart"
    MANUAL = "Manual"
    DISABLED = "Disabled"


class ServiceAction(str, Enum):
    START = "Start"
    STOP = "Stop"


STATUS_RUNNING = "Running"
STATUS_STOPPED = "Stopped"

_SC_STATES = {
    "1": STATUS_STOPPED,
    "2": "StartPending",
    "3": "StopPending",
    "4": STATUS_RUNNING,
    "5": "ContinuePending",
    "6": "PausePending",
    "7": "Paused",
}

_SC_START_ARGS = {
    StartupType.BOOT: "boot",
    StartupType.SYSTEM: "system",
    StartupType.AUTOMATIC: "auto",
    StartupType.AUTOMATIC_DELAYED: "delayed-auto",
    StartupType.MANUAL: "demand",
    StartupType.DISABLED: "disabled",
}

_STARTUP_ALIASES = {
    "0": StartupType.BOOT,
    "1": StartupType.SYSTEM,
    "2": StartupType.AUTOMATIC,
    "3": StartupType.MANUAL,
    "4": StartupType.DISABLED,
    "boot": StartupType.BOOT,
    "boot_start": StartupType.BOOT,
    "system": StartupType.SYSTEM,
    "system_start": StartupType.SYSTEM,
    "auto": StartupType.AUTOMATIC,
    "auto_start": StartupType.AUTOMATIC,
    "automatic": StartupType.AUTOMATIC,
    "delayed-auto": StartupType.AUTOMATIC_DELAYED,
    "automaticdelayedstart": StartupType.AUTOMATIC_DELAYED,
    "demand": StartupType.MANUAL,
    "demand_start": StartupType.MANUAL,
    "manual": StartupType.MANUAL,
    "disabled": StartupType.DISABLED,
}


def parse_startup_type(value: object) -> Optional[StartupType]:
    """Map a recorded startup type (enum name, sc token or numeric code) to the enum."""
    if isinstance(value, StartupType):
        return value
    if isinstance(value, bool) or value is None:
        return None
    text = str(value).strip().lower()
    return _STARTUP_ALIASES.get(text)


class ServiceBackend(Protocol):
    def query(self, name: str) -> ServiceStateSnapshot:
        ...

    def set_startup_type(self, name: str, startup_type: StartupType) -> None:
        ...

    def start(self, name: str) -> None:
        ...

    def stop(self, name: str) -> None:
        ...


_STATE_RE = re.compile(r"^\s*STATE\s*:\s*(\d+)", re.MULTILINE)
_START_TYPE_RE = re.compile(r"^\s*START_TYPE\s*:\s*(\d+)\s+(\S+)(.*)$", re.MULTILINE)


def parse_sc_state(output: str) -> str:
    match = _STATE_RE.search(output)
    if not match:
        raise ValueError("no STATE line in sc query output")
    return _SC_STATES.get(match.group(1), "Unknown")


def parse_sc_start_type(output: str) -> StartupType:
    match = _START_TYPE_RE.search(output)
    if not match:
        raise ValueError("no START_TYPE line in sc qc output")
    if "DELAYED" in match.group(3).upper():
        return StartupType.AUTOMATIC_DELAYED
    parsed = parse_startup_type(match.group(1))
    if parsed is None:
        raise ValueError(f"unknown START_TYPE {match.group(1)}")
    return parsed


class ScServiceBackend:
    def __init__(self, timeout_s: float = 15.0) -> None:
        self.timeout_s = timeout_s

    def query(self, name: str) -> ServiceStateSnapshot:
        state = check_native(["sc.exe", "query", name], self.timeout_s).stdout
        config = check_native(["sc.exe", "qc", name], self.timeout_s).stdout
        return ServiceStateSnapshot(
            status=parse_sc_state(state),
            startup_type=parse_sc_start_type(config).value,
        )

    def set_startup_type(self, name: str, startup_type: StartupType) -> None:
        # sc expects "start=" and its value as separate arguments.
        check_native(
            ["sc.exe", "config", name, "start=", _SC_START_ARGS[startup_type]],
            self.timeout_s,
        )

    def start(self, name: str) -> None:
        check_native(["sc.exe", "start", name], self.timeout_s)

    def stop(self, name: str) -> None:
        check_native(["sc.exe", "stop", name], self.timeout_s)


_ACTION_ALIASES = {
    "start": ServiceAction.START,
    "running": ServiceAction.START,
    "stop": ServiceAction.STOP,
    "stopped": ServiceAction.STOP,
}


def parse_service_action(value: object) -> Optional[ServiceAction]:
    if isinstance(value, ServiceAction):
        return value
    return _ACTION_ALIASES.get(str(value).strip().lower())
