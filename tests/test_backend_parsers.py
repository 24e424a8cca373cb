import pytest

from novaisfps.backends.boot import parse_bcd_options
from novaisfps.backends.power import parse_scheme_guid
from novaisfps.backends.registry import split_hive
from novaisfps.backends.services import (
    StartupType,
    parse_sc_start_type,
    parse_sc_state,
    parse_service_action,
    parse_startup_type,
)
from novaisfps.errors import NativeCommandError

SC_QUERY = """
SERVICE_NAME: SysMain
        TYPE               : 30  WIN32
        STATE              : 4  RUNNING
                                (STOPPABLE, NOT_PAUSABLE, ACCEPTS_SHUTDOWN)
        WIN32_EXIT_CODE    : 0  (0x0)
"""

SC_QC_DELAYED = """
[SC] QueryServiceConfig SUCCESS

SERVICE_NAME: wuauserv
        TYPE               : 20  WIN32_SHARE_PROCESS
        START_TYPE         : 2   AUTO_START  (DELAYED)
        ERROR_CONTROL      : 1   NORMAL
"""

SC_QC_DISABLED = """
SERVICE_NAME: DiagTrack
        START_TYPE         : 4   DISABLED
"""

BCD_ENUM = """
Windows Boot Loader
-------------------
identifier              {current}
device                  partition=C:
useplatformclock        Yes
disabledynamictick      Yes
"""


def test_parse_sc_output() -> None:
    assert parse_sc_state(SC_QUERY) == "Running"
    assert parse_sc_start_type(SC_QC_DELAYED) is StartupType.AUTOMATIC_DELAYED
    assert parse_sc_start_type(SC_QC_DISABLED) is StartupType.DISABLED
    with pytest.raises(ValueError):
        parse_sc_state("nothing here")


@pytest.mark.parametrize(
    "value, expected",
    [
        ("Automatic", StartupType.AUTOMATIC),
        ("auto", StartupType.AUTOMATIC),
        ("demand", StartupType.MANUAL),
        (3, StartupType.MANUAL),
        ("AutomaticDelayedStart", StartupType.AUTOMATIC_DELAYED),
        ("Triggered", None),
        (None, None),
        (True, None),
    ],
)
def test_parse_startup_type(value: object, expected: object) -> None:
    assert parse_startup_type(value) is expected


def test_parse_service_action() -> None:
    assert parse_service_action("Running").value == "Start"
    assert parse_service_action("stop").value == "Stop"
    assert parse_service_action("Paused") is None


def test_parse_scheme_guid() -> None:
    output = "Power Scheme GUID: 8C5E7FDA-E8BF-4A96-9A85-A6E23A8C635C  (High performance)"
    assert parse_scheme_guid(output) == "8c5e7fda-e8bf-4a96-9a85-a6e23a8c635c"
    assert parse_scheme_guid("no scheme") is None


def test_parse_bcd_options() -> None:
    options = parse_bcd_options(BCD_ENUM)
    assert options["useplatformclock"] == "Yes"
    assert options["identifier"] == "{current}"
    assert options["device"] == "partition=C:"
    assert "windows" not in options


def test_split_hive() -> None:
    assert split_hive(r"HKLM\SYSTEM\CurrentControlSet") == ("HKEY_LOCAL_MACHINE", r"SYSTEM\CurrentControlSet")
    assert split_hive("HKCU:/Software/X") == ("HKEY_CURRENT_USER", r"Software\X")
    with pytest.raises(ValueError):
        split_hive(r"HKXX\Nope")


def test_native_command_error_message() -> None:
    error = NativeCommandError(["sc.exe", "stop", "X"], 1062, "[SC] ControlService FAILED 1062:\n\nThe service has not been started.\n")
    assert error.atom == "NATIVE_COMMAND"
    assert error.returncode == 1062
    assert error.message == "sc.exe exited 1062: The service has not been started."
