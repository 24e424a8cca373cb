from __future__ import annotations

from enum import Enum
from typing import Any, Optional, Protocol, Tuple


class RegistryValueKind(str, Enum):
    DWORD = "dword"
    QWORD = "qword"
    STRING = "string"
    EXPAND_STRING = "expand_string"


class RegistryBackend(Protocol):
    def ensure_key(self, path: str) -> None:
        ...

    def read_value(self, path: str, name: str) -> Optional[Tuple[Any, RegistryValueKind]]:
        ...

    def write_value(self, path: str, name: str, value: Any, kind: RegistryValueKind) -> None:
        ...

    def delete_value(self, path: str, name: str) -> None:
        ...


HIVE_ALIASES = {
    "HKLM": "HKEY_LOCAL_MACHINE",
    "HKEY_LOCAL_MACHINE": "HKEY_LOCAL_MACHINE",
    "HKCU": "HKEY_CURRENT_USER",
    "HKEY_CURRENT_USER": "HKEY_CURRENT_USER",
    "HKCR": "HKEY_CLASSES_ROOT",
    "HKEY_CLASSES_ROOT": "HKEY_CLASSES_ROOT",
    "HKU": "HKEY_USERS",
    "HKEY_USERS": "HKEY_USERS",
    "HKCC": "HKEY_CURRENT_CONFIG",
    "HKEY_CURRENT_CONFIG": "HKEY_CURRENT_CONFIG",
}


def split_hive(path: str) -> Tuple[str, str]:
    """``HKLM\\SYSTEM\\X`` -> (``HKEY_LOCAL_MACHINE``, ``SYSTEM\\X``)."""
    normalized = path.replace("/", "\\").strip("\\")
    head, _, subkey = normalized.partition("\\")
    hive = HIVE_ALIASES.get(head.rstrip(":").upper())
    if hive is None:
        raise ValueError(f"unknown registry hive in {path!r}")
    return hive, subkey


class WinRegistry:
    """Registry access through ``winreg`` on the 64-bit view."""

    def __init__(self, winreg: Any = None) -> None:
        if winreg is None:
            import winreg

        self._winreg = winreg
        self._kinds = {
            RegistryValueKind.DWORD: winreg.REG_DWORD,
            RegistryValueKind.QWORD: winreg.REG_QWORD,
            RegistryValueKind.STRING: winreg.REG_SZ,
            RegistryValueKind.EXPAND_STRING: winreg.REG_EXPAND_SZ,
        }
        self._reverse = {value: key for key, value in self._kinds.items()}

    def _hive(self, path: str) -> Tuple[Any, str]:
        hive_name, subkey = split_hive(path)
        return getattr(self._winreg, hive_name), subkey

    def ensure_key(self, path: str) -> None:
        winreg = self._winreg
        hive, subkey = self._hive(path)
        with winreg.CreateKeyEx(hive, subkey, 0, winreg.KEY_WRITE | winreg.KEY_WOW64_64KEY):
            pass

    def read_value(self, path: str, name: str) -> Optional[Tuple[Any, RegistryValueKind]]:
        winreg = self._winreg
        hive, subkey = self._hive(path)
        try:
            with winreg.OpenKey(hive, subkey, 0, winreg.KEY_READ | winreg.KEY_WOW64_64KEY) as key:
                value, reg_type = winreg.QueryValueEx(key, name)
        except FileNotFoundError:
            return None
        kind = self._reverse.get(reg_type)
        if kind is None:
            # REG_BINARY, REG_MULTI_SZ and friends cannot be journaled without loss.
            raise OSError(f"unsupported registry value type {reg_type} for {path}\\{name}")
        return value, kind

    def write_value(self, path: str, name: str, value: Any, kind: RegistryValueKind) -> None:
        winreg = self._winreg
        hive, subkey = self._hive(path)
        with winreg.OpenKey(hive, subkey, 0, winreg.KEY_SET_VALUE | winreg.KEY_WOW64_64KEY) as key:
            winreg.SetValueEx(key, name, 0, self._kinds[kind], value)

    def delete_value(self, path: str, name: str) -> None:
        winreg = self._winreg
        hive, subkey = self._hive(path)
        try:
            with winreg.OpenKey(
                hive, subkey, 0, winreg.KEY_SET_VALUE | winreg.KEY_WOW64_64KEY
            ) as key:
                winreg.DeleteValue(key, name)
        except FileNotFoundError:
            return
