from __future__ import annotations

import re
from typing import Dict, Optional, Protocol

from .native import check_native

BOOT_ENTRY = "{current}"

_OPTION_RE = re.compile(r"^([A-Za-z][A-Za-z0-9]*)\s{2,}(.+?)\s*$")


class BootBackend(Protocol):
    def read_option(self, name: str) -> Optional[str]:
        ...

    def set_option(self, name: str, value: str) -> None:
        ...

    def delete_option(self, name: str) -> None:
        ...


def parse_bcd_options(output: str) -> Dict[str, str]:
    options: Dict[str, str] = {}
    for line in output.splitlines():
        match = _OPTION_RE.match(line)
        if match:
            options[match.group(1).lower()] = match.group(2)
    return options


class BcdEditBackend:
    def __init__(self, timeout_s: float = 15.0, entry: str = BOOT_ENTRY) -> None:
        self.timeout_s = timeout_s
        self.entry = entry

    def read_option(self, name: str) -> Optional[str]:
        output = check_native(["bcdedit", "/enum", self.entry], self.timeout_s).stdout
        return parse_bcd_options(output).get(name.lower())

    def set_option(self, name: str, value: str) -> None:
        check_native(["bcdedit", "/set", self.entry, name, value], self.timeout_s)

    def delete_option(self, name: str) -> None:
        if self.read_option(name) is None:
            return
        check_native(["bcdedit", "/deletevalue", self.entry, name], self.timeout_s)
