from __future__ import annotations

import re
from typing import Optional, Protocol

from .native import check_native

_GUID_RE = re.compile(r"([0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12})")

HIGH_PERFORMANCE = "8c5e7fda-e8bf-4a96-9a85-a6e23a8c635c"
ULTIMATE_PERFORMANCE = "e9a42b02-d5df-448d-aa00-03f14749eb61"
BALANCED = "381b4222-f694-41f0-9685-ff5bb260df2e"


class PowerBackend(Protocol):
    def get_active_scheme(self) -> str:
        ...

    def set_active_scheme(self, guid: str) -> None:
        ...


def parse_scheme_guid(output: str) -> Optional[str]:
    match = _GUID_RE.search(output)
    return match.group(1).lower() if match else None


class PowerCfgBackend:
    def __init__(self, timeout_s: float = 15.0) -> None:
        self.timeout_s = timeout_s

    def get_active_scheme(self) -> str:
        output = check_native(["powercfg", "/getactivescheme"], self.timeout_s).stdout
        guid = parse_scheme_guid(output)
        if guid is None:
            raise ValueError("powercfg /getactivescheme returned no scheme GUID")
        return guid

    def set_active_scheme(self, guid: str) -> None:
        check_native(["powercfg", "/setactive", guid], self.timeout_s)
