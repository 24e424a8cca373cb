from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .boot import BcdEditBackend, BootBackend
from .power import PowerBackend, PowerCfgBackend
from .registry import RegistryBackend, RegistryValueKind, WinRegistry
from .services import ScServiceBackend, ServiceAction, ServiceBackend, StartupType


@dataclass
class Backends:
    registry: Optional[RegistryBackend] = None
    services: Optional[ServiceBackend] = None
    power: Optional[PowerBackend] = None
    boot: Optional[BootBackend] = None

    @classmethod
    def native(cls, timeout_s: float = 15.0) -> "Backends":
        return cls(
            registry=WinRegistry(),
            services=ScServiceBackend(timeout_s),
            power=PowerCfgBackend(timeout_s),
            boot=BcdEditBackend(timeout_s),
        )


__all__ = [
    "Backends",
    "BcdEditBackend",
    "BootBackend",
    "PowerBackend",
    "PowerCfgBackend",
    "RegistryBackend",
    "RegistryValueKind",
    "ScServiceBackend",
    "ServiceAction",
    "ServiceBackend",
    "StartupType",
    "WinRegistry",
]
