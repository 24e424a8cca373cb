from __future__ import annotations

import shutil
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, List, Optional, Sequence

FLAG_STYLE_POWERSHELL = "powershell"
FLAG_STYLE_GNU = "gnu"


@dataclass(frozen=True)
class InterpreterSpec:
    name: str
    candidates: List[str]
    prefix_args: List[str] = field(default_factory=list)
    flag_style: str = FLAG_STYLE_GNU
    script_suffix: str = ""

    def with_candidates(self, candidates: Optional[Sequence[str]]) -> "InterpreterSpec":
        if not candidates:
            return self
        return replace(self, candidates=list(candidates))


# Known install location first, then PowerShell 7 on PATH, then Windows PowerShell 5.1.
POWERSHELL = InterpreterSpec(
    name="powershell",
    candidates=[
        r"C:\Program Files\PowerShell\7\pwsh.exe",
        "pwsh",
        "powershell",
    ],
    prefix_args=["-NoLogo", "-NoProfile", "-ExecutionPolicy", "Bypass", "-File"],
    flag_style=FLAG_STYLE_POWERSHELL,
    script_suffix=".ps1",
)

PYTHON = InterpreterSpec(
    name="python",
    candidates=[sys.executable, "python3", "python"],
    flag_style=FLAG_STYLE_GNU,
    script_suffix=".py",
)

INTERPRETERS = {spec.name: spec for spec in (POWERSHELL, PYTHON)}


def resolve_interpreter(
    spec: InterpreterSpec,
    which: Callable[[str], Optional[str]] = shutil.which,
) -> Optional[str]:
    """Walk the candidates in order; ``None`` only when every one is missing."""
    for candidate in spec.candidates:
        if not candidate:
            continue
        path = Path(candidate)
        if path.is_absolute() or path.parent != Path("."):
            if path.is_file():
                return str(path)
            continue
        found = which(candidate)
        if found:
            return found
    return None
