from __future__ import annotations

import subprocess
from dataclasses import dataclass
from typing import List, Sequence

from ..errors import NativeCommandError

CREATE_NO_WINDOW = getattr(subprocess, "CREATE_NO_WINDOW", 0)


@dataclass
class NativeResult:
    argv: List[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def run_native(argv: Sequence[str], timeout_s: float = 15.0) -> NativeResult:
    """Run a native utility (sc, powercfg, bcdedit) as an argument vector."""
    command = [str(part) for part in argv]
    try:
        proc = subprocess.run(
            command,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout_s,
            check=False,
            creationflags=CREATE_NO_WINDOW,
        )
    except subprocess.TimeoutExpired as exc:
        raise NativeCommandError(command, -1, f"timed out after {timeout_s}s") from exc
    except OSError as exc:
        raise NativeCommandError(command, -1, str(exc)) from exc
    return NativeResult(command, proc.returncode, proc.stdout or "", proc.stderr or "")


def check_native(argv: Sequence[str], timeout_s: float = 15.0) -> NativeResult:
    result = run_native(argv, timeout_s=timeout_s)
    if not result.ok:
        raise NativeCommandError(result.argv, result.returncode, result.stderr or result.stdout)
    return result
