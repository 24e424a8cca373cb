from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import IO, Callable, Dict, List, Optional, Sequence

from ..errors import EXIT_NOT_FOUND, EXIT_TIMEOUT

IS_WINDOWS = sys.platform == "win32"
KILL_WAIT_S = 5.0


@dataclass
class ProcessOutcome:
    argv: List[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    spawn_error: str = ""
    readers_flushed: bool = True
    duration_ns: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.spawn_error


@dataclass
class _Drain:
    lines: List[str] = field(default_factory=list)
    thread: Optional[threading.Thread] = None


def _drain(stream: IO[str], sink: List[str], forward: Callable[[str], None]) -> None:
    try:
        for raw in iter(stream.readline, ""):
            line = raw.rstrip("\r\n")
            sink.append(line)
            forward(line)
    except (OSError, ValueError):
        # Stream closed underneath us after a forced kill.
        return
    finally:
        try:
            stream.close()
        except OSError:
            pass


def kill_process_tree(proc: subprocess.Popen, logger: logging.Logger) -> None:
    if proc.poll() is not None:
        return
    if IS_WINDOWS:
        try:
            subprocess.run(
                ["taskkill", "/PID", str(proc.pid), "/T", "/F"],
                capture_output=True,
                timeout=KILL_WAIT_S,
                check=False,
                creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.warning("taskkill failed for pid %s: %s", proc.pid, exc)
    else:
        try:
            os.killpg(os.getpgid(proc.pid), signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass
    if proc.poll() is None:
        try:
            proc.kill()
        except OSError:
            pass


class ProcessExecutor:
    """Launches one process, streams its output into the logger, enforces a timeout."""

    def __init__(
        self,
        logger: logging.Logger,
        *,
        timeout_s: float = 600.0,
        grace_s: float = 5.0,
    ) -> None:
        self.logger = logger
        self.timeout_s = timeout_s
        self.grace_s = grace_s

    def _spawn_kwargs(self) -> Dict[str, object]:
        if IS_WINDOWS:
            flags = getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0) | getattr(
                subprocess, "CREATE_NO_WINDOW", 0
            )
            return {"creationflags": flags}
        return {"start_new_session": True}

    def run(
        self,
        argv: Sequence[str],
        *,
        timeout_s: Optional[float] = None,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        label: str = "",
    ) -> ProcessOutcome:
        command = [str(part) for part in argv]
        budget = self.timeout_s if timeout_s is None else timeout_s
        tag = label or os.path.basename(command[0])
        start = time.monotonic_ns()
        full_env = None
        if env:
            full_env = dict(os.environ)
            full_env.update(env)
        try:
            proc = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=cwd,
                env=full_env,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                **self._spawn_kwargs(),
            )
        except OSError as exc:
            self.logger.error("Cannot launch %s: %s", tag, exc)
            return ProcessOutcome(
                argv=command,
                exit_code=EXIT_NOT_FOUND,
                spawn_error=str(exc),
                duration_ns=time.monotonic_ns() - start,
            )

        out = _Drain()
        err = _Drain()
        out.thread = threading.Thread(
            target=_drain,
            args=(proc.stdout, out.lines, lambda line: self.logger.info("[%s] %s", tag, line)),
            daemon=True,
        )
        err.thread = threading.Thread(
            target=_drain,
            args=(proc.stderr, err.lines, lambda line: self.logger.warning("[%s] %s", tag, line)),
            daemon=True,
        )
        out.thread.start()
        err.thread.start()

        timed_out = False
        try:
            exit_code = proc.wait(timeout=budget)
        except subprocess.TimeoutExpired:
            timed_out = True
            self.logger.error("%s exceeded %.1fs; terminating process tree", tag, budget)
            kill_process_tree(proc, self.logger)
            try:
                proc.wait(timeout=KILL_WAIT_S)
            except subprocess.TimeoutExpired:
                self.logger.error("%s (pid %s) did not exit after kill", tag, proc.pid)
            exit_code = EXIT_TIMEOUT

        flushed = True
        deadline = time.monotonic() + self.grace_s
        for name, drain in (("stdout", out), ("stderr", err)):
            if drain.thread is None:
                continue
            drain.thread.join(timeout=max(0.0, deadline - time.monotonic()))
            if drain.thread.is_alive():
                flushed = False
                self.logger.warning(
                    "%s %s reader still busy after %.1fs; using captured output",
                    tag,
                    name,
                    self.grace_s,
                )

        return ProcessOutcome(
            argv=command,
            exit_code=exit_code,
            stdout="\n".join(out.lines),
            stderr="\n".join(err.lines),
            timed_out=timed_out,
            readers_flushed=flushed,
            duration_ns=time.monotonic_ns() - start,
        )
