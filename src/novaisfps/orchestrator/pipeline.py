from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..config import Settings
from ..context import RunContext
from ..errors import EXIT_NOT_FOUND, MutatorFailure, RollbackTargetMissing, TimeoutFailure
from ..executor.interpreter import InterpreterSpec, resolve_interpreter
from ..executor.paths import safe_path
from ..executor.process import ProcessExecutor
from .phases import Mode, Phase, PhaseStatus, PipelineStatus, UnitInvocation

Confirm = Callable[[str, bool], bool]


@dataclass
class PhaseResult:
    name: str
    status: PhaseStatus
    required: bool = True
    exit_code: Optional[int] = None
    error_atom: str = ""
    duration_ns: int = 0
    stdout: str = ""
    stderr: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status is PhaseStatus.SUCCEEDED

    def as_error(self) -> Optional[MutatorFailure]:
        if self.status is PhaseStatus.TIMED_OUT:
            return TimeoutFailure(f"{self.name} timed out", phase=self.name, exit_code=self.exit_code)
        if self.status is PhaseStatus.FAILED:
            return MutatorFailure(
                f"{self.name} failed ({self.error_atom or self.exit_code})",
                phase=self.name,
                exit_code=self.exit_code,
            )
        return None


@dataclass
class PipelineResult:
    mode: Mode
    status: PipelineStatus
    phases: List[PhaseResult] = field(default_factory=list)
    halted_at: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is PipelineStatus.SUCCEEDED

    def failure(self) -> Optional[MutatorFailure]:
        for result in self.phases:
            if result.name == self.halted_at:
                return result.as_error()
        return None

    def report(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "status": self.status.value,
            "halted_at": self.halted_at,
            "phases": [
                {
                    "name": result.name,
                    "status": result.status.value,
                    "required": result.required,
                    "exit_code": result.exit_code,
                    "error_atom": result.error_atom,
                    "duration_ns": result.duration_ns,
                }
                for result in self.phases
            ],
        }


class PhaseOrchestrator:
    """Runs mutator units one at a time, in order, stopping at the first required failure."""

    def __init__(
        self,
        executor: ProcessExecutor,
        interpreter: InterpreterSpec,
        scripts_dir: Path,
        logger: logging.Logger,
        *,
        settings: Optional[Settings] = None,
        which: Callable[[str], Optional[str]] = shutil.which,
    ) -> None:
        self.executor = executor
        self.interpreter = interpreter
        self.scripts_dir = Path(scripts_dir)
        self.logger = logger
        self.settings = settings or Settings()
        self.which = which

    def script_path(self, phase: Phase) -> Path:
        script = Path(phase.script)
        if not script.suffix and self.interpreter.script_suffix:
            script = script.with_name(script.name + self.interpreter.script_suffix)
        if not script.is_absolute():
            script = self.scripts_dir / script
        return script

    def _safe(self, path: str) -> str:
        return safe_path(path, self.settings.sync_dir_names)

    def build_argv(self, interpreter_path: str, phase: Phase, invocation: UnitInvocation) -> List[str]:
        return [
            interpreter_path,
            *self.interpreter.prefix_args,
            self._safe(str(self.script_path(phase))),
            *invocation.to_args(self.interpreter.flag_style, self._safe),
        ]

    def launch(self, phase: Phase, invocation: UnitInvocation) -> PhaseResult:
        interpreter_path = resolve_interpreter(self.interpreter, which=self.which)
        if interpreter_path is None:
            self.logger.error(
                "No %s interpreter found (tried %s)",
                self.interpreter.name,
                ", ".join(self.interpreter.candidates),
            )
            return PhaseResult(
                phase.name,
                PhaseStatus.FAILED,
                phase.required,
                exit_code=EXIT_NOT_FOUND,
                error_atom="INTERPRETER_NOT_FOUND",
            )
        script = self.script_path(phase)
        if not script.is_file():
            self.logger.error("Unit for %s not found: %s", phase.name, script)
            return PhaseResult(
                phase.name,
                PhaseStatus.FAILED,
                phase.required,
                exit_code=EXIT_NOT_FOUND,
                error_atom="UNIT_NOT_FOUND",
            )
        argv = self.build_argv(interpreter_path, phase, invocation)
        self.logger.info(
            "Running unit: %s (Mode=%s, interpreter=%s)",
            script.name,
            invocation.mode.value,
            interpreter_path,
        )
        timeout_s = phase.timeout_s if phase.timeout_s is not None else self.settings.phase_timeout_s
        outcome = self.executor.run(argv, timeout_s=timeout_s, label=phase.name)
        if outcome.timed_out:
            status, atom = PhaseStatus.TIMED_OUT, "TIMEOUT"
        elif outcome.spawn_error:
            status, atom = PhaseStatus.FAILED, "SPAWN_FAILED"
        elif outcome.exit_code != 0:
            status, atom = PhaseStatus.FAILED, f"EXIT_{outcome.exit_code}"
        else:
            status, atom = PhaseStatus.SUCCEEDED, ""
        if status is not PhaseStatus.SUCCEEDED:
            self.logger.warning("Unit failed: %s exit=%s", script.name, outcome.exit_code)
        return PhaseResult(
            phase.name,
            status,
            phase.required,
            exit_code=outcome.exit_code,
            error_atom=atom,
            duration_ns=outcome.duration_ns,
            stdout=outcome.stdout,
            stderr=outcome.stderr,
        )

    def _record(self, ctx: RunContext, states: Dict[str, str], *, reload: bool) -> bool:
        # A unit may have appended journal entries to the file; never write over them.
        if reload and not ctx.reload(verify_checksum=self.settings.verify_checksum):
            self.logger.error(
                "Context %s could not be reloaded; phase status not persisted", ctx.context_file
            )
            return False
        ctx.set_data("phases", dict(states))
        return True

    def run(
        self,
        mode: Mode,
        phases: Sequence[Phase],
        ctx: RunContext,
        *,
        target_context: Optional[Path] = None,
        confirm: Optional[Confirm] = None,
    ) -> PipelineResult:
        target: Optional[str] = None
        if mode is Mode.ROLLBACK:
            if target_context is None:
                raise RollbackTargetMissing("rollback requires a target context")
            loaded = RunContext.load(
                Path(target_context), verify_checksum=self.settings.verify_checksum
            )
            if not loaded.present:
                raise RollbackTargetMissing(
                    f"rollback target {target_context} not loadable: {loaded.reason}"
                )
            target = str(Path(target_context).resolve())
            ctx.set_data("rollbackTarget", target)
            self.logger.warning(
                "Rollback mode: reverting changes recorded in %s", target
            )

        states = {phase.name: PhaseStatus.NOT_STARTED.value for phase in phases}
        self._record(ctx, states, reload=False)
        result = PipelineResult(mode=mode, status=PipelineStatus.SUCCEEDED)
        total = len(phases)
        for index, phase in enumerate(phases, start=1):
            label = phase.description or phase.name
            self.logger.info("Phase %d/%d: %s", index, total, label)
            if phase.confirm and confirm is not None and not confirm(phase.confirm, False):
                self.logger.warning("User cancelled.")
                result.status = PipelineStatus.CANCELLED
                result.halted_at = phase.name
                break
            flags = dict(phase.extra_args)
            for opt_in in phase.opt_ins:
                answer = confirm(opt_in.prompt, opt_in.default) if confirm else opt_in.default
                flags[opt_in.flag] = "true" if answer else "false"
            invocation = UnitInvocation(
                mode=mode,
                run_id=ctx.run_id,
                workspace_root=str(ctx.workspace_root),
                log_file=str(ctx.log_file),
                context_file=str(ctx.context_file),
                target_context_file=target,
                flags=flags,
            )
            states[phase.name] = PhaseStatus.RUNNING.value
            self._record(ctx, states, reload=False)
            phase_result = self.launch(phase, invocation)
            result.phases.append(phase_result)
            states[phase.name] = phase_result.status.value
            if not self._record(ctx, states, reload=True):
                # The in-memory journal is stale now; persisting it would drop unit entries.
                phase_result.status = PhaseStatus.FAILED
                phase_result.error_atom = "CONTEXT_RELOAD_FAILED"
                result.status = PipelineStatus.FAILED
                result.halted_at = phase.name
                self.logger.error("Stopping %s pipeline at %s", mode.value, phase.name)
                break
            if phase_result.succeeded:
                continue
            if not phase.required:
                self.logger.warning("Optional phase %s did not succeed; continuing", phase.name)
                continue
            result.status = PipelineStatus.FAILED
            result.halted_at = phase.name
            self.logger.error("Stopping %s pipeline at %s", mode.value, phase.name)
            break
        if result.status is PipelineStatus.SUCCEEDED:
            self.logger.info("%s finished.", mode.value)
        return result
