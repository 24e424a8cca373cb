from __future__ import annotations

import re
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from ..executor.interpreter import FLAG_STYLE_POWERSHELL
from ..utils import read_json


class Mode(str, Enum):
    APPLY = "Apply"
    ROLLBACK = "Rollback"


class PhaseStatus(str, Enum):
    NOT_STARTED = "NotStarted"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"


class PipelineStatus(str, Enum):
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


class OptIn(BaseModel):
    flag: str
    prompt: str
    default: bool = False


class Phase(BaseModel):
    name: str
    script: str
    description: str = ""
    required: bool = True
    confirm: Optional[str] = None
    opt_ins: List[OptIn] = Field(default_factory=list)
    extra_args: Dict[str, str] = Field(default_factory=dict)
    timeout_s: Optional[float] = None


_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def gnu_flag(name: str) -> str:
    return "--" + _CAMEL_RE.sub("-", name.lstrip("-")).lower()


def powershell_flag(name: str) -> str:
    return "-" + name.lstrip("-")


class UnitInvocation(BaseModel):
    mode: Mode
    run_id: str
    workspace_root: str
    log_file: str
    context_file: str
    target_context_file: Optional[str] = None
    flags: Dict[str, str] = Field(default_factory=dict)

    def to_args(self, style: str, path_filter: Callable[[str], str] = str) -> List[str]:
        """Render the invocation contract as argv entries (never a shell string)."""
        flag = powershell_flag if style == FLAG_STYLE_POWERSHELL else gnu_flag
        args = [
            flag("Mode"),
            self.mode.value,
            flag("RunId"),
            self.run_id,
            flag("WorkspaceRoot"),
            path_filter(self.workspace_root),
            flag("LogFile"),
            path_filter(self.log_file),
            flag("ContextJson"),
            path_filter(self.context_file),
        ]
        if self.target_context_file:
            args.extend([flag("TargetContextJson"), path_filter(self.target_context_file)])
        for name, value in self.flags.items():
            args.extend([flag(name), value])
        return args


BCD_PROMPT = (
    "Apply BCDEdit timer settings (HPET off / platform tick off)? "
    "Reversible, may require reboot"
)

APPLY_PHASES: List[Phase] = [
    Phase(name="Diagnosis", script="02_Diagnosis", description="Diagnosis (no changes)", required=False),
    Phase(
        name="Backup",
        script="01_Backup",
        description="Backup and safety",
        confirm="Continue and create backup/restore point?",
    ),
    Phase(name="SystemPower", script="03_SystemPower", description="System and power"),
    Phase(
        name="TimersLatency",
        script="04_TimersLatency",
        description="Timers and latency",
        opt_ins=[OptIn(flag="EnableBcdTweaks", prompt=BCD_PROMPT)],
    ),
    Phase(name="CPUScheduler", script="05_CPUScheduler", description="CPU and scheduler"),
    Phase(name="GPUDrivers", script="06_GPUDrivers", description="GPU and drivers", required=False),
    Phase(name="InputUSB", script="07_InputUSB", description="Input (USB/HID power saving off)"),
    Phase(name="Network", script="08_Network", description="Network"),
    Phase(name="RegistryTweaks", script="09_RegistryTweaks", description="Registry advanced"),
    Phase(name="Validation", script="10_Validation", description="Validation and summary", required=False),
]

ROLLBACK_PHASES: List[Phase] = [
    Phase(name="Backup", script="01_Backup"),
    Phase(name="SystemPower", script="03_SystemPower"),
    Phase(name="TimersLatency", script="04_TimersLatency"),
    Phase(name="CPUScheduler", script="05_CPUScheduler"),
    Phase(name="InputUSB", script="07_InputUSB"),
    Phase(name="Network", script="08_Network"),
    Phase(name="RegistryTweaks", script="09_RegistryTweaks"),
    Phase(name="Validation", script="10_Validation", required=False),
]


def default_pipelines() -> Dict[Mode, List[Phase]]:
    return {
        Mode.APPLY: [phase.model_copy(deep=True) for phase in APPLY_PHASES],
        Mode.ROLLBACK: [phase.model_copy(deep=True) for phase in ROLLBACK_PHASES],
    }


def load_pipelines(path: Optional[Path]) -> Dict[Mode, List[Phase]]:
    """Read ``{"apply": [...], "rollback": [...]}``; a missing mode keeps its default."""
    pipelines = default_pipelines()
    if path is None:
        return pipelines
    data = read_json(Path(path))
    if not isinstance(data, dict):
        raise ValueError(f"pipeline file {path} must hold an object")
    for mode in Mode:
        items = data.get(mode.value.lower())
        if items is None:
            continue
        if not isinstance(items, list):
            raise ValueError(f"pipeline {mode.value.lower()} must be a list")
        pipelines[mode] = [Phase.model_validate(item) for item in items]
    return pipelines
