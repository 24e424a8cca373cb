from .phases import (
    APPLY_PHASES,
    ROLLBACK_PHASES,
    Mode,
    OptIn,
    Phase,
    PhaseStatus,
    PipelineStatus,
    UnitInvocation,
    default_pipelines,
    load_pipelines,
)
from .pipeline import PhaseOrchestrator, PhaseResult, PipelineResult

__all__ = [
    "APPLY_PHASES",
    "Mode",
    "OptIn",
    "Phase",
    "PhaseOrchestrator",
    "PhaseResult",
    "PhaseStatus",
    "PipelineResult",
    "PipelineStatus",
    "ROLLBACK_PHASES",
    "UnitInvocation",
    "default_pipelines",
    "load_pipelines",
]
