from .interpreter import POWERSHELL, PYTHON, InterpreterSpec, resolve_interpreter
from .paths import detect_sync_workspace, safe_path, short_path
from .process import ProcessExecutor, ProcessOutcome, kill_process_tree

__all__ = [
    "InterpreterSpec",
    "POWERSHELL",
    "PYTHON",
    "ProcessExecutor",
    "ProcessOutcome",
    "detect_sync_workspace",
    "kill_process_tree",
    "resolve_interpreter",
    "safe_path",
    "short_path",
]
