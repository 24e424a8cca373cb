from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import orjson
import typer
from rich.console import Console
from rich.table import Table

from .admin import is_administrator
from .config import Settings
from .context import RunContext, RunContextDocument
from .errors import (
    EXIT_FAILURE,
    EXIT_MISSING_TARGET,
    EXIT_NOT_ADMIN,
    EXIT_OK,
    ContextUnavailable,
    RollbackTargetMissing,
)
from .executor.interpreter import INTERPRETERS
from .executor.paths import detect_sync_workspace
from .executor.process import ProcessExecutor
from .journal import ChangeEntry
from .journal.snapshots import describe
from .logs import close_logger, run_logger
from .orchestrator import (
    Mode,
    PhaseOrchestrator,
    PipelineResult,
    PipelineStatus,
    load_pipelines,
)
from .orchestrator.pipeline import Confirm
from .utils import ensure_dir, read_json

app = typer.Typer(help="NovaisFPS CLI")
context_app = typer.Typer(help="Run context utilities")
schema_app = typer.Typer(help="Schema utilities")
console = Console()

WORKSPACE_OPTION = typer.Option(None, "--workspace", file_okay=False)
RUN_ID_OPTION = typer.Option(None, "--run-id")
YES_OPTION = typer.Option(False, "--yes", "-y", help="Answer yes to every prompt.")
CONFIG_OPTION = typer.Option(None, "--config", exists=True, dir_okay=False)
TARGET_CONTEXT_OPTION = typer.Option(..., "--target-context")
CONTEXT_FILE_ARGUMENT = typer.Argument(..., exists=True, dir_okay=False)
SCHEMA_OUT_OPTION = typer.Option(Path("schemas"), "--out-dir")


def _load_settings(config: Optional[Path]) -> Settings:
    if config is None:
        return Settings()
    data = read_json(config)
    return Settings(**data)


def _workspace_root(workspace: Optional[Path]) -> Path:
    return (workspace or Path.cwd()).resolve()


def _require_admin(settings: Settings) -> None:
    if settings.require_admin and not is_administrator():
        console.print(
            "[red]Administrator privileges required. Re-open the terminal as Administrator.[/red]"
        )
        raise typer.Exit(code=EXIT_NOT_ADMIN)


def _confirm(yes: bool) -> Confirm:
    if yes:
        return lambda prompt, default: True
    return lambda prompt, default: typer.confirm(prompt, default=default)


def _resolve_target(path: Path, workspace_root: Path) -> Path:
    if not path.is_absolute():
        path = workspace_root / path
    return path.resolve()


def _print_result(result: PipelineResult) -> None:
    table = Table(title=f"{result.mode.value} Summary")
    table.add_column("Phase")
    table.add_column("Status")
    table.add_column("Exit")
    table.add_column("Seconds", justify="right")
    for phase in result.phases:
        table.add_row(
            phase.name,
            phase.status.value,
            "" if phase.exit_code is None else str(phase.exit_code),
            f"{phase.duration_ns / 1e9:.1f}",
        )
    console.print(table)
    console.print({"status": result.status.value, "halted_at": result.halted_at})


def _execute(
    mode: Mode,
    settings: Settings,
    workspace_root: Path,
    *,
    run_id: Optional[str] = None,
    target_context: Optional[Path] = None,
    confirm: Optional[Confirm] = None,
) -> int:
    try:
        ctx = RunContext.create(workspace_root, run_id, settings)
    except ContextUnavailable as exc:
        console.print(f"[red]{exc.message}[/red]")
        return EXIT_FAILURE
    logger = run_logger(ctx.run_id, ctx.log_file, console=console)
    try:
        logger.info("NovaisFPS starting (run %s)", ctx.run_id)
        detect_sync_workspace(ctx.workspace_root, logger, settings.sync_dir_names)
        pipeline_file = Path(settings.pipeline_file) if settings.pipeline_file else None
        pipelines = load_pipelines(pipeline_file)
        interpreter = INTERPRETERS[settings.interpreter].with_candidates(
            settings.interpreter_candidates
        )
        executor = ProcessExecutor(
            logger, timeout_s=settings.phase_timeout_s, grace_s=settings.reader_grace_s
        )
        orchestrator = PhaseOrchestrator(
            executor,
            interpreter,
            ctx.workspace_root / settings.scripts_dir,
            logger,
            settings=settings,
        )
        try:
            result = orchestrator.run(
                mode,
                pipelines[mode],
                ctx,
                target_context=target_context,
                confirm=confirm,
            )
        except RollbackTargetMissing as exc:
            logger.error("%s", exc.message)
            return EXIT_MISSING_TARGET
        logger.info("Log: %s", ctx.log_file)
        logger.info("Context: %s", ctx.context_file)
        _print_result(result)
        if result.status is PipelineStatus.FAILED:
            return EXIT_FAILURE
        return EXIT_OK
    finally:
        close_logger(logger)


@app.command("apply")
def apply_cmd(
    workspace: Optional[Path] = WORKSPACE_OPTION,
    run_id: Optional[str] = RUN_ID_OPTION,
    yes: bool = YES_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    settings = _load_settings(config)
    _require_admin(settings)
    code = _execute(
        Mode.APPLY,
        settings,
        _workspace_root(workspace),
        run_id=run_id,
        confirm=_confirm(yes),
    )
    raise typer.Exit(code=code)


@app.command("rollback")
def rollback_cmd(
    target_context: Path = TARGET_CONTEXT_OPTION,
    workspace: Optional[Path] = WORKSPACE_OPTION,
    run_id: Optional[str] = RUN_ID_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    settings = _load_settings(config)
    _require_admin(settings)
    root = _workspace_root(workspace)
    code = _execute(
        Mode.ROLLBACK,
        settings,
        root,
        run_id=run_id,
        target_context=_resolve_target(target_context, root),
    )
    raise typer.Exit(code=code)


def _prior_contexts(workspace_root: Path, settings: Settings) -> List[Path]:
    logs = workspace_root / settings.logs_dir
    if not logs.is_dir():
        return []
    return sorted(logs.glob("context-*.json"), reverse=True)


@app.command("menu")
def menu_cmd(
    workspace: Optional[Path] = WORKSPACE_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    settings = _load_settings(config)
    _require_admin(settings)
    root = _workspace_root(workspace)
    console.print("Menu:")
    console.print("  1) Run optimizer (Apply)")
    console.print("  2) Rollback a previous run (select context json)")
    console.print("  3) Exit")
    choice = typer.prompt("Select", default="3", show_default=False).strip()
    if choice == "1":
        raise typer.Exit(code=_execute(Mode.APPLY, settings, root, confirm=_confirm(False)))
    if choice != "2":
        raise typer.Exit(code=EXIT_OK)

    prior = _prior_contexts(root, settings)
    for index, path in enumerate(prior, start=1):
        console.print(f"  {index}) {path.name}")
    default = "1" if prior else ""
    answer = typer.prompt(
        "Context json to roll back (number or path)", default=default, show_default=bool(prior)
    ).strip().strip('"')
    if not answer:
        console.print("[red]No context json provided.[/red]")
        raise typer.Exit(code=EXIT_MISSING_TARGET)
    if answer.isdigit() and 1 <= int(answer) <= len(prior):
        target = prior[int(answer) - 1]
    else:
        target = _resolve_target(Path(answer), root)
    raise typer.Exit(code=_execute(Mode.ROLLBACK, settings, root, target_context=target))


def _entry_row(entry: ChangeEntry) -> List[str]:
    return [
        str(entry.seq),
        entry.category,
        entry.key,
        describe(entry.before),
        describe(entry.after),
        entry.note,
    ]


@context_app.command("show")
def context_show_cmd(path: Path = CONTEXT_FILE_ARGUMENT) -> None:
    loaded = RunContext.load(path, verify_checksum=False)
    if loaded.context is None:
        console.print({"ok": False, "reason": loaded.reason})
        raise typer.Exit(code=EXIT_FAILURE)
    ctx = loaded.context
    table = Table(title=f"Run {ctx.run_id}")
    for column in ("Seq", "Category", "Key", "Before", "After", "Note"):
        table.add_column(column)
    for entry in ctx.changes:
        table.add_row(*_entry_row(entry))
    console.print(table)
    if ctx.data:
        console.print(ctx.data)


@context_app.command("verify")
def context_verify_cmd(path: Path = CONTEXT_FILE_ARGUMENT) -> None:
    loaded = RunContext.load(path, verify_checksum=True)
    if loaded.context is None:
        console.print({"ok": False, "reason": loaded.reason})
        raise typer.Exit(code=EXIT_FAILURE)
    ok, message = loaded.context.journal.verify_chain()
    console.print({"ok": ok, "message": message, "entries": len(loaded.context.journal)})
    if not ok:
        raise typer.Exit(code=EXIT_FAILURE)


@schema_app.command("export")
def schema_export_cmd(out_dir: Path = SCHEMA_OUT_OPTION) -> None:
    ensure_dir(out_dir)
    for model in (RunContextDocument, ChangeEntry):
        schema = model.model_json_schema()
        path = out_dir / f"{model.__name__}.schema.json"
        path.write_bytes(orjson.dumps(schema, option=orjson.OPT_SORT_KEYS))
    console.print({"schemas": str(out_dir)})


app.add_typer(context_app, name="context")
app.add_typer(schema_app, name="schema")

if __name__ == "__main__":
    app()
