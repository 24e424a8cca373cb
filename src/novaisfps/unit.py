from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, NoReturn, Optional, Sequence, TextIO

from .backends import Backends
from .config import Settings
from .context import RunContext
from .errors import (
    EXIT_FAILURE,
    EXIT_MISSING_TARGET,
    EXIT_OK,
    ContextUnavailable,
    InvocationError,
    NovaisError,
    RollbackTargetMissing,
)
from .journal import RollbackFilter
from .logs import close_logger, unit_logger
from .mutators import KeyValueMutators
from .orchestrator.phases import Mode
from .rollback import RollbackEngine

TRUE_VALUES = {"1", "true", "yes", "on", "$true"}


@dataclass
class UnitArgs:
    mode: Mode
    run_id: str
    workspace_root: Path
    log_file: Path
    context_json: Path
    target_context_json: Optional[Path] = None
    rollback_filters: List[RollbackFilter] = field(default_factory=list)
    flags: Dict[str, str] = field(default_factory=dict)

    def flag(self, name: str, default: bool = False) -> bool:
        value = self.flags.get(_flag_key(name))
        if value is None:
            return default
        return value.strip().lower() in TRUE_VALUES


def _flag_key(name: str) -> str:
    return name.lstrip("-").replace("-", "").lower()


class UnitArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        raise InvocationError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = UnitArgumentParser(add_help=False, allow_abbrev=False)
    parser.add_argument("--mode", required=True, choices=[mode.value for mode in Mode])
    parser.add_argument("--run-id", required=True)
    parser.add_argument("--workspace-root", type=Path, required=True)
    parser.add_argument("--log-file", type=Path, required=True)
    parser.add_argument("--context-json", type=Path, required=True)
    parser.add_argument("--target-context-json", type=Path, default=None)
    parser.add_argument(
        "--rollback-filter",
        dest="rollback_filters",
        action="append",
        type=RollbackFilter.parse,
        default=[],
        metavar="CATEGORY:KEY_PREFIX",
    )
    return parser


def parse_unit_args(argv: Optional[Sequence[str]] = None) -> UnitArgs:
    """Parse the invocation contract; unknown ``--name value`` pairs become flags."""
    args, extra = build_parser().parse_known_args(argv)
    flags: Dict[str, str] = {}
    idx = 0
    while idx < len(extra):
        token = extra[idx]
        idx += 1
        if not token.startswith("-"):
            continue
        name, sep, inline = token.partition("=")
        if sep:
            flags[_flag_key(name)] = inline
        elif idx < len(extra) and not extra[idx].startswith("-"):
            flags[_flag_key(name)] = extra[idx]
            idx += 1
        else:
            flags[_flag_key(name)] = "true"
    return UnitArgs(
        mode=Mode(args.mode),
        run_id=args.run_id,
        workspace_root=args.workspace_root,
        log_file=args.log_file,
        context_json=args.context_json,
        target_context_json=args.target_context_json,
        rollback_filters=list(args.rollback_filters),
        flags=flags,
    )


@dataclass
class UnitRuntime:
    args: UnitArgs
    context: RunContext
    mutators: KeyValueMutators
    backends: Backends
    logger: logging.Logger


ApplyFn = Callable[[UnitRuntime], None]


def _load_target(args: UnitArgs, settings: Settings) -> RunContext:
    if args.target_context_json is None:
        raise RollbackTargetMissing("no --target-context-json given")
    loaded = RunContext.load(args.target_context_json, verify_checksum=settings.verify_checksum)
    if loaded.context is None:
        raise RollbackTargetMissing(
            f"target context {args.target_context_json} not loadable: {loaded.reason}"
        )
    return loaded.context


def run_unit(
    name: str,
    apply: ApplyFn,
    *,
    rollback_filters: Sequence[RollbackFilter] = (),
    argv: Optional[Sequence[str]] = None,
    backends: Optional[Backends] = None,
    settings: Optional[Settings] = None,
    stream: Optional[TextIO] = None,
) -> int:
    """Entry point for a Mutator Unit written in Python; returns the exit code.

    Apply resumes the run's context so every recorded change is persisted
    immediately. Rollback restores the changes matching ``rollback_filters``
    from the target context; ``--rollback-filter`` arguments, when given,
    replace those defaults. Individual restore failures are logged only.
    """
    settings = settings or Settings()
    logger = unit_logger(name, stream)
    try:
        args = parse_unit_args(argv)
        if args.mode is Mode.ROLLBACK:
            target = _load_target(args, settings)
            backends = backends or Backends.native(settings.native_timeout_s)
            filters = args.rollback_filters or list(rollback_filters)
            report = RollbackEngine(backends, logger).rollback(target, filters)
            logger.info("Rollback summary: %s", report.summary())
            return EXIT_OK
        context = RunContext.resume(args.context_json, verify_checksum=settings.verify_checksum)
        backends = backends or Backends.native(settings.native_timeout_s)
        runtime = UnitRuntime(
            args=args,
            context=context,
            mutators=KeyValueMutators(context.journal, backends, logger),
            backends=backends,
            logger=logger,
        )
        apply(runtime)
        logger.info("%s applied (%d change(s) journaled)", name, len(context.journal))
        return EXIT_OK
    except RollbackTargetMissing as exc:
        logger.error("%s", exc.message)
        return EXIT_MISSING_TARGET
    except ContextUnavailable as exc:
        logger.error("%s", exc.message)
        return EXIT_FAILURE
    except NovaisError as exc:
        logger.error("%s failed [%s]: %s", name, exc.atom, exc.message)
        return EXIT_FAILURE
    finally:
        close_logger(logger)

