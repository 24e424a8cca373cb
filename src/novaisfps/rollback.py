from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple

from .backends import Backends, RegistryValueKind, StartupType
from .backends.services import STATUS_RUNNING, STATUS_STOPPED, parse_startup_type
from .context import RunContext
from .errors import NovaisError, StateWriteFailure
from .journal import (
    ACTIVE_SCHEME_KEY,
    CATEGORY_BCDEDIT,
    CATEGORY_POWERCFG,
    CATEGORY_REGISTRY,
    CATEGORY_SERVICE,
    AbsentValue,
    ChangeEntry,
    IntValue,
    RollbackFilter,
    ServiceStateSnapshot,
    StringValue,
)
from .journal.snapshots import describe

# Recorded startup types that match no known member restore as Manual.
FALLBACK_STARTUP_TYPE = StartupType.MANUAL

ACTION_RESTORED = "restored"
ACTION_DELETED = "deleted"
ACTION_SKIPPED = "skipped"
ACTION_FAILED = "failed"


@dataclass
class RestoreOutcome:
    seq: int
    category: str
    key: str
    action: str
    detail: str = ""
    fallback: bool = False

    @property
    def ok(self) -> bool:
        return self.action != ACTION_FAILED


@dataclass
class RollbackReport:
    run_id: str
    outcomes: List[RestoreOutcome] = field(default_factory=list)

    @property
    def restored(self) -> int:
        return sum(1 for item in self.outcomes if item.action in {ACTION_RESTORED, ACTION_DELETED})

    @property
    def failed(self) -> List[RestoreOutcome]:
        return [item for item in self.outcomes if not item.ok]

    def summary(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "restored": self.restored,
            "failed": len(self.failed),
            "skipped": sum(1 for item in self.outcomes if item.action == ACTION_SKIPPED),
        }


def split_registry_key(entry: ChangeEntry) -> Tuple[str, str]:
    path = entry.ref.get("path")
    name = entry.ref.get("name")
    if path is not None and name is not None:
        return path, name
    path, _, name = entry.key.rpartition("\\")
    return path, name


class RollbackEngine:
    """Replays a target journal back onto the machine.

    Restoration is best-effort: a failure on one key is logged and the
    remaining keys are still processed. Nothing done here is journaled.
    """

    def __init__(self, backends: Backends, logger: logging.Logger) -> None:
        self.backends = backends
        self.logger = logger

    def select(self, target: RunContext, filters: Sequence[RollbackFilter]) -> List[ChangeEntry]:
        """First entry per key in insertion order; the active scheme uses its last entry."""
        journal = target.journal
        last_scheme = [
            entry
            for entry in journal.last_per_key(filters)
            if entry.category == CATEGORY_POWERCFG and entry.key == ACTIVE_SCHEME_KEY
        ]
        selected = [
            entry
            for entry in journal.first_per_key(filters)
            if not (entry.category == CATEGORY_POWERCFG and entry.key == ACTIVE_SCHEME_KEY)
        ]
        return sorted(selected + last_scheme, key=lambda item: item.seq)

    def rollback(self, target: RunContext, filters: Sequence[RollbackFilter] = ()) -> RollbackReport:
        report = RollbackReport(run_id=target.run_id)
        entries = self.select(target, filters)
        self.logger.info(
            "Rolling back %d change(s) recorded by run %s", len(entries), target.run_id
        )
        for entry in entries:
            try:
                outcome = self._restore(entry)
            except (NovaisError, OSError, ValueError, TypeError) as exc:
                self.logger.warning(
                    "Rollback of %s:%s failed: %s", entry.category, entry.key, exc
                )
                outcome = RestoreOutcome(
                    entry.seq, entry.category, entry.key, ACTION_FAILED, str(exc)
                )
            report.outcomes.append(outcome)
        summary = report.summary()
        self.logger.info(
            "Rollback finished: %d restored, %d failed, %d skipped",
            summary["restored"],
            summary["failed"],
            summary["skipped"],
        )
        return report

    def _restore(self, entry: ChangeEntry) -> RestoreOutcome:
        if entry.category == CATEGORY_REGISTRY:
            return self._restore_registry(entry)
        if entry.category == CATEGORY_SERVICE:
            return self._restore_service(entry)
        if entry.category == CATEGORY_POWERCFG and entry.key == ACTIVE_SCHEME_KEY:
            return self._restore_scheme(entry)
        if entry.category == CATEGORY_BCDEDIT:
            return self._restore_boot(entry)
        self.logger.info("No restorer for %s:%s; skipped", entry.category, entry.key)
        return RestoreOutcome(entry.seq, entry.category, entry.key, ACTION_SKIPPED, "no restorer")

    def _require(self, name: str) -> Any:
        backend = getattr(self.backends, name)
        if backend is None:
            raise StateWriteFailure(f"no {name} backend configured")
        return backend

    def _restore_registry(self, entry: ChangeEntry) -> RestoreOutcome:
        registry = self._require("registry")
        path, name = split_registry_key(entry)
        before = entry.before
        if isinstance(before, AbsentValue):
            registry.delete_value(path, name)
            self.logger.info("Deleted %s (did not exist before)", entry.key)
            return RestoreOutcome(entry.seq, entry.category, entry.key, ACTION_DELETED)
        if isinstance(before, IntValue):
            kind = RegistryValueKind.QWORD if before.wide else RegistryValueKind.DWORD
            registry.ensure_key(path)
            registry.write_value(path, name, before.value, kind)
        elif isinstance(before, StringValue):
            kind = (
                RegistryValueKind.EXPAND_STRING if before.expand else RegistryValueKind.STRING
            )
            registry.ensure_key(path)
            registry.write_value(path, name, before.value, kind)
        else:
            raise TypeError(f"registry entry {entry.key} holds a {before.kind} snapshot")
        self.logger.info("Restored %s = %s", entry.key, describe(before))
        return RestoreOutcome(entry.seq, entry.category, entry.key, ACTION_RESTORED)

    def _restore_service(self, entry: ChangeEntry) -> RestoreOutcome:
        services = self._require("services")
        before = entry.before
        if not isinstance(before, ServiceStateSnapshot):
            raise TypeError(f"service entry {entry.key} holds a {before.kind} snapshot")
        startup_type = parse_startup_type(before.startup_type)
        fallback = startup_type is None
        if startup_type is None:
            self.logger.warning(
                "Service %s: recorded startup type %r is not recognised; restoring as %s",
                entry.key,
                before.startup_type,
                FALLBACK_STARTUP_TYPE.value,
            )
            startup_type = FALLBACK_STARTUP_TYPE
        services.set_startup_type(entry.key, startup_type)
        current = services.query(entry.key)
        if before.status == STATUS_RUNNING and current.status != STATUS_RUNNING:
            services.start(entry.key)
        elif before.status == STATUS_STOPPED and current.status != STATUS_STOPPED:
            services.stop(entry.key)
        self.logger.info("Restored service %s to %s", entry.key, describe(before))
        return RestoreOutcome(
            entry.seq,
            entry.category,
            entry.key,
            ACTION_RESTORED,
            detail=startup_type.value,
            fallback=fallback,
        )

    def _restore_scheme(self, entry: ChangeEntry) -> RestoreOutcome:
        power = self._require("power")
        before = entry.before
        if not isinstance(before, StringValue):
            return RestoreOutcome(
                entry.seq, entry.category, entry.key, ACTION_SKIPPED, "no recorded scheme"
            )
        power.set_active_scheme(before.value)
        self.logger.info("Restored active power scheme %s", before.value)
        return RestoreOutcome(entry.seq, entry.category, entry.key, ACTION_RESTORED)

    def _restore_boot(self, entry: ChangeEntry) -> RestoreOutcome:
        boot = self._require("boot")
        before = entry.before
        if isinstance(before, AbsentValue):
            boot.delete_option(entry.key)
            self.logger.info("Deleted boot option %s (did not exist before)", entry.key)
            return RestoreOutcome(entry.seq, entry.category, entry.key, ACTION_DELETED)
        if isinstance(before, ServiceStateSnapshot):
            raise TypeError(f"boot entry {entry.key} holds a service snapshot")
        boot.set_option(entry.key, str(before.value))
        self.logger.info("Restored boot option %s = %s", entry.key, before.value)
        return RestoreOutcome(entry.seq, entry.category, entry.key, ACTION_RESTORED)
