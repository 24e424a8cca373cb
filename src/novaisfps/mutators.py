from __future__ import annotations

import logging
from typing import Any, Optional

from .backends import Backends, RegistryValueKind, ServiceAction, StartupType
from .backends.services import (
    STATUS_RUNNING,
    STATUS_STOPPED,
    parse_service_action,
    parse_startup_type,
)
from .errors import NovaisError, Result, StateReadFailure, StateWriteFailure
from .journal import (
    ABSENT,
    ACTIVE_SCHEME_KEY,
    CATEGORY_BCDEDIT,
    CATEGORY_POWERCFG,
    CATEGORY_REGISTRY,
    CATEGORY_SERVICE,
    ChangeEntry,
    ChangeJournal,
    ServiceStateSnapshot,
    Snapshot,
    StringValue,
    registry_key,
    snapshot_of,
)
from .journal.snapshots import describe


def _registry_snapshot(read: Optional[tuple[Any, RegistryValueKind]]) -> Snapshot:
    if read is None:
        return ABSENT
    value, kind = read
    return snapshot_of(
        value,
        wide=kind is RegistryValueKind.QWORD,
        expand=kind is RegistryValueKind.EXPAND_STRING,
    )


class KeyValueMutators:
    """Typed setters that record one journal entry per effective mutation.

    Every operation returns a ``Result``; nothing is raised to the caller.
    A failed "before" read means nothing was written and nothing journaled.
    """

    def __init__(
        self,
        journal: ChangeJournal,
        backends: Backends,
        logger: logging.Logger,
    ) -> None:
        self.journal = journal
        self.backends = backends
        self.logger = logger

    def _backend(self, name: str) -> Any:
        backend = getattr(self.backends, name)
        if backend is None:
            raise StateReadFailure(f"no {name} backend configured")
        return backend

    def set_registry_value(
        self,
        path: str,
        name: str,
        value: Any,
        kind: RegistryValueKind = RegistryValueKind.DWORD,
        note: str = "",
    ) -> Result[ChangeEntry]:
        key = registry_key(path, name)
        try:
            registry = self._backend("registry")
        except NovaisError as exc:
            return Result.failure(exc)
        try:
            registry.ensure_key(path)
        except OSError as exc:
            return Result.failure(StateWriteFailure(f"cannot create {path}: {exc}"))
        try:
            before = _registry_snapshot(registry.read_value(path, name))
        except OSError as exc:
            self.logger.warning("Skipping %s: cannot read current value (%s)", key, exc)
            return Result.failure(StateReadFailure(f"cannot read {key}: {exc}"))
        try:
            registry.write_value(path, name, value, kind)
        except (OSError, TypeError, ValueError) as exc:
            return Result.failure(StateWriteFailure(f"cannot write {key}: {exc}"))
        try:
            after = _registry_snapshot(registry.read_value(path, name))
        except OSError as exc:
            # The write happened; journal the intended value rather than lose the entry.
            self.logger.warning("Read-back failed for %s: %s", key, exc)
            after = _registry_snapshot((value, kind))
            note = f"{note} (unverified)".strip()
        entry = self.journal.record(
            CATEGORY_REGISTRY,
            key,
            before,
            after,
            note,
            ref={"path": path, "name": name, "kind": kind.value},
        )
        self.logger.info("Registry %s: %s -> %s", key, describe(before), describe(after))
        return Result.success(entry)

    def set_service(
        self,
        name: str,
        startup_type: Optional[Any] = None,
        run_state: Optional[Any] = None,
        note: str = "",
    ) -> Result[Optional[ChangeEntry]]:
        """Apply only the transitions that differ from the current state.

        Returns ``Result.success(None)`` when nothing changed.
        """
        try:
            services = self._backend("services")
        except NovaisError as exc:
            return Result.failure(exc)
        desired_type = parse_startup_type(startup_type) if startup_type is not None else None
        if startup_type is not None and desired_type is None:
            return Result.failure(StateWriteFailure(f"unknown startup type {startup_type!r}"))
        action = parse_service_action(run_state) if run_state is not None else None
        if run_state is not None and action is None:
            return Result.failure(StateWriteFailure(f"unknown run state {run_state!r}"))
        try:
            before = services.query(name)
        except (NovaisError, OSError, ValueError) as exc:
            self.logger.warning("Skipping service %s: cannot read state (%s)", name, exc)
            return Result.failure(StateReadFailure(f"cannot query service {name}: {exc}"))

        current_type = parse_startup_type(before.startup_type)
        change_type = desired_type is not None and desired_type != current_type
        change_state = (action is ServiceAction.START and before.status != STATUS_RUNNING) or (
            action is ServiceAction.STOP and before.status != STATUS_STOPPED
        )
        if not change_type and not change_state:
            self.logger.info("Service %s already %s; nothing to do", name, describe(before))
            return Result.success(None)

        try:
            if change_type and desired_type is StartupType.DISABLED and change_state:
                services.stop(name)
                services.set_startup_type(name, desired_type)
            else:
                if change_type:
                    services.set_startup_type(name, desired_type)
                if change_state:
                    if action is ServiceAction.START:
                        services.start(name)
                    else:
                        services.stop(name)
        except (NovaisError, OSError) as exc:
            write_error = StateWriteFailure(f"cannot reconfigure service {name}: {exc}")
        else:
            write_error = None

        try:
            after: Snapshot = services.query(name)
        except (NovaisError, OSError, ValueError) as exc:
            self.logger.warning("Read-back failed for service %s: %s", name, exc)
            after = ServiceStateSnapshot(
                status=before.status if not change_state else (
                    STATUS_RUNNING if action is ServiceAction.START else STATUS_STOPPED
                ),
                startup_type=(desired_type.value if change_type else before.startup_type),
            )
            note = f"{note} (unverified)".strip()
        if after == before:
            if write_error is not None:
                return Result.failure(write_error)
            return Result.success(None)
        entry = self.journal.record(CATEGORY_SERVICE, name, before, after, note)
        self.logger.info("Service %s: %s -> %s", name, describe(before), describe(after))
        if write_error is not None:
            return Result.failure(write_error)
        return Result.success(entry)

    def set_power_scheme(self, guid: str, note: str = "") -> Result[Optional[ChangeEntry]]:
        try:
            power = self._backend("power")
        except NovaisError as exc:
            return Result.failure(exc)
        try:
            current = power.get_active_scheme()
        except (NovaisError, OSError, ValueError) as exc:
            return Result.failure(StateReadFailure(f"cannot read active scheme: {exc}"))
        if current.lower() == guid.lower():
            return Result.success(None)
        try:
            power.set_active_scheme(guid)
        except (NovaisError, OSError) as exc:
            return Result.failure(StateWriteFailure(f"cannot activate scheme {guid}: {exc}"))
        try:
            after = power.get_active_scheme()
        except (NovaisError, OSError, ValueError) as exc:
            self.logger.warning("Read-back failed for active scheme: %s", exc)
            after = guid
            note = f"{note} (unverified)".strip()
        entry = self.journal.record(
            CATEGORY_POWERCFG,
            ACTIVE_SCHEME_KEY,
            StringValue(value=current),
            StringValue(value=after),
            note,
        )
        self.logger.info("Power scheme: %s -> %s", current, after)
        return Result.success(entry)

    def set_boot_option(self, name: str, value: str, note: str = "") -> Result[Optional[ChangeEntry]]:
        try:
            boot = self._backend("boot")
        except NovaisError as exc:
            return Result.failure(exc)
        try:
            current = boot.read_option(name)
        except (NovaisError, OSError) as exc:
            return Result.failure(StateReadFailure(f"cannot read boot option {name}: {exc}"))
        if current is not None and current.lower() == str(value).lower():
            return Result.success(None)
        try:
            boot.set_option(name, str(value))
        except (NovaisError, OSError) as exc:
            return Result.failure(StateWriteFailure(f"cannot set boot option {name}: {exc}"))
        try:
            after = boot.read_option(name)
        except (NovaisError, OSError) as exc:
            self.logger.warning("Read-back failed for boot option %s: %s", name, exc)
            after = str(value)
            note = f"{note} (unverified)".strip()
        entry = self.journal.record(
            CATEGORY_BCDEDIT, name, snapshot_of(current), snapshot_of(after), note
        )
        self.logger.info("Boot option %s: %s -> %s", name, current, after)
        return Result.success(entry)

    def record_setting(
        self,
        category: str,
        key: str,
        before: Any,
        after: Any,
        note: str = "",
    ) -> Result[ChangeEntry]:
        """Journal a change the unit made through some other utility."""
        try:
            entry = self.journal.record(
                category, key, snapshot_of(before), snapshot_of(after), note
            )
        except (NovaisError, TypeError) as exc:
            error = exc if isinstance(exc, NovaisError) else StateWriteFailure(str(exc))
            return Result.failure(error)
        return Result.success(entry)
