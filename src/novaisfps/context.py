from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import orjson
from pydantic import BaseModel, Field, ValidationError

from .config import Settings
from .errors import ContextUnavailable
from .journal import ChangeEntry, ChangeJournal
from .utils import (
    CANONICALIZATION,
    HASH_ALGORITHM,
    default_run_id,
    ensure_dir,
    stable_hash,
    to_jsonable,
    write_json_atomic,
)

CONTEXT_SCHEMA_VERSION = "v1"

LOAD_MISSING = "missing"
LOAD_UNREADABLE = "unreadable"
LOAD_INVALID_JSON = "invalid_json"
LOAD_INVALID_SCHEMA = "invalid_schema"
LOAD_CHECKSUM_MISMATCH = "checksum_mismatch"
LOAD_CHAIN_BROKEN = "chain_broken"


class RunContextDocument(BaseModel):
    schema_version: str = CONTEXT_SCHEMA_VERSION
    canonicalization: str = CANONICALIZATION
    hash_algorithm: str = HASH_ALGORITHM
    run_id: str
    workspace_root: str
    log_file: str
    context_file: str
    data: Dict[str, Any] = Field(default_factory=dict)
    changes: List[ChangeEntry] = Field(default_factory=list)
    checksum: str = ""


def document_checksum(document: Dict[str, Any]) -> str:
    payload = {key: value for key, value in document.items() if key != "checksum"}
    return stable_hash(payload)


@dataclass
class ContextLoad:
    path: Path
    context: Optional["RunContext"] = None
    reason: str = ""

    @property
    def present(self) -> bool:
        return self.context is not None


def context_paths(workspace_root: Path, run_id: str, settings: Settings) -> Tuple[Path, Path]:
    logs = Path(workspace_root) / settings.logs_dir
    return logs / f"novaisfps-{run_id}.log", logs / f"context-{run_id}.json"


class RunContext:
    def __init__(
        self,
        run_id: str,
        workspace_root: Path,
        log_file: Path,
        context_file: Path,
        *,
        changes: Iterable[ChangeEntry] = (),
        data: Optional[Dict[str, Any]] = None,
        read_only: bool = False,
    ) -> None:
        self.run_id = run_id
        self.workspace_root = Path(workspace_root)
        self.log_file = Path(log_file)
        self.context_file = Path(context_file)
        self.data: Dict[str, Any] = dict(data or {})
        self.read_only = read_only
        self.journal = ChangeJournal(
            changes,
            on_append=None if read_only else self.persist,
            read_only=read_only,
        )

    @classmethod
    def create(
        cls,
        workspace_root: Path,
        run_id: Optional[str] = None,
        settings: Optional[Settings] = None,
    ) -> "RunContext":
        """Start a fresh run; an existing context file is never overwritten.

        An explicit ``run_id`` that is already taken raises ``ContextUnavailable``.
        A generated id gets a numeric suffix until it is free.
        """
        settings = settings or Settings()
        explicit = bool(run_id)
        run_id = run_id or default_run_id()
        root = Path(workspace_root).resolve()
        for name in settings.workspace_dirs():
            ensure_dir(root / name)
        log_file, context_file = context_paths(root, run_id, settings)
        if context_file.exists():
            if explicit:
                raise ContextUnavailable(
                    f"context {context_file} already exists; pick another run id"
                )
            base, suffix = run_id, 1
            while context_file.exists():
                suffix += 1
                run_id = f"{base}-{suffix}"
                log_file, context_file = context_paths(root, run_id, settings)
        ctx = cls(run_id, root, log_file, context_file)
        ctx.persist()
        return ctx

    @property
    def changes(self) -> Tuple[ChangeEntry, ...]:
        return self.journal.entries

    def abs_path(self, *parts: str) -> Path:
        return self.workspace_root.joinpath(*parts).resolve()

    def to_document(self) -> Dict[str, Any]:
        document = {
            "schema_version": CONTEXT_SCHEMA_VERSION,
            "canonicalization": CANONICALIZATION,
            "hash_algorithm": HASH_ALGORITHM,
            "run_id": self.run_id,
            "workspace_root": str(self.workspace_root),
            "log_file": str(self.log_file),
            "context_file": str(self.context_file),
            "data": to_jsonable(self.data),
            "changes": [entry.model_dump(mode="json") for entry in self.journal.entries],
        }
        document["checksum"] = document_checksum(document)
        return document

    def persist(self, path: Optional[Path] = None) -> Path:
        target = Path(path) if path is not None else self.context_file
        write_json_atomic(target, self.to_document())
        return target

    def set_data(self, key: str, value: Any) -> None:
        self.data[key] = value
        self.persist()

    def reload(self, *, verify_checksum: bool = True) -> bool:
        """Pick up entries another process appended to ``context_file``."""
        loaded = RunContext.load(self.context_file, verify_checksum=verify_checksum)
        if loaded.context is None or loaded.context.run_id != self.run_id:
            return False
        self.data = dict(loaded.context.data)
        self.journal = ChangeJournal(
            loaded.context.changes,
            on_append=None if self.read_only else self.persist,
            read_only=self.read_only,
        )
        return True

    @classmethod
    def from_document(cls, document: RunContextDocument, *, read_only: bool) -> "RunContext":
        return cls(
            document.run_id,
            Path(document.workspace_root),
            Path(document.log_file),
            Path(document.context_file),
            changes=document.changes,
            data=document.data,
            read_only=read_only,
        )

    @classmethod
    def load(cls, path: Path, *, verify_checksum: bool = True) -> ContextLoad:
        path = Path(path)
        if not path.is_file():
            return ContextLoad(path, reason=LOAD_MISSING)
        try:
            raw = path.read_bytes()
        except OSError:
            return ContextLoad(path, reason=LOAD_UNREADABLE)
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError:
            return ContextLoad(path, reason=LOAD_INVALID_JSON)
        if not isinstance(data, dict):
            return ContextLoad(path, reason=LOAD_INVALID_SCHEMA)
        checksum = data.get("checksum")
        if verify_checksum and checksum and checksum != document_checksum(data):
            return ContextLoad(path, reason=LOAD_CHECKSUM_MISMATCH)
        try:
            document = RunContextDocument.model_validate(data)
        except ValidationError:
            return ContextLoad(path, reason=LOAD_INVALID_SCHEMA)
        ctx = cls.from_document(document, read_only=True)
        if verify_checksum:
            ok, _ = ctx.journal.verify_chain()
            if not ok:
                return ContextLoad(path, reason=LOAD_CHAIN_BROKEN)
        return ContextLoad(path, context=ctx)

    @classmethod
    def resume(cls, path: Path, *, verify_checksum: bool = True) -> "RunContext":
        """Reopen a persisted context for writing (the unit side of a run)."""
        loaded = cls.load(path, verify_checksum=verify_checksum)
        if loaded.context is None:
            raise ContextUnavailable(f"cannot resume context {path}: {loaded.reason}")
        document = RunContextDocument.model_validate(loaded.context.to_document())
        ctx = cls.from_document(document, read_only=False)
        ctx.context_file = Path(path)
        return ctx
