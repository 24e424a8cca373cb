from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..errors import ReadOnlyContextError
from ..utils import now_ts_ns, stable_hash
from .snapshots import ABSENT, Snapshot

CATEGORY_REGISTRY = "registry"
CATEGORY_SERVICE = "service"
CATEGORY_POWERCFG = "powercfg"
CATEGORY_BCDEDIT = "bcdedit"

ACTIVE_SCHEME_KEY = "activeScheme"


def registry_key(path: str, name: str) -> str:
    return f"{path}\\{name}"


class ChangeEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    seq: int
    ts: int
    category: str
    key: str
    before: Snapshot = ABSENT
    after: Snapshot = ABSENT
    note: str = ""
    ref: Dict[str, str] = Field(default_factory=dict)
    prev_hash: str = ""
    hash: str = ""

    def hash_payload(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data.pop("hash", None)
        return data


class RollbackFilter(BaseModel):
    """Selects journal entries by category and key prefix.

    ``category=None`` matches every category; an empty prefix matches every key.
    Prefix matching is case-insensitive because registry paths are.
    """

    model_config = ConfigDict(frozen=True)

    category: Optional[str] = None
    key_prefix: str = ""

    def matches(self, entry: ChangeEntry) -> bool:
        if self.category is not None and entry.category != self.category:
            return False
        return entry.key.lower().startswith(self.key_prefix.lower())

    @classmethod
    def parse(cls, text: str) -> "RollbackFilter":
        category, _, prefix = text.partition(":")
        category = category.strip()
        return cls(category=category or None, key_prefix=prefix)


def matches_any(entry: ChangeEntry, filters: Sequence[RollbackFilter]) -> bool:
    if not filters:
        return True
    return any(item.matches(entry) for item in filters)


class ChangeJournal:
    def __init__(
        self,
        entries: Iterable[ChangeEntry] = (),
        *,
        on_append: Optional[Callable[[], None]] = None,
        read_only: bool = False,
    ) -> None:
        self._entries: List[ChangeEntry] = list(entries)
        self._on_append = on_append
        self.read_only = read_only

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> Tuple[ChangeEntry, ...]:
        return tuple(self._entries)

    @property
    def last_hash(self) -> str:
        return self._entries[-1].hash if self._entries else ""

    def record(
        self,
        category: str,
        key: str,
        before: Snapshot,
        after: Snapshot,
        note: str = "",
        ref: Optional[Dict[str, str]] = None,
    ) -> ChangeEntry:
        if self.read_only:
            raise ReadOnlyContextError(f"journal is read-only; refusing {category}:{key}")
        draft = ChangeEntry(
            seq=len(self._entries),
            ts=now_ts_ns(),
            category=category,
            key=key,
            before=before,
            after=after,
            note=note,
            ref=dict(ref or {}),
            prev_hash=self.last_hash,
        )
        entry = draft.model_copy(update={"hash": stable_hash(draft.hash_payload())})
        self._entries.append(entry)
        if self._on_append is not None:
            self._on_append()
        return entry

    def query(self, filters: Sequence[RollbackFilter] = ()) -> List[ChangeEntry]:
        return [entry for entry in self._entries if matches_any(entry, filters)]

    def last_per_key(self, filters: Sequence[RollbackFilter] = ()) -> List[ChangeEntry]:
        latest: Dict[Tuple[str, str], ChangeEntry] = {}
        for entry in self.query(filters):
            latest[(entry.category, entry.key)] = entry
        return sorted(latest.values(), key=lambda item: item.seq)

    def first_per_key(self, filters: Sequence[RollbackFilter] = ()) -> List[ChangeEntry]:
        earliest: Dict[Tuple[str, str], ChangeEntry] = {}
        for entry in self.query(filters):
            earliest.setdefault((entry.category, entry.key), entry)
        return sorted(earliest.values(), key=lambda item: item.seq)

    def verify_chain(self) -> Tuple[bool, str]:
        prev_hash = ""
        for idx, entry in enumerate(self._entries):
            if entry.seq != idx:
                return False, f"seq mismatch at {idx}"
            if entry.prev_hash != prev_hash:
                return False, f"prev_hash mismatch at {idx}"
            if stable_hash(entry.hash_payload()) != entry.hash:
                return False, f"hash mismatch at {idx}"
            prev_hash = entry.hash
        return True, "ok"
