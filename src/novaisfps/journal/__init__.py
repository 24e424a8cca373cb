from .journal import (
    ACTIVE_SCHEME_KEY,
    CATEGORY_BCDEDIT,
    CATEGORY_POWERCFG,
    CATEGORY_REGISTRY,
    CATEGORY_SERVICE,
    ChangeEntry,
    ChangeJournal,
    RollbackFilter,
    registry_key,
)
from .snapshots import (
    ABSENT,
    AbsentValue,
    IntValue,
    ServiceStateSnapshot,
    Snapshot,
    StringValue,
    snapshot_of,
)

__all__ = [
    "ABSENT",
    "ACTIVE_SCHEME_KEY",
    "AbsentValue",
    "CATEGORY_BCDEDIT",
    "CATEGORY_POWERCFG",
    "CATEGORY_REGISTRY",
    "CATEGORY_SERVICE",
    "ChangeEntry",
    "ChangeJournal",
    "IntValue",
    "RollbackFilter",
    "ServiceStateSnapshot",
    "Snapshot",
    "StringValue",
    "registry_key",
    "snapshot_of",
]
