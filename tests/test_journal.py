import pytest

from novaisfps.errors import ReadOnlyContextError
from novaisfps.journal import (
    ABSENT,
    CATEGORY_REGISTRY,
    CATEGORY_SERVICE,
    ChangeEntry,
    ChangeJournal,
    IntValue,
    RollbackFilter,
    ServiceStateSnapshot,
    StringValue,
    registry_key,
    snapshot_of,
)

GAME_KEY = r"HKCU\System\GameConfigStore"


def _journal() -> ChangeJournal:
    journal = ChangeJournal()
    journal.record(CATEGORY_REGISTRY, registry_key(GAME_KEY, "GameDVR_Enabled"), IntValue(value=1), IntValue(value=0))
    journal.record(
        CATEGORY_SERVICE,
        "SysMain",
        ServiceStateSnapshot(status="Running", startup_type="Automatic"),
        ServiceStateSnapshot(status="Stopped", startup_type="Disabled"),
    )
    journal.record(CATEGORY_REGISTRY, registry_key(GAME_KEY, "GameDVR_Enabled"), IntValue(value=0), IntValue(value=2))
    return journal


def test_record_preserves_insertion_order_and_chains_hashes() -> None:
    journal = _journal()
    entries = journal.entries
    assert [entry.seq for entry in entries] == [0, 1, 2]
    assert entries[0].prev_hash == ""
    assert entries[1].prev_hash == entries[0].hash
    assert entries[2].prev_hash == entries[1].hash
    assert journal.verify_chain() == (True, "ok")


def test_verify_chain_detects_tampering() -> None:
    journal = _journal()
    tampered = list(journal.entries)
    tampered[1] = tampered[1].model_copy(update={"note": "edited later"})
    ok, message = ChangeJournal(tampered).verify_chain()
    assert not ok
    assert message == "hash mismatch at 1"


def test_query_filters_by_category_and_case_insensitive_prefix() -> None:
    journal = _journal()
    by_category = journal.query([RollbackFilter(category=CATEGORY_SERVICE)])
    assert [entry.key for entry in by_category] == ["SysMain"]
    by_prefix = journal.query([RollbackFilter(key_prefix=r"hkcu\system")])
    assert len(by_prefix) == 2
    assert journal.query() == list(journal.entries)


def test_first_and_last_per_key() -> None:
    journal = _journal()
    first = journal.first_per_key()
    last = journal.last_per_key()
    assert [entry.seq for entry in first] == [0, 1]
    assert [entry.seq for entry in last] == [1, 2]
    assert first[0].before == IntValue(value=1)


def test_read_only_journal_rejects_record() -> None:
    journal = ChangeJournal(read_only=True)
    with pytest.raises(ReadOnlyContextError):
        journal.record(CATEGORY_REGISTRY, "x", ABSENT, IntValue(value=1))
    assert len(journal) == 0


def test_on_append_runs_after_every_record() -> None:
    seen = []
    journal = ChangeJournal(on_append=lambda: seen.append(len(seen)))
    journal.record("netsh", "tcp/autotuninglevel", StringValue(value="normal"), StringValue(value="disabled"))
    journal.record("netsh", "tcp/rss", ABSENT, StringValue(value="enabled"))
    assert seen == [0, 1]


def test_rollback_filter_parse() -> None:
    assert RollbackFilter.parse("registry:HKLM\\SYSTEM") == RollbackFilter(
        category="registry", key_prefix="HKLM\\SYSTEM"
    )
    assert RollbackFilter.parse(":Sys") == RollbackFilter(category=None, key_prefix="Sys")


def test_snapshot_union_round_trips_through_json() -> None:
    entry = ChangeEntry(
        seq=0,
        ts=1,
        category=CATEGORY_SERVICE,
        key="DiagTrack",
        before=ServiceStateSnapshot(status="Running", startup_type="Automatic"),
        after=ABSENT,
    )
    restored = ChangeEntry.model_validate(entry.model_dump(mode="json"))
    assert restored == entry
    assert isinstance(restored.before, ServiceStateSnapshot)


def test_snapshot_of_values() -> None:
    assert snapshot_of(None) == ABSENT
    assert snapshot_of(True) == IntValue(value=1)
    assert snapshot_of(0x1_0000_0000) == IntValue(value=0x1_0000_0000, wide=True)
    assert snapshot_of("%SystemRoot%", expand=True) == StringValue(value="%SystemRoot%", expand=True)
    with pytest.raises(TypeError):
        snapshot_of(1.5)
