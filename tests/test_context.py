from pathlib import Path

import orjson
import pytest

from novaisfps import context as context_module
from novaisfps.config import Settings
from novaisfps.context import (
    LOAD_CHAIN_BROKEN,
    LOAD_CHECKSUM_MISMATCH,
    LOAD_INVALID_JSON,
    LOAD_INVALID_SCHEMA,
    LOAD_MISSING,
    RunContext,
    document_checksum,
)
from novaisfps.errors import ContextUnavailable, ReadOnlyContextError
from novaisfps.journal import ABSENT, CATEGORY_REGISTRY, IntValue
from novaisfps.utils import read_json, write_json


def test_create_lays_out_workspace(tmp_path: Path) -> None:
    ctx = RunContext.create(tmp_path, "20240101-000000")
    for name in ("Logs", "Backup", "Profiles", "Scripts"):
        assert (tmp_path / name).is_dir()
    assert ctx.log_file == tmp_path.resolve() / "Logs" / "novaisfps-20240101-000000.log"
    assert ctx.context_file == tmp_path.resolve() / "Logs" / "context-20240101-000000.json"
    assert ctx.context_file.is_file()
    assert ctx.abs_path("Scripts") == tmp_path.resolve() / "Scripts"


def test_create_honours_configured_dirs(tmp_path: Path) -> None:
    settings = Settings(logs_dir="logs", scripts_dir="units")
    ctx = RunContext.create(tmp_path, "r1", settings)
    assert ctx.context_file.parent == tmp_path.resolve() / "logs"
    assert (tmp_path / "units").is_dir()


def test_every_record_is_persisted(tmp_path: Path) -> None:
    ctx = RunContext.create(tmp_path, "r1")
    ctx.journal.record(CATEGORY_REGISTRY, r"HKLM\X\Y", ABSENT, IntValue(value=1))
    on_disk = read_json(ctx.context_file)
    assert len(on_disk["changes"]) == 1
    assert on_disk["changes"][0]["before"] == {"kind": "absent"}
    assert on_disk["checksum"] == document_checksum(on_disk)
    assert ctx.context_file.read_bytes().endswith(b"\n")


def test_load_round_trip_is_read_only(tmp_path: Path) -> None:
    ctx = RunContext.create(tmp_path, "r1")
    ctx.journal.record(CATEGORY_REGISTRY, r"HKLM\X\Y", ABSENT, IntValue(value=1))
    ctx.set_data("hardware", {"cpu": "test"})
    loaded = RunContext.load(ctx.context_file)
    assert loaded.present
    assert loaded.context is not None
    assert loaded.context.changes == ctx.changes
    assert loaded.context.data == {"hardware": {"cpu": "test"}}
    with pytest.raises(ReadOnlyContextError):
        loaded.context.journal.record(CATEGORY_REGISTRY, "k", ABSENT, IntValue(value=2))


def test_load_reports_absent_reasons(tmp_path: Path) -> None:
    assert RunContext.load(tmp_path / "nope.json").reason == LOAD_MISSING

    garbage = tmp_path / "garbage.json"
    garbage.write_text("{not json", encoding="utf-8")
    assert RunContext.load(garbage).reason == LOAD_INVALID_JSON

    wrong = tmp_path / "wrong.json"
    write_json(wrong, {"run_id": 3})
    assert RunContext.load(wrong).reason == LOAD_INVALID_SCHEMA

    listing = tmp_path / "list.json"
    write_json(listing, [1, 2])
    assert RunContext.load(listing).reason == LOAD_INVALID_SCHEMA


def test_load_rejects_checksum_mismatch(tmp_path: Path) -> None:
    ctx = RunContext.create(tmp_path, "r1")
    ctx.journal.record(CATEGORY_REGISTRY, r"HKLM\X\Y", ABSENT, IntValue(value=1))
    document = read_json(ctx.context_file)
    document["changes"][0]["key"] = r"HKLM\X\Z"
    ctx.context_file.write_bytes(orjson.dumps(document))
    loaded = RunContext.load(ctx.context_file)
    assert not loaded.present
    assert loaded.reason == LOAD_CHECKSUM_MISMATCH
    assert RunContext.load(ctx.context_file, verify_checksum=False).present


def test_load_rejects_broken_chain_even_with_fresh_checksum(tmp_path: Path) -> None:
    ctx = RunContext.create(tmp_path, "r1")
    ctx.journal.record(CATEGORY_REGISTRY, r"HKLM\X\Y", ABSENT, IntValue(value=1))
    document = read_json(ctx.context_file)
    document["changes"][0]["note"] = "rewritten"
    document["checksum"] = document_checksum(document)
    ctx.context_file.write_bytes(orjson.dumps(document))
    assert RunContext.load(ctx.context_file).reason == LOAD_CHAIN_BROKEN


def test_resume_is_writable_and_reload_sees_new_entries(tmp_path: Path) -> None:
    ctx = RunContext.create(tmp_path, "r1")
    unit_side = RunContext.resume(ctx.context_file)
    unit_side.journal.record(CATEGORY_REGISTRY, r"HKLM\X\Y", ABSENT, IntValue(value=1))
    assert len(ctx.changes) == 0
    assert ctx.reload()
    assert len(ctx.changes) == 1
    ctx.set_data("phases", {"A": "Succeeded"})
    assert len(read_json(ctx.context_file)["changes"]) == 1


def test_resume_missing_context_raises(tmp_path: Path) -> None:
    with pytest.raises(ContextUnavailable):
        RunContext.resume(tmp_path / "missing.json")


def test_create_never_overwrites_an_existing_run(tmp_path: Path) -> None:
    ctx = RunContext.create(tmp_path, "same")
    ctx.journal.record(CATEGORY_REGISTRY, r"HKLM\X\Y", ABSENT, IntValue(value=1))
    with pytest.raises(ContextUnavailable):
        RunContext.create(tmp_path, "same")
    loaded = RunContext.load(ctx.context_file)
    assert loaded.context is not None
    assert len(loaded.context.changes) == 1


def test_create_suffixes_a_generated_id_that_is_taken(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(context_module, "default_run_id", lambda: "20240101-000000")
    first = RunContext.create(tmp_path)
    first.journal.record(CATEGORY_REGISTRY, r"HKLM\X\Y", ABSENT, IntValue(value=1))
    second = RunContext.create(tmp_path)
    third = RunContext.create(tmp_path)
    assert first.run_id == "20240101-000000"
    assert second.run_id == "20240101-000000-2"
    assert third.run_id == "20240101-000000-3"
    assert second.context_file.name == "context-20240101-000000-2.json"
    assert len(read_json(first.context_file)["changes"]) == 1
