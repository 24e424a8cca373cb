import io
from pathlib import Path
from typing import List, Optional

import pytest
from fakes import fake_backends

from novaisfps.backends import RegistryValueKind
from novaisfps.context import RunContext
from novaisfps.errors import EXIT_FAILURE, EXIT_MISSING_TARGET, EXIT_OK, InvocationError, StateWriteFailure
from novaisfps.journal import IntValue, RollbackFilter
from novaisfps.orchestrator import Mode
from novaisfps.unit import UnitRuntime, parse_unit_args, run_unit

USB_KEY = r"HKLM\SYSTEM\CurrentControlSet\Services\USB"


def _argv(ctx: RunContext, mode: str = "Apply", target: Optional[Path] = None, *extra: str) -> List[str]:
    argv = [
        "--mode",
        mode,
        "--run-id",
        ctx.run_id,
        "--workspace-root",
        str(ctx.workspace_root),
        "--log-file",
        str(ctx.log_file),
        "--context-json",
        str(ctx.context_file),
    ]
    if target is not None:
        argv += ["--target-context-json", str(target)]
    return argv + list(extra)


def _disable_selective_suspend(runtime: UnitRuntime) -> None:
    runtime.mutators.set_registry_value(USB_KEY, "DisableSelectiveSuspend", 1).unwrap()


def test_parse_unit_args_collects_extra_flags(tmp_path: Path) -> None:
    ctx = RunContext.create(tmp_path, "r1")
    args = parse_unit_args(_argv(ctx, "Apply", None, "--enable-bcd-tweaks", "true", "--dry-run"))
    assert args.mode is Mode.APPLY
    assert args.context_json == ctx.context_file
    assert args.flag("EnableBcdTweaks")
    assert args.flag("dry-run")
    assert not args.flag("Missing")
    assert args.flag("Missing", default=True)


def test_apply_persists_entries(tmp_path: Path) -> None:
    ctx = RunContext.create(tmp_path, "r1")
    backends = fake_backends()
    code = run_unit(
        "InputUSB",
        _disable_selective_suspend,
        argv=_argv(ctx),
        backends=backends,
        stream=io.StringIO(),
    )
    assert code == EXIT_OK
    loaded = RunContext.load(ctx.context_file)
    assert loaded.context is not None
    assert [entry.key for entry in loaded.context.changes] == [USB_KEY + r"\DisableSelectiveSuspend"]


def test_apply_error_maps_to_failure(tmp_path: Path) -> None:
    ctx = RunContext.create(tmp_path, "r1")

    def boom(runtime: UnitRuntime) -> None:
        raise StateWriteFailure("nope")

    stream = io.StringIO()
    code = run_unit("Broken", boom, argv=_argv(ctx), backends=fake_backends(), stream=stream)
    assert code == EXIT_FAILURE
    assert "STATE_WRITE" in stream.getvalue()


def test_apply_without_context_fails(tmp_path: Path) -> None:
    ctx = RunContext.create(tmp_path, "r1")
    ctx.context_file.unlink()
    code = run_unit(
        "InputUSB", _disable_selective_suspend, argv=_argv(ctx), backends=fake_backends(), stream=io.StringIO()
    )
    assert code == EXIT_FAILURE


def test_rollback_without_target_exits_2(tmp_path: Path) -> None:
    ctx = RunContext.create(tmp_path, "r2")
    stream = io.StringIO()
    assert run_unit("InputUSB", _disable_selective_suspend, argv=_argv(ctx, "Rollback"), stream=stream) == (
        EXIT_MISSING_TARGET
    )
    missing = tmp_path / "Logs" / "context-gone.json"
    assert (
        run_unit(
            "InputUSB",
            _disable_selective_suspend,
            argv=_argv(ctx, "Rollback", missing),
            stream=io.StringIO(),
        )
        == EXIT_MISSING_TARGET
    )


def test_rollback_restores_only_filtered_entries(tmp_path: Path) -> None:
    backends = fake_backends()
    backends.registry.seed(USB_KEY, "DisableSelectiveSuspend", 0, RegistryValueKind.DWORD)
    apply_ctx = RunContext.create(tmp_path, "apply-run")
    assert (
        run_unit(
            "InputUSB",
            _disable_selective_suspend,
            argv=_argv(apply_ctx),
            backends=backends,
            stream=io.StringIO(),
        )
        == EXIT_OK
    )
    writer = RunContext.resume(apply_ctx.context_file)
    writer.journal.record(
        "registry", r"HKLM\SOFTWARE\Other\Value", IntValue(value=1), IntValue(value=2)
    )

    rollback_ctx = RunContext.create(tmp_path, "rollback-run")
    code = run_unit(
        "InputUSB",
        _disable_selective_suspend,
        rollback_filters=[RollbackFilter(category="registry", key_prefix=USB_KEY)],
        argv=_argv(rollback_ctx, "Rollback", apply_ctx.context_file),
        backends=backends,
        stream=io.StringIO(),
    )
    assert code == EXIT_OK
    assert backends.registry.get(USB_KEY, "DisableSelectiveSuspend") == (0, RegistryValueKind.DWORD)
    assert backends.registry.get(r"HKLM\SOFTWARE\Other", "Value") is None
    assert RunContext.load(rollback_ctx.context_file).context.changes == ()


@pytest.mark.parametrize(
    "argv",
    [
        ["--mode", "Apply"],
        ["--mode", "Sideways", "--run-id", "r", "--workspace-root", ".", "--log-file", "l", "--context-json", "c"],
    ],
)
def test_malformed_invocation_exits_1(argv: List[str]) -> None:
    stream = io.StringIO()
    code = run_unit("InputUSB", _disable_selective_suspend, argv=argv, backends=fake_backends(), stream=stream)
    assert code == EXIT_FAILURE
    assert "INVOCATION" in stream.getvalue()
    with pytest.raises(InvocationError):
        parse_unit_args(argv)


def test_rollback_with_a_failing_key_still_succeeds(tmp_path: Path) -> None:
    backends = fake_backends()
    registry = backends.registry
    for name in ("K1", "K2", "K3"):
        registry.seed(USB_KEY, name, 1, RegistryValueKind.DWORD)

    def disable_all(runtime: UnitRuntime) -> None:
        for name in ("K1", "K2", "K3"):
            runtime.mutators.set_registry_value(USB_KEY, name, 0).unwrap()

    apply_ctx = RunContext.create(tmp_path, "apply-run")
    assert run_unit("InputUSB", disable_all, argv=_argv(apply_ctx), backends=backends, stream=io.StringIO()) == (
        EXIT_OK
    )
    registry.deny_write.add((USB_KEY.lower(), "k2"))

    rollback_ctx = RunContext.create(tmp_path, "rollback-run")
    stream = io.StringIO()
    code = run_unit(
        "InputUSB",
        disable_all,
        argv=_argv(rollback_ctx, "Rollback", apply_ctx.context_file),
        backends=backends,
        stream=stream,
    )
    assert code == EXIT_OK
    output = stream.getvalue()
    assert "[WARNING] Rollback of registry:" + USB_KEY + "\\K2 failed" in output
    assert "1 failed" in output
    assert registry.get(USB_KEY, "K1") == (1, RegistryValueKind.DWORD)
    assert registry.get(USB_KEY, "K2") == (0, RegistryValueKind.DWORD)
    assert registry.get(USB_KEY, "K3") == (1, RegistryValueKind.DWORD)


def test_rollback_filter_arguments_replace_unit_defaults(tmp_path: Path) -> None:
    backends = fake_backends()
    apply_ctx = RunContext.create(tmp_path, "apply-run")
    writer = RunContext.resume(apply_ctx.context_file)
    writer.journal.record("registry", USB_KEY + r"\DisableSelectiveSuspend", IntValue(value=0), IntValue(value=1))
    writer.journal.record("registry", r"HKLM\SOFTWARE\Other\Value", IntValue(value=1), IntValue(value=2))

    args = parse_unit_args(
        _argv(apply_ctx, "Rollback", apply_ctx.context_file, "--rollback-filter", r"registry:HKLM\SOFTWARE\Other")
    )
    assert args.rollback_filters == [RollbackFilter(category="registry", key_prefix=r"HKLM\SOFTWARE\Other")]
    assert args.flags == {}

    rollback_ctx = RunContext.create(tmp_path, "rollback-run")
    code = run_unit(
        "InputUSB",
        _disable_selective_suspend,
        rollback_filters=[RollbackFilter(category="registry", key_prefix=USB_KEY)],
        argv=_argv(
            rollback_ctx, "Rollback", apply_ctx.context_file, "--rollback-filter", r"registry:HKLM\SOFTWARE\Other"
        ),
        backends=backends,
        stream=io.StringIO(),
    )
    assert code == EXIT_OK
    assert backends.registry.get(r"HKLM\SOFTWARE\Other", "Value") == (1, RegistryValueKind.DWORD)
    assert backends.registry.get(USB_KEY, "DisableSelectiveSuspend") is None
