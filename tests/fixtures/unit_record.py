#!/usr/bin/env python3
from novaisfps.backends import Backends
from novaisfps.unit import UnitRuntime, run_unit


def apply(runtime: UnitRuntime) -> None:
    runtime.mutators.record_setting(
        "netsh", "tcp/autotuninglevel", "normal", "disabled", note="fixture"
    ).unwrap()


if __name__ == "__main__":
    raise SystemExit(run_unit("Record", apply, backends=Backends()))
