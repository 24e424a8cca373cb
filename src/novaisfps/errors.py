from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_MISSING_TARGET = 2
EXIT_NOT_ADMIN = 5
EXIT_TIMEOUT = 124
EXIT_NOT_FOUND = 127


class NovaisError(Exception):
    atom = "ERROR"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.atom)
        self.message = message or self.atom


class MutatorFailure(NovaisError):
    """A unit returned non-zero or could not be located."""

    atom = "MUTATOR_FAILURE"

    def __init__(self, message: str = "", *, phase: str = "", exit_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.phase = phase
        self.exit_code = exit_code


class TimeoutFailure(MutatorFailure):
    atom = "TIMEOUT"


class StateReadFailure(NovaisError):
    atom = "STATE_READ"


class StateWriteFailure(NovaisError):
    atom = "STATE_WRITE"


class NativeCommandError(NovaisError):
    atom = "NATIVE_COMMAND"

    def __init__(self, argv: list[str], returncode: int, output: str = "") -> None:
        detail = output.strip().splitlines()[-1] if output.strip() else ""
        super().__init__(f"{argv[0]} exited {returncode}: {detail}".rstrip(": "))
        self.argv = list(argv)
        self.returncode = returncode
        self.output = output


class RollbackTargetMissing(NovaisError):
    atom = "ROLLBACK_TARGET_MISSING"
    exit_code = EXIT_MISSING_TARGET


class ContextUnavailable(NovaisError):
    atom = "CONTEXT_UNAVAILABLE"


class InvocationError(NovaisError):
    """A unit was launched with a malformed argument list."""

    atom = "INVOCATION"


class ReadOnlyContextError(NovaisError):
    atom = "CONTEXT_READ_ONLY"


@dataclass(frozen=True)
class Result(Generic[T]):
    value: Optional[T] = None
    error: Optional[NovaisError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: NovaisError) -> "Result[T]":
        return cls(error=error)

    def unwrap(self) -> Optional[T]:
        if self.error is not None:
            raise self.error
        return self.value
