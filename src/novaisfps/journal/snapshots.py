from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class AbsentValue(BaseModel):
    """The value did not exist before the mutation; rollback deletes it."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["absent"] = "absent"


class IntValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["int"] = "int"
    value: int
    wide: bool = False


class StringValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["string"] = "string"
    value: str
    expand: bool = False


class ServiceStateSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["service"] = "service"
    status: str
    startup_type: str


Snapshot = Annotated[
    Union[AbsentValue, IntValue, StringValue, ServiceStateSnapshot],
    Field(discriminator="kind"),
]

ABSENT = AbsentValue()


def snapshot_of(value: Any, *, wide: bool = False, expand: bool = False) -> Snapshot:
    if value is None:
        return ABSENT
    if isinstance(value, (AbsentValue, IntValue, StringValue, ServiceStateSnapshot)):
        return value
    if isinstance(value, bool):
        return IntValue(value=int(value), wide=wide)
    if isinstance(value, int):
        return IntValue(value=value, wide=wide or value > 0xFFFFFFFF)
    if isinstance(value, str):
        return StringValue(value=value, expand=expand)
    raise TypeError(f"unsupported snapshot value: {type(value).__name__}")


def describe(snapshot: Snapshot) -> str:
    if isinstance(snapshot, AbsentValue):
        return "<absent>"
    if isinstance(snapshot, ServiceStateSnapshot):
        return f"{snapshot.status}/{snapshot.startup_type}"
    return str(snapshot.value)
