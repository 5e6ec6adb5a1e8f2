"""Named failure reasons returned by engine operations.

Engine operations never raise for expected conditions (unknown ids, repeated
completions, out-of-range metric values, corrupt documents). They return a
``Result`` carrying either a value or an ``EngineError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    not_found = "not_found"
    invalid_state = "invalid_state"
    out_of_range = "out_of_range"
    serialization = "serialization"


@dataclass(frozen=True, slots=True)
class EngineError:
    kind: ErrorKind
    message: str

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


@dataclass(frozen=True, slots=True)
class Result(Generic[T]):
    value: T | None = None
    error: EngineError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> Result[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> Result[T]:
        return cls(error=EngineError(kind=kind, message=message))


def not_found(what: str, ident: str) -> Result:
    return Result.failure(ErrorKind.not_found, f"{what} not found: {ident}")


def invalid_state(message: str) -> Result:
    return Result.failure(ErrorKind.invalid_state, message)
