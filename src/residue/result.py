"""Tagged success/failure values threaded through orchestration steps."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    CONFIG_MISSING = "config_missing"
    NETWORK_ERROR = "network_error"
    IO_ERROR = "io_error"
    PARSE_ERROR = "parse_error"
    GIT_ERROR = "git_error"
    DUPLICATE_ID = "duplicate_id"
    NOT_FOUND = "not_found"


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Err:
    kind: ErrorKind
    detail: str

    @property
    def ok(self) -> bool:
        return False

    @classmethod
    def from_exception(cls, exc: BaseException, kind: ErrorKind | None = None) -> "Err":
        """Build an ``Err`` from an exception, preferring the exception's own kind."""

        resolved = kind or getattr(exc, "kind", None) or ErrorKind.IO_ERROR
        return cls(kind=resolved, detail=str(exc))

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.detail}"


Result = Union[Ok[T], Err]


__all__ = ["ErrorKind", "Ok", "Err", "Result"]
