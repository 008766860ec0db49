"""Async state values — idle, loading, success, error.

Used by PagedOptions to report the state of its list and hydration
requests. The store itself keeps only a loading flag per field.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Idle:
    status = "idle"


@dataclass(frozen=True)
class Loading:
    status = "loading"


@dataclass(frozen=True)
class Success(Generic[T]):
    data: T
    status = "success"


@dataclass(frozen=True)
class Error:
    error: BaseException
    status = "error"


AsyncState = Union[Idle, Loading, Success[Any], Error]

IDLE = Idle()
LOADING = Loading()


def is_loading(state: AsyncState) -> bool:
    return isinstance(state, Loading)


def is_error(state: AsyncState) -> bool:
    return isinstance(state, Error)


def error_of(state: AsyncState) -> BaseException | None:
    return state.error if isinstance(state, Error) else None
