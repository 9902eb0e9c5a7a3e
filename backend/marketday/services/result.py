from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    AUTH = "auth"
    UPSTREAM = "upstream"


_HTTP_STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.AUTH: 401,
    ErrorKind.UPSTREAM: 502,
}


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str
    context: dict[str, Any] = field(default_factory=dict)
    ok: bool = field(default=False, init=False)

    @property
    def http_status(self) -> int:
        if self.kind == ErrorKind.AUTH and self.context.get("forbidden"):
            return 403
        return _HTTP_STATUS.get(self.kind, 500)


Result = Union[Ok[T], Err]


def validation_error(message: str, **context) -> Err:
    return Err(ErrorKind.VALIDATION, message, dict(context))


def not_found(message: str, **context) -> Err:
    return Err(ErrorKind.NOT_FOUND, message, dict(context))


def auth_error(message: str, *, forbidden: bool = False, **context) -> Err:
    ctx = dict(context)
    if forbidden:
        ctx["forbidden"] = True
    return Err(ErrorKind.AUTH, message, ctx)


def upstream_error(message: str, **context) -> Err:
    return Err(ErrorKind.UPSTREAM, message, dict(context))
