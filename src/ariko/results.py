"""Tagged request results shared by provider strategies and the LLM client."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Failure class of a request. NONE marks success."""

    NONE = "None"
    AUTH = "Auth"
    NETWORK = "Network"
    HTTP = "Http"
    PARSING = "Parsing"
    CANCELLATION = "Cancellation"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class WebRequestResult(Generic[T]):
    """Either the data of a successful request or an error message and kind."""

    data: T | None = None
    error_message: str | None = None
    error_kind: ErrorKind = ErrorKind.NONE

    @property
    def is_success(self) -> bool:
        return self.error_kind is ErrorKind.NONE

    @classmethod
    def success(cls, data: T | None) -> WebRequestResult[T]:
        return cls(data=data)

    @classmethod
    def fail(cls, error_message: str, error_kind: ErrorKind) -> WebRequestResult[T]:
        if error_kind is ErrorKind.NONE:
            raise ValueError("A failed result needs an error kind other than NONE")
        return cls(error_message=error_message, error_kind=error_kind)
