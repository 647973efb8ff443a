"""Result values returned by the catalog client.

The client never raises for remote or transport failures. Callers branch on
ApiResult.ok and, on failure, on ApiError.kind.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    CONFIG_ERROR = "CONFIG_ERROR"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    NETWORK_ERROR = "NETWORK_ERROR"
    UNKNOWN = "UNKNOWN"


# Kinds worth another attempt. Everything else fails fast.
RETRYABLE_KINDS = frozenset(
    {ErrorKind.RATE_LIMIT, ErrorKind.NETWORK_ERROR, ErrorKind.UNKNOWN}
)


@dataclass(frozen=True)
class ApiError:
    kind: ErrorKind
    message: str
    code: Optional[int] = None  # remote error code, if the API sent one
    status_code: Optional[int] = None  # HTTP status, None for transport failures
    retries: int = 0  # backoff retries consumed before giving up
    retryable: bool = False

    def as_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "code": self.code,
            "status_code": self.status_code,
            "retries": self.retries,
        }


@dataclass(frozen=True)
class ApiResult(Generic[T]):
    ok: bool
    data: Optional[T] = None
    error: Optional[ApiError] = None

    @classmethod
    def success(cls, data: Optional[T] = None) -> "ApiResult[T]":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error: ApiError) -> "ApiResult[T]":
        return cls(ok=False, error=error)
