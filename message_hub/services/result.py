from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    """Outcome of a call to an outbound collaborator (notifier, channel API)."""

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = "unknown") -> "Result[T]":
        return Result(ok=False, error=error, error_code=code)

    @staticmethod
    def from_api_payload(payload: dict, code: str = "api_error") -> "Result[Any]":
        """Wrap a Bot-API style `{"ok": ..., "result": ..., "description": ...}` reply."""
        if payload.get("ok"):
            return Result.success(payload.get("result"))
        error = payload.get("description") or payload.get("error") or "request failed"
        return Result.failure(str(error), code)
