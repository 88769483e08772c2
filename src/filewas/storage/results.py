"""Tagged success/failure values returned by every storage operation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


class StorageError(RuntimeError):
    """Raised by :meth:`StorageResult.unwrap` on a failed result."""


@dataclass(slots=True)
class StorageResult(Generic[T]):
    success: bool
    data: T | None = None
    error: str | None = None

    @classmethod
    def ok(cls, data: T | None = None) -> "StorageResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "StorageResult[T]":
        return cls(success=False, error=error)

    def unwrap(self) -> T:
        """Return ``data`` or raise :class:`StorageError` carrying ``error``."""

        if not self.success:
            raise StorageError(self.error or "Unknown error")
        return self.data  # type: ignore[return-value]


__all__ = ["StorageError", "StorageResult"]
