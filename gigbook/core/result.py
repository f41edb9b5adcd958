"""
Result type for operations that must never raise to their caller.

The remote cache client reports every outcome as a value so the cache
adapter can decide, per call, whether to fall back to the local store.

Example:
    result = await client.get("artist:getAll")
    if result.is_failure():
        value = local_store.get("artist:getAll")
    else:
        value = result.unwrap()
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True, slots=True)
class Success(Generic[T]):
    """Represents a successful operation result."""

    value: T

    def is_success(self) -> bool:
        return True

    def is_failure(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, _default: T) -> T:
        return self.value

    def __repr__(self) -> str:
        return f"Success({self.value!r})"


@dataclass(frozen=True, slots=True)
class Failure(Generic[E]):
    """Represents a failed operation result."""

    error: E

    def is_success(self) -> bool:
        return False

    def is_failure(self) -> bool:
        return True

    def unwrap(self):
        """Raise the carried error."""
        if isinstance(self.error, Exception):
            raise self.error
        raise RuntimeError(f"Operation failed: {self.error}")

    def unwrap_or(self, default: T) -> T:
        return default

    def __repr__(self) -> str:
        return f"Failure({self.error!r})"


Result = Union[Success[T], Failure[E]]


def success(value: T) -> Success[T]:
    return Success(value)


def failure(error: E) -> Failure[E]:
    return Failure(error)


@dataclass(frozen=True, slots=True)
class CacheError:
    """Remote cache operation error."""

    operation: str
    message: str
    original_exception: Exception | None = None

    def __str__(self) -> str:
        return f"Cache error during {self.operation}: {self.message}"


__all__ = ["CacheError", "Failure", "Result", "Success", "failure", "success"]
