"""Result values for calls that may degrade to a fallback."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar


T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """A value plus the error that forced a fallback, if any.

    ``or_else`` fills in a missing value but keeps the error, so callers can
    tell a real answer from a substituted one via ``degraded``.
    """

    value: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failed(cls, error: str) -> "Outcome[T]":
        return cls(error=error)

    @property
    def degraded(self) -> bool:
        return self.error is not None

    def or_else(self, fallback: Callable[[], T]) -> "Outcome[T]":
        if self.value is not None:
            return self
        return Outcome(value=fallback(), error=self.error or "missing value")

    def unwrap(self) -> T:
        if self.value is None:
            raise ValueError(f"Outcome has no value: {self.error}")
        return self.value

    def require(self, predicate: Callable[[T], bool], error: str) -> "Outcome[T]":
        """Turn a present value that fails ``predicate`` into a failure."""
        if self.value is not None and not predicate(self.value):
            return Outcome.failed(error)
        return self
