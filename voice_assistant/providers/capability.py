"""Explicit supported/unsupported wrapper for platform services."""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar


T = TypeVar("T")


@dataclass(frozen=True)
class Capability(Generic[T]):
    """Result of looking up a platform service that may not exist on this host."""

    service: Optional[T] = None
    reason: Optional[str] = None

    @property
    def supported(self) -> bool:
        return self.service is not None

    @classmethod
    def available(cls, service: T) -> "Capability[T]":
        return cls(service=service)

    @classmethod
    def unsupported(cls, reason: str) -> "Capability[T]":
        return cls(reason=reason)
