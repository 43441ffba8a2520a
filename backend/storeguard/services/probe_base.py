"""
StoreGuard Backend: Abstract Liveness Probe Interface
=======================================================

What:  Abstract base class describing how to check that the backing store
       is reachable.
Why:   The liveness cache must not care whether it talks to PostgreSQL via
       SQLAlchemy, a MySQL pool, or an in-memory fake in the test suite.
How:   Concrete probes implement acquire / ping / release. LivenessCache
       drives them and owns the timeout race and the release guarantee.
"""

from abc import ABC, abstractmethod
from typing import Any


class LivenessProbe(ABC):
    """
    Contract:
        - acquire() checks out a resource (typically a pooled connection)
        - ping(resource) issues a trivial liveness command on it
        - release(resource) hands it back; called on success AND failure
        - Any exception from acquire or ping means "store unreachable"
    """

    @abstractmethod
    async def acquire(self) -> Any:
        ...

    @abstractmethod
    async def ping(self, resource: Any) -> None:
        """Issue a no-op command (e.g. SELECT 1). Raise on failure."""
        ...

    @abstractmethod
    async def release(self, resource: Any) -> None:
        ...
