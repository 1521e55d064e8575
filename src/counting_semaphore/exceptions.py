"""Exceptions for counting-semaphore."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .lease import Lease


class SemaphoreError(Exception):
    """Base exception for semaphore errors."""

    pass


class LeaseTimeout(SemaphoreError):
    """Raised when a lease cannot be acquired within the allowed time.

    Carries the failed request so callers can decide whether to retry,
    escalate or give up.
    """

    def __init__(
        self,
        permit_count: int,
        timeout_seconds: float,
        semaphore: Any = None,
    ) -> None:
        self.permit_count = permit_count
        self.timeout_seconds = timeout_seconds
        self.semaphore = semaphore
        super().__init__(
            f"Failed to acquire {permit_count} permits "
            f"within {timeout_seconds} seconds"
        )

    @property
    def token_count(self) -> int:
        """Alias of ``permit_count``."""
        return self.permit_count


class ForeignLeaseError(SemaphoreError, ValueError):
    """Raised when a lease is released against a semaphore that did not issue it."""

    def __init__(self, lease: Lease, semaphore: Any) -> None:
        self.lease = lease
        self.semaphore = semaphore
        super().__init__(f"{lease} belongs to a different semaphore")


class LeaseReleasedError(SemaphoreError, ValueError):
    """Raised when a lease is released more than once."""

    def __init__(self, lease: Lease) -> None:
        self.lease = lease
        super().__init__(f"{lease} has already been released")
