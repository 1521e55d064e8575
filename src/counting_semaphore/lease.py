"""Lease receipts handed out by the semaphores."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any


def new_lease_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Lease:
    """A receipt for permits reserved from a semaphore.

    A lease is only valid against the semaphore instance that issued it and
    must be passed back to that instance's ``release()`` exactly once.

    Ownership is checked by identity (``lease.semaphore is sem``), so two
    semaphores sharing a Redis namespace still reject each other's leases.
    """

    semaphore: Any = field(repr=False, compare=False)
    id: str
    permits: int

    def belongs_to(self, semaphore: Any) -> bool:
        return self.semaphore is semaphore

    def __str__(self) -> str:
        return f"Lease({self.permits} permits, id: {self.id})"
