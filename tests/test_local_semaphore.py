"""Unit tests for the in-process LocalSemaphore class."""

from __future__ import annotations

import threading
import time

import pytest

from counting_semaphore import (
    ForeignLeaseError,
    Lease,
    LeaseReleasedError,
    LeaseTimeout,
    LocalSemaphore,
)


class TestLocalSemaphoreBasic:
    """Construction and simple queries."""

    def test_create_semaphore(self) -> None:
        """Test that a new semaphore has all permits available."""
        sem = LocalSemaphore(5)
        assert sem.capacity == 5
        assert sem.available_permits() == 5
        assert sem.currently_leased() == 0

    def test_capacity_is_read_only(self) -> None:
        sem = LocalSemaphore(7)
        with pytest.raises(AttributeError):
            sem.capacity = 10  # type: ignore[misc]
        assert sem.capacity == 7

    @pytest.mark.parametrize("capacity", [0, -3])
    def test_non_positive_capacity_raises(self, capacity: int) -> None:
        with pytest.raises(ValueError, match="Capacity must be positive"):
            LocalSemaphore(capacity)

    def test_repr(self) -> None:
        sem = LocalSemaphore(3)
        assert "LocalSemaphore" in repr(sem)
        assert "3/3" in repr(sem)


class TestLocalSemaphoreAcquireRelease:
    """Tests for acquire and release operations."""

    def test_acquire_and_release(self) -> None:
        """Test the capacity-5 walkthrough."""
        sem = LocalSemaphore(5)

        first = sem.acquire(2)
        assert isinstance(first, Lease)
        assert first.permits == 2
        assert sem.available_permits() == 3

        second = sem.acquire(3)
        assert sem.available_permits() == 0

        start = time.monotonic()
        assert sem.try_acquire(1, timeout=0.2) is None
        assert time.monotonic() - start >= 0.19

        sem.release(first)
        assert sem.available_permits() == 2
        sem.release(second)
        assert sem.available_permits() == 5

    def test_available_plus_leased_equals_capacity(self) -> None:
        sem = LocalSemaphore(6)
        leases = []
        for permits in (1, 2, 3):
            leases.append(sem.acquire(permits))
            assert sem.available_permits() + sem.currently_leased() == 6
        for lease in leases:
            sem.release(lease)
            assert sem.available_permits() + sem.currently_leased() == 6
            assert sem.currently_leased() <= 6

    def test_leases_have_distinct_ids(self) -> None:
        sem = LocalSemaphore(2)
        assert sem.acquire().id != sem.acquire().id

    @pytest.mark.parametrize("permits", [0, -1])
    def test_acquire_below_one_raises(self, permits: int) -> None:
        sem = LocalSemaphore(2)
        with pytest.raises(ValueError, match="at least 1"):
            sem.acquire(permits)

    def test_acquire_above_capacity_raises(self) -> None:
        sem = LocalSemaphore(2)
        with pytest.raises(ValueError, match="capacity is only 2"):
            sem.acquire(3)

    def test_try_acquire_above_capacity_returns_none(self) -> None:
        sem = LocalSemaphore(2)
        assert sem.try_acquire(3) is None
        assert sem.try_acquire(3, timeout=0.1) is None

    def test_try_acquire_below_one_raises(self) -> None:
        sem = LocalSemaphore(2)
        with pytest.raises(ValueError):
            sem.try_acquire(0)

    def test_try_acquire_without_timeout_is_immediate(self) -> None:
        sem = LocalSemaphore(1)
        held = sem.acquire()

        start = time.monotonic()
        assert sem.try_acquire() is None
        assert time.monotonic() - start < 0.1

        sem.release(held)
        lease = sem.try_acquire()
        assert lease is not None
        assert sem.available_permits() == 0

    def test_release_increases_available_by_lease_size(self) -> None:
        sem = LocalSemaphore(10)
        lease = sem.acquire(4)
        before = sem.available_permits()
        sem.release(lease)
        assert sem.available_permits() == before + 4

    def test_double_release_raises(self) -> None:
        sem = LocalSemaphore(3)
        lease = sem.acquire(2)
        sem.release(lease)

        with pytest.raises(LeaseReleasedError):
            sem.release(lease)
        assert sem.available_permits() == 3

    def test_release_foreign_lease_raises(self) -> None:
        sem_a = LocalSemaphore(3)
        sem_b = LocalSemaphore(3)
        lease = sem_a.acquire(2)
        sem_b.acquire(1)

        with pytest.raises(ForeignLeaseError):
            sem_b.release(lease)

        assert sem_b.available_permits() == 2
        assert sem_a.available_permits() == 1

    def test_foreign_lease_error_is_value_error(self) -> None:
        sem_a = LocalSemaphore(1)
        sem_b = LocalSemaphore(1)
        with pytest.raises(ValueError, match="different semaphore"):
            sem_b.release(sem_a.acquire())


class TestLocalSemaphoreDrain:
    """Tests for drain_permits."""

    def test_drain_remaining_permits(self) -> None:
        sem = LocalSemaphore(5)
        sem.acquire(2)

        lease = sem.drain_permits()
        assert lease is not None
        assert lease.permits == 3
        assert sem.available_permits() == 0

    def test_drain_when_exhausted_returns_none(self) -> None:
        sem = LocalSemaphore(2)
        sem.acquire(2)
        assert sem.drain_permits() is None

    def test_drained_lease_can_be_released(self) -> None:
        sem = LocalSemaphore(4)
        lease = sem.drain_permits()
        assert lease is not None
        sem.release(lease)
        assert sem.available_permits() == 4


class TestLocalSemaphoreConcurrency:
    """Tests for threads competing for permits."""

    def test_acquire_blocks_until_release(self) -> None:
        sem = LocalSemaphore(1)
        held = sem.acquire()
        acquired = threading.Event()

        def waiter() -> None:
            lease = sem.acquire()
            acquired.set()
            sem.release(lease)

        thread = threading.Thread(target=waiter)
        thread.start()

        time.sleep(0.1)
        assert not acquired.is_set()

        sem.release(held)
        thread.join(timeout=5)
        assert acquired.is_set()
        assert sem.available_permits() == 1

    def test_try_acquire_wakes_on_release(self) -> None:
        sem = LocalSemaphore(3)
        held = sem.acquire(3)

        def releaser() -> None:
            time.sleep(0.1)
            sem.release(held)

        thread = threading.Thread(target=releaser)
        thread.start()

        lease = sem.try_acquire(2, timeout=5)
        thread.join()
        assert lease is not None
        assert lease.permits == 2

    def test_release_wakes_differently_sized_waiters(self) -> None:
        """Test that one release can satisfy waiters other than the first."""
        sem = LocalSemaphore(3)
        held = sem.acquire(3)
        results: list[int] = []
        lock = threading.Lock()

        def waiter(permits: int) -> None:
            lease = sem.try_acquire(permits, timeout=5)
            assert lease is not None
            with lock:
                results.append(permits)

        threads = [threading.Thread(target=waiter, args=(n,)) for n in (1, 2)]
        for thread in threads:
            thread.start()
        time.sleep(0.1)

        sem.release(held)
        for thread in threads:
            thread.join(timeout=5)

        assert sorted(results) == [1, 2]
        assert sem.available_permits() == 0

    def test_capacity_is_never_exceeded(self) -> None:
        sem = LocalSemaphore(3)
        in_use = 0
        peak = 0
        lock = threading.Lock()

        def worker(permits: int) -> None:
            nonlocal in_use, peak
            for _ in range(20):
                lease = sem.acquire(permits)
                with lock:
                    in_use += permits
                    peak = max(peak, in_use)
                time.sleep(0.001)
                with lock:
                    in_use -= permits
                sem.release(lease)

        threads = [threading.Thread(target=worker, args=(n,)) for n in (1, 2, 3, 1, 2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert peak <= 3
        assert sem.available_permits() == 3


class TestLocalSemaphoreWithLease:
    """Tests for the scoped with_lease helper."""

    def test_with_lease_yields_lease(self) -> None:
        sem = LocalSemaphore(2)
        with sem.with_lease(2) as lease:
            assert lease is not None
            assert lease.permits == 2
            assert sem.available_permits() == 0
            assert sem.currently_leased() == 2
        assert sem.available_permits() == 2

    def test_with_lease_default_is_one_permit(self) -> None:
        sem = LocalSemaphore(2)
        with sem.with_lease() as lease:
            assert lease is not None
            assert lease.permits == 1
            assert sem.currently_leased() == 1

    def test_with_lease_zero_permits(self) -> None:
        sem = LocalSemaphore(2)
        sem.acquire(2)
        with sem.with_lease(0) as lease:
            assert lease is None
            assert sem.available_permits() == 0
        assert sem.available_permits() == 0

    def test_with_lease_negative_raises(self) -> None:
        sem = LocalSemaphore(2)
        with pytest.raises(ValueError, match="non-negative"):
            with sem.with_lease(-1):
                pytest.fail("block must not run")

    def test_with_lease_above_capacity_raises(self) -> None:
        sem = LocalSemaphore(2)
        with pytest.raises(ValueError, match="capacity is only 2"):
            with sem.with_lease(3):
                pytest.fail("block must not run")

    def test_with_lease_releases_on_exception(self) -> None:
        sem = LocalSemaphore(1)
        with pytest.raises(RuntimeError):
            with sem.with_lease():
                assert sem.available_permits() == 0
                raise RuntimeError("test error")
        assert sem.available_permits() == 1

    def test_with_lease_timeout(self) -> None:
        sem = LocalSemaphore(1)
        sem.acquire()
        ran = False

        start = time.monotonic()
        with pytest.raises(LeaseTimeout) as exc_info:
            with sem.with_lease(1, timeout_seconds=0.2):
                ran = True
        elapsed = time.monotonic() - start

        assert not ran
        assert elapsed >= 0.19
        assert exc_info.value.permit_count == 1
        assert exc_info.value.token_count == 1
        assert exc_info.value.timeout_seconds == 0.2
        assert exc_info.value.semaphore is sem

    def test_with_lease_sequences_competing_blocks(self) -> None:
        sem = LocalSemaphore(1)
        order: list[str] = []

        def second() -> None:
            with sem.with_lease():
                order.append("second")

        with sem.with_lease():
            thread = threading.Thread(target=second)
            thread.start()
            time.sleep(0.1)
            order.append("first")

        thread.join(timeout=5)
        assert order == ["first", "second"]
