"""Capacity ledger for the bucketed campaign (one bucket per campaign day)."""

import logging
import threading
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Sequence

logger = logging.getLogger(__name__)

DEFAULT_BUCKET_COUNT = 30
DEFAULT_CAPACITY = Decimal("300")


class LedgerPreconditionError(LookupError):
    """A bucket index outside the ledger was referenced (caller bug)."""


@dataclass(frozen=True)
class Bucket:
    """One day of the campaign."""

    index: int
    capacity: Decimal
    accumulated: Decimal

    @property
    def remaining(self) -> Decimal:
        """Headroom left before the bucket is full (never negative)."""
        return max(Decimal(0), self.capacity - self.accumulated)

    @property
    def is_funded(self) -> bool:
        return self.accumulated >= self.capacity


@dataclass(frozen=True)
class LedgerSnapshot:
    """Immutable view of the ledger handed to the allocator."""

    capacity: Decimal
    accumulated: tuple[Decimal, ...]

    @property
    def bucket_count(self) -> int:
        return len(self.accumulated)

    def bucket(self, index: int) -> Bucket:
        """Get one bucket.

        Raises:
            LedgerPreconditionError: If index is outside 0..N-1
        """
        if not 0 <= index < len(self.accumulated):
            raise LedgerPreconditionError(
                f"Bucket {index} not in ledger of {len(self.accumulated)} buckets"
            )
        return Bucket(index, self.capacity, self.accumulated[index])

    def remaining(self, index: int) -> Decimal:
        return self.bucket(index).remaining

    def buckets(self) -> list[Bucket]:
        return [Bucket(i, self.capacity, value) for i, value in enumerate(self.accumulated)]


class CapacityLedger:
    """Per-bucket accumulated totals with a shared capacity.

    Writers replace the accumulated tuple wholesale under a lock, so a reader
    holding a snapshot never sees a partially applied allocation.
    """

    def __init__(
        self,
        bucket_count: int = DEFAULT_BUCKET_COUNT,
        capacity: Decimal = DEFAULT_CAPACITY,
    ):
        """Initialize an empty ledger.

        Args:
            bucket_count: Number of buckets N (fixed for the campaign)
            capacity: Shared per-bucket capacity (daily target)
        """
        if bucket_count <= 0:
            raise ValueError("bucket_count must be positive")
        self._lock = threading.Lock()
        self._capacity = Decimal(str(capacity))
        self._accumulated: tuple[Decimal, ...] = tuple(Decimal(0) for _ in range(bucket_count))

    @property
    def bucket_count(self) -> int:
        return len(self._accumulated)

    @property
    def capacity(self) -> Decimal:
        return self._capacity

    @property
    def accumulated(self) -> tuple[Decimal, ...]:
        return self._accumulated

    def snapshot(self) -> LedgerSnapshot:
        """Return an immutable copy for the allocator."""
        with self._lock:
            return LedgerSnapshot(self._capacity, self._accumulated)

    def apply(self, allocation: Iterable[tuple[int, Decimal]]) -> LedgerSnapshot:
        """Add every (bucket_index, amount) of an allocation.

        Args:
            allocation: Pairs produced by the allocator

        Returns:
            Snapshot after the allocation was applied

        Raises:
            LedgerPreconditionError: If a bucket index is outside the ledger
        """
        with self._lock:
            updated = list(self._accumulated)
            for index, amount in allocation:
                if not 0 <= index < len(updated):
                    raise LedgerPreconditionError(
                        f"Bucket {index} not in ledger of {len(updated)} buckets"
                    )
                updated[index] += Decimal(str(amount))
            self._accumulated = tuple(updated)
            return LedgerSnapshot(self._capacity, self._accumulated)

    def replace(self, accumulated: Sequence[Decimal]) -> None:
        """Overwrite all totals with an already-finalized remote value."""
        if len(accumulated) != len(self._accumulated):
            raise LedgerPreconditionError(
                f"Expected {len(self._accumulated)} totals, got {len(accumulated)}"
            )
        with self._lock:
            self._accumulated = tuple(Decimal(str(value)) for value in accumulated)

    def set_capacity(self, capacity: Decimal) -> None:
        """Change the shared capacity; accumulated totals are kept as-is."""
        with self._lock:
            self._capacity = Decimal(str(capacity))

    def reset(self) -> None:
        """Administrative reset: every bucket back to zero."""
        with self._lock:
            self._accumulated = tuple(Decimal(0) for _ in self._accumulated)
        logger.info("Capacity ledger reset (%d buckets)", len(self._accumulated))
