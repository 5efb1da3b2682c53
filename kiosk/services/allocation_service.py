"""Allocation service for distributing one donation across campaign days.

Three phases, applied in order until the amount is used up:
- PREFERRED: even distribution with saturation over the days the donor picked
- SPILLOVER: greedy fill of the other days in ascending order
- FALLBACK: whatever is left lands on a single day, overflowing its target
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal
from typing import Dict, Iterable, Iterator, List, Tuple

from kiosk.services.ledger import LedgerSnapshot

logger = logging.getLogger(__name__)

# Smallest money unit an even share is rounded up to
MONEY_QUANTUM = Decimal("0.01")


@dataclass(frozen=True)
class Allocation:
    """Ordered (bucket_index, amount) pairs for one contribution.

    Indices are unique and amounts positive; the order is the order in which
    buckets first received money.
    """

    items: Tuple[Tuple[int, Decimal], ...] = ()

    def __iter__(self) -> Iterator[Tuple[int, Decimal]]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __bool__(self) -> bool:
        return bool(self.items)

    @property
    def total(self) -> Decimal:
        return sum((amount for _, amount in self.items), Decimal(0))

    @property
    def bucket_indices(self) -> List[int]:
        return [index for index, _ in self.items]

    def as_dict(self) -> Dict[int, Decimal]:
        return dict(self.items)


class _AllocationBuilder:
    """Accumulates amounts per bucket, preserving first-touch order."""

    def __init__(self):
        self._amounts: Dict[int, Decimal] = {}

    def add(self, index: int, amount: Decimal) -> None:
        if amount <= 0:
            return
        self._amounts[index] = self._amounts.get(index, Decimal(0)) + amount

    def build(self) -> Allocation:
        return Allocation(tuple(self._amounts.items()))


class AllocationService:
    """Capacity-aware, fairness-preserving allocation engine.

    Never mutates the ledger: callers apply the returned Allocation together
    with logging the contribution record.
    """

    def distribute_evenly(
        self,
        capacities: Iterable[Tuple[int, Decimal]],
        total: Decimal,
    ) -> Tuple[List[Tuple[int, Decimal]], Decimal]:
        """Spread an amount as evenly as possible without over-filling.

        Algorithm:
        1. Pool = buckets with capacity left
        2. share = ceil(remaining / len(pool)) at MONEY_QUANTUM
        3. Each pooled bucket takes min(capacity left, share, remaining)
        4. Saturated buckets leave the pool; repeat until nothing remains
           or the pool is empty

        Args:
            capacities: (bucket_index, capacity left) pairs in visiting order
            total: Amount to spread

        Returns:
            Tuple of (applied pairs, amount that could not be placed)
        """
        remaining = Decimal(str(total))
        pool = [[index, capacity] for index, capacity in capacities if capacity > 0]
        applied: List[Tuple[int, Decimal]] = []

        while remaining > 0 and pool:
            share = (remaining / len(pool)).quantize(MONEY_QUANTUM, rounding=ROUND_CEILING)
            next_pool = []
            for entry in pool:
                if remaining <= 0:
                    break
                index, capacity = entry
                amount = min(capacity, share, remaining)
                applied.append((index, amount))
                remaining -= amount
                entry[1] = capacity - amount
                if entry[1] > 0:
                    next_pool.append(entry)
            pool = next_pool

        return applied, remaining

    def allocate(
        self,
        amount: Decimal,
        preferred_buckets: Iterable[int],
        snapshot: LedgerSnapshot,
    ) -> Allocation:
        """Split a contribution across buckets.

        Ensures: allocation.total == amount (zero money loss/creation)

        Args:
            amount: Contribution amount (must be positive)
            preferred_buckets: Bucket indices picked by the donor (may be empty)
            snapshot: Ledger state to allocate against

        Returns:
            Allocation; empty if amount is not positive

        Raises:
            LedgerPreconditionError: If a preferred index is outside the ledger
        """
        amount = Decimal(str(amount))
        if amount <= 0:
            return Allocation()

        preferred = sorted(set(preferred_buckets))
        builder = _AllocationBuilder()

        # Phase 1: preferred buckets (bucket() raises on unknown indices)
        preferred_caps = [(index, snapshot.bucket(index).remaining) for index in preferred]
        preferred_capacity = sum((capacity for _, capacity in preferred_caps), Decimal(0))

        remaining = amount
        if preferred_capacity > 0:
            to_preferred = min(remaining, preferred_capacity)
            applied, unplaced = self.distribute_evenly(preferred_caps, to_preferred)
            for index, applied_amount in applied:
                builder.add(index, applied_amount)
            remaining -= to_preferred - unplaced

        # Phase 2: spill over to the other buckets in index order
        preferred_set = set(preferred)
        others = [index for index in range(snapshot.bucket_count) if index not in preferred_set]
        for index in others:
            if remaining <= 0:
                break
            capacity = snapshot.remaining(index)
            if capacity <= 0:
                continue
            applied_amount = min(remaining, capacity)
            builder.add(index, applied_amount)
            remaining -= applied_amount

        # Phase 3: everything is full, force the rest onto one bucket
        if remaining > 0:
            fallback = others[0] if others else preferred[0]
            logger.warning(
                "All buckets saturated; %s overflows onto bucket %d", remaining, fallback
            )
            builder.add(fallback, remaining)

        return builder.build()


def allocate(
    amount: Decimal, preferred_buckets: Iterable[int], snapshot: LedgerSnapshot
) -> Allocation:
    """Module-level shortcut for AllocationService().allocate."""
    return AllocationService().allocate(amount, preferred_buckets, snapshot)


__all__ = ["Allocation", "AllocationService", "MONEY_QUANTUM", "allocate"]
