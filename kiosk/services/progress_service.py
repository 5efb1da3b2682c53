"""Campaign progress derived from the ledger and appeal counters.

Everything here is recomputed on demand; nothing is cached.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from kiosk.services.ledger import LedgerSnapshot


def funded_bucket_count(accumulated: Iterable[Decimal], capacity: Decimal) -> int:
    """Number of buckets whose total reached the capacity."""
    return sum(1 for value in accumulated if value >= capacity)


def total_raised(accumulated: Iterable[Decimal]) -> Decimal:
    return sum(accumulated, Decimal(0))


def replay_accumulated(records: Iterable, bucket_count: int) -> tuple[Decimal, ...]:
    """Rebuild per-bucket totals from the allocations stored on records.

    Allocations pointing outside the campaign are ignored.
    """
    totals = [Decimal(0)] * bucket_count
    for record in records:
        if record.allocation is None:
            continue
        for index, amount in record.allocation:
            if 0 <= index < bucket_count:
                totals[index] += amount
    return tuple(totals)


def percent_funded(raised: Decimal, target: Decimal) -> int:
    """round(100 * min(raised, target) / target), clamped to 0..100.

    A non-positive target counts as 0% funded.
    """
    raised = Decimal(str(raised))
    target = Decimal(str(target))
    if target <= 0:
        return 0
    ratio = Decimal(100) * min(raised, target) / target
    percent = int(ratio.quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return max(0, min(100, percent))


@dataclass(frozen=True)
class CampaignProgress:
    """Progress summary shown on the kiosk and admin console."""

    bucket_count: int
    funded_buckets: int
    total_raised: Decimal
    target_total: Decimal
    excess: Decimal
    appeal_raised: Decimal
    appeal_target: Decimal
    appeal_percent: int


def summarize(
    snapshot: LedgerSnapshot, appeal_raised: Decimal, appeal_target: Decimal
) -> CampaignProgress:
    """Build a progress summary for the bucketed campaign and the appeal."""
    raised = total_raised(snapshot.accumulated)
    target_total = snapshot.capacity * snapshot.bucket_count
    return CampaignProgress(
        bucket_count=snapshot.bucket_count,
        funded_buckets=funded_bucket_count(snapshot.accumulated, snapshot.capacity),
        total_raised=raised,
        target_total=target_total,
        excess=max(Decimal(0), raised - target_total),
        appeal_raised=appeal_raised,
        appeal_target=appeal_target,
        appeal_percent=percent_funded(appeal_raised, appeal_target),
    )
