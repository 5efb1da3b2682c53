"""Unit tests for the capacity ledger."""

from decimal import Decimal

import pytest

from kiosk.services.allocation_service import Allocation
from kiosk.services.ledger import Bucket, CapacityLedger, LedgerPreconditionError


class TestCapacityLedger:
    """Test ledger mutation and snapshots."""

    @pytest.fixture
    def ledger(self):
        return CapacityLedger(bucket_count=5, capacity=Decimal("100"))

    def test_starts_empty(self, ledger):
        assert ledger.accumulated == (Decimal(0),) * 5
        assert ledger.capacity == Decimal("100")

    def test_apply_adds_amounts(self, ledger):
        ledger.apply(Allocation(((1, Decimal("40")), (3, Decimal("60")))))
        ledger.apply([(1, Decimal("10"))])

        assert ledger.accumulated == (0, 50, 0, 60, 0)

    def test_snapshot_is_not_affected_by_later_apply(self, ledger):
        snapshot = ledger.snapshot()

        ledger.apply([(0, Decimal("25"))])

        assert snapshot.accumulated[0] == 0
        assert ledger.snapshot().accumulated[0] == 25

    def test_apply_with_unknown_bucket_changes_nothing(self, ledger):
        with pytest.raises(LedgerPreconditionError):
            ledger.apply([(0, Decimal("10")), (9, Decimal("10"))])

        assert ledger.accumulated == (Decimal(0),) * 5

    def test_reset(self, ledger):
        ledger.apply([(2, Decimal("99"))])

        ledger.reset()

        assert sum(ledger.accumulated) == 0

    def test_capacity_change_keeps_totals(self, ledger):
        ledger.apply([(0, Decimal("80"))])

        ledger.set_capacity(Decimal("50"))

        assert ledger.accumulated[0] == 80
        assert ledger.snapshot().bucket(0).remaining == 0
        assert ledger.snapshot().bucket(0).is_funded

    def test_replace_requires_same_length(self, ledger):
        with pytest.raises(LedgerPreconditionError):
            ledger.replace([Decimal(1)] * 4)

    def test_replace(self, ledger):
        ledger.replace([1, 2, 3, 4, 5])

        assert ledger.accumulated == (1, 2, 3, 4, 5)

    def test_snapshot_bucket_out_of_range(self, ledger):
        with pytest.raises(LedgerPreconditionError):
            ledger.snapshot().bucket(5)

    def test_invalid_bucket_count(self):
        with pytest.raises(ValueError):
            CapacityLedger(bucket_count=0)


class TestBucket:
    def test_remaining_floors_at_zero(self):
        bucket = Bucket(index=0, capacity=Decimal("300"), accumulated=Decimal("310"))

        assert bucket.remaining == 0
        assert bucket.is_funded
