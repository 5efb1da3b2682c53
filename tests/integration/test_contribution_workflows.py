"""Integration tests for contribution, reset and reporting workflows."""

import json
import threading
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from kiosk.services.kiosk_service import ContributionValidationError, KioskService
from kiosk.services.progress_service import replay_accumulated
from kiosk.services.state import InvalidStateUpdate, merge_by_field
from kiosk.services.state_store import InMemoryStateStore
from kiosk.services.sync_service import StateSynchronizer


@pytest.fixture
def kiosk(memory_store, make_instance):
    return make_instance(memory_store)


@pytest.fixture
def admin(memory_store, make_instance):
    return make_instance(memory_store)


class FlakyStore(InMemoryStateStore):
    """Store whose next write of one key fails."""

    def __init__(self, failing_key):
        super().__init__()
        self.failing_key = failing_key

    def put(self, key, value):
        if key == self.failing_key:
            self.failing_key = None
            return False
        return super().put(key, value)


class TestRamadanContributions:
    """Contributions split across campaign days."""

    def test_preferred_days_filled_and_shared(self, kiosk, admin):
        record = kiosk.confirm_contribution("ramadan-iftaar", 900, days=[0, 1, 2])

        assert record.allocation.as_dict() == {0: 300, 1: 300, 2: 300}
        assert record.metadata["days"] == [1, 2, 3]
        assert record.category_label == "Ramadan Iftaar"
        assert admin.ledger.accumulated[:3] == (300, 300, 300)
        assert admin.progress().funded_buckets == 3
        assert [r.id for r in admin.log.records] == [record.id]

    def test_spillover_after_partial_day(self, kiosk, admin):
        admin.sync.publish({"ramadanProgress": [0] * 5 + [280] + [0] * 24})

        record = kiosk.confirm_contribution("ramadan-iftaar", "50", days=[5])

        assert record.allocation.items == ((5, Decimal(20)), (0, Decimal(30)))
        assert kiosk.ledger.accumulated[5] == 300
        assert kiosk.ledger.accumulated[0] == 30

    def test_preview_does_not_record(self, kiosk, memory_store):
        allocation = kiosk.preview_allocation(100, [0, 1, 2])

        assert allocation.total == Decimal("100")
        assert len(kiosk.log) == 0
        assert memory_store.get("ramadanProgress") is None

    def test_daily_target_change_reaches_ledger(self, kiosk, admin):
        admin.update_config({"ramadanDailyTarget": 100})

        record = kiosk.confirm_contribution("ramadan-iftaar", 150, days=[3])

        assert record.allocation.items == ((3, Decimal(100)), (0, Decimal(50)))

    def test_over_capacity_overflows_single_day(self, kiosk, admin):
        admin.sync.publish({"ramadanProgress": [300] * 30})

        record = kiosk.confirm_contribution("ramadan-iftaar", 25, days=[])

        assert record.allocation.items == ((0, Decimal(25)),)
        assert kiosk.progress().excess == Decimal("25")


class TestOtherCategories:
    def test_special_appeal_progress_capped(self, kiosk, admin):
        admin.update_config({"specialAppealTarget": 150, "specialAppealName": "Roof"})

        first = kiosk.confirm_contribution("special-appeals", 100)
        kiosk.confirm_contribution("special-appeals", 100)

        assert first.metadata["appeal_name"] == "Roof"
        assert admin.state.special_appeal_progress == Decimal("150")
        assert admin.progress().appeal_percent == 100
        assert sum(r.amount for r in admin.log.query("special-appeals")) == Decimal("200")

    def test_zakat_fitr_priced_per_person(self, kiosk, admin):
        admin.update_config({"zakatFitrAmount": 7})

        record = kiosk.confirm_contribution("zakat-fitr", people=3)

        assert record.amount == Decimal("21")
        assert dict(record.metadata) == {"people": 3, "per_person": 7}

    def test_plain_category_has_no_allocation(self, kiosk):
        record = kiosk.confirm_contribution("zakat", Decimal("250"))

        assert record.allocation is None
        assert record.amount == Decimal("250")
        assert sum(kiosk.ledger.accumulated) == 0


class TestValidation:
    """Rejected input never touches the ledger, log or store."""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"category_id": "unknown", "amount": 10},
            {"category_id": "zakat", "amount": 0},
            {"category_id": "zakat", "amount": -5},
            {"category_id": "zakat", "amount": "ten"},
            {"category_id": "zakat", "amount": None},
            {"category_id": "ramadan-iftaar", "amount": 10, "days": [30]},
            {"category_id": "ramadan-iftaar", "amount": 10, "days": [-1]},
            {"category_id": "zakat-fitr", "people": 0},
            {"category_id": "zakat-fitr", "people": True},
        ],
    )
    def test_rejected(self, kiosk, memory_store, kwargs):
        with pytest.raises(ContributionValidationError):
            kiosk.confirm_contribution(**kwargs)

        assert len(kiosk.log) == 0
        assert sum(kiosk.ledger.accumulated) == 0
        assert memory_store.get("kioskTransactions") is None

    @pytest.mark.parametrize(
        "amount,expected",
        [("12.75", 12), ("25abc", 25), (Decimal("99.99"), 99), (40.5, 40)],
    )
    def test_keypad_amount_uses_leading_digits(self, kiosk, amount, expected):
        record = kiosk.confirm_contribution("zakat", amount)

        assert record.amount == Decimal(expected)
        assert kiosk.preview_allocation(amount, [0]).total == Decimal(expected)

    def test_hidden_category_rejected(self, kiosk, admin):
        admin.update_config({"visibleCategories": ["zakat"]})

        with pytest.raises(ContributionValidationError, match="not offered"):
            kiosk.confirm_contribution("daily-sadaqah", 10)

    def test_derived_fields_not_editable(self, admin):
        with pytest.raises(InvalidStateUpdate):
            admin.update_config({"kioskTransactions": []})
        with pytest.raises(InvalidStateUpdate):
            admin.update_config({"ramadanProgress": [0] * 30})


class TestResets:
    @pytest.fixture
    def busy(self, kiosk):
        kiosk.confirm_contribution("ramadan-iftaar", 900, days=[0, 1, 2])
        kiosk.confirm_contribution("zakat", 100)
        kiosk.confirm_contribution("zakat", 50)
        kiosk.confirm_contribution("special-appeals", 500)
        return kiosk

    def test_reset_all(self, busy, admin):
        admin.reset_all()

        progress = busy.progress()
        assert progress.total_raised == 0
        assert progress.funded_buckets == 0
        assert progress.appeal_raised == 0
        assert len(busy.log) == 0
        assert list(busy.report()) == []

    def test_reset_ledger_keeps_transactions(self, busy, admin):
        admin.reset_ledger()

        assert busy.progress().total_raised == 0
        assert len(busy.log) == 4

    def test_reset_category(self, busy, admin):
        removed = admin.reset_category("zakat")

        assert removed == 2
        assert [r.category_id for r in busy.log.records] == ["ramadan-iftaar", "special-appeals"]
        assert busy.progress().funded_buckets == 3

    def test_reset_bucketed_category_clears_ledger(self, busy, admin):
        admin.reset_category("ramadan-iftaar")

        assert busy.progress().funded_buckets == 0
        assert len(busy.log) == 3

    def test_reset_appeal_category_clears_progress(self, busy, admin):
        admin.reset_category("special-appeals")

        assert busy.state.special_appeal_progress == 0

    def test_reset_unknown_category(self, admin):
        with pytest.raises(ContributionValidationError):
            admin.reset_category("bogus")


class TestReports:
    def test_filters_and_orders(self, kiosk, admin):
        first = kiosk.confirm_contribution("zakat", 100)
        admin.confirm_contribution("daily-sadaqah", 10)
        third = kiosk.confirm_contribution("zakat", 40)

        query = admin.report("zakat")

        assert [r.id for r in query] == [third.id, first.id]
        assert query.total() == Decimal("140")

    def test_date_range(self, kiosk):
        kiosk.confirm_contribution("zakat", 100)
        today = datetime.now(timezone.utc).date()

        assert len(list(kiosk.report(start=today, end=today))) == 1
        assert list(kiosk.report(end=today - timedelta(days=1))) == []

    def test_records_from_every_instance_are_kept(self, kiosk, admin, memory_store):
        kiosk.confirm_contribution("zakat", 10)
        admin.confirm_contribution("zakat", 20)

        stored = json.loads(memory_store.get("kioskTransactions"))

        assert [item["amount"] for item in stored] == [10, 20]


class TestConcurrentInstances:
    """Instances on a shared database that have not yet polled each other."""

    def test_stale_snapshot_can_overshoot(self, sql_store, make_instance):
        first = make_instance(sql_store)
        second = make_instance(sql_store)
        first.sync.publish({"ramadanProgress": [280] + [0] * 29})
        second.sync.poll()

        a = first.confirm_contribution("ramadan-iftaar", 20, days=[0])
        # second has not seen first's contribution yet
        b = second.confirm_contribution("ramadan-iftaar", 20, days=[0])

        assert a.allocation.items == ((0, Decimal(20)),)
        assert b.allocation.items == ((0, Decimal(20)),)

        first.sync.poll()

        # Both records survive because the log was refreshed before writing
        assert [r.id for r in first.log.records] == [a.id, b.id]
        assert Decimal(280) + replay_accumulated(first.log.records, 30)[0] == Decimal(320)
        # Ledger totals converge on the last write
        assert first.ledger.accumulated[0] == Decimal(300)
        assert second.ledger.accumulated[0] == Decimal(300)


class TestUnsavedRecords:
    """A record whose transactions write failed is kept until a later write lands."""

    def test_failed_write_then_refresh_keeps_record(self, make_instance):
        store = FlakyStore(None)
        kiosk = make_instance(store)
        kiosk.confirm_contribution("zakat", 10)
        store.failing_key = "kioskTransactions"

        kiosk.confirm_contribution("zakat", 20)

        assert kiosk.sync.unsaved_keys == frozenset({"kioskTransactions"})
        # The report re-reads the store, which does not have the 20 yet
        assert sorted(r.amount for r in kiosk.report()) == [10, 20]

        kiosk.confirm_contribution("zakat", 30)

        assert [r.amount for r in kiosk.log.records] == [10, 20, 30]
        stored = json.loads(store.get("kioskTransactions"))
        assert [item["amount"] for item in stored] == [10, 20, 30]
        assert kiosk.sync.unsaved_keys == frozenset()

    def test_reset_drops_unsaved_record(self, make_instance):
        store = FlakyStore("kioskTransactions")
        kiosk = make_instance(store)
        kiosk.confirm_contribution("zakat", 20)

        kiosk.reset_category("zakat")
        kiosk.confirm_contribution("daily-sadaqah", 5)

        stored = json.loads(store.get("kioskTransactions"))
        assert [item["categoryId"] for item in stored] == ["daily-sadaqah"]


class TestConcurrentEdits:
    """Request handlers on one instance may run on different threads."""

    def test_parallel_config_edits_both_apply(self, memory_store):
        def slow_merge(state, changes):
            time.sleep(0.05)
            return merge_by_field(state, changes)

        sync = StateSynchronizer(memory_store, merge=slow_merge)
        admin = KioskService(sync)
        sync.start()
        edits = [{"zakatFitrAmount": 9}, {"specialAppealTarget": 20000}]
        threads = [threading.Thread(target=admin.update_config, args=(edit,)) for edit in edits]

        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert admin.state.zakat_fitr_amount == Decimal("9")
        assert admin.state.special_appeal_target == Decimal("20000")
        assert json.loads(memory_store.get("zakatFitrAmount")) == 9
        sync.close()
