"""Kiosk service for confirming contributions and administering the campaign.

Provides methods for:
- Previewing how an amount would be split across campaign days
- Confirming a contribution (allocate, apply, log and publish in one step)
- Tracking single-target appeal progress
- Administrative resets and configuration edits
- Reporting queries over the transaction log
"""

import logging
import threading
from decimal import Decimal
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional

from kiosk.services.allocation_service import Allocation, AllocationService
from kiosk.services.catalog import (
    BUCKETED_CATEGORY,
    PER_PERSON_CATEGORY,
    SINGLE_TARGET_CATEGORY,
    get_category,
)
from kiosk.services.ledger import CapacityLedger
from kiosk.services.parsers import parse_amount, to_json_number
from kiosk.services.progress_service import CampaignProgress, summarize
from kiosk.services.state import CampaignState, InvalidStateUpdate
from kiosk.services.sync_service import StateSynchronizer
from kiosk.services.transaction_log import ContributionRecord, DateBound, RecordQuery, TransactionLog

logger = logging.getLogger(__name__)

TRANSACTIONS_KEY = "kioskTransactions"
PROGRESS_KEY = "ramadanProgress"
APPEAL_PROGRESS_KEY = "specialAppealProgress"

# Fields written only by the contribution and reset flows
_DERIVED_KEYS = frozenset({TRANSACTIONS_KEY, PROGRESS_KEY, APPEAL_PROGRESS_KEY})


class ContributionValidationError(ValueError):
    """Input rejected before any state was touched."""


class KioskService:
    """Originating-instance workflow on top of the synchronizer."""

    def __init__(
        self,
        synchronizer: StateSynchronizer,
        allocator: Optional[AllocationService] = None,
    ):
        """Initialize kiosk service.

        Args:
            synchronizer: State synchronizer of this instance
            allocator: Allocation engine (default: AllocationService())
        """
        self.sync = synchronizer
        self.allocator = allocator or AllocationService()
        state = synchronizer.state
        self.ledger = CapacityLedger(state.bucket_count, state.daily_target)
        self.log = TransactionLog()
        # Records logged here whose transactions write has not reached the store
        self._unsaved_records: Dict[str, ContributionRecord] = {}
        # Allocation read and ledger apply happen as one step
        self._lock = threading.RLock()
        synchronizer.add_listener(self._on_state_changed)
        self._on_state_changed(
            state, frozenset({"daily_target", "ramadan_progress", "transactions"})
        )

    @property
    def state(self) -> CampaignState:
        return self.sync.state

    def _on_state_changed(self, state: CampaignState, changed: FrozenSet[str]) -> None:
        if "daily_target" in changed:
            self.ledger.set_capacity(state.daily_target)
        if "ramadan_progress" in changed:
            self.ledger.replace(state.ramadan_progress)
        if "transactions" in changed:
            records = list(state.transactions)
            known = {record.id for record in records}
            kept = [r for r in self._unsaved_records.values() if r.id not in known]
            if kept:
                logger.warning("Keeping %d unsaved record(s) missing from the store", len(kept))
            self.log.replace(records + kept)

    def _validate_amount(self, amount: Any) -> Decimal:
        # Keypad rule: whole amounts only, leading digits are used
        value = parse_amount(amount)
        if value is None:
            raise ContributionValidationError(f"Amount must be a positive number, got {amount!r}")
        return value

    def _validate_days(self, days: Iterable[int]) -> list:
        selected = sorted(set(days))
        bucket_count = self.ledger.bucket_count
        invalid = [day for day in selected if not 0 <= day < bucket_count]
        if invalid:
            raise ContributionValidationError(
                f"Days {invalid} are outside the campaign (0..{bucket_count - 1})"
            )
        return selected

    def preview_allocation(self, amount: Any, days: Iterable[int] = ()) -> Allocation:
        """Show how an amount would be split without changing anything.

        Raises:
            ContributionValidationError: If amount or days are invalid
        """
        value = self._validate_amount(amount)
        selected = self._validate_days(days)
        return self.allocator.allocate(value, selected, self.ledger.snapshot())

    def confirm_contribution(
        self,
        category_id: str,
        amount: Any = None,
        days: Iterable[int] = (),
        people: Optional[int] = None,
    ) -> ContributionRecord:
        """Record a contribution after payment success.

        Args:
            category_id: Giving category
            amount: Contribution amount (ignored for per-person giving)
            days: Preferred campaign days for the bucketed category
            people: Number of people for per-person giving

        Returns:
            Created ContributionRecord

        Raises:
            ContributionValidationError: If input is invalid (nothing mutated)
        """
        category = get_category(category_id)
        if category is None:
            raise ContributionValidationError(f"Unknown category: {category_id}")
        if category_id not in self.state.visible_categories:
            raise ContributionValidationError(f"Category is not offered: {category_id}")

        metadata: Dict[str, Any] = {}
        if category_id == PER_PERSON_CATEGORY:
            if not isinstance(people, int) or isinstance(people, bool) or people <= 0:
                raise ContributionValidationError("Number of people must be a positive integer")
            per_person = self.state.zakat_fitr_amount
            value = per_person * people
            metadata["people"] = people
            metadata["per_person"] = to_json_number(per_person)
        else:
            value = self._validate_amount(amount)
        selected = self._validate_days(days) if category_id == BUCKETED_CATEGORY else []

        with self._lock:
            changes: Dict[str, Any] = {}
            allocation = None

            if category_id == BUCKETED_CATEGORY:
                allocation = self.allocator.allocate(value, selected, self.ledger.snapshot())
                after = self.ledger.apply(allocation)
                changes[PROGRESS_KEY] = after.accumulated
                metadata["days"] = [day + 1 for day in selected]
            elif category_id == SINGLE_TARGET_CATEGORY:
                state = self.state
                # Appeal progress stops at the target
                changes[APPEAL_PROGRESS_KEY] = min(
                    state.special_appeal_target, state.special_appeal_progress + value
                )
                metadata["appeal_name"] = state.special_appeal_name

            # Pick up records other instances logged since we last looked
            self.sync.refresh(TRANSACTIONS_KEY)
            record = ContributionRecord.create(
                category_id=category_id,
                amount=value,
                category_label=category.label,
                allocation=allocation,
                metadata=metadata,
            )
            self.log.append(record)
            self._unsaved_records[record.id] = record
            changes[TRANSACTIONS_KEY] = self.log.records
            self._publish_log(changes)

        logger.info(
            "Contribution %s: %s to %s%s",
            record.id,
            value,
            category_id,
            f" split {list(allocation)}" if allocation else "",
        )
        return record

    def _publish_log(self, changes: Mapping[str, Any]) -> None:
        """Publish changes that include the transactions key."""
        self.sync.publish(changes)
        if TRANSACTIONS_KEY in self.sync.unsaved_keys:
            logger.warning(
                "Transaction log not saved; %d record(s) kept locally", len(self._unsaved_records)
            )
        else:
            self._unsaved_records.clear()

    def update_config(self, update: Mapping[str, Any]) -> CampaignState:
        """Publish an administrative configuration edit.

        Raises:
            InvalidStateUpdate: If a value is invalid or the key is not editable
        """
        blocked = sorted(set(update) & _DERIVED_KEYS)
        if blocked:
            raise InvalidStateUpdate({key: "not editable through configuration" for key in blocked})
        return self.sync.publish(update)

    def reset_ledger(self) -> None:
        """Zero every campaign day (transactions are kept)."""
        with self._lock:
            self.ledger.reset()
            self.sync.publish({PROGRESS_KEY: self.ledger.accumulated})

    def reset_all(self) -> None:
        """Clear all transactions, the campaign ledger and appeal progress."""
        with self._lock:
            self.log.purge()
            self._unsaved_records.clear()
            self.ledger.reset()
            self._publish_log(
                {
                    TRANSACTIONS_KEY: (),
                    PROGRESS_KEY: self.ledger.accumulated,
                    APPEAL_PROGRESS_KEY: 0,
                }
            )
        logger.warning("All transactions and progress reset")

    def reset_category(self, category_id: str) -> int:
        """Purge one category's transactions and its progress counter.

        Returns:
            Number of records removed

        Raises:
            ContributionValidationError: If the category is unknown
        """
        if get_category(category_id) is None:
            raise ContributionValidationError(f"Unknown category: {category_id}")
        with self._lock:
            self.sync.refresh(TRANSACTIONS_KEY)
            removed = self.log.purge(category_id)
            self._unsaved_records = {
                record_id: record
                for record_id, record in self._unsaved_records.items()
                if record.category_id != category_id
            }
            changes: Dict[str, Any] = {TRANSACTIONS_KEY: self.log.records}
            if category_id == BUCKETED_CATEGORY:
                self.ledger.reset()
                changes[PROGRESS_KEY] = self.ledger.accumulated
            elif category_id == SINGLE_TARGET_CATEGORY:
                changes[APPEAL_PROGRESS_KEY] = 0
            self._publish_log(changes)
        logger.warning("Reset category %s (%d transaction(s) removed)", category_id, removed)
        return removed

    def report(
        self,
        category_id: Optional[str] = None,
        start: DateBound = None,
        end: DateBound = None,
    ) -> RecordQuery:
        """Records for the report viewer, most recent first."""
        self.sync.refresh(TRANSACTIONS_KEY)
        return self.log.query(category_id, start, end)

    def progress(self) -> CampaignProgress:
        state = self.state
        return summarize(
            self.ledger.snapshot(),
            state.special_appeal_progress,
            state.special_appeal_target,
        )


__all__ = ["ContributionValidationError", "KioskService"]
