"""Append-only transaction log of completed contributions.

The log is the source of truth for reporting. Records are never mutated;
they leave the log only through an administrative purge.
"""

import logging
import secrets
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Union

from kiosk.services.allocation_service import Allocation
from kiosk.services.parsers import positive_number, to_json_number

logger = logging.getLogger(__name__)

DateBound = Union[date, datetime, None]


class _MonotonicClock:
    """UTC wall clock that never returns the same or an earlier instant twice."""

    def __init__(self):
        self._lock = threading.Lock()
        self._last: Optional[datetime] = None

    def now(self) -> datetime:
        with self._lock:
            current = datetime.now(timezone.utc)
            if self._last is not None and current <= self._last:
                current = self._last + timedelta(microseconds=1)
            self._last = current
            return current


_clock = _MonotonicClock()


def _new_record_id(timestamp: datetime) -> str:
    return f"{int(timestamp.timestamp() * 1000)}-{secrets.token_hex(3)}"


@dataclass(frozen=True)
class ContributionRecord:
    """One completed contribution.

    Attributes:
        id: Unique record id ("<epoch-ms>-<6 hex chars>")
        category_id: Giving category (e.g. "ramadan-iftaar")
        category_label: Human-readable category label at the time of payment
        amount: Positive contribution amount
        timestamp: UTC time of payment success
        allocation: Bucket split, only for the bucketed category
        metadata: Category-specific annotations (people, appeal name, ...)
    """

    id: str
    category_id: str
    amount: Decimal
    timestamp: datetime
    category_label: str = ""
    allocation: Optional[Allocation] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.amount <= 0:
            raise ValueError(f"Contribution amount must be positive, got {self.amount}")
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @classmethod
    def create(
        cls,
        category_id: str,
        amount: Decimal,
        category_label: str = "",
        allocation: Optional[Allocation] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> "ContributionRecord":
        """Create a record stamped with a fresh id and monotonic timestamp."""
        timestamp = _clock.now()
        return cls(
            id=_new_record_id(timestamp),
            category_id=category_id,
            amount=Decimal(str(amount)),
            timestamp=timestamp,
            category_label=category_label,
            allocation=allocation,
            metadata=metadata or {},
        )

    def to_dict(self) -> dict:
        """Serialize to the JSON shape stored under the transactions key."""
        return {
            "id": self.id,
            "categoryId": self.category_id,
            "categoryLabel": self.category_label,
            "amount": to_json_number(self.amount),
            "timestamp": self.timestamp.isoformat(),
            "allocation": (
                [[index, to_json_number(amount)] for index, amount in self.allocation]
                if self.allocation is not None
                else None
            ),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ContributionRecord":
        """Parse the stored JSON shape.

        Raises:
            ValueError: If required fields are missing or malformed
        """
        if not isinstance(data, dict):
            raise ValueError(f"record is not an object: {data!r}")
        try:
            record_id = data["id"]
            category_id = data["categoryId"]
            timestamp = datetime.fromisoformat(data["timestamp"])
        except (KeyError, TypeError) as e:
            raise ValueError(f"record missing field: {e}") from e
        if not isinstance(record_id, str) or not isinstance(category_id, str):
            raise ValueError("record id and categoryId must be strings")
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        allocation = None
        raw_allocation = data.get("allocation")
        if raw_allocation is not None:
            if not isinstance(raw_allocation, list):
                raise ValueError("allocation must be a list")
            allocation = Allocation(
                tuple((int(index), positive_number(amount)) for index, amount in raw_allocation)
            )

        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise ValueError("metadata must be an object")

        return cls(
            id=record_id,
            category_id=category_id,
            amount=positive_number(data.get("amount")),
            timestamp=timestamp,
            category_label=str(data.get("categoryLabel") or ""),
            allocation=allocation,
            metadata=metadata,
        )


def records_from_json(value: Any) -> tuple:
    """Validator for the transactions field; malformed records are dropped.

    Raises:
        ValueError: If value is not a list
    """
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"transactions must be a list, got {type(value).__name__}")
    records = []
    for item in value:
        if isinstance(item, ContributionRecord):
            records.append(item)
            continue
        try:
            records.append(ContributionRecord.from_dict(item))
        except (ValueError, TypeError) as e:
            logger.warning("Dropping malformed transaction record: %s", e)
    return tuple(records)


def _as_start(bound: DateBound) -> Optional[datetime]:
    if bound is None:
        return None
    if isinstance(bound, datetime):
        return bound if bound.tzinfo else bound.replace(tzinfo=timezone.utc)
    return datetime.combine(bound, time.min, tzinfo=timezone.utc)


def _as_end(bound: DateBound) -> Optional[datetime]:
    if bound is None:
        return None
    if isinstance(bound, datetime):
        return bound if bound.tzinfo else bound.replace(tzinfo=timezone.utc)
    return datetime.combine(bound, time.max, tzinfo=timezone.utc)


class RecordQuery:
    """Lazy, restartable view over the log, most recent record first.

    The view is pinned to the log contents at the moment the query was made;
    later appends and purges do not affect it.
    """

    def __init__(
        self,
        records: List[ContributionRecord],
        category_id: Optional[str] = None,
        start: DateBound = None,
        end: DateBound = None,
    ):
        self._records = records
        self._stop = len(records)
        self._category_id = category_id
        self._start = _as_start(start)
        self._end = _as_end(end)

    def _matches(self, record: ContributionRecord) -> bool:
        if self._category_id and record.category_id != self._category_id:
            return False
        if self._start and record.timestamp < self._start:
            return False
        if self._end and record.timestamp > self._end:
            return False
        return True

    def __iter__(self) -> Iterator[ContributionRecord]:
        for position in range(self._stop - 1, -1, -1):
            record = self._records[position]
            if self._matches(record):
                yield record

    def total(self) -> Decimal:
        """Sum of matching amounts (report footer)."""
        return sum((record.amount for record in self), Decimal(0))


class TransactionLog:
    """Insertion-ordered contribution records."""

    def __init__(self, records: Iterable[ContributionRecord] = ()):
        self._records: List[ContributionRecord] = list(records)

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> tuple:
        return tuple(self._records)

    def append(self, record: ContributionRecord) -> None:
        """Append a completed record; prior entries are never touched."""
        self._records.append(record)
        logger.debug("Logged contribution %s (%s, %s)", record.id, record.category_id, record.amount)

    def query(
        self,
        category_id: Optional[str] = None,
        start: DateBound = None,
        end: DateBound = None,
    ) -> RecordQuery:
        """Records matching a category and an inclusive date range.

        Args:
            category_id: Only this category (None or "" for all)
            start: First day (from 00:00) or exact instant
            end: Last day (through 23:59:59.999999) or exact instant

        Returns:
            Restartable iterable, most recent record first
        """
        return RecordQuery(self._records, category_id, start, end)

    def purge(self, category_id: Optional[str] = None) -> int:
        """Remove all records, or only those of one category. Irreversible.

        Returns:
            Number of records removed
        """
        before = len(self._records)
        if category_id:
            # Fresh list so queries made earlier keep their view
            self._records = [r for r in self._records if r.category_id != category_id]
        else:
            self._records = []
        removed = before - len(self._records)
        logger.info("Purged %d transaction(s) (category=%s)", removed, category_id or "all")
        return removed

    def replace(self, records: Iterable[ContributionRecord]) -> None:
        """Adopt a finalized log received from another instance."""
        self._records = list(records)

    def to_json(self) -> list:
        return [record.to_dict() for record in self._records]


__all__ = [
    "ContributionRecord",
    "RecordQuery",
    "TransactionLog",
    "records_from_json",
]
