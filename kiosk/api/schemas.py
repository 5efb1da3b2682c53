"""Pydantic schemas for the kiosk API."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from kiosk.services.allocation_service import Allocation
from kiosk.services.progress_service import CampaignProgress
from kiosk.services.transaction_log import ContributionRecord


class AllocationItem(BaseModel):
    """Amount placed on one campaign day (0-based index)."""

    day_index: int
    amount: float


def allocation_items(allocation: Optional[Allocation]) -> Optional[List[AllocationItem]]:
    if allocation is None:
        return None
    return [AllocationItem(day_index=index, amount=float(amount)) for index, amount in allocation]


class AllocationPreviewRequest(BaseModel):
    """Amount and preferred days to preview."""

    amount: Decimal = Field(..., description="Contribution amount")
    days: List[int] = Field(default_factory=list, description="Preferred days (0-based)")


class AllocationResponse(BaseModel):
    items: List[AllocationItem]
    total: float


class ContributionRequest(BaseModel):
    """Contribution confirmed by the payment terminal."""

    category_id: str = Field(..., description="Giving category id")
    amount: Optional[Decimal] = Field(None, description="Amount (not used for per-person giving)")
    days: List[int] = Field(default_factory=list, description="Preferred days (0-based)")
    people: Optional[int] = Field(None, description="Number of people for per-person giving")


class ContributionResponse(BaseModel):
    """One transaction log record."""

    id: str
    category_id: str
    category_label: str
    amount: float
    timestamp: datetime
    allocation: Optional[List[AllocationItem]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_record(cls, record: ContributionRecord) -> "ContributionResponse":
        return cls(
            id=record.id,
            category_id=record.category_id,
            category_label=record.category_label,
            amount=float(record.amount),
            timestamp=record.timestamp,
            allocation=allocation_items(record.allocation),
            metadata=dict(record.metadata),
        )


class ReportResponse(BaseModel):
    """Report rows (most recent first) and their total."""

    category_id: Optional[str] = None
    start: Optional[date] = None
    end: Optional[date] = None
    count: int
    total: float
    records: List[ContributionResponse]


class ProgressResponse(BaseModel):
    bucket_count: int
    funded_buckets: int
    total_raised: float
    target_total: float
    excess: float
    appeal_raised: float
    appeal_target: float
    appeal_percent: int

    @classmethod
    def from_progress(cls, progress: CampaignProgress) -> "ProgressResponse":
        return cls(
            bucket_count=progress.bucket_count,
            funded_buckets=progress.funded_buckets,
            total_raised=float(progress.total_raised),
            target_total=float(progress.target_total),
            excess=float(progress.excess),
            appeal_raised=float(progress.appeal_raised),
            appeal_target=float(progress.appeal_target),
            appeal_percent=progress.appeal_percent,
        )


class ResetResponse(BaseModel):
    status: str = "ok"
    removed: Optional[int] = None
