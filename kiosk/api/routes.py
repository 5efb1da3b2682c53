"""Kiosk API endpoints: state, contributions, configuration, reports, resets."""

import logging
import time
from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Request

from kiosk.api.schemas import (
    AllocationPreviewRequest,
    AllocationResponse,
    ContributionRequest,
    ContributionResponse,
    ProgressResponse,
    ReportResponse,
    ResetResponse,
    allocation_items,
)
from kiosk.services.kiosk_service import KioskService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["kiosk"])


async def get_kiosk_service(request: Request) -> KioskService:
    """Kiosk service of this instance, caught up with remote updates."""
    service: KioskService = request.app.state.kiosk_service
    service.sync.poll()
    return service


@router.get("/state")
async def get_state(service: KioskService = Depends(get_kiosk_service)) -> Dict[str, Any]:
    """Whole campaign state, keyed by wire field name."""
    return service.sync.encoded_state()


@router.get("/progress", response_model=ProgressResponse)
async def get_progress(service: KioskService = Depends(get_kiosk_service)) -> ProgressResponse:
    return ProgressResponse.from_progress(service.progress())


@router.post("/allocations/preview", response_model=AllocationResponse)
async def preview_allocation(
    payload: AllocationPreviewRequest,
    service: KioskService = Depends(get_kiosk_service),
) -> AllocationResponse:
    """Split an amount across days without recording anything."""
    allocation = service.preview_allocation(payload.amount, payload.days)
    return AllocationResponse(items=allocation_items(allocation), total=float(allocation.total))


@router.post("/contributions", response_model=ContributionResponse, status_code=201)
async def confirm_contribution(
    payload: ContributionRequest,
    service: KioskService = Depends(get_kiosk_service),
) -> ContributionResponse:
    """Record a contribution after the (simulated) terminal reported success."""
    start_time = time.time()
    record = service.confirm_contribution(
        payload.category_id,
        amount=payload.amount,
        days=payload.days,
        people=payload.people,
    )
    logger.debug(
        "api.contributions: category=%s amount=%s duration_ms=%d",
        record.category_id,
        record.amount,
        int((time.time() - start_time) * 1000),
    )
    return ContributionResponse.from_record(record)


@router.put("/config")
async def update_config(
    update: Dict[str, Any] = Body(...),
    service: KioskService = Depends(get_kiosk_service),
) -> Dict[str, Any]:
    """Publish an admin configuration edit to every instance."""
    service.update_config(update)
    return service.sync.encoded_state()


@router.get("/reports", response_model=ReportResponse)
async def get_report(
    category: Optional[str] = Query(None, description="Category id, omit for all"),
    start: Optional[date] = Query(None, description="First day (inclusive)"),
    end: Optional[date] = Query(None, description="Last day (inclusive)"),
    service: KioskService = Depends(get_kiosk_service),
) -> ReportResponse:
    """Transactions for a category and an inclusive date range, most recent first."""
    query = service.report(category, start, end)
    records = [ContributionResponse.from_record(record) for record in query]
    return ReportResponse(
        category_id=category,
        start=start,
        end=end,
        count=len(records),
        total=float(query.total()),
        records=records,
    )


@router.post("/reset", response_model=ResetResponse)
async def reset_all(service: KioskService = Depends(get_kiosk_service)) -> ResetResponse:
    service.reset_all()
    return ResetResponse()


@router.post("/reset/ledger", response_model=ResetResponse)
async def reset_ledger(service: KioskService = Depends(get_kiosk_service)) -> ResetResponse:
    service.reset_ledger()
    return ResetResponse()


@router.post("/reset/{category_id}", response_model=ResetResponse)
async def reset_category(
    category_id: str, service: KioskService = Depends(get_kiosk_service)
) -> ResetResponse:
    removed = service.reset_category(category_id)
    return ResetResponse(removed=removed)
