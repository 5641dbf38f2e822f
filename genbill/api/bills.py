from __future__ import annotations

from datetime import date, datetime, time, timezone

from fastapi import APIRouter, Depends, Query, status

from genbill.core.actors import Actor
from genbill.dependencies import get_actor, get_billing_service, get_overdue_sweep_service
from genbill.schemas.bills import (
    BillCreateRequest,
    BillDetailResponse,
    BillResponse,
    BillStatusRequest,
    OverdueSweepResponse,
)
from genbill.services.access_scope import ensure_admin
from genbill.services.billing import BillingService
from genbill.services.overdue_sweep import OverdueSweepService


router = APIRouter(prefix="/api", tags=["bills"])


@router.get("/bills", response_model=list[BillResponse])
def get_bills(
    zone_id: int | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    period_start: date | None = None,
    period_end: date | None = None,
    actor: Actor = Depends(get_actor),
    service: BillingService = Depends(get_billing_service),
) -> list[BillResponse]:
    bills = service.list_bills(
        actor,
        zone_id=zone_id,
        status=status_filter,
        period_start=period_start,
        period_end=period_end,
    )
    return [BillResponse.model_validate(bill) for bill in bills]


@router.get("/bills/{bill_id}", response_model=BillDetailResponse)
def get_bill(
    bill_id: int,
    actor: Actor = Depends(get_actor),
    service: BillingService = Depends(get_billing_service),
) -> BillDetailResponse:
    return BillDetailResponse.model_validate(service.get_bill(bill_id, actor))


@router.post("/bills", response_model=BillDetailResponse, status_code=status.HTTP_201_CREATED)
def post_bill(
    payload: BillCreateRequest,
    actor: Actor = Depends(get_actor),
    service: BillingService = Depends(get_billing_service),
) -> BillDetailResponse:
    bill = service.generate_bill(
        payload.zone_id,
        _start_of_day(payload.billing_period_start),
        _end_of_day(payload.billing_period_end),
        actor,
    )
    return BillDetailResponse.model_validate(bill)


@router.post("/bills/{bill_id}/status", response_model=BillResponse)
def post_bill_status(
    bill_id: int,
    payload: BillStatusRequest,
    actor: Actor = Depends(get_actor),
    service: BillingService = Depends(get_billing_service),
) -> BillResponse:
    return BillResponse.model_validate(service.update_bill_status(bill_id, payload.status, actor))


@router.post("/bills/sweep-overdue", response_model=OverdueSweepResponse)
def post_overdue_sweep(
    actor: Actor = Depends(get_actor),
    service: OverdueSweepService = Depends(get_overdue_sweep_service),
) -> OverdueSweepResponse:
    ensure_admin(actor, action="run the overdue sweep")
    return OverdueSweepResponse(marked_overdue=service.run_once())


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max, tzinfo=timezone.utc)
