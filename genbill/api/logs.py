from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response, status

from genbill.core.actors import Actor
from genbill.dependencies import get_actor, get_usage_ledger_service
from genbill.schemas.usage_logs import UsageLogCorrectionRequest, UsageLogEntryResponse
from genbill.services.usage_ledger import UsageLedgerService


router = APIRouter(prefix="/api", tags=["usage-logs"])


@router.get("/logs", response_model=list[UsageLogEntryResponse])
def get_logs(
    generator_id: int | None = None,
    zone_id: int | None = None,
    action: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = Query(default=500, ge=1, le=5000),
    actor: Actor = Depends(get_actor),
    service: UsageLedgerService = Depends(get_usage_ledger_service),
) -> list[UsageLogEntryResponse]:
    entries = service.list_entries(
        actor,
        generator_id=generator_id,
        zone_id=zone_id,
        action=action,
        start=start,
        end=end,
        limit=limit,
    )
    return [UsageLogEntryResponse.model_validate(entry) for entry in entries]


@router.patch("/logs/{entry_id}", response_model=UsageLogEntryResponse)
def patch_log(
    entry_id: int,
    payload: UsageLogCorrectionRequest,
    actor: Actor = Depends(get_actor),
    service: UsageLedgerService = Depends(get_usage_ledger_service),
) -> UsageLogEntryResponse:
    entry = service.correct_entry(entry_id, actor, payload.model_dump(exclude_unset=True))
    return UsageLogEntryResponse.model_validate(entry)


@router.delete("/logs/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_log(
    entry_id: int,
    actor: Actor = Depends(get_actor),
    service: UsageLedgerService = Depends(get_usage_ledger_service),
) -> Response:
    service.delete_entry(entry_id, actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
