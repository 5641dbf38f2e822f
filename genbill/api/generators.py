from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status

from genbill.core.actors import Actor
from genbill.dependencies import get_actor, get_generator_registry_service
from genbill.repositories.usage_logs import UsageNotes
from genbill.schemas.generators import (
    FaultReportRequest,
    GeneratorActionRequest,
    GeneratorAssignRequest,
    GeneratorAssignResponse,
    GeneratorCreateRequest,
    GeneratorResponse,
    MaintenanceRequest,
    TransitionResponse,
)
from genbill.schemas.usage_logs import UsageLogEntryResponse
from genbill.services.generator_registry import GeneratorRegistryService, TransitionResult


router = APIRouter(prefix="/api", tags=["generators"])


@router.get("/generators", response_model=list[GeneratorResponse])
def get_generators(
    zone_id: int | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    actor: Actor = Depends(get_actor),
    service: GeneratorRegistryService = Depends(get_generator_registry_service),
) -> list[GeneratorResponse]:
    generators = service.list_generators(actor, zone_id=zone_id, status=status_filter)
    return [GeneratorResponse.model_validate(generator) for generator in generators]


@router.get("/generators/{generator_id}", response_model=GeneratorResponse)
def get_generator(
    generator_id: int,
    actor: Actor = Depends(get_actor),
    service: GeneratorRegistryService = Depends(get_generator_registry_service),
) -> GeneratorResponse:
    return GeneratorResponse.model_validate(service.get_generator(generator_id, actor))


@router.post("/generators", response_model=GeneratorResponse, status_code=status.HTTP_201_CREATED)
def post_generator(
    payload: GeneratorCreateRequest,
    actor: Actor = Depends(get_actor),
    service: GeneratorRegistryService = Depends(get_generator_registry_service),
) -> GeneratorResponse:
    generator = service.create_generator(
        actor,
        name=payload.name,
        kva=payload.kva,
        zone_id=payload.zone_id,
        fuel_type=payload.fuel_type,
        fuel_capacity_liters=payload.fuel_capacity_liters,
        current_fuel_level=payload.current_fuel_level,
    )
    return GeneratorResponse.model_validate(generator)


@router.post("/generators/assign", response_model=GeneratorAssignResponse)
def post_generator_assignment(
    payload: GeneratorAssignRequest,
    actor: Actor = Depends(get_actor),
    service: GeneratorRegistryService = Depends(get_generator_registry_service),
) -> GeneratorAssignResponse:
    assigned = service.assign_generators(
        actor,
        generator_ids=payload.generator_ids,
        zone_id=payload.zone_id,
    )
    return GeneratorAssignResponse(zone_id=payload.zone_id, assigned=assigned)


@router.delete("/generators/{generator_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_generator(
    generator_id: int,
    actor: Actor = Depends(get_actor),
    service: GeneratorRegistryService = Depends(get_generator_registry_service),
) -> Response:
    service.delete_generator(actor, generator_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/generators/{generator_id}/start", response_model=TransitionResponse)
def post_generator_start(
    generator_id: int,
    payload: GeneratorActionRequest | None = None,
    actor: Actor = Depends(get_actor),
    service: GeneratorRegistryService = Depends(get_generator_registry_service),
) -> TransitionResponse:
    payload = payload or GeneratorActionRequest()
    result = service.start_generator(
        generator_id,
        actor,
        metrics=payload.metrics.to_metrics(),
        notes=UsageNotes(remarks=payload.remarks, attachments=list(payload.attachments)),
        timestamp=payload.timestamp,
    )
    return _to_transition_response(result)


@router.post("/generators/{generator_id}/stop", response_model=TransitionResponse)
def post_generator_stop(
    generator_id: int,
    payload: GeneratorActionRequest | None = None,
    actor: Actor = Depends(get_actor),
    service: GeneratorRegistryService = Depends(get_generator_registry_service),
) -> TransitionResponse:
    payload = payload or GeneratorActionRequest()
    result = service.stop_generator(
        generator_id,
        actor,
        metrics=payload.metrics.to_metrics(),
        notes=UsageNotes(remarks=payload.remarks, attachments=list(payload.attachments)),
        timestamp=payload.timestamp,
    )
    return _to_transition_response(result)


@router.post("/generators/{generator_id}/fault", response_model=TransitionResponse)
def post_generator_fault(
    generator_id: int,
    payload: FaultReportRequest,
    actor: Actor = Depends(get_actor),
    service: GeneratorRegistryService = Depends(get_generator_registry_service),
) -> TransitionResponse:
    result = service.report_fault(
        generator_id,
        actor,
        payload.description,
        metrics=payload.metrics.to_metrics(),
        remarks=payload.remarks,
        attachments=payload.attachments,
        timestamp=payload.timestamp,
    )
    return _to_transition_response(result)


@router.post("/generators/{generator_id}/maintenance", response_model=TransitionResponse)
def post_generator_maintenance(
    generator_id: int,
    payload: MaintenanceRequest,
    actor: Actor = Depends(get_actor),
    service: GeneratorRegistryService = Depends(get_generator_registry_service),
) -> TransitionResponse:
    result = service.enter_maintenance(
        generator_id,
        actor,
        payload.actions,
        metrics=payload.metrics.to_metrics(),
        remarks=payload.remarks,
        attachments=payload.attachments,
        timestamp=payload.timestamp,
    )
    return _to_transition_response(result)


@router.post("/generators/{generator_id}/fuel", response_model=TransitionResponse)
def post_generator_fuel(
    generator_id: int,
    payload: GeneratorActionRequest,
    actor: Actor = Depends(get_actor),
    service: GeneratorRegistryService = Depends(get_generator_registry_service),
) -> TransitionResponse:
    result = service.record_fuel_event(
        generator_id,
        actor,
        payload.metrics.to_metrics(),
        remarks=payload.remarks,
        attachments=payload.attachments,
        timestamp=payload.timestamp,
    )
    return _to_transition_response(result)


def _to_transition_response(result: TransitionResult) -> TransitionResponse:
    return TransitionResponse(
        generator=GeneratorResponse.model_validate(result.generator),
        log_entry=(
            UsageLogEntryResponse.model_validate(result.log_entry)
            if result.log_entry is not None
            else None
        ),
        warnings=list(result.warnings),
    )
