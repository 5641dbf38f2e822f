from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from genbill.core.actors import Actor
from genbill.core.errors import ValidationError
from genbill.dependencies import get_actor, get_zone_service
from genbill.schemas.zones import (
    ZoneCreateRequest,
    ZoneOperatorRequest,
    ZoneResponse,
    ZoneUpdateRequest,
)
from genbill.services.zones import ZoneService


router = APIRouter(prefix="/api", tags=["zones"])


@router.get("/zones", response_model=list[ZoneResponse])
def get_zones(
    actor: Actor = Depends(get_actor),
    service: ZoneService = Depends(get_zone_service),
) -> list[ZoneResponse]:
    return [ZoneResponse.model_validate(zone) for zone in service.list_zones(actor)]


@router.get("/zones/{zone_id}", response_model=ZoneResponse)
def get_zone(
    zone_id: int,
    actor: Actor = Depends(get_actor),
    service: ZoneService = Depends(get_zone_service),
) -> ZoneResponse:
    return ZoneResponse.model_validate(service.get_zone(zone_id, actor))


@router.post("/zones", response_model=ZoneResponse, status_code=status.HTTP_201_CREATED)
def post_zone(
    payload: ZoneCreateRequest,
    actor: Actor = Depends(get_actor),
    service: ZoneService = Depends(get_zone_service),
) -> ZoneResponse:
    zone = service.create_zone(
        actor,
        name=payload.name,
        location=payload.location,
        description=payload.description,
        client_id=payload.client_id,
        operator_id=payload.operator_id,
        generator_mix=payload.generator_mix,
    )
    return ZoneResponse.model_validate(zone)


@router.put("/zones/{zone_id}", response_model=ZoneResponse)
def put_zone(
    zone_id: int,
    payload: ZoneUpdateRequest,
    actor: Actor = Depends(get_actor),
    service: ZoneService = Depends(get_zone_service),
) -> ZoneResponse:
    updates = payload.model_dump(exclude_unset=True)
    if not updates:
        raise ValidationError("At least one field must be provided")
    return ZoneResponse.model_validate(service.update_zone(zone_id, actor, updates))


@router.post("/zones/{zone_id}/operator", response_model=ZoneResponse)
def post_zone_operator(
    zone_id: int,
    payload: ZoneOperatorRequest,
    actor: Actor = Depends(get_actor),
    service: ZoneService = Depends(get_zone_service),
) -> ZoneResponse:
    return ZoneResponse.model_validate(service.assign_operator(zone_id, actor, payload.operator_id))


@router.delete("/zones/{zone_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_zone(
    zone_id: int,
    actor: Actor = Depends(get_actor),
    service: ZoneService = Depends(get_zone_service),
) -> Response:
    service.delete_zone(zone_id, actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
