"""Manual matching routes. Responses are wrapped as ``{"data": ...}``."""

import math

from fastapi import APIRouter, Depends, Query

from scheduled_matching.container import Services
from scheduled_matching.models import ManualMatching

from .dependencies import get_actor, get_services
from .schemas import (
    CancelRequest,
    ManualMatchingCreate,
    ManualMatchingEnvelope,
    ManualMatchingOut,
    ManualMatchingPage,
    ManualUserOut,
    Pagination,
    ValidateEnvelope,
    ValidateRequest,
    ValidateResponse,
)

router = APIRouter(prefix="/matching", tags=["manual-matching"])


def _render(services: Services, matching: ManualMatching) -> ManualMatchingOut:
    out = ManualMatchingOut.model_validate(matching)
    out.users = [ManualUserOut(**view) for view in services.manual.describe_users(matching.user_ids)]
    return out


@router.post("/validate", response_model=ValidateEnvelope)
def validate_matching(body: ValidateRequest, services: Services = Depends(get_services)):
    result = services.manual.validate(body.user_ids)
    return ValidateEnvelope(data=ValidateResponse.model_validate(result))


@router.post("/manual", response_model=ManualMatchingEnvelope, status_code=201)
def create_manual_matching(
    body: ManualMatchingCreate,
    services: Services = Depends(get_services),
    actor: str = Depends(get_actor),
):
    matching = services.manual.create(
        body.user_ids,
        scheduled_at=body.scheduled_at,
        reason=body.reason,
        match_type=body.match_type,
        priority=body.priority,
        notify_users=body.notify_users,
        skip_validation=body.skip_validation,
        actor=actor,
    )
    return ManualMatchingEnvelope(data=_render(services, matching))


@router.get("/manual", response_model=ManualMatchingPage)
def list_manual_matchings(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: str | None = None,
    match_type: str | None = Query(None, alias="matchType"),
    services: Services = Depends(get_services),
):
    items, total = services.manual.list(page=page, limit=limit, status=status, match_type=match_type)
    return ManualMatchingPage(
        data=[_render(services, m) for m in items],
        pagination=Pagination(page=page, limit=limit, total=total, totalPages=max(1, math.ceil(total / limit))),
    )


@router.get("/manual/{matching_id}", response_model=ManualMatchingEnvelope)
def get_manual_matching(matching_id: str, services: Services = Depends(get_services)):
    return ManualMatchingEnvelope(data=_render(services, services.manual.get(matching_id)))


@router.delete("/manual/{matching_id}", response_model=ManualMatchingEnvelope)
def cancel_manual_matching(
    matching_id: str,
    body: CancelRequest | None = None,
    services: Services = Depends(get_services),
    actor: str = Depends(get_actor),
):
    matching = services.manual.cancel(matching_id, body.reason if body else "", actor=actor)
    return ManualMatchingEnvelope(data=_render(services, matching))


@router.post("/manual/{matching_id}/execute", response_model=ManualMatchingEnvelope)
def execute_manual_matching(
    matching_id: str,
    services: Services = Depends(get_services),
    actor: str = Depends(get_actor),
):
    matching = services.manual.execute(matching_id, actor=actor)
    return ManualMatchingEnvelope(data=_render(services, matching))
