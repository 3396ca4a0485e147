"""Batch routes: running batches, history, per-user detail, cancellation."""

from fastapi import APIRouter, Depends, Query

from scheduled_matching.container import Services
from scheduled_matching.registry import normalize_country

from .dependencies import get_actor, get_services
from .schemas import BatchDetailOut, BatchDetailResponse, BatchDetailStats, BatchHistoryOut

router = APIRouter(prefix="/config/batches", tags=["batches"])


@router.get("/running", response_model=list[BatchHistoryOut])
def running_batches(services: Services = Depends(get_services)):
    return [BatchHistoryOut.model_validate(b) for b in services.ledger.list_running()]


@router.get("/detail/{batch_id}", response_model=BatchDetailResponse)
def batch_detail(
    batch_id: str,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
):
    page = services.ledger.get_detail(batch_id, limit=limit, offset=offset)
    return BatchDetailResponse(
        batch=BatchHistoryOut.model_validate(page.batch),
        details=[BatchDetailOut.model_validate(d) for d in page.details],
        stats=BatchDetailStats(
            total_details=page.total_details,
            success_count=page.success_count,
            average_processing_time_ms=page.average_processing_time_ms,
        ),
    )


@router.post("/{batch_id}/cancel", response_model=BatchHistoryOut)
def cancel_batch(
    batch_id: str,
    services: Services = Depends(get_services),
    actor: str = Depends(get_actor),
):
    batch = services.coordinator.cancel(batch_id, cancelled_by=actor)
    return BatchHistoryOut.model_validate(batch)


@router.get("/{country}", response_model=list[BatchHistoryOut])
def batches_by_country(
    country: str,
    limit: int = Query(20, ge=1, le=500),
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
):
    code = normalize_country(country)
    return [BatchHistoryOut.model_validate(b) for b in services.ledger.list_by_country(code, limit, offset)]
