"""Schedule routes: per-country configs, manual trigger, job status."""

import logging

from fastapi import APIRouter, Depends

from scheduled_matching.container import Services
from scheduled_matching.models import ScheduledMatchingConfig
from scheduled_matching.utils.cron import CRON_PRESETS, TIMEZONE_OPTIONS

from .dependencies import get_actor, get_services
from .schemas import (
    ConfigCreate,
    ConfigOptions,
    ConfigOut,
    ConfigUpdate,
    JobStatusOut,
    TriggerRequest,
    TriggerResponse,
)

logger = logging.getLogger("scheduled_matching.web.schedule")

router = APIRouter(prefix="/config", tags=["schedule"])


def _sync(services: Services, config: ScheduledMatchingConfig) -> None:
    # The registry only persists; the scheduler re-derives the job from the stored row
    services.driver.sync(config)


@router.get("", response_model=list[ConfigOut])
def list_configs(services: Services = Depends(get_services)):
    return [ConfigOut.from_config(c) for c in services.registry.list()]


@router.post("", response_model=ConfigOut, status_code=201)
def create_config(
    body: ConfigCreate,
    services: Services = Depends(get_services),
    actor: str = Depends(get_actor),
):
    config = services.registry.create(body.country, body.to_patch(), actor=actor)
    _sync(services, config)
    return ConfigOut.from_config(config)


@router.get("/options", response_model=ConfigOptions)
def config_options():
    return ConfigOptions(cron_presets=CRON_PRESETS, timezones=TIMEZONE_OPTIONS)


@router.post("/trigger", response_model=TriggerResponse)
def trigger(
    body: TriggerRequest,
    services: Services = Depends(get_services),
    actor: str = Depends(get_actor),
):
    result = services.driver.trigger_manual(body.country, triggered_by=actor)
    return TriggerResponse(**result)


@router.get("/jobs/status", response_model=list[JobStatusOut])
def all_job_status(services: Services = Depends(get_services)):
    return [JobStatusOut.model_validate(s) for s in services.job_status.list()]


@router.get("/jobs/status/{country}", response_model=JobStatusOut)
def job_status(country: str, services: Services = Depends(get_services)):
    return JobStatusOut.model_validate(services.job_status.get(country))


@router.get("/{country}", response_model=ConfigOut)
def get_config(country: str, services: Services = Depends(get_services)):
    return ConfigOut.from_config(services.registry.get(country))


@router.patch("/{country}", response_model=ConfigOut)
def update_config(
    country: str,
    body: ConfigUpdate,
    services: Services = Depends(get_services),
    actor: str = Depends(get_actor),
):
    config = services.registry.upsert(country, body.to_patch(), actor=actor)
    _sync(services, config)
    return ConfigOut.from_config(config)
