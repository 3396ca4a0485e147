"""Request / response models. JSON field names are camelCase."""

from datetime import datetime
from typing import Annotated, Any

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from scheduled_matching.models import Country, ManualMatchType, MatchPriority, ScheduledMatchingConfig
from scheduled_matching.utils.cron import describe_cron, next_fire_time
from scheduled_matching.utils.timeutil import ensure_utc

# SQLite hands back naive datetimes; all stored values are UTC
UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class RequestModel(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid", str_strip_whitespace=True
    )


# -- schedule configs ---------------------------------------------------------


class ConfigUpdate(RequestModel):
    cron_expression: str | None = None
    timezone: str | None = None
    is_enabled: bool | None = None
    batch_size: int | None = None
    delay_between_users_ms: int | None = None
    max_retry_count: int | None = None
    login_window_days: int | None = None
    include_unknown_rank: bool | None = None
    description: str | None = None

    def to_patch(self) -> dict:
        """Only the fields the client actually sent."""
        return self.model_dump(exclude_unset=True, exclude={"country"})


class ConfigCreate(ConfigUpdate):
    country: Country
    cron_expression: str


class ConfigOut(CamelModel):
    id: str
    country: str
    cron_expression: str
    cron_description: str = ""
    timezone: str
    is_enabled: bool
    batch_size: int
    delay_between_users_ms: int
    max_retry_count: int
    login_window_days: int
    include_unknown_rank: bool
    description: str | None = None
    last_modified_by: str | None = None
    created_at: UtcDatetime | None = None
    updated_at: UtcDatetime | None = None
    next_execution_time: UtcDatetime | None = None

    @classmethod
    def from_config(cls, config: ScheduledMatchingConfig) -> "ConfigOut":
        out = cls.model_validate(config)
        out.cron_description = describe_cron(config.cron_expression)
        if config.is_enabled:
            try:
                out.next_execution_time = next_fire_time(config.cron_expression, config.timezone)
            except ValueError:
                out.next_execution_time = None
        return out


class ConfigOptions(CamelModel):
    cron_presets: list[dict[str, str]]
    timezones: list[dict[str, str]]


class TriggerRequest(RequestModel):
    country: str


class TriggerResponse(CamelModel):
    success: bool
    message: str
    country: str
    triggered_at: UtcDatetime
    batch_id: str | None = None


class JobStatusOut(CamelModel):
    country: str
    is_registered: bool
    last_execution: UtcDatetime | None = None
    next_execution: UtcDatetime | None = None


# -- batches ------------------------------------------------------------------


class BatchHistoryOut(CamelModel):
    id: str
    config_id: str
    country: str
    status: str
    started_at: UtcDatetime
    completed_at: UtcDatetime | None = None
    total_users: int
    processed_users: int
    success_count: int
    failure_count: int
    error_message: str | None = None
    created_at: UtcDatetime | None = None
    # Read from the ORM attribute; ``metadata`` on a declarative instance is the table MetaData.
    # "metadata" is accepted too so dumped output validates back
    run_metadata: dict[str, Any] | None = Field(
        default=None,
        validation_alias=AliasChoices("run_metadata", "metadata"),
        serialization_alias="metadata",
    )


class BatchDetailOut(CamelModel):
    id: str
    batch_id: str
    user_id: str
    partner_id: str | None = None
    status: str
    candidate_pool: list[dict[str, Any]] = Field(default_factory=list)
    selected_score: float | None = None
    match_story: str | None = None
    processing_time_ms: int | None = None
    error_message: str | None = None
    attempt_count: int = 1
    created_at: UtcDatetime | None = None


class BatchDetailStats(CamelModel):
    total_details: int
    success_count: int
    average_processing_time_ms: float


class BatchDetailResponse(CamelModel):
    batch: BatchHistoryOut
    details: list[BatchDetailOut]
    stats: BatchDetailStats


# -- manual matching ----------------------------------------------------------


class ValidateRequest(RequestModel):
    user_ids: list[str]


class UserCheckOut(CamelModel):
    id: str
    name: str | None = None
    matching_status: str
    warnings: list[str] = Field(default_factory=list)


class ValidateResponse(CamelModel):
    is_valid: bool
    users: list[UserCheckOut]
    blocked_reasons: list[str]


class ManualMatchingCreate(RequestModel):
    user_ids: list[str]
    scheduled_at: datetime
    reason: str
    match_type: ManualMatchType = ManualMatchType.CS_SUPPORT
    priority: MatchPriority = MatchPriority.NORMAL
    notify_users: bool = True
    skip_validation: bool = False


class CancelRequest(RequestModel):
    reason: str = ""


class ManualUserOut(CamelModel):
    id: str
    name: str | None = None
    gender: str | None = None
    university: str | None = None


class ManualLogOut(CamelModel):
    sequence: int
    timestamp: UtcDatetime
    actor: str
    action: str
    details: str = ""


class ManualMatchingOut(CamelModel):
    id: str
    users: list[ManualUserOut] = Field(default_factory=list)
    scheduled_at: UtcDatetime
    executed_at: UtcDatetime | None = None
    cancelled_at: UtcDatetime | None = None
    match_type: str
    priority: str
    reason: str
    notify_users: bool
    skip_validation: bool
    status: str
    created_by: str
    cancel_reason: str | None = None
    created_at: UtcDatetime | None = None
    logs: list[ManualLogOut] = Field(default_factory=list)


class ManualMatchingEnvelope(BaseModel):
    data: ManualMatchingOut


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    totalPages: int


class ManualMatchingPage(BaseModel):
    data: list[ManualMatchingOut]
    pagination: Pagination


class ValidateEnvelope(BaseModel):
    data: ValidateResponse
