"""Per-country scheduled matching configuration."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class ScheduledMatchingConfig(Base):
    __tablename__ = "scheduled_matching_configs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # One row per country, never deleted (only disabled)
    country: Mapped[str] = mapped_column(String(8), unique=True, nullable=False, index=True)

    cron_expression: Mapped[str] = mapped_column(String(100), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="Asia/Seoul")
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    # Batch parameters
    batch_size: Mapped[int] = mapped_column(Integer, default=5)
    delay_between_users_ms: Mapped[int] = mapped_column(Integer, default=120)
    max_retry_count: Mapped[int] = mapped_column(Integer, default=1)

    # Eligibility filters
    login_window_days: Mapped[int] = mapped_column(Integer, default=7)
    include_unknown_rank: Mapped[bool] = mapped_column(Boolean, default=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_modified_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        onupdate=lambda: datetime.now(timezone.utc),
    )
