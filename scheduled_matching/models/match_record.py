"""Persisted pairings, read by the duplicate / cool-down guard."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Float, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class MatchRecord(Base):
    __tablename__ = "match_records"
    __table_args__ = (
        Index("ix_match_pair", "user_low_id", "user_high_id", "matched_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # Canonical pair ordering: user_low_id < user_high_id
    user_low_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_high_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    source: Mapped[str] = mapped_column(String(20), nullable=False)  # scheduled, manual
    batch_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    manual_matching_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    score: Mapped[float | None] = mapped_column(Float, nullable=True)
    matched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
