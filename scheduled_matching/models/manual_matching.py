"""Operator-created pairings and their append-only audit trail."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class ManualMatching(Base):
    __tablename__ = "manual_matchings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    first_user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    second_user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    executed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    match_type: Mapped[str] = mapped_column(String(20), nullable=False, default="cs_support")
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="normal")
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    notify_users: Mapped[bool] = mapped_column(Boolean, default=True)
    skip_validation: Mapped[bool] = mapped_column(Boolean, default=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="scheduled", index=True)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    logs: Mapped[list["ManualMatchingLog"]] = relationship(
        back_populates="matching",
        order_by="ManualMatchingLog.sequence",
        lazy="selectin",
    )

    @property
    def user_ids(self) -> list[str]:
        return [self.first_user_id, self.second_user_id]


class ManualMatchingLog(Base):
    """One audit entry. Rows are only ever inserted."""

    __tablename__ = "manual_matching_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    matching_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("manual_matchings.id"), nullable=False, index=True
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    details: Mapped[str] = mapped_column(Text, default="")

    matching: Mapped["ManualMatching"] = relationship(back_populates="logs")
