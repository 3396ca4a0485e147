"""Read model of platform users, owned by the external user service."""

from datetime import datetime, timezone

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class MatchUser(Base):
    __tablename__ = "match_users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), default="")
    country: Mapped[str] = mapped_column(String(8), nullable=False, index=True)
    gender: Mapped[str] = mapped_column(String(10), nullable=False)  # MALE, FEMALE
    seeking_gender: Mapped[str | None] = mapped_column(String(10), nullable=True)
    rank: Mapped[str | None] = mapped_column(String(20), nullable=True)  # None or "UNKNOWN" = unranked
    university: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="active", index=True)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
