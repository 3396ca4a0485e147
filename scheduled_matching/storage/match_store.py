"""Pairing records. All functions run inside the caller's session/transaction."""

from datetime import datetime

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from scheduled_matching.models import MatchRecord, MatchSource


def canonical_pair(user_a: str, user_b: str) -> tuple[str, str]:
    low, high = sorted((user_a, user_b))
    return low, high


def add_match(
    db: Session,
    user_a: str,
    user_b: str,
    source: MatchSource,
    score: float | None = None,
    batch_id: str | None = None,
    manual_matching_id: str | None = None,
    matched_at: datetime | None = None,
) -> MatchRecord:
    low, high = canonical_pair(user_a, user_b)
    record = MatchRecord(
        user_low_id=low,
        user_high_id=high,
        source=source.value,
        score=score,
        batch_id=batch_id,
        manual_matching_id=manual_matching_id,
    )
    if matched_at is not None:
        record.matched_at = matched_at
    db.add(record)
    return record


def partner_ids_since(db: Session, user_id: str, since: datetime) -> set[str]:
    rows = (
        db.query(MatchRecord.user_low_id, MatchRecord.user_high_id)
        .filter(
            or_(MatchRecord.user_low_id == user_id, MatchRecord.user_high_id == user_id),
            MatchRecord.matched_at >= since,
        )
        .all()
    )
    partners = set()
    for low, high in rows:
        partners.add(high if low == user_id else low)
    return partners


def has_pair_since(db: Session, user_a: str, user_b: str, since: datetime) -> bool:
    low, high = canonical_pair(user_a, user_b)
    row = (
        db.query(MatchRecord.id)
        .filter(
            MatchRecord.user_low_id == low,
            MatchRecord.user_high_id == high,
            MatchRecord.matched_at >= since,
        )
        .first()
    )
    return row is not None


def count_since(db: Session, user_id: str, since: datetime) -> int:
    return (
        db.query(func.count(MatchRecord.id))
        .filter(
            or_(MatchRecord.user_low_id == user_id, MatchRecord.user_high_id == user_id),
            MatchRecord.matched_at >= since,
        )
        .scalar()
        or 0
    )
