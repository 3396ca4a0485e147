"""Manual matching: operator-created pairings outside the scheduled batch.

State machine::

    scheduled --execute--> processing --> completed | failed
    scheduled --cancel---> cancelled

Every transition appends to the matching's audit log; log rows are never
updated or deleted.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import and_, or_, update
from sqlalchemy.orm import Session, sessionmaker

from scheduled_matching.config import MatchingConfig
from scheduled_matching.errors import (
    InvalidStateError,
    NotFoundError,
    ValidationBlockedError,
    ValidationError,
)
from scheduled_matching.matching.candidates import preferences_compatible
from scheduled_matching.matching.guards import DuplicateGuard
from scheduled_matching.models import (
    ManualMatching,
    ManualMatchingLog,
    ManualMatchingStatus,
    ManualMatchType,
    MatchPriority,
    MatchSource,
    MatchUser,
)
from scheduled_matching.storage import match_store
from scheduled_matching.storage.user_store import UserStore
from scheduled_matching.utils.timeutil import ensure_utc, utcnow

logger = logging.getLogger("scheduled_matching.manual_matching")

MAX_PAGE_SIZE = 100
INACTIVITY_WARNING_DAYS = 7
PENDING_STATUSES = (ManualMatchingStatus.SCHEDULED.value, ManualMatchingStatus.PROCESSING.value)


@dataclass
class UserCheck:
    id: str
    name: str | None
    matching_status: str  # available, matched_today, inactive, not_found
    warnings: list[str] = field(default_factory=list)


@dataclass
class ValidationResult:
    is_valid: bool
    users: list[UserCheck]
    blocked_reasons: list[str]


def _require_pair(user_ids) -> tuple[str, str]:
    ids = [str(u).strip() for u in (user_ids or [])]
    if len(ids) != 2 or not all(ids):
        raise ValidationError("Exactly two user ids are required")
    if ids[0] == ids[1]:
        raise ValidationError("A user cannot be matched with themselves")
    return ids[0], ids[1]


def _parse_enum(enum_cls, value, name: str):
    try:
        return enum_cls(value.value if isinstance(value, enum_cls) else value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"{name} must be one of: {allowed}")


def _append_log(matching: ManualMatching, actor: str, action: str, details: str, now: datetime) -> None:
    matching.logs.append(ManualMatchingLog(
        sequence=len(matching.logs) + 1,
        timestamp=now,
        actor=actor,
        action=action,
        details=details,
    ))


class ManualOverrideService:
    def __init__(
        self,
        session_factory: sessionmaker,
        user_store: UserStore,
        guard: DuplicateGuard,
        matching_config: MatchingConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._user_store = user_store
        self._guard = guard
        self._config = matching_config or MatchingConfig()
        self._clock = clock

    # -- validation -------------------------------------------------------------

    def validate(self, user_ids) -> ValidationResult:
        """Read-only pre-flight check for a manual pairing."""
        first, second = _require_pair(user_ids)
        now = self._clock()
        users = self._user_store.get_users([first, second])

        db = self._session_factory()
        try:
            checks = [self._check_user(db, uid, users.get(uid), now) for uid in (first, second)]
            blocked = [reason for _, reasons in checks for reason in reasons]
            views = [view for view, _ in checks]

            user_a, user_b = users.get(first), users.get(second)
            if user_a is not None and user_b is not None:
                if self._guard.is_blocked(db, first, second, now):
                    blocked.append(
                        f"{first} and {second} were already matched in the last {self._guard.window_days} days"
                    )
                pending = self._pending_for_pair(db, first, second)
                if pending is not None:
                    blocked.append(f"{first} and {second} already have a pending manual matching ({pending.id})")
                if not preferences_compatible(user_a, user_b):
                    blocked.append(f"{first} and {second} have incompatible preferences")
                if user_a.country != user_b.country:
                    for view in views:
                        view.warnings.append(f"users are in different countries ({user_a.country}/{user_b.country})")
        finally:
            db.close()

        return ValidationResult(is_valid=not blocked, users=views, blocked_reasons=blocked)

    def _check_user(
        self, db: Session, user_id: str, user: MatchUser | None, now: datetime
    ) -> tuple[UserCheck, list[str]]:
        if user is None:
            return UserCheck(user_id, None, "not_found"), [f"{user_id} not found"]

        view = UserCheck(user.id, user.name, "available")
        reasons = []
        if user.status != "active":
            view.matching_status = "inactive"
            reasons.append(f"{user_id} is not active")
        elif match_store.count_since(db, user_id, now - timedelta(days=1)) >= self._config.daily_match_limit:
            view.matching_status = "matched_today"
            reasons.append(f"{user_id} already matched today")

        recent = match_store.count_since(db, user_id, now - timedelta(days=self._config.frequency_window_days))
        if recent:
            view.warnings.append(f"matched {recent} time(s) in the last {self._config.frequency_window_days} days")

        last_login = ensure_utc(user.last_login_at)
        if last_login is None:
            view.warnings.append("has never logged in")
        else:
            idle_days = (now - last_login).days
            if idle_days >= INACTIVITY_WARNING_DAYS:
                view.warnings.append(f"inactive for {idle_days} days")
        return view, reasons

    @staticmethod
    def _pending_for_pair(db: Session, first: str, second: str) -> ManualMatching | None:
        return (
            db.query(ManualMatching)
            .filter(
                ManualMatching.status.in_(PENDING_STATUSES),
                or_(
                    and_(ManualMatching.first_user_id == first, ManualMatching.second_user_id == second),
                    and_(ManualMatching.first_user_id == second, ManualMatching.second_user_id == first),
                ),
            )
            .first()
        )

    # -- lifecycle --------------------------------------------------------------

    def create(
        self,
        user_ids,
        scheduled_at: datetime,
        reason: str,
        match_type=ManualMatchType.CS_SUPPORT,
        priority=MatchPriority.NORMAL,
        notify_users: bool = True,
        skip_validation: bool = False,
        actor: str = "admin",
    ) -> ManualMatching:
        first, second = _require_pair(user_ids)
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("reason is required")
        match_type = _parse_enum(ManualMatchType, match_type, "matchType")
        priority = _parse_enum(MatchPriority, priority, "priority")

        now = self._clock()
        scheduled_at = ensure_utc(scheduled_at)
        if scheduled_at is None or scheduled_at <= now:
            raise ValidationError("scheduledAt must be in the future")

        result = self.validate([first, second])
        if result.blocked_reasons and not skip_validation:
            logger.info("Manual matching %s/%s blocked: %s", first, second, "; ".join(result.blocked_reasons))
            raise ValidationBlockedError(result.blocked_reasons)

        db = self._session_factory()
        try:
            matching = ManualMatching(
                first_user_id=first,
                second_user_id=second,
                scheduled_at=scheduled_at,
                match_type=match_type.value,
                priority=priority.value,
                reason=reason,
                notify_users=notify_users,
                skip_validation=skip_validation,
                status=ManualMatchingStatus.SCHEDULED.value,
                created_by=actor,
                created_at=now,
            )
            _append_log(
                matching, actor, "created",
                f"Scheduled for {scheduled_at.isoformat()} ({match_type.value}, {priority.value}): {reason}",
                now,
            )
            if skip_validation:
                bypassed = "; ".join(result.blocked_reasons) or "none"
                _append_log(matching, actor, "validation_skipped", f"Validation bypassed. Blocked reasons: {bypassed}", now)
            db.add(matching)
            db.commit()
            logger.info(
                "Manual matching %s created by %s: %s + %s at %s%s",
                matching.id, actor, first, second, scheduled_at.isoformat(),
                " (validation skipped)" if skip_validation else "",
            )
            return matching
        finally:
            db.close()

    def execute(self, matching_id: str, actor: str = "admin") -> ManualMatching:
        """Perform the pairing now. Legal only from ``scheduled``."""
        db = self._session_factory()
        try:
            matching = self._load(db, matching_id)
            self._claim(db, matching, ManualMatchingStatus.PROCESSING, "execute")
            now = self._clock()
            _append_log(matching, actor, "processing", "Execution started", now)
            db.commit()

            try:
                failure = self._execution_blocker(db, matching, now)
                if failure is None:
                    match_store.add_match(
                        db,
                        matching.first_user_id,
                        matching.second_user_id,
                        MatchSource.MANUAL,
                        manual_matching_id=matching.id,
                        matched_at=now,
                    )
                    matching.status = ManualMatchingStatus.COMPLETED.value
                    matching.executed_at = now
                    _append_log(
                        matching, actor, "completed",
                        f"Matched {matching.first_user_id} with {matching.second_user_id}", now,
                    )
                    if matching.notify_users:
                        _append_log(
                            matching, actor, "notify",
                            f"Notification requested for {matching.first_user_id}, {matching.second_user_id}", now,
                        )
                        logger.info("Manual matching %s: notification requested for both users", matching.id)
                    logger.info("Manual matching %s completed by %s", matching.id, actor)
                else:
                    matching.status = ManualMatchingStatus.FAILED.value
                    matching.executed_at = now
                    _append_log(matching, actor, "failed", failure, now)
                    logger.warning("Manual matching %s failed: %s", matching.id, failure)
                db.commit()
                return matching
            except Exception as e:
                db.rollback()
                logger.error("Manual matching %s crashed during execution: %s", matching_id, e, exc_info=True)
                self._mark_failed(matching_id, actor, f"{type(e).__name__}: {e}")
                raise
        finally:
            db.close()

    def _execution_blocker(self, db: Session, matching: ManualMatching, now: datetime) -> str | None:
        """Re-check at execution time; a batch may have paired these users since creation."""
        users = self._user_store.get_users(matching.user_ids)
        for user_id in matching.user_ids:
            user = users.get(user_id)
            if user is None:
                return f"{user_id} not found"
            if user.status != "active":
                return f"{user_id} is not active"
        if self._guard.is_blocked(db, matching.first_user_id, matching.second_user_id, now):
            return (
                f"{matching.first_user_id} and {matching.second_user_id} were already matched "
                f"in the last {self._guard.window_days} days"
            )
        return None

    def _mark_failed(self, matching_id: str, actor: str, message: str) -> None:
        db = self._session_factory()
        try:
            matching = db.get(ManualMatching, matching_id)
            if matching is None or matching.status != ManualMatchingStatus.PROCESSING.value:
                return
            now = self._clock()
            matching.status = ManualMatchingStatus.FAILED.value
            matching.executed_at = now
            _append_log(matching, actor, "failed", message, now)
            db.commit()
        finally:
            db.close()

    def cancel(self, matching_id: str, reason: str, actor: str = "admin") -> ManualMatching:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A cancellation reason is required")

        db = self._session_factory()
        try:
            matching = self._load(db, matching_id)
            self._claim(db, matching, ManualMatchingStatus.CANCELLED, "cancel")
            now = self._clock()
            matching.cancelled_at = now
            matching.cancel_reason = reason
            _append_log(matching, actor, "cancelled", reason, now)
            db.commit()
            logger.info("Manual matching %s cancelled by %s: %s", matching.id, actor, reason)
            return matching
        finally:
            db.close()

    def execute_due(self, now: datetime | None = None, actor: str = "scheduler") -> list[ManualMatching]:
        """Execute every scheduled matching whose time has come, oldest first."""
        now = now or self._clock()
        db = self._session_factory()
        try:
            due_ids = [
                row.id
                for row in db.query(ManualMatching.id)
                .filter(
                    ManualMatching.status == ManualMatchingStatus.SCHEDULED.value,
                    ManualMatching.scheduled_at <= now,
                )
                .order_by(ManualMatching.scheduled_at, ManualMatching.created_at)
                .all()
            ]
        finally:
            db.close()

        executed = []
        for matching_id in due_ids:
            try:
                executed.append(self.execute(matching_id, actor=actor))
            except InvalidStateError:
                # Executed or cancelled by an operator since the query
                continue
            except Exception as e:
                logger.error("Due manual matching %s could not be executed: %s", matching_id, e)
        return executed

    # -- reads ------------------------------------------------------------------

    def get(self, matching_id: str) -> ManualMatching:
        db = self._session_factory()
        try:
            return self._load(db, matching_id)
        finally:
            db.close()

    def describe_users(self, user_ids: list[str]) -> list[dict]:
        users = self._user_store.get_users(user_ids)
        views = []
        for user_id in user_ids:
            user = users.get(user_id)
            views.append({
                "id": user_id,
                "name": user.name if user else None,
                "gender": user.gender if user else None,
                "university": user.university if user else None,
            })
        return views

    # -- helpers ----------------------------------------------------------------

    @staticmethod
    def _load(db: Session, matching_id: str) -> ManualMatching:
        matching = db.get(ManualMatching, matching_id)
        if matching is None:
            raise NotFoundError("manual matching", matching_id)
        return matching

    @staticmethod
    def _claim(db: Session, matching: ManualMatching, target: ManualMatchingStatus, action: str) -> None:
        """Move scheduled -> target with a conditional update, or raise InvalidStateError."""
        result = db.execute(
            update(ManualMatching)
            .where(
                ManualMatching.id == matching.id,
                ManualMatching.status == ManualMatchingStatus.SCHEDULED.value,
            )
            .values(status=target.value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.rollback()
            db.refresh(matching)
            raise InvalidStateError("manual matching", matching.id, matching.status, action)
        matching.status = target.value

    # Defined last: the method name shadows the builtin inside the class body
    def list(
        self, page: int = 1, limit: int = 20, status: str | None = None, match_type: str | None = None
    ) -> tuple[list[ManualMatching], int]:
        """One page, newest first, plus the total count for the filters."""
        page = max(1, int(page))
        limit = max(1, min(int(limit), MAX_PAGE_SIZE))
        if status:
            status = _parse_enum(ManualMatchingStatus, status, "status").value
        if match_type:
            match_type = _parse_enum(ManualMatchType, match_type, "matchType").value

        db = self._session_factory()
        try:
            query = db.query(ManualMatching)
            if status:
                query = query.filter(ManualMatching.status == status)
            if match_type:
                query = query.filter(ManualMatching.match_type == match_type)
            total = query.count()
            items = (
                query.order_by(ManualMatching.created_at.desc(), ManualMatching.id)
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )
            return items, total
        finally:
            db.close()
