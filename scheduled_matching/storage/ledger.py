"""Batch ledger: run-level history and per-user outcomes."""

import logging
from dataclasses import dataclass, field

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from scheduled_matching.errors import AlreadyRunningError, InvalidStateError, NotFoundError
from scheduled_matching.models import (
    BatchDetail,
    BatchHistory,
    BatchStatus,
    DetailStatus,
    MatchSource,
    ScheduledMatchingConfig,
)
from scheduled_matching.storage import match_store
from scheduled_matching.utils.timeutil import utcnow

logger = logging.getLogger("scheduled_matching.ledger")

MAX_PAGE_SIZE = 500


@dataclass
class UserOutcome:
    """Final outcome of processing one user, as written to a BatchDetail row."""

    user_id: str
    status: DetailStatus
    partner_id: str | None = None
    candidate_pool: list[dict] = field(default_factory=list)
    selected_score: float | None = None
    match_story: str | None = None
    processing_time_ms: int | None = None
    error_message: str | None = None
    attempts: int = 1

    def __post_init__(self):
        if self.status is DetailStatus.SUCCESS:
            if self.partner_id is None or self.selected_score is None:
                raise ValueError("a successful outcome needs partner_id and selected_score")
        elif self.partner_id is not None:
            raise ValueError(f"a '{self.status.value}' outcome cannot carry a partner")


@dataclass
class BatchDetailPage:
    batch: BatchHistory
    details: list[BatchDetail]
    total_details: int
    success_count: int
    average_processing_time_ms: float


def _page(limit: int, offset: int) -> tuple[int, int]:
    return max(1, min(int(limit), MAX_PAGE_SIZE)), max(0, int(offset))


class BatchLedger:
    """Persists BatchHistory / BatchDetail rows. Each call owns one short transaction."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    # -- writes (BatchCoordinator only) --------------------------------------

    def open_batch(
        self, config: ScheduledMatchingConfig, total_users: int, metadata: dict | None = None
    ) -> BatchHistory:
        """Create a running batch, or raise AlreadyRunningError without writing anything."""
        db = self._session_factory()
        try:
            running = (
                db.query(BatchHistory)
                .filter(
                    BatchHistory.country == config.country,
                    BatchHistory.status == BatchStatus.RUNNING.value,
                )
                .first()
            )
            if running:
                raise AlreadyRunningError(config.country, running.id)

            batch = BatchHistory(
                config_id=config.id,
                country=config.country,
                status=BatchStatus.RUNNING.value,
                started_at=utcnow(),
                total_users=total_users,
                run_metadata=metadata or {},
            )
            db.add(batch)
            try:
                db.commit()
            except IntegrityError:
                # Lost the race against a concurrent trigger; the unique index decided
                db.rollback()
                raise AlreadyRunningError(config.country)
            logger.info("[batch:%s] Opened for %s with %d users", batch.id, config.country, total_users)
            return batch
        finally:
            db.close()

    def record_outcome(self, batch_id: str, outcome: UserOutcome) -> bool:
        """Write one user's detail row and bump the counters atomically.

        Returns False (and writes nothing) when the batch is no longer running.
        """
        succeeded = outcome.status is DetailStatus.SUCCESS
        db = self._session_factory()
        try:
            result = db.execute(
                update(BatchHistory)
                .where(
                    BatchHistory.id == batch_id,
                    BatchHistory.status == BatchStatus.RUNNING.value,
                )
                .values(
                    processed_users=BatchHistory.processed_users + 1,
                    success_count=BatchHistory.success_count + (1 if succeeded else 0),
                    failure_count=BatchHistory.failure_count + (0 if succeeded else 1),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                db.rollback()
                return False

            db.add(BatchDetail(
                batch_id=batch_id,
                user_id=outcome.user_id,
                partner_id=outcome.partner_id,
                status=outcome.status.value,
                candidate_pool=outcome.candidate_pool,
                selected_score=outcome.selected_score,
                match_story=outcome.match_story,
                processing_time_ms=outcome.processing_time_ms,
                error_message=outcome.error_message,
                attempt_count=outcome.attempts,
            ))
            if succeeded:
                match_store.add_match(
                    db,
                    outcome.user_id,
                    outcome.partner_id,
                    MatchSource.SCHEDULED,
                    score=outcome.selected_score,
                    batch_id=batch_id,
                )
            db.commit()
            return True
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def finalize(
        self,
        batch_id: str,
        status: BatchStatus,
        error_message: str | None = None,
        metadata_updates: dict | None = None,
    ) -> bool:
        """Move a running batch to a terminal status. No-op if it is already terminal."""
        db = self._session_factory()
        try:
            batch = db.get(BatchHistory, batch_id)
            if batch is None:
                raise NotFoundError("batch", batch_id)
            values: dict = {"status": status.value, "completed_at": utcnow()}
            if error_message is not None:
                values["error_message"] = error_message
            if metadata_updates:
                values["run_metadata"] = {**(batch.run_metadata or {}), **metadata_updates}
            result = db.execute(
                update(BatchHistory)
                .where(
                    BatchHistory.id == batch_id,
                    BatchHistory.status == BatchStatus.RUNNING.value,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount > 0
        finally:
            db.close()

    def cancel(self, batch_id: str) -> BatchHistory:
        db = self._session_factory()
        try:
            batch = db.get(BatchHistory, batch_id)
            if batch is None:
                raise NotFoundError("batch", batch_id)
            result = db.execute(
                update(BatchHistory)
                .where(
                    BatchHistory.id == batch_id,
                    BatchHistory.status == BatchStatus.RUNNING.value,
                )
                .values(status=BatchStatus.CANCELLED.value, completed_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                db.rollback()
                db.refresh(batch)
                raise InvalidStateError("batch", batch_id, batch.status, "cancel")
            db.commit()
            db.refresh(batch)
            return batch
        finally:
            db.close()

    def fail_stale_running(self, reason: str) -> int:
        """Fail every running batch. Only safe before this process starts any batch."""
        db = self._session_factory()
        try:
            result = db.execute(
                update(BatchHistory)
                .where(BatchHistory.status == BatchStatus.RUNNING.value)
                .values(status=BatchStatus.FAILED.value, completed_at=utcnow(), error_message=reason)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            if result.rowcount:
                logger.warning("Marked %d stale running batch(es) as failed", result.rowcount)
            return result.rowcount
        finally:
            db.close()

    # -- reads ------------------------------------------------------------------

    def get(self, batch_id: str) -> BatchHistory:
        db = self._session_factory()
        try:
            batch = db.get(BatchHistory, batch_id)
            if batch is None:
                raise NotFoundError("batch", batch_id)
            return batch
        finally:
            db.close()

    def status_of(self, batch_id: str) -> str | None:
        db = self._session_factory()
        try:
            return db.query(BatchHistory.status).filter(BatchHistory.id == batch_id).scalar()
        finally:
            db.close()

    def list_by_country(self, country: str, limit: int = 20, offset: int = 0) -> list[BatchHistory]:
        """Newest first."""
        limit, offset = _page(limit, offset)
        db = self._session_factory()
        try:
            return (
                db.query(BatchHistory)
                .filter(BatchHistory.country == country)
                .order_by(BatchHistory.started_at.desc(), BatchHistory.created_at.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )
        finally:
            db.close()

    def list_running(self) -> list[BatchHistory]:
        db = self._session_factory()
        try:
            return (
                db.query(BatchHistory)
                .filter(BatchHistory.status == BatchStatus.RUNNING.value)
                .order_by(BatchHistory.started_at)
                .all()
            )
        finally:
            db.close()

    def latest_for_country(self, country: str) -> BatchHistory | None:
        db = self._session_factory()
        try:
            return (
                db.query(BatchHistory)
                .filter(BatchHistory.country == country)
                .order_by(BatchHistory.started_at.desc())
                .first()
            )
        finally:
            db.close()

    def get_detail(self, batch_id: str, limit: int = 100, offset: int = 0) -> BatchDetailPage:
        """One page of details plus stats computed over the whole batch."""
        limit, offset = _page(limit, offset)
        db = self._session_factory()
        try:
            batch = db.get(BatchHistory, batch_id)
            if batch is None:
                raise NotFoundError("batch", batch_id)

            details = (
                db.query(BatchDetail)
                .filter(BatchDetail.batch_id == batch_id)
                .order_by(BatchDetail.created_at, BatchDetail.id)
                .offset(offset)
                .limit(limit)
                .all()
            )
            total = (
                db.query(func.count(BatchDetail.id)).filter(BatchDetail.batch_id == batch_id).scalar() or 0
            )
            successes = (
                db.query(func.count(BatchDetail.id))
                .filter(
                    BatchDetail.batch_id == batch_id,
                    BatchDetail.status == DetailStatus.SUCCESS.value,
                )
                .scalar()
                or 0
            )
            average = (
                db.query(func.avg(BatchDetail.processing_time_ms))
                .filter(
                    BatchDetail.batch_id == batch_id,
                    BatchDetail.processing_time_ms.isnot(None),
                )
                .scalar()
            )
            return BatchDetailPage(
                batch=batch,
                details=details,
                total_details=total,
                success_count=successes,
                average_processing_time_ms=round(float(average), 2) if average is not None else 0.0,
            )
        finally:
            db.close()

    def summary(self) -> dict:
        """Per-country totals for the CLI ``--stats`` view."""
        db = self._session_factory()
        try:
            stats: dict = {}
            rows = (
                db.query(
                    BatchHistory.country,
                    func.count(BatchHistory.id),
                    func.coalesce(func.sum(BatchHistory.success_count), 0),
                    func.coalesce(func.sum(BatchHistory.failure_count), 0),
                )
                .group_by(BatchHistory.country)
                .all()
            )
            for country, total_batches, successes, failures in rows:
                last = (
                    db.query(BatchHistory)
                    .filter(BatchHistory.country == country)
                    .order_by(BatchHistory.started_at.desc())
                    .first()
                )
                stats[country] = {
                    "total_batches": total_batches,
                    "total_successes": int(successes),
                    "total_failures": int(failures),
                    "last_status": last.status if last else None,
                    "last_started_at": last.started_at if last else None,
                }
            return stats
        finally:
            db.close()
