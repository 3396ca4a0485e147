"""Batch coordinator: runs one country's matching batch end to end.

Each eligible user goes through CandidateSelector -> MatchAssigner and the
final outcome is written by BatchLedger in a single transaction. Users are
processed one at a time with a throttle sleep between them; cancellation is
cooperative and observed between steps, so a cancel takes effect after at
most one user's processing time plus the configured delay.
"""

import logging
import threading
import time
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.orm import sessionmaker

from scheduled_matching.errors import InvalidStateError
from scheduled_matching.matching.assigner import MatchAssigner
from scheduled_matching.matching.candidates import CandidateSelector, UserProcessingTimeout
from scheduled_matching.models import BatchHistory, BatchStatus, DetailStatus, MatchUser, ScheduledMatchingConfig, Trigger
from scheduled_matching.registry import ScheduleRegistry
from scheduled_matching.storage.ledger import BatchLedger, UserOutcome
from scheduled_matching.storage.user_store import UserStore
from scheduled_matching.utils.timeutil import utcnow

logger = logging.getLogger("scheduled_matching.coordinator")


class CancellationToken:
    """Cancellation signal for one batch.

    Set locally by ``cancel()``; ``check`` lets the token also notice a
    cancellation written to the database by another process.
    """

    def __init__(self, check: Callable[[], bool] | None = None):
        self._event = threading.Event()
        self._check = check

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._check is not None and self._check():
            self._event.set()
            return True
        return False

    def wait(self, seconds: float) -> bool:
        """Throttle sleep that wakes early on a local cancel. Returns is_cancelled()."""
        if seconds > 0:
            self._event.wait(seconds)
        return self.is_cancelled()


def _error_message(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


class BatchCoordinator:
    def __init__(
        self,
        session_factory: sessionmaker,
        registry: ScheduleRegistry,
        ledger: BatchLedger,
        user_store: UserStore,
        selector: CandidateSelector,
        assigner: MatchAssigner,
        user_timeout_seconds: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._registry = registry
        self._ledger = ledger
        self._user_store = user_store
        self._selector = selector
        self._assigner = assigner
        self._user_timeout_seconds = user_timeout_seconds
        self._clock = clock

        self._lock = threading.Lock()
        # batch_id -> (config snapshot, eligible user ids), between start() and execute()
        self._prepared: dict[str, tuple[ScheduledMatchingConfig, list[str]]] = {}
        self._tokens: dict[str, CancellationToken] = {}

    # -- entry points -----------------------------------------------------------

    def run(self, country: str, trigger: Trigger = Trigger.SCHEDULED, triggered_by: str | None = None) -> BatchHistory:
        batch = self.start(country, trigger, triggered_by)
        return self.execute(batch.id)

    def start(self, country: str, trigger: Trigger, triggered_by: str | None = None) -> BatchHistory:
        """Snapshot eligible users and open a running batch.

        Raises AlreadyRunningError (nothing written) if the country already has one.
        """
        config = self._registry.get(country)
        user_ids = self._user_store.eligible_user_ids(
            config.country, config.login_window_days, config.include_unknown_rank, self._clock()
        )
        metadata = {
            "trigger": trigger.value,
            "triggeredBy": triggered_by,
            "batchSize": config.batch_size,
            "delayBetweenUsersMs": config.delay_between_users_ms,
            "maxRetryCount": config.max_retry_count,
            "loginWindowDays": config.login_window_days,
            "includeUnknownRank": config.include_unknown_rank,
        }
        batch = self._ledger.open_batch(config, len(user_ids), metadata)

        token = CancellationToken(check=lambda: self._ledger.status_of(batch.id) != BatchStatus.RUNNING.value)
        with self._lock:
            self._prepared[batch.id] = (config, user_ids)
            self._tokens[batch.id] = token

        logger.info(
            "[country:%s] Batch %s started (%s by %s): %d eligible users",
            config.country, batch.id, trigger.value, triggered_by or "scheduler", len(user_ids),
        )
        return batch

    def execute(self, batch_id: str) -> BatchHistory:
        """Process a batch opened by start(). Blocks until the batch is terminal."""
        with self._lock:
            prepared = self._prepared.pop(batch_id, None)
            token = self._tokens.get(batch_id)
        if prepared is None or token is None:
            raise InvalidStateError("batch", batch_id, self._ledger.status_of(batch_id) or "unknown", "execute")

        config, user_ids = prepared
        started = time.monotonic()
        processed = 0
        retries = 0
        stopped = False
        try:
            for offset in range(0, len(user_ids), config.batch_size):
                chunk = user_ids[offset: offset + config.batch_size]
                users = self._user_store.get_users(chunk)

                for user_id in chunk:
                    if token.is_cancelled():
                        stopped = True
                        break

                    outcome = self._process_user(batch_id, user_id, users.get(user_id), config, token)
                    retries += outcome.attempts - 1
                    if not self._ledger.record_outcome(batch_id, outcome):
                        # Batch left 'running' while this user was in flight; outcome discarded
                        stopped = True
                        break
                    processed += 1

                    if processed < len(user_ids) and token.wait(config.delay_between_users_ms / 1000):
                        stopped = True
                        break
                if stopped:
                    break

            if not stopped:
                self._ledger.finalize(batch_id, BatchStatus.COMPLETED, metadata_updates={"retries": retries})
        except Exception as e:
            logger.error("[batch:%s] Aborted after %d users: %s", batch_id, processed, e, exc_info=True)
            self._ledger.finalize(
                batch_id, BatchStatus.FAILED, error_message=_error_message(e), metadata_updates={"retries": retries}
            )
        finally:
            with self._lock:
                self._tokens.pop(batch_id, None)

        batch = self._ledger.get(batch_id)
        logger.info(
            "[batch:%s] %s %s: %d/%d processed, %d success, %d failure, %d retries (%.1fs)",
            batch_id, batch.country, batch.status, batch.processed_users, batch.total_users,
            batch.success_count, batch.failure_count, retries, time.monotonic() - started,
        )
        return batch

    def cancel(self, batch_id: str, cancelled_by: str | None = None) -> BatchHistory:
        """Mark a running batch cancelled. The loop stops at its next check."""
        batch = self._ledger.cancel(batch_id)
        with self._lock:
            token = self._tokens.get(batch_id)
        if token is not None:
            token.cancel()
        logger.warning("[batch:%s] Cancelled for %s by %s", batch_id, batch.country, cancelled_by or "unknown")
        return batch

    # -- per-user processing ------------------------------------------------------

    def _process_user(
        self,
        batch_id: str,
        user_id: str,
        user: MatchUser | None,
        config: ScheduledMatchingConfig,
        token: CancellationToken,
    ) -> UserOutcome:
        """Bounded retry loop. Only the last attempt's outcome is returned."""
        max_attempts = config.max_retry_count + 1
        started = time.monotonic()
        attempt = 0
        while True:
            attempt += 1
            outcome = self._attempt(user_id, user, config)
            if outcome.status is not DetailStatus.ERROR or attempt >= max_attempts or token.is_cancelled():
                break
            logger.warning(
                "[batch:%s] User %s attempt %d/%d failed, retrying: %s",
                batch_id, user_id, attempt, max_attempts, outcome.error_message,
            )
            # Re-read the user so the retry sees current data
            user = None

        outcome.attempts = attempt
        outcome.processing_time_ms = int((time.monotonic() - started) * 1000)
        return outcome

    def _attempt(self, user_id: str, user: MatchUser | None, config: ScheduledMatchingConfig) -> UserOutcome:
        deadline = time.monotonic() + self._user_timeout_seconds if self._user_timeout_seconds > 0 else None
        db = self._session_factory()
        try:
            if user is None:
                user = self._user_store.get_user(user_id)
            if user is None:
                return UserOutcome(user_id, DetailStatus.ERROR, error_message=f"user {user_id} not found")

            now = self._clock()
            pool = self._selector.select(user, config, deadline=deadline, now=now)
            assignment = self._assigner.assign(db, user_id, pool, now)
            candidate_pool = [c.to_dict() for c in assignment.pool]
            if assignment.partner is None:
                return UserOutcome(user_id, assignment.status, candidate_pool=candidate_pool)
            return UserOutcome(
                user_id,
                DetailStatus.SUCCESS,
                partner_id=assignment.partner.user_id,
                candidate_pool=candidate_pool,
                selected_score=assignment.partner.score,
                match_story=assignment.partner.story or None,
            )
        except UserProcessingTimeout as e:
            return UserOutcome(user_id, DetailStatus.ERROR, error_message=f"timeout: {e}")
        except Exception as e:
            logger.debug("User %s attempt failed", user_id, exc_info=True)
            return UserOutcome(user_id, DetailStatus.ERROR, error_message=_error_message(e))
        finally:
            db.close()
