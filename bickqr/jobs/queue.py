"""
Durable job queue stored in the application database.

One row per bick: the row id is "bick-{bick_id}", so enqueueing the same bick
twice targets the same slot instead of creating a concurrent duplicate.
Workers claim rows with a conditional UPDATE, which is the only coordination
between them. A claim is a lease: an active row untouched for longer than
the lock duration belongs to a worker that died, and is claimed again (as a
new attempt) or, with no attempts left, failed by recover_stalled().

Defaults:
- 3 attempts with exponential backoff (1s, 2s, 4s)
- Keeps the last 100 completed jobs for debugging
- Keeps the last 1000 failed jobs for analysis
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError

from bickqr.core import config
from bickqr.core.errors import InvalidJobPayload
from bickqr.db.database import make_engine, make_session_factory
from bickqr.db.models import QueueJob, QueueJobState
from bickqr.schemas.job import ProcessingJob

logger = logging.getLogger(__name__)

QUEUE_NAME = "bick-processing"
DEFAULT_ATTEMPTS = 3
DEFAULT_BACKOFF_DELAY = 1.0  # seconds
REMOVE_ON_COMPLETE = 100
REMOVE_ON_FAIL = 1000

# How many due rows a worker looks at per claim attempt
_CLAIM_CANDIDATES = 5


def job_id_for(bick_id: str) -> str:
    """Dedup job id for a bick."""
    return f"bick-{bick_id}"


def validate_job(job) -> ProcessingJob:
    """Accept a ProcessingJob or a raw payload dict; raise InvalidJobPayload otherwise."""
    if isinstance(job, ProcessingJob):
        return job
    if not isinstance(job, dict):
        raise InvalidJobPayload(
            "Invalid job payload: bickId, storageKey, and originalFilename are required"
        )
    try:
        return ProcessingJob.model_validate(job)
    except ValidationError as e:
        raise InvalidJobPayload(
            "Invalid job payload: bickId, storageKey, and originalFilename are required"
        ) from e


@dataclass
class ClaimedJob:
    id: str
    job: ProcessingJob
    attempts_made: int
    max_attempts: int

    @property
    def bick_id(self) -> str:
        return self.job.bick_id

    @property
    def is_last_attempt(self) -> bool:
        return self.attempts_made >= self.max_attempts


class JobQueue:
    """
    Queue handle. Construct once at process start and pass it to whoever
    enqueues or consumes; call close() on shutdown.
    """

    def __init__(
        self,
        session_factory,
        name: str = QUEUE_NAME,
        attempts: int = DEFAULT_ATTEMPTS,
        backoff_delay: float = DEFAULT_BACKOFF_DELAY,
        remove_on_complete: int = REMOVE_ON_COMPLETE,
        remove_on_fail: int = REMOVE_ON_FAIL,
        clock=datetime.utcnow,
        engine=None,
        lock_duration: float = None,
    ):
        self.session_factory = session_factory
        self.name = name
        self.attempts = attempts
        self.backoff_delay = backoff_delay
        self.remove_on_complete = remove_on_complete
        self.remove_on_fail = remove_on_fail
        self.clock = clock
        self.lock_duration = lock_duration if lock_duration is not None else config.JOB_LOCK_DURATION
        self._engine = engine

    @classmethod
    def connect(cls, url: str, **kwargs) -> "JobQueue":
        """Open a queue on its own engine; close() disposes it."""
        engine = make_engine(url)
        return cls(make_session_factory(engine), engine=engine, **kwargs)

    def close(self):
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def backoff_for(self, attempts_made: int) -> float:
        """Delay before the next attempt after `attempts_made` failures: 1, 2, 4, ..."""
        return self.backoff_delay * (2 ** max(0, attempts_made - 1))

    # ── Producer side ────────────────────────────────────────────────

    def enqueue(self, job) -> str:
        """
        Add a job for a bick and return its job id.

        A waiting or active job for the same bick is left alone. A finished
        (completed or failed) one is re-armed with a fresh attempt budget.
        """
        job = validate_job(job)
        job_id = job_id_for(job.bick_id)
        now = self.clock()

        db = self.session_factory()
        try:
            db.add(QueueJob(
                id=job_id,
                bick_id=job.bick_id,
                payload=job.to_payload(),
                state=QueueJobState.WAITING,
                attempts_made=0,
                max_attempts=self.attempts,
                run_at=now,
                created_at=now,
                updated_at=now,
            ))
            db.commit()
            logger.info(f"[{job_id}] Enqueued on {self.name}")
            return job_id
        except IntegrityError:
            db.rollback()
        finally:
            db.close()

        # Row already exists
        db = self.session_factory()
        try:
            result = db.execute(
                update(QueueJob)
                .where(
                    QueueJob.id == job_id,
                    QueueJob.state.in_([QueueJobState.COMPLETED, QueueJobState.FAILED]),
                )
                .values(
                    payload=job.to_payload(),
                    state=QueueJobState.WAITING,
                    attempts_made=0,
                    max_attempts=self.attempts,
                    run_at=now,
                    last_error=None,
                    finished_at=None,
                    updated_at=now,
                )
            )
            db.commit()
            if result.rowcount:
                logger.info(f"[{job_id}] Re-armed finished job")
            else:
                logger.info(f"[{job_id}] Already queued, skipping duplicate")
            return job_id
        finally:
            db.close()

    # ── Consumer side ────────────────────────────────────────────────

    def _claimable(self, now: datetime):
        """Due waiting rows, plus active rows whose lease ran out with attempts left."""
        stalled_before = now - timedelta(seconds=self.lock_duration)
        return or_(
            and_(QueueJob.state == QueueJobState.WAITING, QueueJob.run_at <= now),
            and_(
                QueueJob.state == QueueJobState.ACTIVE,
                QueueJob.updated_at <= stalled_before,
                QueueJob.attempts_made < QueueJob.max_attempts,
            ),
        )

    def claim(self) -> Optional[ClaimedJob]:
        """Atomically take one due job, or return None when nothing is due."""
        now = self.clock()
        db = self.session_factory()
        try:
            candidates = db.execute(
                select(QueueJob.id, QueueJob.state)
                .where(self._claimable(now))
                .order_by(QueueJob.run_at, QueueJob.created_at)
                .limit(_CLAIM_CANDIDATES)
            ).all()

            for job_id, state in candidates:
                result = db.execute(
                    update(QueueJob)
                    .where(QueueJob.id == job_id, self._claimable(now))
                    .values(
                        state=QueueJobState.ACTIVE,
                        attempts_made=QueueJob.attempts_made + 1,
                        updated_at=now,
                    )
                )
                if result.rowcount != 1:
                    db.rollback()
                    continue  # Another worker got it
                db.commit()

                if QueueJobState(state) == QueueJobState.ACTIVE:
                    logger.warning(f"[{job_id}] Lease expired, reclaiming stalled job")

                row = db.get(QueueJob, job_id)
                return ClaimedJob(
                    id=row.id,
                    job=ProcessingJob.model_validate(row.payload),
                    attempts_made=row.attempts_made,
                    max_attempts=row.max_attempts,
                )
            return None
        finally:
            db.close()

    def recover_stalled(self) -> List[str]:
        """
        Fail active jobs whose lease ran out after their last attempt.
        Returns the bick ids of the jobs that are now terminally failed.
        """
        now = self.clock()
        stalled_before = now - timedelta(seconds=self.lock_duration)
        db = self.session_factory()
        try:
            rows = db.execute(
                select(QueueJob.id, QueueJob.bick_id).where(
                    QueueJob.state == QueueJobState.ACTIVE,
                    QueueJob.updated_at <= stalled_before,
                    QueueJob.attempts_made >= QueueJob.max_attempts,
                )
            ).all()

            failed = []
            for job_id, bick_id in rows:
                result = db.execute(
                    update(QueueJob)
                    .where(
                        QueueJob.id == job_id,
                        QueueJob.state == QueueJobState.ACTIVE,
                        QueueJob.updated_at <= stalled_before,
                    )
                    .values(
                        state=QueueJobState.FAILED,
                        last_error="Job stalled: worker stopped before finishing",
                        finished_at=now,
                        updated_at=now,
                    )
                )
                if result.rowcount == 1:
                    logger.warning(f"[{job_id}] Stalled on its last attempt, failed permanently")
                    failed.append(bick_id)

            if failed:
                self._trim(db, QueueJobState.FAILED, self.remove_on_fail)
            db.commit()
            return failed
        finally:
            db.close()

    def complete(self, job_id: str) -> None:
        now = self.clock()
        db = self.session_factory()
        try:
            db.execute(
                update(QueueJob)
                .where(QueueJob.id == job_id)
                .values(state=QueueJobState.COMPLETED, finished_at=now, updated_at=now)
            )
            self._trim(db, QueueJobState.COMPLETED, self.remove_on_complete)
            db.commit()
        finally:
            db.close()

    def fail(self, job_id: str, error: str, retryable: bool = True) -> bool:
        """
        Record a failed attempt. Returns True when the job is now terminally
        failed, False when another attempt has been scheduled.
        """
        now = self.clock()
        db = self.session_factory()
        try:
            row = db.get(QueueJob, job_id)
            if row is None:
                return True

            attempts_made, max_attempts = row.attempts_made, row.max_attempts
            if retryable and attempts_made < max_attempts:
                delay = self.backoff_for(attempts_made)
                row.state = QueueJobState.WAITING
                row.run_at = now + timedelta(seconds=delay)
                row.last_error = error
                row.updated_at = now
                db.commit()
                logger.info(
                    f"[{job_id}] Attempt {attempts_made}/{max_attempts} failed, "
                    f"retrying in {delay:g}s"
                )
                return False

            row.state = QueueJobState.FAILED
            row.last_error = error
            row.finished_at = now
            row.updated_at = now
            db.flush()
            self._trim(db, QueueJobState.FAILED, self.remove_on_fail)
            db.commit()
            logger.warning(f"[{job_id}] Failed permanently after {attempts_made} attempt(s)")
            return True
        finally:
            db.close()

    # ── Diagnostics ──────────────────────────────────────────────────

    def get(self, job_id: str) -> Optional[QueueJob]:
        db = self.session_factory()
        try:
            row = db.get(QueueJob, job_id)
            if row is not None:
                db.expunge(row)
            return row
        finally:
            db.close()

    def counts(self) -> dict:
        db = self.session_factory()
        try:
            rows = db.execute(
                select(QueueJob.state, func.count()).group_by(QueueJob.state)
            ).all()
            counts = {state.value: 0 for state in QueueJobState}
            for state, n in rows:
                counts[QueueJobState(state).value] = n
            return counts
        finally:
            db.close()

    def _trim(self, db, state: QueueJobState, keep: int):
        """Evict the oldest finished rows beyond `keep`."""
        stale = db.execute(
            select(QueueJob.id)
            .where(QueueJob.state == state)
            .order_by(QueueJob.finished_at.desc(), QueueJob.updated_at.desc())
            .offset(keep)
        ).scalars().all()
        if stale:
            db.execute(delete(QueueJob).where(QueueJob.id.in_(stale)))
