"""
Job Worker - Pulls bick-processing jobs from the queue and runs the pipeline.

A fixed pool of threads polls the queue; each thread processes one job fully
before claiming the next. A failing job never takes the worker down.

Run with: python -m bickqr.workers.job_worker

Environment Variables:
    DATABASE_URL: database holding bicks, assets and the queue
    WORKER_CONCURRENCY: number of worker threads (default: 5)
    POLL_INTERVAL: seconds to sleep when the queue is empty (default: 2)
    JOB_LOCK_DURATION: lease on a claimed job before it counts as stalled (default: 900)
    TEMP_ROOT: parent of the per-job bick-{id} scratch directories
    R2_* / CDN_URL: object storage (see bickqr.core.config)
"""

import logging
import signal
import sys
import threading

from bickqr.core import config
from bickqr.core.errors import InvalidTransition, ProcessingError
from bickqr.core.status import BickStatus
from bickqr.db import BickRepository, init_db, make_engine, make_session_factory
from bickqr.jobs.queue import ClaimedJob, JobQueue
from bickqr.storage.r2 import R2Storage
from bickqr.workers.bick_processor import BickProcessor

logger = logging.getLogger(__name__)


class WorkerPool:
    def __init__(
        self,
        queue: JobQueue,
        processor: BickProcessor,
        repository: BickRepository,
        concurrency: int = None,
        poll_interval: float = None,
    ):
        self.queue = queue
        self.processor = processor
        self.repository = repository
        self.concurrency = concurrency or config.WORKER_CONCURRENCY
        self.poll_interval = poll_interval if poll_interval is not None else config.POLL_INTERVAL
        self._stop = threading.Event()
        self._threads = []

    def handle(self, claimed: ClaimedJob) -> bool:
        """
        Run one claimed job and report the outcome to the queue.
        Returns True when the job completed.
        """
        job_id = claimed.id
        logger.info(
            f"[{job_id}] Processing bick {claimed.bick_id} "
            f"(attempt {claimed.attempts_made}/{claimed.max_attempts})"
        )
        try:
            self.processor.process(claimed.job)
        except ProcessingError as e:
            terminal = self.queue.fail(job_id, str(e), retryable=e.retryable)
            if terminal:
                self._mark_failed(claimed.bick_id)
            return False
        except Exception as e:
            logger.error(f"[{job_id}] Unexpected error: {e}", exc_info=True)
            terminal = self.queue.fail(job_id, f"{type(e).__name__}: {e}")
            if terminal:
                self._mark_failed(claimed.bick_id)
            return False

        self.queue.complete(job_id)
        logger.info(f"[{job_id}] Completed")
        return True

    def _mark_failed(self, bick_id: str):
        try:
            self.repository.update_bick_status(bick_id, BickStatus.FAILED)
        except (InvalidTransition, ProcessingError) as e:
            logger.error(f"[{bick_id}] Could not mark bick as failed: {e}")

    def run_once(self) -> bool:
        """Claim and handle a single job. Returns False when nothing was due."""
        for bick_id in self.queue.recover_stalled():
            self._mark_failed(bick_id)

        claimed = self.queue.claim()
        if claimed is None:
            return False
        self.handle(claimed)
        return True

    def _loop(self):
        while not self._stop.is_set():
            try:
                if not self.run_once():
                    self._stop.wait(self.poll_interval)
            except Exception as e:
                logger.error(f"Worker error: {e}", exc_info=True)
                self._stop.wait(self.poll_interval)

    def start(self):
        for i in range(self.concurrency):
            t = threading.Thread(target=self._loop, name=f"bick-worker-{i + 1}", daemon=True)
            t.start()
            self._threads.append(t)
        logger.info(f"Started {self.concurrency} worker thread(s)")

    def stop(self, timeout: float = None):
        """Signal threads to stop after their current job and wait for them."""
        self._stop.set()
        for t in self._threads:
            t.join(timeout)
        self._threads = []

    def wait(self):
        while not self._stop.is_set():
            self._stop.wait(1.0)


def verify_setup() -> bool:
    """Check the settings the worker cannot run without."""
    errors = []
    for name in ("R2_BUCKET_NAME", "CDN_URL", "R2_ENDPOINT"):
        if not getattr(config, name):
            errors.append(f"{name} is not set")

    if errors:
        for error in errors:
            logger.error(error)
        return False
    return True


def main():
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
    )

    logger.info("=" * 60)
    logger.info("Bick Worker Starting")
    logger.info("=" * 60)
    logger.info("Configuration:")
    logger.info(f"  WORKER_CONCURRENCY: {config.WORKER_CONCURRENCY}")
    logger.info(f"  POLL_INTERVAL: {config.POLL_INTERVAL}")
    logger.info(f"  JOB_LOCK_DURATION: {config.JOB_LOCK_DURATION}")
    logger.info(f"  TEMP_ROOT: {config.TEMP_ROOT}")
    logger.info(f"  MAX_AUDIO_DURATION_MS: {config.MAX_AUDIO_DURATION_MS}")
    logger.info(f"  TEASER_DURATION: {config.TEASER_DURATION}")
    logger.info("=" * 60)

    if not verify_setup():
        logger.error("Setup verification failed! Fix the errors above and restart.")
        sys.exit(1)

    engine = make_engine(config.DATABASE_URL)
    init_db(engine)
    session_factory = make_session_factory(engine)

    repository = BickRepository(session_factory)
    queue = JobQueue(session_factory)
    processor = BickProcessor(repository, R2Storage())
    pool = WorkerPool(queue, processor, repository)

    def shutdown(signum, frame):
        logger.info(f"Received signal {signum}, stopping after current jobs")
        pool.stop()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    pool.start()
    logger.info("Worker ready, polling for jobs...")
    try:
        pool.wait()
    finally:
        pool.stop()
        queue.close()
        engine.dispose()
        logger.info("Worker stopped")


if __name__ == "__main__":
    main()
