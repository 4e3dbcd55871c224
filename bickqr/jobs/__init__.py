# Processing queue

from bickqr.jobs.queue import (
    QUEUE_NAME,
    ClaimedJob,
    JobQueue,
    job_id_for,
    validate_job,
)

__all__ = [
    "QUEUE_NAME",
    "ClaimedJob",
    "JobQueue",
    "job_id_for",
    "validate_job",
]
