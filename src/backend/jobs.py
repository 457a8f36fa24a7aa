"""Persisted single-slot admission for extended video generation.

Only one job may be pending or processing at a time across the system. The
job row is the lock: it survives restarts and can be inspected over the API.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from errors import JobConflictError, PipelineError
from models import ACTIVE_JOB_STATUSES, GenerationJob, JobStatus
from schemas import ExtendedVideoRequest

logger = logging.getLogger(__name__)

STALE_JOB_MESSAGE = "Worker stopped before the job finished"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def find_active_job(db: Session) -> Optional[GenerationJob]:
    return (
        db.query(GenerationJob)
        .filter(GenerationJob.status.in_(ACTIVE_JOB_STATUSES))
        .order_by(GenerationJob.created_at)
        .first()
    )


def admit_job(db: Session, content_id: int, request: ExtendedVideoRequest) -> GenerationJob:
    """Create a PENDING job, or raise ``JobConflictError`` if the slot is taken."""
    active = find_active_job(db)
    if active:
        raise JobConflictError(active.job_id)

    job = GenerationJob(
        job_id=str(uuid.uuid4()),
        content_id=content_id,
        status=JobStatus.PENDING,
        request_data=request.model_dump_json(),
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    logger.info("Admitted job %s for content %d", job.job_id, content_id)
    return job


def readmit_job(db: Session, job: GenerationJob) -> GenerationJob:
    """Put a FAILED job back in the queue with its original request."""
    if job.status != JobStatus.FAILED:
        raise ValueError(f"Job is not in failed state. Current status: {job.status.value}")
    active = find_active_job(db)
    if active:
        raise JobConflictError(active.job_id)

    job.status = JobStatus.PENDING
    job.error_message = None
    job.media_id = None
    job.started_at = None
    job.completed_at = None
    db.commit()
    logger.info("Re-admitted job %s", job.job_id)
    return job


def load_request(job: GenerationJob) -> ExtendedVideoRequest:
    return ExtendedVideoRequest.model_validate_json(job.request_data)


def mark_processing(db: Session, job: GenerationJob):
    job.status = JobStatus.PROCESSING
    job.started_at = _now()
    db.commit()


def mark_completed(db: Session, job: GenerationJob, media_id: int):
    job.status = JobStatus.COMPLETED
    job.media_id = media_id
    job.error_message = None
    job.completed_at = _now()
    db.commit()


def mark_failed(db: Session, job: GenerationJob, error: Exception):
    db.rollback()
    job.status = JobStatus.FAILED
    job.error_message = root_cause_message(error)
    job.completed_at = _now()
    db.commit()


def root_cause_message(error: BaseException) -> str:
    """Message of the deepest pipeline error in the ``__cause__`` chain."""
    deepest = error
    current = error
    while current is not None:
        if isinstance(current, PipelineError):
            deepest = current
        current = current.__cause__
    return str(deepest) or type(deepest).__name__


def recover_stale_jobs(db: Session) -> int:
    """Fail jobs a crashed worker left PROCESSING so the slot is released."""
    stale = db.query(GenerationJob).filter(GenerationJob.status == JobStatus.PROCESSING).all()
    for job in stale:
        job.status = JobStatus.FAILED
        job.error_message = STALE_JOB_MESSAGE
        job.completed_at = _now()
    db.commit()
    if stale:
        logger.warning("Marked %d stale processing jobs as failed", len(stale))
    return len(stale)
