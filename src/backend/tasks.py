import threading

from celery import Celery
from celery.signals import worker_ready, worker_shutting_down
from celery.utils.log import get_task_logger
from sqlalchemy.orm import Session

from config import settings
from database import SessionLocal
from extended_video import build_pipeline
from jobs import load_request, mark_completed, mark_failed, mark_processing, recover_stale_jobs
from models import GenerationJob, JobStatus

logger = get_task_logger(__name__)

celery_app = Celery('extended_video', broker=settings.celery_broker_url)
celery_app.conf.update(
    worker_concurrency=1,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
)

# Set on worker shutdown so bounded waits stop between polls
shutdown_event = threading.Event()


@worker_ready.connect
def release_stale_jobs(**kwargs):
    db: Session = SessionLocal()
    try:
        recovered = recover_stale_jobs(db)
        if recovered:
            logger.warning("Released %d jobs left processing by a previous worker", recovered)
    finally:
        db.close()


@worker_shutting_down.connect
def stop_waiting(**kwargs):
    shutdown_event.set()


@celery_app.task(bind=True)
def generate_extended_video_task(self, job_id: str):
    """Background task running the extended video pipeline for one admitted job"""
    db: Session = SessionLocal()

    try:
        job = db.query(GenerationJob).filter(GenerationJob.job_id == job_id).first()
        if not job:
            return {"success": False, "error": "Job not found"}
        if job.status != JobStatus.PENDING:
            logger.warning("Job %s is %s, skipping", job_id, job.status.value)
            return {"success": False, "error": f"Job is {job.status.value}"}

        mark_processing(db, job)
        request = load_request(job)

        pipeline = build_pipeline(db, cancel_event=shutdown_event)
        try:
            media = pipeline.generate_extended_video(
                content_id=job.content_id,
                content_idea=request.content_idea,
                desired_duration_seconds=request.desired_duration_seconds,
                aspect_ratio=request.aspect_ratio,
                content_type=request.content_type,
                time_slot_context=request.time_slot_context,
            )
        except Exception as e:
            logger.error("Job %s failed: %s", job_id, e)
            mark_failed(db, job, e)
            return {"success": False, "error": job.error_message}

        mark_completed(db, job, media.id)
        logger.info("Job %s completed with media %d", job_id, media.id)
        return {"success": True, "media_id": media.id}

    finally:
        db.close()
