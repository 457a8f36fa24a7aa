from fastapi import FastAPI, Depends, HTTPException
from fastapi.responses import FileResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
import os

from database import get_db, init_db
from errors import JobConflictError
from jobs import admit_job, mark_failed, readmit_job
from models import Content, GenerationJob, Media, VideoSegment
from schemas import (
    CreateContentRequest, ContentResponse, ExtendedVideoRequest,
    JobResponse, StatusResponse, SegmentResponse, SegmentsResponse
)
from tasks import generate_extended_video_task
from config import settings, configure_logging

app = FastAPI(title="Extended Video Generation API", version="1.0.0")

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
def startup_event():
    configure_logging()
    init_db()
    os.makedirs(settings.output_dir, exist_ok=True)

def _get_content(db: Session, content_id: int) -> Content:
    content = db.query(Content).filter(Content.id == content_id).first()
    if not content:
        raise HTTPException(status_code=404, detail="Content not found")
    return content

def _get_job(db: Session, job_id: str) -> GenerationJob:
    job = db.query(GenerationJob).filter(GenerationJob.job_id == job_id).first()
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job

def _enqueue(db: Session, job: GenerationJob):
    # A job that never reached the broker must not hold the slot
    try:
        generate_extended_video_task.delay(job.job_id)
    except Exception as e:
        mark_failed(db, job, e)
        raise HTTPException(status_code=503, detail=f"Could not queue job {job.job_id}: {e}")

@app.post("/api/contents", response_model=ContentResponse, status_code=201)
def create_content(request: CreateContentRequest, db: Session = Depends(get_db)):
    """Create the content record that a generated video will belong to"""
    content = Content(title=request.title)
    db.add(content)
    db.commit()
    db.refresh(content)
    return ContentResponse(
        id=content.id,
        title=content.title,
        desired_duration_seconds=content.desired_duration_seconds,
        is_extended_video=content.is_extended_video
    )

@app.post("/api/contents/{content_id}/extended-video", response_model=JobResponse, status_code=202)
def start_extended_video(content_id: int, request: ExtendedVideoRequest, db: Session = Depends(get_db)):
    """Admit an extended video job. Only one job may run at a time."""
    _get_content(db, content_id)

    try:
        job = admit_job(db, content_id, request)
    except JobConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))

    _enqueue(db, job)

    return JobResponse(
        job_id=job.job_id,
        content_id=content_id,
        status=job.status.value,
        message="Extended video generation queued."
    )

@app.get("/api/jobs/{job_id}", response_model=StatusResponse)
def get_job_status(job_id: str, db: Session = Depends(get_db)):
    """Get generation status for a job"""
    job = _get_job(db, job_id)

    return StatusResponse(
        job_id=job.job_id,
        content_id=job.content_id,
        status=job.status,
        media_id=job.media_id,
        error_message=job.error_message,
        created_at=job.created_at,
        updated_at=job.updated_at,
        started_at=job.started_at,
        completed_at=job.completed_at
    )

@app.post("/api/jobs/{job_id}/retry", response_model=JobResponse)
def retry_job(job_id: str, db: Session = Depends(get_db)):
    """Retry a failed job with its original request"""
    job = _get_job(db, job_id)

    try:
        readmit_job(db, job)
    except JobConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    _enqueue(db, job)

    return JobResponse(
        job_id=job.job_id,
        content_id=job.content_id,
        status=job.status.value,
        message="Job retry initiated"
    )

@app.get("/api/contents/{content_id}/segments", response_model=SegmentsResponse)
def get_segments(content_id: int, db: Session = Depends(get_db)):
    """Per-segment state of the latest generation run"""
    _get_content(db, content_id)
    segments = (
        db.query(VideoSegment)
        .filter(VideoSegment.content_id == content_id)
        .order_by(VideoSegment.segment_number)
        .all()
    )
    return SegmentsResponse(
        content_id=content_id,
        segments=[
            SegmentResponse(
                segment_number=s.segment_number,
                status=s.status,
                duration=s.duration,
                remote_uri=s.remote_uri,
                error_message=s.error_message
            )
            for s in segments
        ]
    )

@app.get("/api/media/{media_id}/download")
def download_media(media_id: int, db: Session = Depends(get_db)):
    """Download the final video file"""
    media = db.query(Media).filter(Media.id == media_id).first()

    if not media:
        raise HTTPException(status_code=404, detail="Media not found")

    if not os.path.exists(media.file_path):
        raise HTTPException(status_code=404, detail="Output file not found")

    return FileResponse(
        path=media.file_path,
        media_type=media.mime_type,
        filename=media.file_name
    )

@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
