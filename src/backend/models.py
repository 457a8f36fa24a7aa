from sqlalchemy import Column, String, DateTime, Text, Integer, Boolean, JSON, ForeignKey, Index, Enum as SQLEnum
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
import enum

Base = declarative_base()

class SegmentStatus(str, enum.Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"

class JobStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

ACTIVE_JOB_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)

class Content(Base):
    __tablename__ = "contents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    desired_duration_seconds = Column(Integer, nullable=True)
    is_extended_video = Column(Boolean, default=False, nullable=False)
    video_script = Column(JSON, nullable=True)  # ordered [{segment_number, duration, prompt}]
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

class VideoSegment(Base):
    __tablename__ = "video_segments"
    __table_args__ = (Index("ix_video_segments_content_number", "content_id", "segment_number", unique=True),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    content_id = Column(Integer, ForeignKey("contents.id", ondelete="CASCADE"), nullable=False, index=True)
    segment_number = Column(Integer, nullable=False)
    prompt = Column(Text, nullable=False)
    duration = Column(Integer, default=8, nullable=False)
    status = Column(SQLEnum(SegmentStatus), default=SegmentStatus.PENDING, nullable=False)
    remote_uri = Column(String(1024), nullable=True)
    operation_handle = Column(String(1024), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

class Media(Base):
    __tablename__ = "media"

    id = Column(Integer, primary_key=True, autoincrement=True)
    content_id = Column(Integer, ForeignKey("contents.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String(255), nullable=False)
    file_path = Column(String(1024), nullable=False)
    file_size = Column(Integer, nullable=False)
    mime_type = Column(String(100), default="video/mp4", nullable=False)
    media_type = Column(String(20), default="video", nullable=False)
    prompt = Column(Text, nullable=True)
    is_segmented = Column(Boolean, default=False, nullable=False)
    segment_count = Column(Integer, default=1, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

class GenerationJob(Base):
    __tablename__ = "generation_jobs"

    job_id = Column(String(36), primary_key=True, index=True)
    content_id = Column(Integer, ForeignKey("contents.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(SQLEnum(JobStatus), default=JobStatus.PENDING, nullable=False, index=True)
    request_data = Column(Text, nullable=False)  # JSON string of the generation request
    media_id = Column(Integer, ForeignKey("media.id", ondelete="SET NULL"), nullable=True)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
