import logging
from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    database_url: str = "sqlite:///./extended_video.db"
    output_dir: str = "media/videos"
    temp_dir: str = "temp/video-concat"
    celery_broker_url: str = "redis://localhost:6379/0"
    log_level: str = "INFO"

    # Google Cloud
    google_project_id: Optional[str] = None
    google_location: str = "us-central1"
    gcs_bucket_name: str = "insta_generated_videos"
    gcs_base_folder: str = "reels"
    veo_model: str = "veo-3.0-generate-001"
    text_model: str = "gemini-2.5-flash"
    text_temperature: float = 0.7

    # Segment generation
    segment_duration_seconds: int = 8
    default_aspect_ratio: str = "9:16"
    operation_poll_interval: float = 10.0
    operation_poll_max_attempts: int = 60
    previous_segment_wait_interval: float = 5.0
    previous_segment_wait_timeout: float = 300.0

    # FFmpeg
    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"
    ffmpeg_timeout: int = 1800
    frame_end_offset: float = 0.1

    class Config:
        env_file = ".env"
        case_sensitive = False

settings = Settings()


def configure_logging(level: Optional[str] = None):
    """Configure root logging once for the API process and the worker."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
