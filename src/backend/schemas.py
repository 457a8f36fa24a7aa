from pydantic import BaseModel, Field
from typing import List, Optional, Literal
from datetime import datetime
from models import JobStatus, SegmentStatus

AspectRatio = Literal["16:9", "9:16", "1:1"]
ContentType = Literal["reel", "story"]

class CharacterProfile(BaseModel):
    name: Optional[str] = None
    age: Optional[str] = None
    appearance: str
    personality: str = ""
    role: str = ""

class SettingProfile(BaseModel):
    location: str
    time_of_day: str = ""
    weather: str = ""
    atmosphere: str = ""
    specific_details: List[str] = Field(default_factory=list)

class StoryArc(BaseModel):
    beginning: str
    middle: str
    end: str

class ContentIdea(BaseModel):
    title: str
    description: str
    visual_elements: List[str] = Field(default_factory=list)
    style: str = "cinematic"
    mood: str = "engaging"
    target_audience: str = "social media"
    character: Optional[CharacterProfile] = None
    setting: Optional[SettingProfile] = None
    story_arc: Optional[StoryArc] = None

class TimeSlotContext(BaseModel):
    label: Optional[str] = None
    tone: Optional[str] = None
    preferred_voice_accent: Optional[str] = None
    dimensions: Optional[str] = None
    reel_duration: Optional[int] = None
    caption: Optional[str] = None
    hashtags: List[str] = Field(default_factory=list)

# Structured model output. No defaults: the response schema sent to the
# model must mark every field required.
class VisualBaseline(BaseModel):
    character: str
    setting: str
    lighting: str
    camera: str
    color_palette: str
    music: str
    voice: str
    aspect_ratio: str
    quality: str

class DraftSegment(BaseModel):
    segment_number: int
    prompt: str

class ScriptDraft(BaseModel):
    baseline: VisualBaseline
    segments: List[DraftSegment]

# API
class CreateContentRequest(BaseModel):
    title: str

class ContentResponse(BaseModel):
    id: int
    title: str
    desired_duration_seconds: Optional[int] = None
    is_extended_video: bool

class ExtendedVideoRequest(BaseModel):
    content_idea: ContentIdea
    desired_duration_seconds: int = Field(ge=1, le=120)
    aspect_ratio: Optional[AspectRatio] = None
    content_type: ContentType = "reel"
    time_slot_context: Optional[TimeSlotContext] = None

class JobResponse(BaseModel):
    job_id: str
    content_id: int
    status: str
    message: str

class StatusResponse(BaseModel):
    job_id: str
    content_id: int
    status: JobStatus
    media_id: Optional[int] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

class SegmentResponse(BaseModel):
    segment_number: int
    status: SegmentStatus
    duration: int
    remote_uri: Optional[str] = None
    error_message: Optional[str] = None

class SegmentsResponse(BaseModel):
    content_id: int
    segments: List[SegmentResponse]
