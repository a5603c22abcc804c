"""
Pydantic schemas for job records and Job API operations.
"""
import uuid
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field

from voicedesc.models.job import JobKind, JobStatus, PipelineType, PipelinePreference


class Segment(BaseModel):
    """A time-bounded sub-interval of the source media, in seconds."""
    start_offset: float
    end_offset: float

    @property
    def midpoint(self) -> float:
        return self.start_offset + (self.end_offset - self.start_offset) / 2


class Description(BaseModel):
    """Narration text for one segment."""
    start_offset: float
    end_offset: float
    text: str
    flagged: bool = False  # raw provider payload captured instead of parsed text


class JobError(BaseModel):
    """Why a job failed."""
    code: str
    message: str
    detail: Optional[str] = None


class JobRecord(BaseModel):
    """Tracks the lifecycle of a description job."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    kind: JobKind
    status: JobStatus = JobStatus.queued
    pipeline: PipelineType
    pipeline_reason: str = ''
    auto_selected: bool = False
    progress: int = Field(default=0, ge=0, le=100)
    message: str = ''
    source_location: str
    voice_id: Optional[str] = None
    file_size_bytes: Optional[int] = None
    duration_seconds: Optional[float] = None
    segments: List[Segment] = Field(default_factory=list)
    descriptions: List[Description] = Field(default_factory=list)
    overview: Optional[str] = None
    alt_text: Optional[str] = None  # short alternative text (image jobs)
    text_artifact: Optional[str] = None
    audio_artifact: Optional[str] = None
    error: Optional[JobError] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class JobCreate(BaseModel):
    """Schema for creating a new description job."""
    kind: JobKind = Field(..., description="'video' or 'image'")
    source_location: str = Field(..., min_length=1, description='s3:// URI or path of the stored media')
    pipeline: PipelinePreference = Field(PipelinePreference.auto, description='Pipeline preference')
    voice_id: Optional[str] = Field(None, description='Speech voice (null = default voice)')
    file_size_bytes: Optional[int] = Field(None, description='Size of the media in bytes')
    duration_seconds: Optional[float] = Field(None, description='Duration of the media in seconds')


class JobListResponse(BaseModel):
    """Schema for paginated job list response."""
    jobs: List[JobRecord]
    total: int
    limit: int
    offset: int
