"""
Job model for media description pipelines.
"""
import uuid
import enum
from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, Integer, Float, Boolean, BigInteger, JSON
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class JobKind(str, enum.Enum):
    """Kind of media a job describes."""
    video = 'video'
    image = 'image'


class JobStatus(str, enum.Enum):
    """Status states for description jobs."""
    queued = 'queued'
    segmenting = 'segmenting'
    analyzing = 'analyzing'
    synthesizing = 'synthesizing'
    completed = 'completed'
    failed = 'failed'

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.completed, JobStatus.failed)


class PipelineType(str, enum.Enum):
    """Backend combination selected for a job."""
    fast = 'fast'
    detailed = 'detailed'
    split = 'split'


class PipelinePreference(str, enum.Enum):
    """Pipeline requested by the client."""
    fast = 'fast'
    detailed = 'detailed'
    split = 'split'
    auto = 'auto'


class ArtifactKind(str, enum.Enum):
    """Final outputs produced by a completed job."""
    text = 'text'
    audio = 'audio'


class ErrorCode(str, enum.Enum):
    """Stable error categories reported on failed jobs."""
    validation_error = 'VALIDATION_ERROR'
    provider_error = 'PROVIDER_ERROR'
    provider_timeout = 'PROVIDER_TIMEOUT'
    extraction_error = 'EXTRACTION_ERROR'
    internal_error = 'INTERNAL_ERROR'
    job_timeout = 'JOB_TIMEOUT'


class Job(Base):
    """
    Represents a media description job.

    Attributes:
        id: Unique job identifier (UUID)
        kind: 'video' or 'image'
        status: Current pipeline status
        pipeline: Selected pipeline ('fast', 'detailed', 'split')
        pipeline_reason: Why the pipeline was selected
        auto_selected: Whether the pipeline came from the 'auto' preference
        progress: Percentage complete (0-100)
        message: Human-readable description of the current step
        source_location: Where the input media lives (s3:// URI or path)
        voice_id: Speech voice (null = default voice)
        file_size_bytes: Input size reported at upload
        duration_seconds: Input duration reported at upload
        segments: JSON list of {start_offset, end_offset}
        descriptions: JSON list of {start_offset, end_offset, text, flagged}
        overview: Holistic overview text (split pipeline)
        alt_text: Short alternative text (image jobs)
        text_artifact: Reference to the narration text
        audio_artifact: Reference to the narration audio
        error_code: Error category if failed
        error_message: Error summary if failed
        error_detail: Provider diagnostics if failed
        created_at: Job creation timestamp
        completed_at: When the job reached a terminal state
    """
    __tablename__ = 'jobs'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    kind = Column(String(10), nullable=False)
    status = Column(String(20), nullable=False, default=JobStatus.queued.value)
    pipeline = Column(String(20), nullable=False)
    pipeline_reason = Column(Text, nullable=False, default='')
    auto_selected = Column(Boolean, nullable=False, default=False)
    progress = Column(Integer, nullable=False, default=0)
    message = Column(Text, nullable=False, default='')
    source_location = Column(Text, nullable=False)
    voice_id = Column(String(100), nullable=True)
    file_size_bytes = Column(BigInteger, nullable=True)
    duration_seconds = Column(Float, nullable=True)
    segments = Column(JSON, nullable=False, default=list)
    descriptions = Column(JSON, nullable=False, default=list)
    overview = Column(Text, nullable=True)
    alt_text = Column(Text, nullable=True)
    text_artifact = Column(Text, nullable=True)
    audio_artifact = Column(Text, nullable=True)
    error_code = Column(String(40), nullable=True)
    error_message = Column(Text, nullable=True)
    error_detail = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f'<Job {self.id} status={self.status}>'
