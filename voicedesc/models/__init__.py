"""
SQLAlchemy models.
"""
from voicedesc.models.job import Base, Job, JobKind, JobStatus, PipelineType, PipelinePreference, ArtifactKind, ErrorCode

__all__ = [
    'Base',
    'Job',
    'JobKind',
    'JobStatus',
    'PipelineType',
    'PipelinePreference',
    'ArtifactKind',
    'ErrorCode',
]
