"""
Pydantic schemas for job records and API request/response validation.
"""
from voicedesc.schemas.job import Segment, Description, JobError, JobRecord, JobCreate, JobListResponse

__all__ = [
    'Segment',
    'Description',
    'JobError',
    'JobRecord',
    'JobCreate',
    'JobListResponse',
]
