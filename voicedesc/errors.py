"""
Exception taxonomy for job creation and pipeline execution.

Every failure that ends a job is a ``PipelineError``; its ``code`` is the
stable category reported in the job's ``error`` field.
"""
from typing import Optional

from voicedesc.models.job import ErrorCode


class PipelineError(Exception):
    """Base class for failures surfaced to the job state machine."""
    code = ErrorCode.internal_error

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def __str__(self):
        if self.detail:
            return f'{self.message}: {self.detail}'
        return self.message


class ValidationError(PipelineError):
    """Bad input to job creation. The job is never created."""
    code = ErrorCode.validation_error


class ProviderError(PipelineError):
    """An external provider call failed definitively."""
    code = ErrorCode.provider_error


class ProviderTimeout(ProviderError):
    """A provider did not answer within its wait bounds."""
    code = ErrorCode.provider_timeout


class ExtractionError(ProviderError):
    """Media retrieval or frame extraction failed."""
    code = ErrorCode.extraction_error


class TransientProviderError(ProviderError):
    """A provider failure worth retrying (rate limit, momentary outage)."""


class InternalError(PipelineError):
    """A defect: an invariant was violated."""
    code = ErrorCode.internal_error


class JobTimeout(PipelineError):
    """The job exceeded its overall wall-clock budget."""
    code = ErrorCode.job_timeout


class JobNotFound(LookupError):
    """No job exists with the given id."""


class ArtifactNotFound(LookupError):
    """The artifact does not exist or the job has not completed."""
