"""
Job orchestrator: the entry point for creating, advancing and querying jobs.

Clients drive a job by polling ``advance``; each call performs one step of
work under that job's lock and persists the result before returning.
"""
import logging
import mimetypes
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple, Union

from voicedesc.config import JOB_TIMEOUT_SECONDS, MAX_VIDEO_SIZE_MB
from voicedesc.errors import ArtifactNotFound, JobNotFound, JobTimeout, ValidationError
from voicedesc.models.job import ArtifactKind, JobKind, JobStatus, PipelinePreference
from voicedesc.providers.media import parse_source_location
from voicedesc.schemas.job import JobRecord
from voicedesc.services.job_store import JobLocks, JobStore
from voicedesc.services.pipeline_selector import SelectorThresholds, select_pipeline
from voicedesc.services.state_machine import PipelineStateMachine

logger = logging.getLogger(__name__)


@dataclass
class Artifact:
    """A finished output ready to hand to a client."""
    data: bytes
    media_type: str
    filename: str


class JobOrchestrator:
    """
    Owns the job lifecycle on top of a store and a state machine.

    Args:
        store: Persistence for job records
        machine: Performs one unit of work per step
        locks: Per-job lock registry (shared between orchestrators in one process)
        thresholds: Selector thresholds for 'auto'
        job_timeout_seconds: Wall-clock budget from creation to a terminal state
        max_video_size_bytes: Largest video accepted at creation
        clock: Source of timestamps, injectable for tests
    """

    def __init__(
        self,
        store: JobStore,
        machine: PipelineStateMachine,
        *,
        locks: Optional[JobLocks] = None,
        thresholds: SelectorThresholds = SelectorThresholds(),
        job_timeout_seconds: float = JOB_TIMEOUT_SECONDS,
        max_video_size_bytes: int = MAX_VIDEO_SIZE_MB * 1024 * 1024,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self.machine = machine
        self.locks = locks or JobLocks()
        self._thresholds = thresholds
        self._job_timeout = timedelta(seconds=job_timeout_seconds)
        self._max_video_size_bytes = max_video_size_bytes
        self._clock = clock

    async def create_job(
        self,
        kind: Union[str, JobKind],
        source_location: str,
        preference: Union[str, PipelinePreference, None] = PipelinePreference.auto,
        *,
        file_size_bytes: Optional[int] = None,
        duration_seconds: Optional[float] = None,
        voice_id: Optional[str] = None,
    ) -> str:
        """
        Validate a request, pick its pipeline and persist a queued job.

        Returns the new job id. Raises ValidationError without creating
        anything when the request is unacceptable.
        """
        try:
            kind = JobKind(kind)
        except ValueError:
            raise ValidationError(f'Unsupported media kind: {kind}', "expected 'video' or 'image'")

        if not source_location or not source_location.strip():
            raise ValidationError('Source location is required')
        parse_source_location(source_location)

        if file_size_bytes is not None and file_size_bytes < 0:
            raise ValidationError('File size cannot be negative', str(file_size_bytes))
        if duration_seconds is not None and duration_seconds < 0:
            raise ValidationError('Duration cannot be negative', str(duration_seconds))

        if (kind == JobKind.video and file_size_bytes is not None
                and file_size_bytes > self._max_video_size_bytes):
            raise ValidationError(
                'Video file too large',
                f'{file_size_bytes / (1024 * 1024):.0f}MB exceeds the '
                f'{self._max_video_size_bytes / (1024 * 1024):.0f}MB limit',
            )

        selection = select_pipeline(
            preference,
            kind=kind,
            file_size_bytes=file_size_bytes,
            duration_seconds=duration_seconds,
            thresholds=self._thresholds,
        )

        record = JobRecord(
            kind=kind,
            pipeline=selection.pipeline,
            pipeline_reason=selection.reason,
            auto_selected=selection.auto_selected,
            message='Job queued',
            source_location=source_location.strip(),
            voice_id=voice_id,
            file_size_bytes=file_size_bytes,
            duration_seconds=duration_seconds,
            created_at=self._clock(),
        )
        await self.store.create(record)

        logger.info(
            'Created %s job %s on the %s pipeline (%s)',
            kind.value, record.id, selection.pipeline.value, selection.reason,
        )
        return record.id

    async def advance(self, job_id: str) -> JobRecord:
        """
        Perform at most one step of work on a job and return its new state.

        Terminal jobs are returned unchanged. Concurrent calls for the same
        job are serialized; the second sees the first's persisted result.
        """
        async with self.locks.hold(job_id):
            job = await self.store.get(job_id)
            if job is None:
                raise JobNotFound(f'Job not found: {job_id}')
            if job.is_terminal:
                return job

            previous_status = job.status
            previous_progress = job.progress

            if self._clock() - job.created_at > self._job_timeout:
                logger.warning('Job %s exceeded its %s budget', job_id, self._job_timeout)
                self.machine.fail(job, JobTimeout(
                    'Job timed out',
                    f'not finished within {self._job_timeout.total_seconds():g} seconds '
                    f'(last status: {previous_status.value})',
                ))
            else:
                await self.machine.step(job)

            job.progress = max(job.progress, previous_progress)
            await self.store.save(job)

            if job.status != previous_status:
                logger.info('Job %s: %s -> %s (%d%%)', job_id, previous_status.value, job.status.value,
                            job.progress)
            return job

    async def get_job(self, job_id: str) -> JobRecord:
        """Read a job without advancing it."""
        job = await self.store.get(job_id)
        if job is None:
            raise JobNotFound(f'Job not found: {job_id}')
        return job

    async def list_jobs(self, limit: int = 50, offset: int = 0) -> Tuple[List[JobRecord], int]:
        return await self.store.list(limit=limit, offset=offset)

    async def delete_job(self, job_id: str):
        async with self.locks.hold(job_id):
            if not await self.store.delete(job_id):
                raise JobNotFound(f'Job not found: {job_id}')
        logger.info('Deleted job %s', job_id)

    async def get_artifact(self, job_id: str, kind: Union[str, ArtifactKind]) -> Artifact:
        """Fetch the text or audio output of a completed job."""
        kind = ArtifactKind(kind)
        job = await self.get_job(job_id)
        if job.status != JobStatus.completed:
            raise ArtifactNotFound(f'Job {job_id} is {job.status.value}, artifacts are not ready')

        ref = job.text_artifact if kind == ArtifactKind.text else job.audio_artifact
        if not ref:
            raise ArtifactNotFound(f'Job {job_id} has no {kind.value} artifact')

        data = await self.machine.artifacts.get(ref)
        filename = ref.rsplit('/', 1)[-1]
        media_type, _ = mimetypes.guess_type(filename)
        if kind == ArtifactKind.text:
            media_type = 'text/plain; charset=utf-8'
        return Artifact(data=data, media_type=media_type or 'application/octet-stream', filename=filename)

    async def advance_active(self) -> int:
        """Advance every non-terminal job once. Returns how many were advanced."""
        advanced = 0
        for job_id in await self.store.list_active_ids():
            try:
                await self.advance(job_id)
            except JobNotFound:
                # Deleted between listing and advancing
                continue
            advanced += 1
        return advanced


# Singleton instance
_orchestrator: Optional[JobOrchestrator] = None


def get_orchestrator() -> JobOrchestrator:
    """Get the orchestrator singleton, wired to the configured database and providers."""
    global _orchestrator
    if _orchestrator is None:
        from voicedesc.config import SPEECH_MAX_CHARS
        from voicedesc.database import async_session_factory
        from voicedesc.providers import build_providers
        from voicedesc.services.artifacts import build_artifact_store

        machine = PipelineStateMachine(
            build_providers(),
            build_artifact_store(),
            chunk_limit=SPEECH_MAX_CHARS,
        )
        _orchestrator = JobOrchestrator(JobStore(async_session_factory), machine)
    return _orchestrator


def reset_orchestrator():
    """Reset the orchestrator singleton (for testing)."""
    global _orchestrator
    _orchestrator = None
