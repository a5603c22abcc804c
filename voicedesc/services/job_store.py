"""
Job persistence and per-job serialization.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, func, delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from voicedesc.models.job import Job, JobStatus
from voicedesc.schemas.job import Description, JobError, JobRecord, Segment

_ACTIVE_STATUSES = [
    JobStatus.queued.value,
    JobStatus.segmenting.value,
    JobStatus.analyzing.value,
    JobStatus.synthesizing.value,
]


def _to_record(row: Job) -> JobRecord:
    error = None
    if row.error_code:
        error = JobError(code=row.error_code, message=row.error_message or '', detail=row.error_detail)

    return JobRecord(
        id=row.id,
        kind=row.kind,
        status=row.status,
        pipeline=row.pipeline,
        pipeline_reason=row.pipeline_reason or '',
        auto_selected=bool(row.auto_selected),
        progress=row.progress,
        message=row.message or '',
        source_location=row.source_location,
        voice_id=row.voice_id,
        file_size_bytes=row.file_size_bytes,
        duration_seconds=row.duration_seconds,
        segments=[Segment.model_validate(s) for s in row.segments or []],
        descriptions=[Description.model_validate(d) for d in row.descriptions or []],
        overview=row.overview,
        alt_text=row.alt_text,
        text_artifact=row.text_artifact,
        audio_artifact=row.audio_artifact,
        error=error,
        created_at=row.created_at,
        completed_at=row.completed_at,
    )


def _apply(row: Job, record: JobRecord):
    """Copy the mutable fields of a record onto its row."""
    row.status = record.status.value
    row.progress = record.progress
    row.message = record.message
    # JSON columns are replaced wholesale so the change is always flushed
    row.segments = [s.model_dump() for s in record.segments]
    row.descriptions = [d.model_dump() for d in record.descriptions]
    row.overview = record.overview
    row.alt_text = record.alt_text
    row.text_artifact = record.text_artifact
    row.audio_artifact = record.audio_artifact
    row.error_code = record.error.code if record.error else None
    row.error_message = record.error.message if record.error else None
    row.error_detail = record.error.detail if record.error else None
    row.completed_at = record.completed_at


class JobStore:
    """
    Key-value persistence of job records on top of an async SQLAlchemy session factory.

    Records go in and come out as ``JobRecord`` snapshots; callers never hold
    live ORM rows.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def create(self, record: JobRecord) -> JobRecord:
        async with self._session_factory() as session:
            row = Job(
                id=record.id,
                kind=record.kind.value,
                pipeline=record.pipeline.value,
                pipeline_reason=record.pipeline_reason,
                auto_selected=record.auto_selected,
                source_location=record.source_location,
                voice_id=record.voice_id,
                file_size_bytes=record.file_size_bytes,
                duration_seconds=record.duration_seconds,
                created_at=record.created_at,
            )
            _apply(row, record)
            session.add(row)
            await session.commit()
        return record

    async def get(self, job_id: str) -> Optional[JobRecord]:
        async with self._session_factory() as session:
            row = await self._fetch(session, job_id)
            return _to_record(row) if row else None

    async def save(self, record: JobRecord) -> JobRecord:
        async with self._session_factory() as session:
            row = await self._fetch(session, record.id)
            if row is None:
                raise LookupError(f'Job not found: {record.id}')
            _apply(row, record)
            await session.commit()
        return record

    async def list(self, limit: int = 50, offset: int = 0) -> Tuple[List[JobRecord], int]:
        """List jobs newest first, with the total count."""
        async with self._session_factory() as session:
            count_result = await session.execute(select(func.count(Job.id)))
            total = count_result.scalar()

            result = await session.execute(
                select(Job)
                .order_by(Job.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            return [_to_record(row) for row in result.scalars().all()], total

    async def list_active_ids(self) -> List[str]:
        """Ids of non-terminal jobs, oldest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Job.id)
                .where(Job.status.in_(_ACTIVE_STATUSES))
                .order_by(Job.created_at.asc())
            )
            return [row[0] for row in result.fetchall()]

    async def delete(self, job_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(delete(Job).where(Job.id == job_id))
            await session.commit()
            return result.rowcount > 0

    @staticmethod
    async def _fetch(session: AsyncSession, job_id: str) -> Optional[Job]:
        result = await session.execute(select(Job).where(Job.id == job_id))
        return result.scalar_one_or_none()


class JobLocks:
    """
    Registry of per-job asyncio locks.

    Holding ``hold(job_id)`` serializes the load-advance-persist cycle for one
    job; different jobs never contend. A lock is discarded once nobody holds or
    waits for it.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, job_id: str):
        lock = self._locks.setdefault(job_id, asyncio.Lock())
        self._users[job_id] = self._users.get(job_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[job_id] -= 1
            if self._users[job_id] == 0:
                del self._users[job_id]
                del self._locks[job_id]

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._locks
