"""
Job endpoints for media description.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, Response

from voicedesc.errors import ArtifactNotFound, JobNotFound, ValidationError
from voicedesc.models.job import ArtifactKind
from voicedesc.schemas.job import JobCreate, JobListResponse, JobRecord
from voicedesc.services.job_processor import get_running_driver
from voicedesc.services.orchestrator import JobOrchestrator, get_orchestrator


router = APIRouter(prefix='/jobs', tags=['jobs'])


@router.get('', response_model=JobListResponse)
async def list_jobs(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobListResponse:
    """
    List description jobs with pagination.

    Returns jobs ordered by creation time (newest first). Listing never
    advances a job.
    """
    jobs, total = await orchestrator.list_jobs(limit=limit, offset=offset)
    return JobListResponse(jobs=jobs, total=total, limit=limit, offset=offset)


@router.post('', response_model=JobRecord, status_code=201)
async def create_job(
    job_data: JobCreate,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobRecord:
    """
    Create a new description job.

    Returns immediately with the queued job. Poll GET /jobs/{id} to drive it.

    Raises:
        400: The request was rejected; no job was created
    """
    try:
        job_id = await orchestrator.create_job(
            job_data.kind,
            job_data.source_location,
            job_data.pipeline,
            file_size_bytes=job_data.file_size_bytes,
            duration_seconds=job_data.duration_seconds,
            voice_id=job_data.voice_id,
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=400,
            detail={'code': e.code.value, 'message': e.message, 'detail': e.detail},
        )

    driver = get_running_driver()
    if driver:
        await driver.enqueue(job_id)

    return await orchestrator.get_job(job_id)


@router.get('/{job_id}', response_model=JobRecord)
async def get_job(
    job_id: str,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobRecord:
    """
    Advance a job by one step and return its state.

    Terminal jobs are returned unchanged, so polling them is free.
    """
    try:
        return await orchestrator.advance(job_id)
    except JobNotFound:
        raise HTTPException(status_code=404, detail=f'Job not found: {job_id}')


async def _artifact_response(orchestrator: JobOrchestrator, job_id: str, kind: ArtifactKind) -> Response:
    try:
        artifact = await orchestrator.get_artifact(job_id, kind)
    except JobNotFound:
        raise HTTPException(status_code=404, detail=f'Job not found: {job_id}')
    except ArtifactNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))

    return Response(
        content=artifact.data,
        media_type=artifact.media_type,
        headers={'Content-Disposition': f'attachment; filename="{job_id}-{artifact.filename}"'},
    )


@router.get('/{job_id}/text')
async def get_job_text(
    job_id: str,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """
    Download the narration text of a completed job.

    Raises:
        404: Job not found or text not ready
    """
    return await _artifact_response(orchestrator, job_id, ArtifactKind.text)


@router.get('/{job_id}/audio')
async def get_job_audio(
    job_id: str,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """
    Download the narration audio of a completed job.

    Raises:
        404: Job not found or audio not ready
    """
    return await _artifact_response(orchestrator, job_id, ArtifactKind.audio)


@router.delete('/{job_id}', status_code=204)
async def delete_job(
    job_id: str,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """
    Delete a job record. Stored artifacts are write-once and left in place.
    """
    try:
        await orchestrator.delete_job(job_id)
    except JobNotFound:
        raise HTTPException(status_code=404, detail=f'Job not found: {job_id}')
