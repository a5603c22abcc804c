"""
Health check endpoint.
"""
from pydantic import BaseModel
from fastapi import APIRouter, Depends

from voicedesc.config import APP_VERSION
from voicedesc.services.orchestrator import JobOrchestrator, get_orchestrator


router = APIRouter(tags=['health'])


class HealthResponse(BaseModel):
    """Health check response schema."""
    status: str
    version: str
    segmentation_provider: str
    speech_provider: str
    speech_ready: bool


@router.get('/health', response_model=HealthResponse)
async def health_check(orchestrator: JobOrchestrator = Depends(get_orchestrator)) -> HealthResponse:
    """
    Check server health status.

    Reports the configured adapters and whether the speech engine can take
    requests. Fast response - no database or provider calls.
    """
    providers = orchestrator.machine.providers
    return HealthResponse(
        status='ok',
        version=APP_VERSION,
        segmentation_provider=type(providers.segmenter).__name__,
        speech_provider=type(providers.speech).__name__,
        speech_ready=providers.speech.is_ready,
    )
