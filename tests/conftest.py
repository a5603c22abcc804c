"""
Pytest fixtures for testing.
"""
import asyncio
from datetime import datetime, timedelta
from typing import List, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from voicedesc.database import create_engine, create_session_factory, init_db
from voicedesc.errors import ProviderError
from voicedesc.providers import Providers
from voicedesc.providers.base import FrameExtractor, Segmenter, SpeechSynthesizer, VisionDescriber, VisionText
from voicedesc.schemas.job import Segment
from voicedesc.services.artifacts import LocalArtifactStore
from voicedesc.services.job_processor import reset_pipeline_driver
from voicedesc.services.job_store import JobLocks, JobStore
from voicedesc.services.orchestrator import JobOrchestrator, get_orchestrator, reset_orchestrator
from voicedesc.services.state_machine import PipelineStateMachine


class FakeSegmenter(Segmenter):
    """Returns fixed segments and counts calls."""

    def __init__(self, segments: Optional[List[Segment]] = None):
        self.segments = segments if segments is not None else [
            Segment(start_offset=0.0, end_offset=10.0),
            Segment(start_offset=10.0, end_offset=20.0),
            Segment(start_offset=20.0, end_offset=30.0),
        ]
        self.calls = 0
        self.delay = 0.0
        self.error: Optional[Exception] = None

    async def segment(self, source_location: str) -> List[Segment]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return list(self.segments)


class FakeFrames(FrameExtractor):
    """Returns synthetic JPEG bytes and records requested timestamps."""

    def __init__(self):
        self.timestamps: List[float] = []
        self.image_calls = 0
        self.error: Optional[Exception] = None

    async def extract_frame(self, source_location: str, timestamp: float) -> bytes:
        self.timestamps.append(timestamp)
        if self.error:
            raise self.error
        return b'\xff\xd8frame-' + str(timestamp).encode()

    async def fetch_image(self, source_location: str) -> bytes:
        self.image_calls += 1
        if self.error:
            raise self.error
        return b'\x89PNG image'


class FakeVision(VisionDescriber):
    """Numbered descriptions; can fail on a given call."""

    def __init__(self):
        self.calls = 0
        self.prompts: List[str] = []
        self.texts: List[str] = []
        self.delay = 0.0
        self.fail_on_call: Optional[int] = None
        self.error: Optional[Exception] = None

    async def describe(self, image_bytes: bytes, prompt: str) -> VisionText:
        self.calls += 1
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_on_call == self.calls:
            raise self.error or ProviderError('Vision analysis failed', 'model unavailable')
        if len(self.texts) >= self.calls:
            return VisionText(text=self.texts[self.calls - 1], shape='output_message')
        return VisionText(text=f'Description {self.calls}.', shape='output_message')


class FakeSpeech(SpeechSynthesizer):
    """Records synthesized chunks and returns placeholder audio."""

    media_type = 'audio/mpeg'
    file_extension = 'mp3'

    def __init__(self, max_chars: int = 3000):
        self.max_chars = max_chars
        self.inputs: List[str] = []
        self.voices: List[Optional[str]] = []
        self.error: Optional[Exception] = None

    async def synthesize(self, text: str, voice_id: Optional[str] = None) -> bytes:
        if len(text) > self.max_chars:
            raise ProviderError('Speech input too long', f'{len(text)} characters')
        if self.error:
            raise self.error
        self.inputs.append(text)
        self.voices.append(voice_id)
        return f'<audio {len(self.inputs)}>'.encode()


class FakeClock:
    """Controllable clock for timeout tests."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


@pytest_asyncio.fixture(scope='function')
async def test_engine(tmp_path):
    """Create a per-test database engine."""
    engine = create_engine(f'sqlite+aiosqlite:///{tmp_path / "test.db"}')
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return create_session_factory(test_engine)


@pytest.fixture
def store(session_factory):
    return JobStore(session_factory)


@pytest.fixture
def providers():
    return Providers(
        segmenter=FakeSegmenter(),
        frames=FakeFrames(),
        vision=FakeVision(),
        speech=FakeSpeech(),
    )


@pytest.fixture
def artifact_store(tmp_path):
    return LocalArtifactStore(tmp_path / 'artifacts')


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def machine(providers, artifact_store, clock):
    return PipelineStateMachine(providers, artifact_store, clock=clock)


@pytest.fixture
def orchestrator(store, machine, clock):
    return JobOrchestrator(store, machine, locks=JobLocks(), job_timeout_seconds=1800.0, clock=clock)


@pytest.fixture
def run_to_completion(orchestrator):
    """Advance a job until it is terminal; returns the list of records seen."""
    async def run(job_id: str, max_steps: int = 50):
        seen = []
        for _ in range(max_steps):
            job = await orchestrator.advance(job_id)
            seen.append(job)
            if job.is_terminal:
                return seen
        raise AssertionError(f'Job {job_id} did not finish in {max_steps} steps')
    return run


@pytest_asyncio.fixture
async def client(orchestrator):
    """Create a test client wired to the fake-backed orchestrator."""
    # Reset singletons
    reset_orchestrator()
    reset_pipeline_driver()

    # Import app after resetting singletons
    from server import app

    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test') as client:
        yield client

    # Clean up
    app.dependency_overrides.clear()
    reset_orchestrator()
    reset_pipeline_driver()
