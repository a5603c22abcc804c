"""
Step-wise state machine that drives a job through its pipeline.

Each call to ``step`` performs at most one unit of work (one segmentation
call, one segment analysis, or the synthesis of the whole narration) and
records the result on the job. Sub-results already present on the job are
never recomputed.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from voicedesc.errors import InternalError, PipelineError, ProviderError
from voicedesc.models.job import JobKind, JobStatus, PipelineType
from voicedesc.providers import Providers
from voicedesc.schemas.job import Description, JobError, JobRecord, Segment
from voicedesc.services import prompts
from voicedesc.services.artifacts import ArtifactStore
from voicedesc.services.chunking import chunk_text
from voicedesc.services.narration import clean_description, make_alt_text, prepare_for_speech

logger = logging.getLogger(__name__)

# Progress milestones (percent)
SEGMENTED_PROGRESS = 35
ANALYZED_PROGRESS = 70
COMPLETED_PROGRESS = 100

TEXT_ARTIFACT_NAME = 'description.txt'
NARRATION_SEPARATOR = ' ... '


def compose_narration(job: JobRecord) -> str:
    """
    Build the full narration text for a job.

    Each description is tidied first. Segment-by-segment narrations are
    prefixed with their start time; single pass (image or fast) narrations
    are the description itself. A split job's overview opens the narration.
    """
    timestamped = not (job.kind == JobKind.image or job.pipeline == PipelineType.fast)
    parts = []
    for d in job.descriptions:
        text = clean_description(d.text)
        if text and timestamped:
            text = f'At {int(d.start_offset)} seconds: {text}'
        parts.append(text)

    if job.overview:
        parts.insert(0, clean_description(job.overview))

    return NARRATION_SEPARATOR.join(p for p in parts if p)


def _needs_overview(job: JobRecord) -> bool:
    return job.pipeline == PipelineType.split and job.kind == JobKind.video and job.overview is None


def analysis_progress(done: int, total: int) -> int:
    if total <= 0:
        return SEGMENTED_PROGRESS
    return SEGMENTED_PROGRESS + ((ANALYZED_PROGRESS - SEGMENTED_PROGRESS) * done) // total


class PipelineStateMachine:
    """
    Advances job records one step at a time.

    Args:
        providers: Adapters for segmentation, frames, vision and speech
        artifacts: Where final text and audio are written
        chunk_limit: Max characters per speech request (capped by the
            synthesizer's own limit)
        default_voice_id: Voice used when a job names none (None = provider default)
        clock: Source of timestamps, injectable for tests
    """

    def __init__(
        self,
        providers: Providers,
        artifacts: ArtifactStore,
        *,
        chunk_limit: Optional[int] = None,
        default_voice_id: Optional[str] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._providers = providers
        self._artifacts = artifacts
        self._chunk_limit = chunk_limit
        self._default_voice_id = default_voice_id
        self._clock = clock

    @property
    def providers(self) -> Providers:
        return self._providers

    @property
    def artifacts(self) -> ArtifactStore:
        return self._artifacts

    @property
    def chunk_limit(self) -> int:
        limit = self._providers.speech.max_chars
        if self._chunk_limit:
            limit = min(limit, self._chunk_limit)
        return limit

    async def step(self, job: JobRecord) -> JobRecord:
        """Perform the next unit of work for ``job`` and return it."""
        if job.is_terminal:
            return job

        try:
            if job.status in (JobStatus.queued, JobStatus.segmenting):
                await self._segment(job)
            elif job.status == JobStatus.analyzing:
                await self._analyze(job)
            elif job.status == JobStatus.synthesizing:
                await self._synthesize(job)
        except InternalError as e:
            logger.error('Invariant violated for job %s: %s', job.id, e, exc_info=True)
            self.fail(job, e)
        except PipelineError as e:
            logger.error('Job %s failed during %s: %s', job.id, job.status.value, e)
            self.fail(job, e)
        except Exception as e:
            logger.exception('Unexpected error advancing job %s', job.id)
            self.fail(job, InternalError('Unexpected error while processing job', f'{type(e).__name__}: {e}'))

        return job

    def fail(self, job: JobRecord, error: PipelineError):
        """Move a job to the terminal failed state."""
        job.status = JobStatus.failed
        job.error = JobError(code=error.code.value, message=error.message, detail=error.detail)
        job.message = error.message
        job.completed_at = self._clock()

    async def _segment(self, job: JobRecord):
        if not job.segments:
            job.status = JobStatus.segmenting
            job.segments = await self._compute_segments(job)
            logger.info('Job %s: %d segments', job.id, len(job.segments))

        job.status = JobStatus.analyzing
        job.progress = max(job.progress, SEGMENTED_PROGRESS)
        job.message = f'Found {len(job.segments)} segments, starting scene analysis'

    async def _compute_segments(self, job: JobRecord):
        if job.kind == JobKind.image or job.pipeline == PipelineType.fast:
            # One implicit segment covering the whole asset
            return [Segment(start_offset=0.0, end_offset=job.duration_seconds or 0.0)]

        segments = await self._providers.segmenter.segment(job.source_location)
        if not segments:
            raise ProviderError('Video segmentation returned no segments', job.source_location)

        ordered = []
        for segment in sorted(segments, key=lambda s: s.start_offset):
            if ordered and segment.start_offset == ordered[-1].start_offset:
                logger.warning('Job %s: dropping duplicate segment at %gs', job.id, segment.start_offset)
                continue
            ordered.append(segment)
        return ordered

    async def _analyze(self, job: JobRecord):
        total = len(job.segments)
        done = len(job.descriptions)
        if done > total:
            raise InternalError(
                'More descriptions than segments',
                f'{done} descriptions for {total} segments',
            )

        if _needs_overview(job):
            await self._describe_overview(job)
        elif done < total:
            await self._describe_segment(job, done)
            done += 1
            job.progress = max(job.progress, analysis_progress(done, total))
            job.message = f'Analyzed {done} of {total} segments'

        if len(job.descriptions) == total and not _needs_overview(job):
            job.status = JobStatus.synthesizing
            job.progress = max(job.progress, ANALYZED_PROGRESS)
            job.message = f'Generated {total} scene descriptions, starting audio synthesis'

    async def _describe_overview(self, job: JobRecord):
        end = job.segments[-1].end_offset if job.segments else (job.duration_seconds or 0.0)
        try:
            frame = await self._providers.frames.extract_frame(job.source_location, end / 2)
            result = await self._providers.vision.describe(frame, prompts.overview_prompt())
        except PipelineError as e:
            raise type(e)('Overview analysis failed', str(e)) from e

        job.overview = result.text
        job.message = 'Generated overview, starting scene analysis'

    async def _describe_segment(self, job: JobRecord, index: int):
        segment = job.segments[index]
        number = index + 1
        try:
            if job.kind == JobKind.image:
                frame = await self._providers.frames.fetch_image(job.source_location)
                prompt = prompts.image_prompt()
            else:
                frame = await self._providers.frames.extract_frame(job.source_location, segment.midpoint)
                if job.pipeline == PipelineType.fast:
                    prompt = prompts.holistic_video_prompt(job.duration_seconds)
                else:
                    prompt = prompts.segment_prompt(segment.start_offset, segment.end_offset)

            result = await self._providers.vision.describe(frame, prompt)
        except PipelineError as e:
            raise type(e)(
                f'Scene analysis failed for segment {number}',
                f'segment {number} of {len(job.segments)} '
                f'({segment.start_offset:g}s-{segment.end_offset:g}s): {e}',
            ) from e

        if result.flagged:
            logger.warning('Job %s segment %d: vision response captured raw', job.id, number)

        job.descriptions.append(Description(
            start_offset=segment.start_offset,
            end_offset=segment.end_offset,
            text=result.text,
            flagged=result.flagged,
        ))
        if job.kind == JobKind.image:
            job.alt_text = make_alt_text(result.text) or None

    async def _synthesize(self, job: JobRecord):
        if len(job.descriptions) != len(job.segments):
            raise InternalError(
                'Synthesis reached with incomplete analysis',
                f'{len(job.descriptions)} descriptions for {len(job.segments)} segments',
            )

        speech = self._providers.speech
        text = compose_narration(job)
        chunks = chunk_text(prepare_for_speech(text), self.chunk_limit)
        if not chunks:
            raise ProviderError('No narration text to synthesize', 'all descriptions were empty')

        logger.info('Job %s: synthesizing %d characters in %d chunks', job.id, len(text), len(chunks))

        voice_id = job.voice_id or self._default_voice_id
        parts = []
        for number, chunk in enumerate(chunks, start=1):
            try:
                parts.append(await speech.synthesize(chunk, voice_id))
            except PipelineError as e:
                raise type(e)(f'Speech synthesis failed for chunk {number} of {len(chunks)}', str(e)) from e

        audio = speech.join(parts)

        job.text_artifact = await self._artifacts.put(
            job.id, TEXT_ARTIFACT_NAME, text.encode('utf-8'), 'text/plain; charset=utf-8',
        )
        job.audio_artifact = await self._artifacts.put(
            job.id, f'audio.{speech.file_extension}', audio, speech.media_type,
        )

        job.status = JobStatus.completed
        job.progress = COMPLETED_PROGRESS
        job.message = f'Description and audio ready ({len(chunks)} audio chunks)'
        job.completed_at = self._clock()
