"""
Pipeline selection for new jobs.

Pure decision logic: size, duration and the client's preference go in, a
pipeline tag and a reason come out. The choice is recorded on the job at
creation and never revisited.
"""
from dataclasses import dataclass
from typing import Optional, Union

from voicedesc.config import FAST_MAX_SIZE_MB, FAST_MAX_DURATION_SECONDS
from voicedesc.errors import ValidationError
from voicedesc.models.job import JobKind, PipelinePreference, PipelineType


@dataclass(frozen=True)
class SelectorThresholds:
    """Upper bounds under which 'auto' picks the fast pipeline for video."""
    fast_max_size_bytes: int = FAST_MAX_SIZE_MB * 1024 * 1024
    fast_max_duration_seconds: float = FAST_MAX_DURATION_SECONDS


@dataclass(frozen=True)
class PipelineSelection:
    pipeline: PipelineType
    reason: str
    auto_selected: bool


def _parse_preference(preference: Union[str, PipelinePreference, None]) -> PipelinePreference:
    if preference is None:
        return PipelinePreference.auto
    try:
        return PipelinePreference(preference)
    except ValueError:
        allowed = ', '.join(p.value for p in PipelinePreference)
        raise ValidationError(f'Unsupported pipeline preference: {preference}', f'expected one of {allowed}')


def select_pipeline(
    preference: Union[str, PipelinePreference, None],
    *,
    kind: JobKind,
    file_size_bytes: Optional[int] = None,
    duration_seconds: Optional[float] = None,
    thresholds: SelectorThresholds = SelectorThresholds(),
) -> PipelineSelection:
    """
    Choose the pipeline for a job.

    Explicit preferences are honoured, except 'split' on an image, which has
    nothing to split and runs detailed. 'auto' picks fast for images and for
    videos known to be within both thresholds; anything larger, longer, or of
    unknown size and duration runs detailed.
    """
    pref = _parse_preference(preference)

    if pref != PipelinePreference.auto:
        if pref == PipelinePreference.split and kind == JobKind.image:
            return PipelineSelection(PipelineType.detailed, 'Split has no effect on a single image', False)
        return PipelineSelection(PipelineType(pref.value), 'Client requested this pipeline', False)

    if kind == JobKind.image:
        return PipelineSelection(PipelineType.fast, 'Images are described in a single pass', True)

    if file_size_bytes is not None and file_size_bytes > thresholds.fast_max_size_bytes:
        size_mb = file_size_bytes / (1024 * 1024)
        limit_mb = thresholds.fast_max_size_bytes / (1024 * 1024)
        return PipelineSelection(
            PipelineType.detailed,
            f'File size ({size_mb:.0f}MB) exceeds fast pipeline limit ({limit_mb:.0f}MB)',
            True,
        )

    if duration_seconds is not None and duration_seconds > thresholds.fast_max_duration_seconds:
        return PipelineSelection(
            PipelineType.detailed,
            f'Duration ({duration_seconds:.0f}s) exceeds fast pipeline limit '
            f'({thresholds.fast_max_duration_seconds:.0f}s)',
            True,
        )

    if file_size_bytes is None and duration_seconds is None:
        return PipelineSelection(PipelineType.detailed, 'Size and duration unknown, using detailed pipeline', True)

    return PipelineSelection(PipelineType.fast, 'Short media, using fast pipeline', True)
