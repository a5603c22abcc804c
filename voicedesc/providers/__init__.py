"""
Adapters to the external AI capabilities used by the pipeline.
"""
from dataclasses import dataclass

from voicedesc.config import SEGMENTATION_PROVIDER, SPEECH_PROVIDER
from voicedesc.providers.base import FrameExtractor, Segmenter, SpeechSynthesizer, VisionDescriber, VisionText


@dataclass
class Providers:
    """The adapters one pipeline run talks to."""
    segmenter: Segmenter
    frames: FrameExtractor
    vision: VisionDescriber
    speech: SpeechSynthesizer


def build_providers(
    segmentation_provider: str = SEGMENTATION_PROVIDER,
    speech_provider: str = SPEECH_PROVIDER,
) -> Providers:
    """Assemble the configured adapters. Clients are created lazily on first call."""
    from voicedesc.providers.frames import FfmpegFrameExtractor
    from voicedesc.providers.media import MediaFetcher
    from voicedesc.providers.segmentation import FixedIntervalSegmenter, RekognitionSegmenter
    from voicedesc.providers.speech import ChatterboxSynthesizer, PollySynthesizer
    from voicedesc.providers.vision import BedrockVisionDescriber

    fetcher = MediaFetcher()

    if segmentation_provider == 'rekognition':
        segmenter = RekognitionSegmenter()
    elif segmentation_provider == 'fixed':
        segmenter = FixedIntervalSegmenter(fetcher)
    else:
        raise ValueError(f'Unknown segmentation provider: {segmentation_provider}')

    if speech_provider == 'polly':
        speech = PollySynthesizer()
    elif speech_provider == 'chatterbox':
        speech = ChatterboxSynthesizer()
    else:
        raise ValueError(f'Unknown speech provider: {speech_provider}')

    return Providers(
        segmenter=segmenter,
        frames=FfmpegFrameExtractor(fetcher),
        vision=BedrockVisionDescriber(),
        speech=speech,
    )


__all__ = [
    'Providers',
    'build_providers',
    'Segmenter',
    'FrameExtractor',
    'VisionDescriber',
    'SpeechSynthesizer',
    'VisionText',
]
