"""Capability interfaces for the external AI providers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from voicedesc.schemas.job import Segment


@dataclass(frozen=True)
class VisionText:
    """Description text extracted from a vision provider response."""
    text: str
    shape: str
    flagged: bool = False


class Segmenter(ABC):
    """Splits a video into time-bounded segments."""

    @abstractmethod
    async def segment(self, source_location: str) -> List[Segment]:
        """
        Return the segments of the video in ascending time order.

        Returns only on definite success; raises ProviderError on failure and
        ProviderTimeout when an asynchronous provider does not finish in time.
        """
        ...


class FrameExtractor(ABC):
    """Produces still images from source media."""

    @abstractmethod
    async def extract_frame(self, source_location: str, timestamp: float) -> bytes:
        """Return an encoded still image of the video at ``timestamp`` seconds."""
        ...

    @abstractmethod
    async def fetch_image(self, source_location: str) -> bytes:
        """Return the bytes of an image asset."""
        ...


class VisionDescriber(ABC):
    """Describes an image in natural language."""

    @abstractmethod
    async def describe(self, image_bytes: bytes, prompt: str) -> VisionText:
        ...


class SpeechSynthesizer(ABC):
    """Converts text to audio."""

    max_chars: int = 3000
    media_type: str = 'audio/mpeg'
    file_extension: str = 'mp3'

    @abstractmethod
    async def synthesize(self, text: str, voice_id: Optional[str] = None) -> bytes:
        """Synthesize at most ``max_chars`` characters of text."""
        ...

    def join(self, parts: List[bytes]) -> bytes:
        """Combine per-chunk audio into one stream, in order."""
        return b''.join(parts)

    @property
    def is_ready(self) -> bool:
        return True
