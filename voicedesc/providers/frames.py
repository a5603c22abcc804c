"""
Frame extraction with ffmpeg.
"""
import logging
import tempfile
from pathlib import Path

from voicedesc.config import FFMPEG_BINARY
from voicedesc.errors import ExtractionError
from voicedesc.providers.base import FrameExtractor
from voicedesc.providers.media import MediaFetcher, run_command

logger = logging.getLogger(__name__)


class FfmpegFrameExtractor(FrameExtractor):
    """
    Grabs single JPEG frames from video with ffmpeg.

    The source is fetched to local disk first when it lives in S3. Both the
    downloaded video and the frame file live in temporary directories that
    are removed on every exit path.
    """

    def __init__(self, fetcher: MediaFetcher = None):
        self._fetcher = fetcher or MediaFetcher()

    async def extract_frame(self, source_location: str, timestamp: float) -> bytes:
        timestamp = max(0.0, float(timestamp))
        logger.debug('Extracting frame at %.2fs from %s', timestamp, source_location)

        async with self._fetcher.local_copy(source_location) as video_path:
            with tempfile.TemporaryDirectory(prefix='voicedesc-frame-') as tmpdir:
                frame_path = Path(tmpdir) / 'frame.jpg'
                await run_command(
                    FFMPEG_BINARY,
                    '-ss', f'{timestamp:.3f}',
                    '-i', str(video_path),
                    '-frames:v', '1',
                    '-f', 'image2',
                    '-vcodec', 'mjpeg',
                    '-q:v', '2',
                    '-y',
                    str(frame_path),
                )
                if not frame_path.is_file() or frame_path.stat().st_size == 0:
                    raise ExtractionError('No frame extracted', f'nothing at {timestamp:.2f}s in {source_location}')
                return frame_path.read_bytes()

    async def fetch_image(self, source_location: str) -> bytes:
        data = await self._fetcher.read_bytes(source_location)
        if not data:
            raise ExtractionError('Image is empty', source_location)
        return data
