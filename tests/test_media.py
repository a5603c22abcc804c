"""
Source media access and frame extraction tests.
"""
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from voicedesc.errors import ExtractionError, ValidationError
from voicedesc.providers.frames import FfmpegFrameExtractor
from voicedesc.providers.media import MediaFetcher, parse_source_location, run_command


def s3_client_writing(content: bytes = b'video-bytes') -> MagicMock:
    client = MagicMock()
    client.download_file.side_effect = lambda bucket, key, path: Path(path).write_bytes(content)
    return client


class TestParseSourceLocation:
    """Tests for media location parsing."""

    def test_s3(self):
        """Test s3 URIs split into bucket and key."""
        location = parse_source_location('s3://media/input/My Clip.mp4')

        assert location.is_s3
        assert location.bucket == 'media'
        assert location.key == 'input/My Clip.mp4'
        assert location.name == 'My Clip.mp4'

    def test_file_uri_and_path(self):
        """Test file URIs and absolute paths are local."""
        assert parse_source_location('file:///data/clip.mp4').path == Path('/data/clip.mp4')
        assert parse_source_location('/data/clip.mp4').path == Path('/data/clip.mp4')

    @pytest.mark.parametrize('location', ['', '   ', 's3://bucket-only', 's3:///key', 'clip.mp4', 'http://x/y.mp4'])
    def test_invalid(self, location):
        """Test unsupported locations are validation errors."""
        with pytest.raises(ValidationError):
            parse_source_location(location)


class TestMediaFetcher:
    """Tests for scoped local copies."""

    @pytest.mark.asyncio
    async def test_local_file_is_used_in_place(self, tmp_path):
        """Test local sources are not copied."""
        video = tmp_path / 'clip.mp4'
        video.write_bytes(b'local')

        async with MediaFetcher(client=MagicMock()).local_copy(str(video)) as path:
            assert path == video

    @pytest.mark.asyncio
    async def test_missing_local_file(self, tmp_path):
        """Test a missing local file is an extraction error."""
        with pytest.raises(ExtractionError):
            async with MediaFetcher(client=MagicMock()).local_copy(str(tmp_path / 'missing.mp4')):
                pass

    @pytest.mark.asyncio
    async def test_s3_copy_is_removed_after_use(self):
        """Test downloaded media is deleted when the scope exits."""
        fetcher = MediaFetcher(client=s3_client_writing())

        async with fetcher.local_copy('s3://media/input/clip.mp4') as path:
            assert path.read_bytes() == b'video-bytes'
            assert path.name == 'clip.mp4'

        assert not path.exists()
        assert not path.parent.exists()

    @pytest.mark.asyncio
    async def test_s3_download_failure(self):
        """Test download errors are extraction errors and leave nothing behind."""
        client = MagicMock()
        client.download_file.side_effect = ClientError({'Error': {'Code': '404'}}, 'HeadObject')

        with pytest.raises(ExtractionError) as exc_info:
            async with MediaFetcher(client=client).local_copy('s3://media/input/clip.mp4'):
                pass

        assert 's3://media/input/clip.mp4' in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_throttled_download_is_retried(self, monkeypatch):
        """Test a transient S3 failure is retried before the copy is used."""
        monkeypatch.setattr('voicedesc.services.retry.RETRY_BASE_DELAY', 0.0)
        throttle = ClientError(
            {'Error': {'Code': 'ThrottlingException', 'Message': 'slow down'},
             'ResponseMetadata': {'HTTPStatusCode': 429}},
            'GetObject',
        )
        client = MagicMock()
        outcomes = [throttle, None]

        def download(bucket, key, path):
            outcome = outcomes.pop(0)
            if outcome:
                raise outcome
            Path(path).write_bytes(b'video-bytes')

        client.download_file.side_effect = download

        async with MediaFetcher(client=client).local_copy('s3://media/clip.mp4') as path:
            assert path.read_bytes() == b'video-bytes'

        assert client.download_file.call_count == 2

    @pytest.mark.asyncio
    async def test_persistent_throttling_is_an_extraction_error(self, monkeypatch):
        """Test exhausted retries surface as an extraction error naming the object."""
        monkeypatch.setattr('voicedesc.services.retry.RETRY_BASE_DELAY', 0.0)
        monkeypatch.setattr('voicedesc.services.retry.RETRY_ATTEMPTS', 3)
        client = MagicMock()
        client.download_file.side_effect = ClientError(
            {'Error': {'Code': 'SlowDown', 'Message': 'slow down'},
             'ResponseMetadata': {'HTTPStatusCode': 503}},
            'GetObject',
        )

        with pytest.raises(ExtractionError) as exc_info:
            async with MediaFetcher(client=client).local_copy('s3://media/clip.mp4'):
                pass

        assert client.download_file.call_count == 3
        assert exc_info.value.detail == 's3://media/clip.mp4: SlowDown: slow down'

    @pytest.mark.asyncio
    async def test_read_bytes(self):
        """Test read_bytes returns the object's content."""
        fetcher = MediaFetcher(client=s3_client_writing(b'\x89PNG data'))

        assert await fetcher.read_bytes('s3://media/input/photo.png') == b'\x89PNG data'


class TestRunCommand:
    """Tests for the subprocess helper."""

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        """Test a missing tool is reported as an extraction error."""
        with pytest.raises(ExtractionError) as exc_info:
            await run_command('voicedesc-no-such-binary', '-version')

        assert 'not installed' in exc_info.value.message


class TestFfmpegFrameExtractor:
    """Tests for frame extraction with ffmpeg mocked out."""

    @pytest.mark.asyncio
    async def test_extracts_frame(self):
        """Test the frame written by ffmpeg is returned."""
        async def fake_ffmpeg(*args, **kwargs):
            Path(args[-1]).write_bytes(b'\xff\xd8jpeg')
            return b''

        extractor = FfmpegFrameExtractor(MediaFetcher(client=s3_client_writing()))
        with patch('voicedesc.providers.frames.run_command', side_effect=fake_ffmpeg) as mock_run:
            frame = await extractor.extract_frame('s3://media/input/clip.mp4', 12.5)

        assert frame == b'\xff\xd8jpeg'
        args = mock_run.call_args.args
        assert args[args.index('-ss') + 1] == '12.500'

    @pytest.mark.asyncio
    async def test_temp_files_removed_on_failure(self):
        """Test the downloaded video and frame directory are cleaned up when ffmpeg fails."""
        seen = {}

        async def failing_ffmpeg(*args, **kwargs):
            seen['video'] = Path(args[args.index('-i') + 1])
            seen['frame'] = Path(args[-1])
            assert seen['video'].exists()
            raise ExtractionError('ffmpeg failed with code 1', 'Invalid data found when processing input')

        extractor = FfmpegFrameExtractor(MediaFetcher(client=s3_client_writing()))
        with patch('voicedesc.providers.frames.run_command', side_effect=failing_ffmpeg):
            with pytest.raises(ExtractionError):
                await extractor.extract_frame('s3://media/input/clip.mp4', 3.0)

        assert not seen['video'].parent.exists()
        assert not seen['frame'].parent.exists()

    @pytest.mark.asyncio
    async def test_no_frame_written(self):
        """Test a timestamp past the end of the video is an extraction error."""
        extractor = FfmpegFrameExtractor(MediaFetcher(client=s3_client_writing()))
        with patch('voicedesc.providers.frames.run_command', new=AsyncMock(return_value=b'')):
            with pytest.raises(ExtractionError) as exc_info:
                await extractor.extract_frame('s3://media/input/clip.mp4', 999.0)

        assert exc_info.value.message == 'No frame extracted'

    @pytest.mark.asyncio
    async def test_fetch_image(self):
        """Test images are fetched as-is."""
        extractor = FfmpegFrameExtractor(MediaFetcher(client=s3_client_writing(b'\x89PNG')))

        assert await extractor.fetch_image('s3://media/input/photo.png') == b'\x89PNG'

    @pytest.mark.asyncio
    async def test_fetch_empty_image(self):
        """Test an empty image is rejected."""
        extractor = FfmpegFrameExtractor(MediaFetcher(client=s3_client_writing(b'')))

        with pytest.raises(ExtractionError):
            await extractor.fetch_image('s3://media/input/photo.png')
