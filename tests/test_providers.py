"""
Segmentation and speech adapter tests with mocked AWS clients.
"""
import io
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from voicedesc.errors import ExtractionError, ProviderError, ProviderTimeout
from voicedesc.providers import build_providers
from voicedesc.providers.base import SpeechSynthesizer
from voicedesc.providers.media import MediaFetcher
from voicedesc.providers.segmentation import FixedIntervalSegmenter, RekognitionSegmenter
from voicedesc.providers.speech import ChatterboxSynthesizer, PollySynthesizer


def shot(start_ms: int, end_ms: int) -> dict:
    return {'Type': 'SHOT', 'StartTimestampMillis': start_ms, 'EndTimestampMillis': end_ms}


class TestRekognitionSegmenter:
    """Tests for the asynchronous start/poll segmentation flow."""

    @pytest.mark.asyncio
    async def test_polls_until_succeeded(self):
        """Test in-progress polls are repeated and all pages collected."""
        client = MagicMock()
        client.start_segment_detection.return_value = {'JobId': 'rk-1'}
        client.get_segment_detection.side_effect = [
            {'JobStatus': 'IN_PROGRESS'},
            {'JobStatus': 'SUCCEEDED', 'Segments': [shot(12000, 20500), shot(0, 12000)], 'NextToken': 'page-2'},
            {'JobStatus': 'SUCCEEDED', 'Segments': [shot(20500, 31000)]},
        ]
        segmenter = RekognitionSegmenter(client=client, poll_seconds=0)

        segments = await segmenter.segment('s3://media/input/clip.mp4')

        assert [(s.start_offset, s.end_offset) for s in segments] == [(0.0, 12.0), (12.0, 20.5), (20.5, 31.0)]
        started = client.start_segment_detection.call_args.kwargs
        assert started['Video'] == {'S3Object': {'Bucket': 'media', 'Name': 'input/clip.mp4'}}
        assert client.get_segment_detection.call_args.kwargs == {'JobId': 'rk-1', 'NextToken': 'page-2'}

    @pytest.mark.asyncio
    async def test_poll_ceiling(self):
        """Test a job that never finishes is a provider timeout."""
        client = MagicMock()
        client.start_segment_detection.return_value = {'JobId': 'rk-1'}
        client.get_segment_detection.return_value = {'JobStatus': 'IN_PROGRESS'}
        segmenter = RekognitionSegmenter(client=client, poll_seconds=0, max_polls=3)

        with pytest.raises(ProviderTimeout):
            await segmenter.segment('s3://media/input/clip.mp4')

        assert client.get_segment_detection.call_count == 3

    @pytest.mark.asyncio
    async def test_failed_job(self):
        """Test a failed detection job is a provider error with its message."""
        client = MagicMock()
        client.start_segment_detection.return_value = {'JobId': 'rk-1'}
        client.get_segment_detection.return_value = {'JobStatus': 'FAILED', 'StatusMessage': 'Unsupported codec'}
        segmenter = RekognitionSegmenter(client=client, poll_seconds=0)

        with pytest.raises(ProviderError) as exc_info:
            await segmenter.segment('s3://media/input/clip.mp4')

        assert exc_info.value.detail == 'Unsupported codec'

    @pytest.mark.asyncio
    async def test_local_source_rejected(self):
        """Test Rekognition requires an S3 source."""
        segmenter = RekognitionSegmenter(client=MagicMock(), poll_seconds=0)

        with pytest.raises(ProviderError):
            await segmenter.segment('/data/clip.mp4')


class TestFixedIntervalSegmenter:
    """Tests for duration-based windows."""

    def test_windows(self):
        """Test windows cover the duration with a short last window."""
        segments = FixedIntervalSegmenter(MagicMock(), window_seconds=30.0).windows(65.0)

        assert [(s.start_offset, s.end_offset) for s in segments] == [(0.0, 30.0), (30.0, 60.0), (60.0, 65.0)]

    def test_zero_duration(self):
        """Test an empty video has no windows."""
        assert FixedIntervalSegmenter(MagicMock()).windows(0.0) == []

    @pytest.mark.asyncio
    async def test_probe_duration(self, tmp_path):
        """Test the duration is read from ffprobe's JSON output."""
        video = tmp_path / 'clip.mp4'
        video.write_bytes(b'video')
        segmenter = FixedIntervalSegmenter(MediaFetcher(client=MagicMock()), window_seconds=30.0)

        with patch('voicedesc.providers.segmentation.run_command',
                   new=AsyncMock(return_value=b'{"format": {"duration": "65.0"}}')):
            segments = await segmenter.segment(str(video))

        assert len(segments) == 3

    @pytest.mark.asyncio
    async def test_probe_failure(self, tmp_path):
        """Test ffprobe failures are provider errors."""
        video = tmp_path / 'clip.mp4'
        video.write_bytes(b'video')
        segmenter = FixedIntervalSegmenter(MediaFetcher(client=MagicMock()))

        with patch('voicedesc.providers.segmentation.run_command',
                   new=AsyncMock(side_effect=ExtractionError('ffprobe failed with code 1'))):
            with pytest.raises(ProviderError):
                await segmenter.segment(str(video))


class TestPollySynthesizer:
    """Tests for Polly synthesis."""

    @pytest.mark.asyncio
    async def test_synthesize(self):
        """Test text is sent with the requested voice and MP3 returned."""
        client = MagicMock()
        client.synthesize_speech.return_value = {'AudioStream': io.BytesIO(b'mp3-bytes')}
        polly = PollySynthesizer(client=client, default_voice_id='Joanna', engine='neural')

        audio = await polly.synthesize('A red car.', voice_id='Matthew')

        assert audio == b'mp3-bytes'
        kwargs = client.synthesize_speech.call_args.kwargs
        assert kwargs['VoiceId'] == 'Matthew'
        assert kwargs['OutputFormat'] == 'mp3'
        assert kwargs['Engine'] == 'neural'

    @pytest.mark.asyncio
    async def test_default_voice(self):
        """Test the configured voice is used when none is given."""
        client = MagicMock()
        client.synthesize_speech.return_value = {'AudioStream': io.BytesIO(b'mp3')}

        await PollySynthesizer(client=client, default_voice_id='Joanna').synthesize('Hello.')

        assert client.synthesize_speech.call_args.kwargs['VoiceId'] == 'Joanna'

    @pytest.mark.asyncio
    async def test_too_long(self):
        """Test input over the limit is rejected without a provider call."""
        client = MagicMock()
        polly = PollySynthesizer(client=client, max_chars=3000)

        with pytest.raises(ProviderError):
            await polly.synthesize('x' * 3001)

        client.synthesize_speech.assert_not_called()

    def test_join_concatenates(self):
        """Test MP3 parts are joined in order."""
        assert PollySynthesizer(client=MagicMock()).join([b'a', b'b', b'c']) == b'abc'


class TestChatterboxSynthesizer:
    """Tests for the local engine that do not need the model."""

    def test_starts_unloaded(self, tmp_path):
        """Test the engine reports not ready until the model loads."""
        engine = ChatterboxSynthesizer(voices_dir=tmp_path)

        assert engine.is_ready is False
        assert engine.model is None
        assert engine.file_extension == 'wav'

    def test_scan_voices(self, tmp_path):
        """Test voice ids are the wav file stems."""
        (tmp_path / 'Narrator_One.wav').write_bytes(b'RIFF' + b'\x00' * 40)
        (tmp_path / 'notes.txt').write_text('ignored')
        engine = ChatterboxSynthesizer(voices_dir=tmp_path)

        voices = engine.scan_voices()

        assert list(voices) == ['Narrator_One']
        assert engine.get_voice('Narrator_One').file_path == str(tmp_path / 'Narrator_One.wav')

    @pytest.mark.asyncio
    async def test_too_long(self, tmp_path):
        """Test the length limit applies before the model is touched."""
        engine = ChatterboxSynthesizer(voices_dir=tmp_path, max_chars=10)

        with pytest.raises(ProviderError):
            await engine.synthesize('x' * 11)

        assert engine.model is None


class TestBuildProviders:
    """Tests for adapter assembly."""

    def test_defaults(self):
        """Test the default adapters are Rekognition and Polly."""
        providers = build_providers('rekognition', 'polly')

        assert isinstance(providers.segmenter, RekognitionSegmenter)
        assert isinstance(providers.speech, PollySynthesizer)
        assert isinstance(providers.speech, SpeechSynthesizer)

    def test_alternatives(self):
        """Test fixed windows and the local engine can be selected."""
        providers = build_providers('fixed', 'chatterbox')

        assert isinstance(providers.segmenter, FixedIntervalSegmenter)
        assert isinstance(providers.speech, ChatterboxSynthesizer)

    @pytest.mark.parametrize('args', [('opencv', 'polly'), ('rekognition', 'espeak')])
    def test_unknown(self, args):
        """Test unknown provider names are rejected."""
        with pytest.raises(ValueError):
            build_providers(*args)
