"""
Speech-synthesis adapters: Amazon Polly and a local Chatterbox TurboTTS engine.
"""
import asyncio
import functools
import io
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Optional

import boto3

from voicedesc.config import (
    AWS_REGION,
    MODEL_AGGRESSIVE_MEMORY,
    MODEL_DEVICE,
    POLLY_ENGINE,
    POLLY_VOICE_ID,
    SPEECH_MAX_CHARS,
    VOICES_DIR,
)
from voicedesc.errors import ProviderError
from voicedesc.providers.base import SpeechSynthesizer
from voicedesc.services.retry import call_with_retry, run_blocking

logger = logging.getLogger(__name__)


def _check_length(text: str, max_chars: int):
    if len(text) > max_chars:
        raise ProviderError(
            'Speech input too long',
            f'{len(text)} characters exceeds the provider limit of {max_chars}',
        )


class PollySynthesizer(SpeechSynthesizer):
    """Text to MP3 with Amazon Polly."""

    media_type = 'audio/mpeg'
    file_extension = 'mp3'

    def __init__(
        self,
        client=None,
        region: str = AWS_REGION,
        default_voice_id: str = POLLY_VOICE_ID,
        engine: str = POLLY_ENGINE,
        max_chars: int = SPEECH_MAX_CHARS,
    ):
        self._client = client
        self._region = region
        self._default_voice_id = default_voice_id
        self._engine = engine
        self.max_chars = max_chars

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client('polly', region_name=self._region)
        return self._client

    async def synthesize(self, text: str, voice_id: Optional[str] = None) -> bytes:
        _check_length(text, self.max_chars)
        voice = voice_id or self._default_voice_id

        async def invoke():
            response = await run_blocking(
                self.client.synthesize_speech,
                Text=text,
                OutputFormat='mp3',
                VoiceId=voice,
                Engine=self._engine,
            )
            stream = response.get('AudioStream')
            if stream is None:
                raise ProviderError('Speech synthesis returned no audio', f'voice {voice}')
            return await run_blocking(stream.read)

        audio = await call_with_retry(invoke, operation_name='Speech synthesis')
        logger.debug('Synthesized %d characters into %d bytes with voice %s', len(text), len(audio), voice)
        return audio


class Voice:
    """Represents an available voice prompt for the local engine."""
    def __init__(self, id: str, display_name: str, file_path: str):
        self.id = id
        self.display_name = display_name
        self.file_path = file_path


class ChatterboxSynthesizer(SpeechSynthesizer):
    """
    Local speech synthesis with Chatterbox TurboTTS.

    The model is loaded on first use. Generation runs in a single-thread
    executor behind an asyncio.Lock, since the model is not thread-safe.
    Voice ids are the stems of ``.wav`` prompt files in the voices directory.
    """

    media_type = 'audio/wav'
    file_extension = 'wav'

    def __init__(self, device: str = MODEL_DEVICE, voices_dir: Path = VOICES_DIR, max_chars: int = SPEECH_MAX_CHARS):
        self.model = None
        self.default_conds = None
        self._device = device
        self._voices_dir = Path(voices_dir)
        self._voices: Dict[str, Voice] = {}
        self._lock = asyncio.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1)
        self._loaded = False
        self.max_chars = max_chars

    @property
    def is_ready(self) -> bool:
        return self._loaded and self.model is not None

    def load_model(self):
        """
        Load the Chatterbox TurboTTS model and scan voices.

        The Perth watermarker is swapped for its dummy before chatterbox is
        imported; the real one fails on some platforms.
        """
        import perth
        perth.PerthImplicitWatermarker = perth.DummyWatermarker

        from chatterbox.tts_turbo import ChatterboxTurboTTS

        self.model = ChatterboxTurboTTS.from_pretrained(device=self._device)
        self.default_conds = self.model.conds
        self._loaded = True
        self.scan_voices()

    def scan_voices(self) -> Dict[str, Voice]:
        """Scan the voices directory; the filename stem is both id and display name."""
        self._voices = {}
        if self._voices_dir.exists():
            for f in self._voices_dir.glob('*.wav'):
                self._voices[f.stem] = Voice(id=f.stem, display_name=f.stem, file_path=str(f))
        return self._voices

    def get_voice(self, voice_id: str) -> Optional[Voice]:
        return self._voices.get(voice_id)

    def _generate_sync(self, text: str, voice_path: Optional[str] = None) -> bytes:
        """Synchronous generation run in the executor. Returns WAV bytes."""
        import torch
        import torchaudio as ta

        if not self._loaded:
            self.load_model()

        with torch.inference_mode():
            if voice_path:
                wav = self.model.generate(text, audio_prompt_path=voice_path)
            else:
                # Restore default voice conditionals
                self.model.conds = self.default_conds
                wav = self.model.generate(text)

            # Synchronize MPS so GPU work completes before tensors are freed
            if torch.backends.mps.is_available():
                torch.mps.synchronize()

        wav_cpu = wav.cpu()
        del wav

        if MODEL_AGGRESSIVE_MEMORY and torch.backends.mps.is_available():
            torch.mps.empty_cache()

        buffer = io.BytesIO()
        ta.save(buffer, wav_cpu, self.model.sr, format='wav')
        return buffer.getvalue()

    async def synthesize(self, text: str, voice_id: Optional[str] = None) -> bytes:
        _check_length(text, self.max_chars)

        voice_path = None
        if voice_id:
            voice = self.get_voice(voice_id) or self.scan_voices().get(voice_id)
            if voice:
                voice_path = voice.file_path
            else:
                logger.warning('Voice %s not found, using default voice', voice_id)

        async with self._lock:
            loop = asyncio.get_event_loop()
            try:
                return await loop.run_in_executor(
                    self._executor,
                    functools.partial(self._generate_sync, text, voice_path)
                )
            except ProviderError:
                raise
            except Exception as e:
                raise ProviderError('Local speech synthesis failed', f'{type(e).__name__}: {e}') from e

    def join(self, parts: List[bytes]) -> bytes:
        """Decode each WAV part and write one WAV with the concatenated waveform."""
        if len(parts) == 1:
            return parts[0]

        import torch
        import torchaudio as ta

        waves = []
        sample_rate = None
        for part in parts:
            wav, sr = ta.load(io.BytesIO(part), format='wav')
            sample_rate = sample_rate or sr
            waves.append(wav)

        buffer = io.BytesIO()
        ta.save(buffer, torch.cat(waves, dim=-1), sample_rate, format='wav')
        return buffer.getvalue()

    def cleanup(self):
        """Clean up resources."""
        self._executor.shutdown(wait=False)
        self.model = None
        self.default_conds = None
        self._loaded = False
