"""
Application configuration and paths.

Every setting can be overridden with an environment variable of the same
name prefixed with ``VOICEDESC_`` (AWS settings use the standard AWS names).
"""
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Server
    host: str = '127.0.0.1'
    port: int = 5111
    log_level: str = 'INFO'

    # Local data directory (database, local artifacts)
    data_dir: Path = Path.home() / '.voicedesc'
    database_url: Optional[str] = None
    artifact_dir: Optional[Path] = None

    # AWS
    output_s3_bucket: str = Field('', validation_alias='OUTPUT_S3_BUCKET')
    aws_region: str = Field('us-east-1', validation_alias='AWS_REGION')

    # Providers
    segmentation_provider: str = 'rekognition'  # 'rekognition' or 'fixed'
    speech_provider: str = 'polly'  # 'polly' or 'chatterbox'
    nova_model_id: str = 'amazon.nova-pro-v1:0'
    vision_max_tokens: int = 200
    vision_temperature: float = 0.4
    polly_voice_id: str = 'Joanna'
    polly_engine: str = 'neural'
    speech_max_chars: int = 3000

    # Pipeline selection and limits
    fast_max_size_mb: int = 25
    fast_max_duration_seconds: float = 180.0
    max_video_size_mb: int = 500
    job_timeout_seconds: float = 1800.0

    # Provider call policy
    provider_timeout_seconds: float = 120.0
    download_timeout_seconds: float = 600.0
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0

    # Segmentation
    segmentation_poll_seconds: float = 5.0
    segmentation_max_polls: int = 120
    fixed_segment_seconds: float = 30.0

    # ffmpeg / ffprobe
    ffmpeg_binary: str = 'ffmpeg'
    ffprobe_binary: str = 'ffprobe'
    ffmpeg_timeout_seconds: float = 60.0

    # Background driver
    driver_enabled: bool = True
    driver_interval_seconds: float = 5.0

    # Local speech engine (Chatterbox)
    model_device: str = 'cpu'
    voices_dir: Optional[Path] = None

    model_config = SettingsConfigDict(env_prefix='VOICEDESC_', env_file='.env', extra='ignore')

    @field_validator('data_dir', 'artifact_dir', 'voices_dir')
    @classmethod
    def _expand_user(cls, value):
        return value.expanduser() if value is not None else value


settings = Settings()

# Application identity
APP_NAME = 'VoiceDescription'
APP_VERSION = '0.1.0'

# Server configuration
SERVER_HOST = settings.host
SERVER_PORT = settings.port
LOG_LEVEL = settings.log_level

# Local data directory (database, local artifacts)
DATA_DIR = settings.data_dir

# Database configuration
DATABASE_PATH = DATA_DIR / 'jobs.db'
DATABASE_URL = settings.database_url or f'sqlite+aiosqlite:///{DATABASE_PATH}'

# Artifact storage: S3 when an output bucket is configured, local files otherwise
ARTIFACT_DIR = settings.artifact_dir or DATA_DIR / 'artifacts'
OUTPUT_S3_BUCKET = settings.output_s3_bucket

# AWS
AWS_REGION = settings.aws_region

# Provider selection
SEGMENTATION_PROVIDER = settings.segmentation_provider
SPEECH_PROVIDER = settings.speech_provider

# Vision-description provider (Bedrock Nova Pro)
NOVA_MODEL_ID = settings.nova_model_id
VISION_MAX_TOKENS = settings.vision_max_tokens
VISION_TEMPERATURE = settings.vision_temperature

# Speech-synthesis provider (Polly)
POLLY_VOICE_ID = settings.polly_voice_id
POLLY_ENGINE = settings.polly_engine
SPEECH_MAX_CHARS = settings.speech_max_chars

# Pipeline selection thresholds for 'auto'
FAST_MAX_SIZE_MB = settings.fast_max_size_mb
FAST_MAX_DURATION_SECONDS = settings.fast_max_duration_seconds

# Input limits
MAX_VIDEO_SIZE_MB = settings.max_video_size_mb

# Overall wall-clock budget for a job, measured from creation
JOB_TIMEOUT_SECONDS = settings.job_timeout_seconds

# Provider call policy
PROVIDER_TIMEOUT_SECONDS = settings.provider_timeout_seconds
DOWNLOAD_TIMEOUT_SECONDS = settings.download_timeout_seconds
RETRY_ATTEMPTS = settings.retry_attempts
RETRY_BASE_DELAY = settings.retry_base_delay
RETRY_MAX_DELAY = settings.retry_max_delay

# Segmentation polling
SEGMENTATION_POLL_SECONDS = settings.segmentation_poll_seconds
SEGMENTATION_MAX_POLLS = settings.segmentation_max_polls
FIXED_SEGMENT_SECONDS = settings.fixed_segment_seconds

# ffmpeg / ffprobe
FFMPEG_BINARY = settings.ffmpeg_binary
FFPROBE_BINARY = settings.ffprobe_binary
FFMPEG_TIMEOUT_SECONDS = settings.ffmpeg_timeout_seconds

# Background driver advancing in-flight jobs between client polls
DRIVER_ENABLED = settings.driver_enabled
DRIVER_INTERVAL_SECONDS = settings.driver_interval_seconds

# Local speech engine (Chatterbox)
MODEL_DEVICE = settings.model_device
VOICES_DIR = settings.voices_dir or DATA_DIR / 'voices'

# Clear GPU cache after each generation (reduces peak memory, slight overhead)
MODEL_AGGRESSIVE_MEMORY = True


def ensure_directories():
    """Create required directories if they don't exist."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    ARTIFACT_DIR.mkdir(parents=True, exist_ok=True)
    VOICES_DIR.mkdir(parents=True, exist_ok=True)
