"""
Source media access: location parsing, scoped local copies and subprocess helpers.
"""
import asyncio
import logging
import os
import tempfile
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional
from urllib.parse import unquote, urlparse

import boto3

from voicedesc.config import AWS_REGION, DOWNLOAD_TIMEOUT_SECONDS, FFMPEG_TIMEOUT_SECONDS
from voicedesc.errors import ExtractionError, ProviderError, ValidationError
from voicedesc.services.retry import call_with_retry, run_blocking

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceLocation:
    """A parsed media reference: an S3 object or a local file."""
    scheme: str  # 's3' or 'file'
    bucket: Optional[str] = None
    key: Optional[str] = None
    path: Optional[Path] = None

    @property
    def is_s3(self) -> bool:
        return self.scheme == 's3'

    @property
    def name(self) -> str:
        if self.is_s3:
            return self.key.rsplit('/', 1)[-1]
        return self.path.name


def parse_source_location(location: str) -> SourceLocation:
    """
    Parse ``s3://bucket/key``, ``file:///path`` or an absolute path.

    Raises:
        ValidationError: The location is empty or uses an unsupported form
    """
    location = (location or '').strip()
    if not location:
        raise ValidationError('Source location is required')

    if location.startswith('s3://'):
        parsed = urlparse(location)
        key = parsed.path.lstrip('/')
        if not parsed.netloc or not key:
            raise ValidationError('Invalid S3 location', f'expected s3://bucket/key, got {location}')
        return SourceLocation(scheme='s3', bucket=parsed.netloc, key=key)

    if location.startswith('file://'):
        return SourceLocation(scheme='file', path=Path(unquote(urlparse(location).path)))

    if os.path.isabs(location):
        return SourceLocation(scheme='file', path=Path(location))

    raise ValidationError('Unsupported source location', f'expected s3://, file:// or an absolute path, got {location}')


class MediaFetcher:
    """
    Makes source media available on the local filesystem.

    S3 objects are downloaded into a private temporary directory that is
    removed when the ``local_copy`` scope exits, whether or not it raised.
    """

    def __init__(self, client=None, region: str = AWS_REGION):
        self._client = client
        self._region = region

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client('s3', region_name=self._region)
        return self._client

    @asynccontextmanager
    async def local_copy(self, source_location: str) -> AsyncIterator[Path]:
        """Yield a local path holding the media for the duration of the block."""
        location = parse_source_location(source_location)

        if not location.is_s3:
            if not location.path.is_file():
                raise ExtractionError('Source media not found', str(location.path))
            yield location.path
            return

        with tempfile.TemporaryDirectory(prefix='voicedesc-') as tmpdir:
            local_path = Path(tmpdir) / location.name
            logger.debug('Downloading s3://%s/%s to %s', location.bucket, location.key, local_path)
            try:
                await call_with_retry(
                    lambda: run_blocking(self.client.download_file, location.bucket, location.key, str(local_path)),
                    operation_name='Download source media',
                    timeout=DOWNLOAD_TIMEOUT_SECONDS,
                )
            except ProviderError as e:
                raise ExtractionError(
                    'Failed to download source media',
                    f's3://{location.bucket}/{location.key}: {e.detail or e.message}',
                ) from e
            yield local_path

    async def read_bytes(self, source_location: str) -> bytes:
        """Read the whole source object into memory."""
        async with self.local_copy(source_location) as path:
            return await run_blocking(path.read_bytes)


async def run_command(*args: str, timeout: float = FFMPEG_TIMEOUT_SECONDS) -> bytes:
    """
    Run an external tool and return its stdout.

    Raises:
        ExtractionError: The tool is missing, exits non-zero, or times out
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise ExtractionError(f'{args[0]} is not installed', str(e)) from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise ExtractionError(f'{args[0]} timed out', f'no result within {timeout}s')

    if process.returncode != 0:
        tail = stderr.decode('utf-8', errors='replace').strip()[-500:]
        raise ExtractionError(f'{args[0]} failed with code {process.returncode}', tail)

    return stdout
