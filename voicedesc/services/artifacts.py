"""
Write-once storage for final text and audio outputs, addressed by job id.
"""
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import ClientError

from voicedesc.config import ARTIFACT_DIR, AWS_REGION, OUTPUT_S3_BUCKET
from voicedesc.errors import ArtifactNotFound, InternalError, ProviderError
from voicedesc.providers.media import parse_source_location
from voicedesc.services.retry import describe_exception, run_blocking

logger = logging.getLogger(__name__)


def _write_new(path: Path, data: bytes):
    path.parent.mkdir(parents=True, exist_ok=True)
    # 'xb' refuses to replace a file created concurrently
    with open(path, 'xb') as f:
        f.write(data)


class ArtifactStore(ABC):
    """Abstract write-once object store."""

    @abstractmethod
    async def put(self, job_id: str, filename: str, data: bytes, content_type: str) -> str:
        """
        Store an artifact and return its reference.

        Writing identical bytes to an existing artifact returns the same
        reference; writing different bytes raises InternalError.
        """
        ...

    @abstractmethod
    async def get(self, ref: str) -> bytes:
        """Read an artifact by reference. Raises ArtifactNotFound."""
        ...


class LocalArtifactStore(ArtifactStore):
    """Artifacts as files under ``<base_dir>/<job_id>/<filename>``."""

    def __init__(self, base_dir: Optional[Path] = None):
        self._base_dir = Path(base_dir or ARTIFACT_DIR)

    def path_for(self, job_id: str, filename: str) -> Path:
        return self._base_dir / job_id / filename

    async def put(self, job_id: str, filename: str, data: bytes, content_type: str) -> str:
        path = self.path_for(job_id, filename)
        if path.exists():
            if await run_blocking(path.read_bytes) == data:
                return str(path)
            raise InternalError('Artifact already written', f'{path} exists with different content')

        await run_blocking(_write_new, path, data)
        logger.info('Wrote artifact %s (%d bytes)', path, len(data))
        return str(path)

    async def get(self, ref: str) -> bytes:
        path = Path(ref)
        if not path.is_file():
            raise ArtifactNotFound(f'Artifact not found: {ref}')
        return await run_blocking(path.read_bytes)


class S3ArtifactStore(ArtifactStore):
    """Artifacts as S3 objects under ``s3://<bucket>/<job_id>/<filename>``."""

    def __init__(self, bucket: str, client=None, region: str = AWS_REGION):
        self._bucket = bucket
        self._client = client
        self._region = region

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client('s3', region_name=self._region)
        return self._client

    async def put(self, job_id: str, filename: str, data: bytes, content_type: str) -> str:
        key = f'{job_id}/{filename}'
        ref = f's3://{self._bucket}/{key}'
        try:
            await run_blocking(
                self.client.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                IfNoneMatch='*',
            )
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') != 'PreconditionFailed':
                raise ProviderError('Artifact upload failed', describe_exception(e)) from e
            existing = await self.get(ref)
            if existing != data:
                raise InternalError('Artifact already written', f'{ref} exists with different content')
            return ref

        logger.info('Wrote artifact %s (%d bytes)', ref, len(data))
        return ref

    async def get(self, ref: str) -> bytes:
        location = parse_source_location(ref)
        try:
            response = await run_blocking(self.client.get_object, Bucket=location.bucket, Key=location.key)
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') in ('NoSuchKey', '404', 'NotFound'):
                raise ArtifactNotFound(f'Artifact not found: {ref}')
            raise
        return await run_blocking(response['Body'].read)


def build_artifact_store() -> ArtifactStore:
    """S3 when an output bucket is configured, local files otherwise."""
    if OUTPUT_S3_BUCKET:
        return S3ArtifactStore(OUTPUT_S3_BUCKET)
    return LocalArtifactStore(ARTIFACT_DIR)
