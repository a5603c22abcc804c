"""
Video segmentation adapters.
"""
import asyncio
import json
import logging
import math
from typing import Any, Dict, List

import boto3

from voicedesc.config import (
    AWS_REGION,
    FFPROBE_BINARY,
    FIXED_SEGMENT_SECONDS,
    SEGMENTATION_MAX_POLLS,
    SEGMENTATION_POLL_SECONDS,
)
from voicedesc.errors import ExtractionError, ProviderError, ProviderTimeout, ValidationError
from voicedesc.providers.base import Segmenter
from voicedesc.providers.media import MediaFetcher, parse_source_location, run_command
from voicedesc.schemas.job import Segment
from voicedesc.services.retry import call_with_retry, run_blocking

logger = logging.getLogger(__name__)


class RekognitionSegmenter(Segmenter):
    """
    Shot segmentation with Amazon Rekognition Video.

    Rekognition runs asynchronously: the adapter starts a segment detection
    job, then polls it at a fixed interval up to a bounded number of times,
    collecting every result page once it succeeds.
    """

    def __init__(
        self,
        client=None,
        region: str = AWS_REGION,
        poll_seconds: float = SEGMENTATION_POLL_SECONDS,
        max_polls: int = SEGMENTATION_MAX_POLLS,
    ):
        self._client = client
        self._region = region
        self._poll_seconds = poll_seconds
        self._max_polls = max_polls

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client('rekognition', region_name=self._region)
        return self._client

    async def segment(self, source_location: str) -> List[Segment]:
        try:
            location = parse_source_location(source_location)
        except ValidationError as e:
            raise ProviderError('Segmentation needs an S3 source', str(e)) from e
        if not location.is_s3:
            raise ProviderError('Segmentation needs an S3 source', f'Rekognition cannot read {source_location}')

        started = await call_with_retry(
            lambda: run_blocking(
                self.client.start_segment_detection,
                Video={'S3Object': {'Bucket': location.bucket, 'Name': location.key}},
                SegmentTypes=['SHOT'],
            ),
            operation_name='Start segment detection',
        )
        rekognition_job_id = started['JobId']
        logger.info('Started Rekognition segment detection %s for %s', rekognition_job_id, source_location)

        items = await self._wait_for_segments(rekognition_job_id)
        segments = [
            Segment(
                start_offset=item['StartTimestampMillis'] / 1000,
                end_offset=item['EndTimestampMillis'] / 1000,
            )
            for item in items
            if 'StartTimestampMillis' in item and 'EndTimestampMillis' in item
        ]
        segments.sort(key=lambda s: s.start_offset)
        logger.info('Rekognition job %s found %d segments', rekognition_job_id, len(segments))
        return segments

    async def _wait_for_segments(self, rekognition_job_id: str) -> List[Dict[str, Any]]:
        for poll in range(1, self._max_polls + 1):
            response = await self._get_page(rekognition_job_id)
            status = (response.get('JobStatus') or '').upper()

            if status == 'SUCCEEDED':
                return await self._collect_pages(rekognition_job_id, response)

            if status == 'FAILED':
                raise ProviderError(
                    'Video segmentation failed',
                    response.get('StatusMessage') or f'Rekognition job {rekognition_job_id} failed',
                )

            logger.debug('Rekognition job %s is %s (poll %d/%d)', rekognition_job_id, status, poll, self._max_polls)
            await asyncio.sleep(self._poll_seconds)

        raise ProviderTimeout(
            'Video segmentation timed out',
            f'Rekognition job {rekognition_job_id} unfinished after {self._max_polls} polls',
        )

    async def _collect_pages(self, rekognition_job_id: str, first_page: Dict[str, Any]) -> List[Dict[str, Any]]:
        items = list(first_page.get('Segments') or [])
        next_token = first_page.get('NextToken')
        while next_token:
            page = await self._get_page(rekognition_job_id, next_token)
            items.extend(page.get('Segments') or [])
            next_token = page.get('NextToken')
        return items

    async def _get_page(self, rekognition_job_id: str, next_token: str = None) -> Dict[str, Any]:
        kwargs = {'JobId': rekognition_job_id}
        if next_token:
            kwargs['NextToken'] = next_token
        return await call_with_retry(
            lambda: run_blocking(self.client.get_segment_detection, **kwargs),
            operation_name='Get segment detection',
        )


class FixedIntervalSegmenter(Segmenter):
    """
    Splits a video into fixed-length windows using its probed duration.

    Used for sources Rekognition cannot read, such as local files.
    """

    def __init__(self, fetcher: MediaFetcher = None, window_seconds: float = FIXED_SEGMENT_SECONDS):
        if window_seconds <= 0:
            raise ValueError('window_seconds must be positive')
        self._fetcher = fetcher or MediaFetcher()
        self._window_seconds = window_seconds

    async def segment(self, source_location: str) -> List[Segment]:
        duration = await self.probe_duration(source_location)
        return self.windows(duration)

    def windows(self, duration: float) -> List[Segment]:
        if duration <= 0:
            return []
        count = math.ceil(duration / self._window_seconds)
        return [
            Segment(
                start_offset=i * self._window_seconds,
                end_offset=min((i + 1) * self._window_seconds, duration),
            )
            for i in range(count)
        ]

    async def probe_duration(self, source_location: str) -> float:
        async with self._fetcher.local_copy(source_location) as path:
            try:
                output = await run_command(
                    FFPROBE_BINARY,
                    '-v', 'error',
                    '-show_entries', 'format=duration',
                    '-of', 'json',
                    str(path),
                )
            except ExtractionError as e:
                raise ProviderError('Could not probe video duration', str(e)) from e

        try:
            return float(json.loads(output)['format']['duration'])
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError('Could not probe video duration', f'unexpected ffprobe output: {output[:200]!r}') from e
