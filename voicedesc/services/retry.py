"""
Bounded retry with exponential backoff for provider calls.
"""
import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from botocore.exceptions import BotoCoreError, ClientError, HTTPClientError, ConnectionError as BotoConnectionError

from voicedesc.config import PROVIDER_TIMEOUT_SECONDS, RETRY_ATTEMPTS, RETRY_BASE_DELAY, RETRY_MAX_DELAY
from voicedesc.errors import PipelineError, ProviderError, ProviderTimeout, TransientProviderError

logger = logging.getLogger(__name__)

T = TypeVar('T')

# AWS error codes that indicate a momentary condition
RETRYABLE_ERROR_CODES = {
    'ThrottlingException',
    'Throttling',
    'TooManyRequestsException',
    'ProvisionedThroughputExceededException',
    'ServiceUnavailable',
    'ServiceUnavailableException',
    'InternalServerError',
    'InternalServerException',
    'RequestTimeout',
    'RequestTimeoutException',
    'ModelNotReadyException',
}


def is_transient(exc: BaseException) -> bool:
    """Whether a failure is worth retrying."""
    if isinstance(exc, (TransientProviderError, asyncio.TimeoutError, BotoConnectionError, HTTPClientError)):
        return True
    if isinstance(exc, ClientError):
        error = exc.response.get('Error', {})
        status = exc.response.get('ResponseMetadata', {}).get('HTTPStatusCode') or 0
        return error.get('Code') in RETRYABLE_ERROR_CODES or status == 429 or status >= 500
    return False


def describe_exception(exc: BaseException) -> str:
    """Short diagnostic string for an exception, including AWS error codes."""
    if isinstance(exc, ClientError):
        error = exc.response.get('Error', {})
        return f"{error.get('Code', 'ClientError')}: {error.get('Message', str(exc))}"
    if isinstance(exc, asyncio.TimeoutError):
        return 'timed out'
    return f'{type(exc).__name__}: {exc}'


async def run_blocking(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking SDK call in the default thread pool."""
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    operation_name: str,
    attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    timeout: Optional[float] = PROVIDER_TIMEOUT_SECONDS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Await ``operation()`` with a per-attempt timeout, retrying transient failures.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt
        operation_name: Used in log lines and error messages
        attempts: Total number of attempts (>= 1, None = configured)
        base_delay: Delay before the second attempt, in seconds (None = configured)
        max_delay: Upper bound for any single delay (None = configured)
        timeout: Per-attempt timeout in seconds (None = unbounded)
        sleep: Injected for tests

    Returns:
        The operation's result

    Raises:
        ProviderTimeout: The last attempt timed out
        ProviderError: Retries were exhausted or the failure was definite
    """
    attempts = max(1, RETRY_ATTEMPTS if attempts is None else attempts)
    base_delay = RETRY_BASE_DELAY if base_delay is None else base_delay
    max_delay = RETRY_MAX_DELAY if max_delay is None else max_delay

    for attempt in range(1, attempts + 1):
        try:
            if timeout is None:
                result = await operation()
            else:
                result = await asyncio.wait_for(operation(), timeout=timeout)
            if attempt > 1:
                logger.info('%s succeeded on attempt %d', operation_name, attempt)
            return result
        except Exception as exc:
            if not is_transient(exc):
                if isinstance(exc, PipelineError):
                    raise
                if isinstance(exc, (ClientError, BotoCoreError)):
                    raise ProviderError(f'{operation_name} failed', describe_exception(exc)) from exc
                raise

            if attempt == attempts:
                logger.error('%s failed after %d attempts: %s', operation_name, attempts, describe_exception(exc))
                if isinstance(exc, asyncio.TimeoutError):
                    raise ProviderTimeout(
                        f'{operation_name} timed out',
                        f'no response within {timeout}s after {attempts} attempts',
                    ) from exc
                raise ProviderError(
                    f'{operation_name} failed after {attempts} attempts',
                    describe_exception(exc),
                ) from exc

            delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
            logger.warning(
                '%s failed on attempt %d/%d (%s), retrying in %.1fs',
                operation_name, attempt, attempts, describe_exception(exc), delay,
            )
            await sleep(delay)

    raise AssertionError('unreachable')
