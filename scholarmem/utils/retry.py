"""
Retry helper shared by the Bedrock clients.
"""

import random
import time
from typing import Callable, Type, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from .errors import ServiceUnavailable
from .logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar('T')

RETRYABLE_CODES = frozenset({
    'ThrottlingException',
    'TooManyRequestsException',
    'ServiceUnavailableException',
    'InternalServerException',
    'ModelNotReadyException',
    'ModelTimeoutException',
})


def is_retryable(error: Exception) -> bool:
    """Transport failures and throttling are worth another attempt; bad requests are not."""
    if isinstance(error, ClientError):
        return error.response.get('Error', {}).get('Code') in RETRYABLE_CODES
    return isinstance(error, BotoCoreError)


def backoff_delay(base: float, attempt: int) -> float:
    """Exponential backoff with up to one second of jitter."""
    return base * (2**attempt) + random.uniform(0, 1)


def with_retries(call: Callable[[], T],
                 *,
                 label: str,
                 attempts: int,
                 delay: float,
                 error_cls: Type[ServiceUnavailable] = ServiceUnavailable) -> T:
    """
    Run ``call`` until it succeeds or the attempts run out.

    Args:
        call: Zero-argument callable performing one request
        label: Name used in log and error messages
        attempts: Maximum number of attempts
        delay: Base delay in seconds
        error_cls: Exception raised when the call finally fails

    Returns:
        Whatever ``call`` returns

    Raises:
        error_cls: On a non-retryable error or once every attempt failed
    """
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            logger.debug(f'{label} request attempt {attempt + 1}/{attempts}')
            return call()
        except (ClientError, BotoCoreError) as e:
            if not is_retryable(e):
                logger.error(f'{label} request rejected: {e}')
                raise error_cls(f'{label} request rejected: {e}') from e

            logger.warning(f'{label} attempt {attempt + 1}/{attempts} failed: {e}')
            if attempt == attempts - 1:
                raise error_cls(f'{label} failed after {attempts} attempts: {e}') from e
            time.sleep(backoff_delay(delay, attempt))
        except error_cls:
            raise
        except Exception as e:
            logger.error(f'Unexpected error in {label}: {e}')
            raise error_cls(f'Unexpected {label} error: {e}') from e

    raise error_cls(f'{label} failed after {attempts} attempts')
