import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from errors import is_rate_limit_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRIES = 3
DEFAULT_DELAY = 2.0  # seconds


async def with_retry(
    call: Callable[[], Awaitable[T]],
    retries: int = DEFAULT_RETRIES,
    delay: float = DEFAULT_DELAY,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Awaits `call()`, retrying with exponential backoff on rate-limit / quota errors.

    Any other error propagates unchanged on the first attempt. Once the retry
    budget is spent the last rate-limit error is raised.
    """
    while True:
        try:
            return await call()
        except Exception as e:
            if retries <= 0 or not is_rate_limit_error(e):
                raise
            logger.warning(
                "API quota exceeded or rate limit hit. Retrying in %.1fs... (%d retries left)",
                delay, retries,
            )
            await sleep(delay)
            delay *= 2
            retries -= 1
