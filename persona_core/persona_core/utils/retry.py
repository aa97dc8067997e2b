"""
Async retry with exponential backoff and jitter.

Used around slow or flaky collaborators (prompt injection, thread store).
"""

from __future__ import annotations
import asyncio
import functools
import random
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from ..errors import PersonaSwitchError
from ..obs.logging import get_logger

logger = get_logger("persona_core.retry")


def async_exponential_backoff_retry(
    max_attempts: int = 3,
    base_delay: float = 0.2,
    max_delay: float = 5.0,
    backoff_factor: float = 2.0,
    jitter: bool = True,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    give_up_on: Tuple[Type[Exception], ...] = ()
):
    """
    Decorator retrying an async callable with exponential backoff.

    Args:
        max_attempts: Maximum attempts including the first call
        base_delay: Initial delay in seconds
        max_delay: Delay cap in seconds
        backoff_factor: Exponential growth factor
        jitter: Randomize each delay between 0 and its computed value
        exceptions: Exception types that trigger a retry
        on_retry: Optional callback(attempt, exception, delay)
        give_up_on: Exception types raised at once even when listed in `exceptions`

    Returns:
        Decorated async function

    Example:
        @async_exponential_backoff_retry(max_attempts=3, base_delay=0.5)
        async def inject(request):
            ...
    """
    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 0
            while True:
                try:
                    result = await func(*args, **kwargs)
                    if attempt > 0:
                        logger.info(f"{func.__name__} succeeded after {attempt} retries")
                    return result
                except exceptions as exc:
                    if give_up_on and isinstance(exc, give_up_on):
                        raise
                    attempt += 1
                    if attempt >= max_attempts:
                        logger.error(f"Max retries ({max_attempts}) exceeded for {func.__name__}: {exc}")
                        raise

                    delay = min(base_delay * (backoff_factor ** (attempt - 1)), max_delay)
                    if jitter:
                        delay = random.uniform(0, delay)

                    logger.warning(f"Retry {attempt}/{max_attempts} for {func.__name__} after {delay:.2f}s delay: {exc}")

                    if on_retry:
                        try:
                            on_retry(attempt, exc, delay)
                        except Exception as callback_exc:
                            logger.error(f"Retry callback failed: {callback_exc}")

                    await asyncio.sleep(delay)

        return wrapper
    return decorator


class RetryPolicy:
    """
    Reusable retry settings.

    Example:
        policy = RetryPolicy(max_attempts=2, base_delay=0.0, jitter=False)
        guarded = policy.wrap(injector.inject)
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.2,
        max_delay: float = 5.0,
        backoff_factor: float = 2.0,
        jitter: bool = True,
        exceptions: Tuple[Type[Exception], ...] = (Exception,),
        give_up_on: Tuple[Type[Exception], ...] = ()
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter
        self.exceptions = exceptions
        self.give_up_on = give_up_on

    def async_retry(self, on_retry: Optional[Callable] = None):
        return async_exponential_backoff_retry(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            backoff_factor=self.backoff_factor,
            jitter=self.jitter,
            exceptions=self.exceptions,
            on_retry=on_retry,
            give_up_on=self.give_up_on
        )

    def wrap(self, func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        return self.async_retry()(func)


# Unknown personas and other switching errors are not transient
COLLABORATOR_RETRY_POLICY = RetryPolicy(max_attempts=3, base_delay=0.2, max_delay=2.0, give_up_on=(PersonaSwitchError,))
NO_RETRY_POLICY = RetryPolicy(max_attempts=1)
