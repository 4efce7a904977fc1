# lessonpay/core/retry.py
from __future__ import annotations
import asyncio
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

import structlog

from lessonpay.core.errors import UpstreamError
from lessonpay.core.settings import settings

log = structlog.get_logger(__name__)

R = TypeVar("R")


def retry_reads(
    max_attempts: Optional[int] = None,
    backoff_seconds: Optional[float] = None,
    retry_on: Tuple[Type[BaseException], ...] = (UpstreamError,),
) -> Callable[[Callable[..., Awaitable[R]]], Callable[..., Awaitable[R]]]:
    """
    Retry an idempotent read with exponential backoff.

    Only `retry_on` errors are retried; NotFound/Validation and friends
    propagate on the first attempt. Never wrap money-moving writes with this;
    those rely on idempotency keys instead.
    """

    def decorator(func: Callable[..., Awaitable[R]]) -> Callable[..., Awaitable[R]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> R:
            op = getattr(func, "__qualname__", repr(func))
            attempts = max(1, max_attempts if max_attempts is not None else settings.READ_RETRY_ATTEMPTS)
            backoff = backoff_seconds if backoff_seconds is not None else settings.READ_RETRY_BACKOFF_SECONDS

            for attempt in range(attempts):
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    if attempt >= attempts - 1:
                        log.error("read_retry_exhausted", op=op, attempts=attempts, error=str(e))
                        raise
                    wait_time = backoff * (2 ** attempt)
                    log.warning(
                        "read_retry",
                        op=op,
                        attempt=attempt + 1,
                        max_attempts=attempts,
                        wait_seconds=wait_time,
                        error=str(e),
                    )
                    await asyncio.sleep(wait_time)
            raise RuntimeError("retry loop exited without a result")

        return wrapper

    return decorator
