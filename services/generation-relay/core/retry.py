import asyncio
import time
from typing import Awaitable, Callable, Optional, TypeVar

import structlog
from core.exceptions import ProviderTransportError

logger = structlog.get_logger()

T = TypeVar("T")


async def call_with_retries(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int,
    backoff_base: float,
    description: str,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    deadline: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """
    Runs `operation`, retrying transport failures with exponential backoff.

    Only ProviderTransportError is retried. Rejections (4xx, bad credentials,
    content policy...) propagate on the first occurrence. With a `deadline`
    (on `clock`), a backoff that would end past it gives up instead.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except ProviderTransportError as e:
            delay = backoff_base * (2**attempt)
            out_of_time = deadline is not None and clock() + delay >= deadline

            if attempt >= max_retries or out_of_time:
                logger.error(
                    "provider_call_gave_up",
                    operation=description,
                    attempts=attempt + 1,
                    out_of_time=out_of_time,
                    error=str(e),
                )
                raise

            attempt += 1
            logger.warning(
                "provider_call_retrying",
                operation=description,
                attempt=attempt,
                delay=delay,
                error=str(e),
            )
            await sleep(delay)
