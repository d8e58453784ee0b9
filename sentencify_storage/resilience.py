"""Retry with exponential backoff for durable-store operations.

Opening the embedded store can fail transiently (another instance holding an
exclusive lock during schema creation, a slow disk). Open is retried a few
times before the store is declared unavailable.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry with exponential backoff."""

    max_retries: int = 3
    backoff_base: float = 1.0  # seconds
    backoff_multiplier: float = 2.0
    backoff_max: float = 30.0


async def with_storage_retry(
    fn: Callable[..., Coroutine[Any, Any, T]],
    *args: Any,
    config: RetryConfig | None = None,
    context_msg: str = "",
    **kwargs: Any,
) -> T:
    """Execute an async storage callable, retrying every failure.

    Unlike API retries there is no notion of a non-retryable error here: any
    exception is retried until ``max_retries`` attempts have been made.

    Args:
        fn: Async callable to execute
        *args: Positional args for fn
        config: Retry configuration (uses defaults if None)
        context_msg: Extra context for log messages
        **kwargs: Keyword args for fn

    Returns:
        Result of fn

    Raises:
        Exception: Last exception after all attempts failed
    """
    cfg = config or RetryConfig()
    ctx = f" [{context_msg}]" if context_msg else ""
    attempts = max(cfg.max_retries, 1)

    for attempt in range(attempts):
        try:
            return await fn(*args, **kwargs)
        except Exception as exc:
            if attempt >= attempts - 1:
                logger.error(
                    "STORAGE_RETRY_EXHAUSTED: attempt=%d/%d%s: %s",
                    attempt + 1,
                    attempts,
                    ctx,
                    exc,
                )
                raise

            delay = min(cfg.backoff_base * (cfg.backoff_multiplier**attempt), cfg.backoff_max)
            logger.warning(
                "STORAGE_RETRY: attempt=%d/%d delay=%.1fs%s: %s",
                attempt + 1,
                attempts,
                delay,
                ctx,
                exc,
            )
            await asyncio.sleep(delay)

    raise RuntimeError("with_storage_retry: no attempts made")  # pragma: no cover
