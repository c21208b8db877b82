"""
Concurrency-bounded batch fan-out shared by the FCM and APNS senders.

Targets are cleaned and deduplicated, then one send per target runs
behind an asyncio.Semaphore. Results are collected in completion order.
Infrastructure errors (configuration, authentication, transport) stop the
batch: pending sends are cancelled and the first error is re-raised.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Iterable, List

from pushgate.services.push.models import BatchPushResult, PushResult

logger = logging.getLogger(__name__)


def dedupe_tokens(tokens: Iterable[str]) -> List[str]:
    """Drop blank tokens and duplicates, keeping first-seen order."""
    seen = set()
    unique: List[str] = []
    for token in tokens:
        if token is None or not token.strip() or token in seen:
            continue
        seen.add(token)
        unique.append(token)
    return unique


async def dispatch_batch(
    tokens: Iterable[str],
    send: Callable[[str], Awaitable[PushResult]],
    parallelism: int,
    provider_name: str,
) -> BatchPushResult:
    """
    Send to many tokens concurrently.

    Args:
        tokens: Device tokens; blanks and duplicates are skipped
        send: Coroutine function sending to one token
        parallelism: Maximum number of sends in flight
        provider_name: Name used in log lines

    Returns:
        BatchPushResult with one result per unique token, in completion order
    """
    unique_tokens = dedupe_tokens(tokens)

    if not unique_tokens:
        logger.warning(f"{provider_name} batch called with zero valid tokens")
        return BatchPushResult()

    logger.info(
        f"{provider_name} batch sending to {len(unique_tokens)} tokens",
        extra={"total": len(unique_tokens), "parallelism": parallelism}
    )

    start_time = time.time()
    semaphore = asyncio.Semaphore(parallelism)

    async def send_with_semaphore(token: str) -> PushResult:
        async with semaphore:
            return await send(token)

    tasks = [asyncio.ensure_future(send_with_semaphore(token)) for token in unique_tokens]
    results: List[PushResult] = []

    try:
        for next_done in asyncio.as_completed(tasks):
            results.append(await next_done)
    except BaseException:
        # Includes cancellation of the batch itself
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    batch = BatchPushResult(results=tuple(results))

    logger.info(
        f"{provider_name} batch send complete: {batch}",
        extra={
            "total": batch.total_count,
            "success": batch.success_count,
            "failed": batch.failure_count,
            "invalid_tokens": len(batch.invalid_tokens),
            "duration_ms": int((time.time() - start_time) * 1000),
        }
    )

    return batch
