"""
Retry/backoff layer for outbound provider calls.

Wraps an httpx transport so that transient failures are retried below
the senders: a request that succeeds after retries looks identical to
one that succeeded on the first attempt.
"""

import asyncio
import logging
import random
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import FrozenSet, Optional, Sequence

import httpx

logger = logging.getLogger(__name__)

# 408 and 5xx are transient per HTTP semantics; 429 is provider throttling
TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        jitter_max: float = 0.2,
        retryable_status_codes: FrozenSet[int] = TRANSIENT_STATUS_CODES,
        retryable_exceptions: Sequence[type[Exception]] = (httpx.TransportError,),
    ):
        """
        Initialize retry configuration.

        Args:
            max_retries: Retries after the first attempt (0 disables retry)
            base_delay: Delay before the first retry in seconds
            max_delay: Upper bound for the computed backoff delay
            exponential_base: Base for exponential backoff
            jitter_max: Upper bound of the random jitter added to each delay
            retryable_status_codes: HTTP statuses that trigger a retry
            retryable_exceptions: Exception types that trigger a retry
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter_max = jitter_max
        self.retryable_status_codes = frozenset(retryable_status_codes)
        self.retryable_exceptions = tuple(retryable_exceptions)

    @property
    def enabled(self) -> bool:
        return self.max_retries > 0


def calculate_delay(
    attempt: int,
    config: RetryConfig,
) -> float:
    """
    Calculate backoff delay for a retry attempt.

    Args:
        attempt: One-based retry attempt number
        config: Retry configuration

    Returns:
        Delay in seconds: base * 2^(attempt-1), capped, plus 0-jitter_max jitter
    """
    delay = min(
        config.base_delay * (config.exponential_base ** (attempt - 1)),
        config.max_delay
    )

    if config.jitter_max > 0:
        # Jitter desynchronizes concurrent callers retrying the same provider
        delay += random.uniform(0, config.jitter_max)

    return max(0.0, delay)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """
    Parse a Retry-After header value.

    Args:
        value: Header value, either delta-seconds or an HTTP-date

    Returns:
        Delay in seconds, or None if absent or unparsable
    """
    if not value:
        return None

    value = value.strip()
    if value.isdigit():
        return float(value)

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    return max(0.0, (retry_at - datetime.now(timezone.utc)).total_seconds())


class RetryTransport(httpx.AsyncBaseTransport):
    """
    httpx transport that retries transient failures of a wrapped transport.

    Retries on transport exceptions and on transient HTTP statuses (408, 429 and
    5xx). The provider's Retry-After header is honoured when present;
    otherwise exponential backoff with jitter is used. When retries are
    exhausted on a status the last response is returned unchanged so the
    caller can classify it; a transport exception is re-raised.
    """

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport,
        config: RetryConfig,
        provider_name: str = "push",
    ):
        self._transport = transport
        self._config = config
        self._provider_name = provider_name

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        attempt = 0

        while True:
            try:
                response = await self._transport.handle_async_request(request)
            except self._config.retryable_exceptions as e:
                if attempt >= self._config.max_retries:
                    logger.error(
                        f"{self._provider_name} request failed after {attempt} retries: {e}",
                        extra={
                            "event_type": "retry_exhausted",
                            "provider": self._provider_name,
                            "attempts": attempt + 1,
                            "error_type": type(e).__name__,
                        }
                    )
                    raise
                attempt += 1
                delay = calculate_delay(attempt, self._config)
                reason = f"{type(e).__name__}: {e}"
            else:
                if (
                    response.status_code not in self._config.retryable_status_codes
                    or attempt >= self._config.max_retries
                ):
                    return response
                attempt += 1
                delay = parse_retry_after(response.headers.get("retry-after"))
                if delay is None:
                    delay = calculate_delay(attempt, self._config)
                reason = f"HTTP {response.status_code}"
                await response.aclose()

            logger.warning(
                f"{self._provider_name} retry {attempt}/{self._config.max_retries} "
                f"in {delay:.2f}s ({reason})",
                extra={
                    "event_type": "retry_attempt",
                    "provider": self._provider_name,
                    "attempt": attempt,
                    "max_retries": self._config.max_retries,
                    "delay_seconds": delay,
                }
            )
            await asyncio.sleep(delay)

    async def aclose(self) -> None:
        await self._transport.aclose()


def build_transport(
    config: RetryConfig,
    http2: bool = False,
    provider_name: str = "push",
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncBaseTransport:
    """
    Build the outbound transport for a provider.

    Args:
        config: Retry configuration
        http2: Negotiate HTTP/2 on the underlying connection
        provider_name: Name used in retry log lines
        transport: Underlying transport (default: a pooled AsyncHTTPTransport)

    Returns:
        The bare transport when retry is disabled, else a RetryTransport
    """
    inner = transport or httpx.AsyncHTTPTransport(
        http2=http2,
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
    )
    if not config.enabled:
        return inner
    return RetryTransport(inner, config, provider_name=provider_name)
