"""
APNS (Apple Push Notification Service) Sender.

Sends messages directly to Apple over HTTP/2.

Features:
- HTTP/2 connection with persistent connection pooling
- Token-based authentication (ES256 JWT signed with the .p8 auth key)
- Retry with exponential backoff in the transport layer
- Error reasons mapped to descriptions from Apple's reason table
- Stale provider JWTs re-signed after ExpiredProviderToken/InvalidProviderToken
"""

import logging
import time
from typing import Dict, Iterable, Optional

import httpx
from pydantic_core import to_json

from pushgate.core.exceptions import PushError, PushTransportError
from pushgate.core.logging_config import clear_trace_id, set_trace_id
from pushgate.core.retry import RetryConfig, build_transport
from pushgate.services.push.batch import dispatch_batch
from pushgate.services.push.constants import (
    APNS_DEVICE_PATH,
    APNS_ERROR_CODES,
    APNS_ID_PLACEHOLDER,
    APNS_STALE_JWT_REASONS,
    CONNECT_TIMEOUT_SECONDS,
    DRY_RUN_MESSAGE_ID,
)
from pushgate.services.push.credentials import APNSTokenProvider
from pushgate.services.push.models import (
    APNSConfig,
    ApnMessage,
    BatchPushResult,
    PushResult,
    PushTarget,
    status_reason,
)

logger = logging.getLogger(__name__)


class APNSSender:
    """
    APNS sender for Apple device tokens.

    Usage:
        config = APNSConfig(
            key_file="path/to/AuthKey.p8",
            key_id="XXXXXXXXXX",
            team_id="YYYYYYYYYY",
            bundle_id="com.example.app",
            environment=APNSEnvironment.SANDBOX,
        )
        async with APNSSender(config) as sender:
            result = await sender.send(device_token, message)

    Attributes:
        config: APNS configuration
        _token_provider: Provider JWT cache
        _client: httpx AsyncClient with HTTP/2 (lazy initialized)
    """

    def __init__(
        self,
        config: APNSConfig,
        token_provider: Optional[APNSTokenProvider] = None,
    ):
        """
        Initialize APNS sender.

        Args:
            config: APNS configuration
            token_provider: Custom JWT provider (default: built from config)

        Raises:
            PushConfigurationError: If the private key is missing or unreadable
        """
        self.config = config
        self._token_provider = token_provider or APNSTokenProvider(config)
        self._client: Optional[httpx.AsyncClient] = None

        logger.info(
            "APNS sender initialized",
            extra={
                "host": config.host_url,
                "environment": config.environment.value,
                "bundle_id": config.bundle_id,
            }
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP/2 client with retrying transport."""
        if self._client is None or self._client.is_closed:
            retry_config = RetryConfig(
                max_retries=self.config.max_retry_attempts,
                base_delay=self.config.retry_base_delay_ms / 1000,
            )
            self._client = httpx.AsyncClient(
                transport=build_transport(retry_config, http2=True, provider_name="APNS"),
                timeout=httpx.Timeout(self.config.request_timeout_seconds, connect=CONNECT_TIMEOUT_SECONDS),
            )
        return self._client

    def _build_headers(self, jwt_token: str, message: ApnMessage) -> Dict[str, str]:
        """Build request headers for APNS."""
        headers = {
            "authorization": f"bearer {jwt_token}",
            "apns-topic": self.config.bundle_id,
            "apns-push-type": message.push_type.value,
            "apns-priority": str(message.priority),
        }
        if message.expiration_seconds > 0:
            headers["apns-expiration"] = str(int(time.time()) + message.expiration_seconds)
        if message.collapse_id:
            headers["apns-collapse-id"] = message.collapse_id
        return headers

    async def send(self, device_token: str, message: ApnMessage) -> PushResult:
        """
        Send a message to one device.

        Args:
            device_token: APNS device token (hex)
            message: Built ApnMessage

        Returns:
            PushResult; provider rejections are failures, not exceptions

        Raises:
            ValueError: If device_token is blank
            PushAuthenticationError: Signing the provider JWT failed
            PushTransportError: The request could not be completed
        """
        if not device_token or not device_token.strip():
            raise ValueError("device_token must not be blank")

        target = PushTarget.token(device_token)
        context_token = set_trace_id(target.masked())

        try:
            return await self._execute(target, message)
        except PushError:
            raise
        except Exception as e:
            raise PushTransportError(f"APNS transport error: {e}") from e
        finally:
            clear_trace_id(context_token)

    async def send_batch(self, device_tokens: Iterable[str], message: ApnMessage) -> BatchPushResult:
        """
        Send one message to many devices.

        Blank and duplicate tokens are skipped. At most
        config.batch_parallelism sends are in flight at once.

        Args:
            device_tokens: APNS device tokens
            message: Built ApnMessage (shared by every send)

        Returns:
            BatchPushResult in completion order
        """
        return await dispatch_batch(
            device_tokens,
            lambda token: self.send(token, message),
            parallelism=self.config.batch_parallelism,
            provider_name="APNS",
        )

    async def _execute(self, target: PushTarget, message: ApnMessage) -> PushResult:
        jwt_token = await self._token_provider.get_or_refresh_jwt()
        headers = self._build_headers(jwt_token, message)
        body = to_json(message.to_apns_dict())
        url = f"{self.config.host_url}{APNS_DEVICE_PATH.format(device_token=target.value)}"

        logger.debug(
            f"APNS POST {target} | Payload: {body.decode('utf-8')}",
            extra={"push_type": message.push_type.value, "priority": message.priority}
        )

        if message.validate_only:
            logger.info(f"APNS dry run for {target}, request not sent")
            return PushResult.ok(target, DRY_RUN_MESSAGE_ID)

        client = await self._get_client()
        start_time = time.time()
        response = await client.post(url, content=body, headers=headers)
        duration_ms = int((time.time() - start_time) * 1000)

        if response.status_code == 200:
            apns_id = response.headers.get("apns-id") or APNS_ID_PLACEHOLDER
            logger.info(
                "APNS notification delivered",
                extra={
                    "target": target.masked(),
                    "apns_id": apns_id,
                    "duration_ms": duration_ms,
                }
            )
            return PushResult.ok(target, apns_id, response.status_code)

        return self._parse_error(target, response)

    def _parse_error(self, target: PushTarget, response: httpx.Response) -> PushResult:
        """
        Classify an APNS error response.

        Apple sends {"reason": "..."}; a missing, malformed or non-string
        reason falls back to the HTTP reason.
        """
        body = response.text
        reason = None
        try:
            payload = response.json()
            if isinstance(payload, dict) and isinstance(payload.get("reason"), str):
                reason = payload["reason"].strip() or None
        except ValueError:
            logger.debug("APNS error body is not JSON")

        code = reason or status_reason(response.status_code)
        error_message = APNS_ERROR_CODES.get(code) or body or httpx.codes.get_reason_phrase(response.status_code)

        if code in APNS_STALE_JWT_REASONS:
            logger.warning(f"APNS rejected provider JWT ({code}), re-signing on next send")
            self._token_provider.invalidate()

        logger.warning(
            f"APNS send failed: {code}",
            extra={
                "target": target.masked(),
                "status_code": response.status_code,
                "error_code": code,
                "error": error_message,
            }
        )

        return PushResult.failed(target, code, error_message, response.status_code)

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
            logger.debug("APNS HTTP client closed")

    async def __aenter__(self) -> "APNSSender":
        """Context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        await self.close()
