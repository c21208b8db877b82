"""
FCM (Firebase Cloud Messaging) Sender.

Sends messages through the FCM HTTP v1 API.

Features:
- OAuth2 bearer token cached by FCMTokenProvider
- Token, topic and condition targets
- Retry with exponential backoff in the transport layer
- Provider rejections returned as PushResult values, never raised
- Batch send with a configurable parallelism ceiling
"""

import json
import logging
import time
import uuid
from typing import Any, Dict, Iterable, Optional

import httpx

from pushgate.core.exceptions import PushError, PushTransportError
from pushgate.core.logging_config import clear_trace_id, set_trace_id
from pushgate.core.retry import RetryConfig, build_transport
from pushgate.services.push.batch import dispatch_batch
from pushgate.services.push.constants import (
    CONNECT_TIMEOUT_SECONDS,
    FCM_SEND_PATH,
    FCM_STALE_TOKEN_CODES,
)
from pushgate.services.push.credentials import AccessTokenProvider, FCMTokenProvider
from pushgate.services.push.models import (
    BatchPushResult,
    FCMConfig,
    PushMessage,
    PushResult,
    PushTarget,
    status_reason,
)

logger = logging.getLogger(__name__)


def _is_text(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


class FCMSender:
    """
    FCM sender for Android, iOS and Web registration tokens, topics and conditions.

    Usage:
        config = FCMConfig(
            project_id="my-app-12345",
            service_account_json=os.environ["FCM_SERVICE_ACCOUNT_JSON"],
        )
        async with FCMSender(config) as sender:
            result = await sender.send_to_token(device_token, message)

    Attributes:
        config: FCM configuration
        _token_provider: Source of OAuth2 bearer tokens
        _client: httpx AsyncClient (lazy initialized)
    """

    def __init__(
        self,
        config: FCMConfig,
        token_provider: Optional[AccessTokenProvider] = None,
    ):
        """
        Initialize FCM sender.

        Args:
            config: FCM configuration
            token_provider: Custom bearer token source (default: service account
                exchange via FCMTokenProvider)

        Raises:
            PushConfigurationError: If no token provider is given and the
                configuration has no service account
        """
        self.config = config
        self._owns_token_provider = token_provider is None
        self._token_provider = token_provider or FCMTokenProvider(config)
        self._client: Optional[httpx.AsyncClient] = None
        self._send_url = f"{config.base_url}{FCM_SEND_PATH.format(project_id=config.project_id)}"

        logger.info(
            "FCM sender initialized",
            extra={
                "project_id": config.project_id,
                "max_retry_attempts": config.max_retry_attempts,
                "batch_parallelism": config.batch_parallelism,
            }
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client with retrying transport."""
        if self._client is None or self._client.is_closed:
            retry_config = RetryConfig(
                max_retries=self.config.max_retry_attempts,
                base_delay=self.config.retry_base_delay_ms / 1000,
            )
            self._client = httpx.AsyncClient(
                transport=build_transport(retry_config, provider_name="FCM"),
                timeout=httpx.Timeout(self.config.request_timeout_seconds, connect=CONNECT_TIMEOUT_SECONDS),
            )
        return self._client

    async def send_to_token(self, token: str, message: PushMessage) -> PushResult:
        return await self.send(PushTarget.token(token), message)

    async def send_to_topic(self, topic: str, message: PushMessage) -> PushResult:
        return await self.send(PushTarget.topic(topic), message)

    async def send_to_condition(self, condition: str, message: PushMessage) -> PushResult:
        return await self.send(PushTarget.condition(condition), message)

    async def send(self, target: PushTarget, message: PushMessage) -> PushResult:
        """
        Send a message to one target.

        Args:
            target: Token, topic or condition
            message: Built PushMessage

        Returns:
            PushResult; provider rejections are failures, not exceptions

        Raises:
            PushConfigurationError: Credentials are missing
            PushAuthenticationError: The OAuth2 exchange failed
            PushTransportError: The request could not be completed
        """
        trace_id = message.message_id or uuid.uuid4().hex[:8]
        context_token = set_trace_id(trace_id)

        logger.info(
            f"FCM sending to {target}",
            extra={"target_type": target.type.value, "target": target.masked()}
        )

        try:
            return await self._execute(target, message, trace_id)
        except PushError:
            raise
        except Exception as e:
            raise PushTransportError(f"FCM transport error: {e}") from e
        finally:
            clear_trace_id(context_token)

    async def send_batch(self, tokens: Iterable[str], message: PushMessage) -> BatchPushResult:
        """
        Send one message to many device tokens.

        Blank and duplicate tokens are skipped. At most
        config.batch_parallelism sends are in flight at once.

        Args:
            tokens: Device registration tokens
            message: Built PushMessage (shared by every send)

        Returns:
            BatchPushResult in completion order
        """
        return await dispatch_batch(
            tokens,
            lambda token: self.send_to_token(token, message),
            parallelism=self.config.batch_parallelism,
            provider_name="FCM",
        )

    async def _execute(self, target: PushTarget, message: PushMessage, trace_id: str) -> PushResult:
        access_token = await self._token_provider.get_access_token()
        request_body = self._build_request_body(target, message)
        body = json.dumps(request_body, separators=(",", ":"))

        if logger.isEnabledFor(logging.DEBUG):
            # Device tokens are only ever logged masked
            request_body["message"][target.type.value] = target.masked()
            logger.debug(
                f"FCM POST {target} | Payload: {json.dumps(request_body, separators=(',', ':'))}"
            )

        client = await self._get_client()
        start_time = time.time()
        response = await client.post(
            self._send_url,
            content=body,
            headers={
                "authorization": f"Bearer {access_token}",
                "content-type": "application/json; charset=utf-8",
            },
        )
        duration_ms = int((time.time() - start_time) * 1000)

        logger.debug(f"FCM HTTP {response.status_code} | Body: {response.text}")

        if response.is_success:
            message_name = self._parse_message_name(response) or trace_id
            logger.info(
                "FCM message accepted",
                extra={
                    "target": target.masked(),
                    "message_name": message_name,
                    "duration_ms": duration_ms,
                }
            )
            return PushResult.ok(target, message_name, response.status_code)

        return self._parse_error(target, response)

    @staticmethod
    def _parse_message_name(response: httpx.Response) -> Optional[str]:
        try:
            payload = response.json()
        except ValueError:
            return None
        if isinstance(payload, dict) and _is_text(payload.get("name")):
            return payload["name"]
        return None

    def _parse_error(self, target: PushTarget, response: httpx.Response) -> PushResult:
        """
        Classify an FCM error response.

        The specific code lives in error.details[].errorCode, falling back to
        error.status, then to the HTTP reason. A malformed body still yields
        a structured failure.
        """
        body = response.text
        code = status_reason(response.status_code)
        error_message = body

        try:
            error = response.json().get("error") or {}
            detail_code = next(
                (
                    detail["errorCode"]
                    for detail in error.get("details") or []
                    if isinstance(detail, dict) and _is_text(detail.get("errorCode"))
                ),
                None,
            )
            status = error.get("status")
            message = error.get("message")
            code = detail_code or (status if _is_text(status) else code)
            error_message = message if _is_text(message) else body
        except (ValueError, AttributeError, TypeError):
            logger.debug("FCM error body is not a JSON error envelope")

        if response.status_code == 401 or code in FCM_STALE_TOKEN_CODES:
            invalidate = getattr(self._token_provider, "invalidate", None)
            if invalidate is not None:
                logger.warning(f"FCM rejected access token ({code}), refreshing on next send")
                invalidate()

        logger.warning(
            f"FCM send failed: {code}",
            extra={
                "target": target.masked(),
                "status_code": response.status_code,
                "error_code": code,
                "error": error_message,
            }
        )

        return PushResult.failed(target, code, error_message, response.status_code)

    @staticmethod
    def _build_request_body(target: PushTarget, message: PushMessage) -> Dict[str, Any]:
        """
        Build the FCM v1 send request.

        Absent optional fields are omitted rather than sent as null.
        """
        fcm_message: Dict[str, Any] = {target.type.value: target.value}

        if message.data:
            fcm_message["data"] = dict(message.data)

        if message.notification is not None:
            notification = {
                "title": message.notification.title,
                "body": message.notification.body,
                "image": message.notification.image_url,
            }
            fcm_message["notification"] = {k: v for k, v in notification.items() if v is not None}

        if message.android is not None:
            android: Dict[str, Any] = {"priority": message.android.priority.value}
            if message.android.ttl_seconds is not None:
                android["ttl"] = f"{message.android.ttl_seconds}s"
            if message.android.collapse_key is not None:
                android["collapse_key"] = message.android.collapse_key
            if message.android.channel_id is not None:
                android["notification"] = {"channel_id": message.android.channel_id}
            fcm_message["android"] = android

        if message.apns is not None:
            apns: Dict[str, Any] = {}
            if message.apns.headers:
                apns["headers"] = dict(message.apns.headers)
            if message.apns.aps_payload:
                apns["payload"] = {"aps": dict(message.apns.aps_payload)}
            fcm_message["apns"] = apns

        if message.webpush is not None:
            webpush: Dict[str, Any] = {}
            if message.webpush.headers:
                webpush["headers"] = dict(message.webpush.headers)
            if message.webpush.data:
                webpush["data"] = dict(message.webpush.data)
            fcm_message["webpush"] = webpush

        return {"validate_only": message.validate_only, "message": fcm_message}

    async def close(self) -> None:
        """Close the HTTP clients and release resources."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
        if self._owns_token_provider:
            await self._token_provider.close()
        logger.debug("FCM sender closed")

    async def __aenter__(self) -> "FCMSender":
        """Context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        await self.close()
