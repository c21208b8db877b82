"""
Tests for FCM Sender.

Requests are answered in-process by httpx.MockTransport; the bearer token
comes from a static provider so no OAuth2 exchange happens.
"""
import asyncio
import json
import logging

import httpx
import pytest

from pushgate.core.exceptions import (
    PushAuthenticationError,
    PushConfigurationError,
    PushTransportError,
)
from pushgate.core.logging_config import get_trace_id
from pushgate.core.retry import RetryConfig, build_transport
from pushgate.services.push.builders import PushMessageBuilder
from pushgate.services.push.fcm_sender import FCMSender
from pushgate.services.push.models import AndroidPriority, FCMConfig, PushTarget, status_reason
from tests.mocks import create_fcm_error, create_fcm_success, mock_client

SEND_URL = "https://fcm.googleapis.com/v1/projects/test-project/messages:send"


class StaticTokenProvider:
    def __init__(self, token="test-access-token", error=None):
        self.token = token
        self.error = error
        self.calls = 0
        self.invalidated = 0

    async def get_access_token(self) -> str:
        self.calls += 1
        if self.error:
            raise self.error
        return self.token

    def invalidate(self):
        self.invalidated += 1


def _sender(handler, config=None, token_provider=None):
    config = config or FCMConfig(project_id="test-project")
    sender = FCMSender(config, token_provider=token_provider or StaticTokenProvider())
    sender._client = mock_client(handler)
    return sender


class Recorder:
    """Handler that records requests and replies via respond(request)."""

    def __init__(self, respond=None):
        self.requests = []
        self.respond = respond or (lambda request: create_fcm_success())

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)

    def bodies(self):
        return [json.loads(request.content) for request in self.requests]


class TestFCMSenderInit:
    """Test sender construction"""

    def test_default_provider_requires_credentials(self):
        with pytest.raises(PushConfigurationError):
            FCMSender(FCMConfig(project_id="test-project"))

    def test_custom_provider_skips_credential_check(self):
        sender = FCMSender(FCMConfig(project_id="test-project"), token_provider=StaticTokenProvider())

        assert sender._client is None


class TestFCMSend:
    """Test single sends"""

    @pytest.mark.asyncio
    async def test_success(self, push_message):
        recorder = Recorder()
        sender = _sender(recorder)

        result = await sender.send_to_token("device-token-1", push_message)

        assert result.success is True
        assert result.message_id == "projects/test-project/messages/0:1700000000000000%abcdef"
        assert result.status_code == 200
        assert result.target == PushTarget.token("device-token-1")

    @pytest.mark.asyncio
    async def test_request_shape(self, push_message):
        recorder = Recorder()
        sender = _sender(recorder)

        await sender.send_to_token("device-token-1", push_message)

        request = recorder.requests[0]
        assert str(request.url) == SEND_URL
        assert request.method == "POST"
        assert request.headers["authorization"] == "Bearer test-access-token"
        assert request.headers["content-type"].startswith("application/json")
        assert recorder.bodies()[0] == {
            "validate_only": False,
            "message": {
                "token": "device-token-1",
                "data": {"event": "ORDER_SHIPPED"},
                "notification": {"title": "Your order shipped!", "body": "It's on its way."},
            },
        }

    @pytest.mark.asyncio
    async def test_topic_and_condition_targets(self, push_message):
        recorder = Recorder()
        sender = _sender(recorder)

        await sender.send_to_topic("news", push_message)
        await sender.send_to_condition("'sports' in topics || 'news' in topics", push_message)

        first, second = recorder.bodies()
        assert first["message"]["topic"] == "news"
        assert "token" not in first["message"]
        assert second["message"]["condition"] == "'sports' in topics || 'news' in topics"

    @pytest.mark.asyncio
    async def test_platform_blocks(self):
        message = (
            PushMessageBuilder()
            .with_data("k", "v")
            .with_android(priority=AndroidPriority.HIGH, ttl_seconds=3600, collapse_key="orders", channel_id="ship")
            .with_apns(headers={"apns-priority": "10"}, aps_payload={"sound": "default"})
            .with_webpush(data={"url": "/orders"})
            .dry_run()
            .build()
        )
        recorder = Recorder()
        sender = _sender(recorder)

        await sender.send_to_token("tok", message)

        body = recorder.bodies()[0]
        assert body["validate_only"] is True
        assert "notification" not in body["message"]
        assert body["message"]["android"] == {
            "priority": "high",
            "ttl": "3600s",
            "collapse_key": "orders",
            "notification": {"channel_id": "ship"},
        }
        assert body["message"]["apns"] == {
            "headers": {"apns-priority": "10"},
            "payload": {"aps": {"sound": "default"}},
        }
        assert body["message"]["webpush"] == {"data": {"url": "/orders"}}

    @pytest.mark.asyncio
    async def test_unparsable_success_body_falls_back_to_trace_id(self):
        message = PushMessageBuilder().with_data("k", "v").with_message_id("msg-42").build()
        sender = _sender(Recorder(lambda request: httpx.Response(200, text="OK")))

        result = await sender.send_to_token("tok", message)

        assert result.success is True
        assert result.message_id == "msg-42"

    @pytest.mark.asyncio
    async def test_trace_id_set_during_send(self):
        message = PushMessageBuilder().with_data("k", "v").with_message_id("msg-42").build()
        seen = []

        def respond(request):
            seen.append(get_trace_id())
            return create_fcm_success()

        sender = _sender(Recorder(respond))

        await sender.send_to_token("tok", message)

        assert seen == ["msg-42"]
        assert get_trace_id() != "msg-42"


class TestFCMErrors:
    """Test error classification"""

    @pytest.mark.asyncio
    async def test_unregistered_token(self, push_message):
        sender = _sender(Recorder(lambda request: create_fcm_error()))

        result = await sender.send_to_token("stale-token", push_message)

        assert result.success is False
        assert result.error_code == "UNREGISTERED"
        assert result.error_message == "Requested entity was not found."
        assert result.status_code == 404
        assert result.is_token_invalid is True

    @pytest.mark.asyncio
    async def test_status_used_when_no_detail_code(self, push_message):
        response = create_fcm_error(503, "UNAVAILABLE", "The service is currently unavailable.", error_code=None)
        sender = _sender(Recorder(lambda request: response))

        result = await sender.send_to_token("tok", push_message)

        assert result.error_code == "UNAVAILABLE"
        assert result.is_retryable is True

    @pytest.mark.asyncio
    async def test_malformed_error_body(self, push_message):
        sender = _sender(Recorder(lambda request: httpx.Response(502, text="<html>Bad Gateway</html>")))

        result = await sender.send_to_token("tok", push_message)

        assert result.success is False
        assert result.error_code == "BadGateway"
        assert result.error_message == "<html>Bad Gateway</html>"
        assert result.status_code == 502

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        {"status": {"x": 1}, "message": ["not", "text"]},
        {"status": 7, "details": [{"errorCode": {"x": 1}}, {"errorCode": ["UNREGISTERED"]}]},
        {"status": "  ", "message": 42},
    ])
    async def test_non_string_error_fields_fall_back_to_http_status(self, push_message, error):
        response = httpx.Response(400, json={"error": error})
        sender = _sender(Recorder(lambda request: response))

        batch = await sender.send_batch(["a" * 20], push_message)

        assert batch.failure_count == 1
        result = batch.results[0]
        assert result.error_code == status_reason(400)
        assert result.error_message == response.text
        assert result.is_token_invalid is False

    @pytest.mark.asyncio
    async def test_unauthenticated_invalidates_access_token(self, push_message):
        provider = StaticTokenProvider()
        response = create_fcm_error(401, "UNAUTHENTICATED", "Request had invalid authentication credentials.", error_code=None)
        sender = _sender(Recorder(lambda request: response), token_provider=provider)

        result = await sender.send_to_token("tok", push_message)

        assert result.error_code == "UNAUTHENTICATED"
        assert provider.invalidated == 1

    @pytest.mark.asyncio
    async def test_other_rejections_keep_access_token(self, push_message):
        provider = StaticTokenProvider()
        sender = _sender(Recorder(lambda request: create_fcm_error()), token_provider=provider)

        await sender.send_to_token("tok", push_message)

        assert provider.invalidated == 0

    @pytest.mark.asyncio
    async def test_debug_payload_masks_device_token(self, push_message, caplog):
        raw_token = "RAWTOKEN-0123456789-SECRET-abcdef"
        sender = _sender(Recorder())

        with caplog.at_level(logging.DEBUG, logger="pushgate.services.push.fcm_sender"):
            await sender.send_to_token(raw_token, push_message)

        payload_lines = [r.getMessage() for r in caplog.records if "Payload:" in r.getMessage()]
        assert payload_lines
        assert all(raw_token not in r.getMessage() for r in caplog.records)
        assert PushTarget.token(raw_token).masked() in payload_lines[0]

    @pytest.mark.asyncio
    async def test_transport_error_raised(self, push_message):
        def respond(request):
            raise httpx.ConnectError("connection refused")

        sender = _sender(Recorder(respond))

        with pytest.raises(PushTransportError) as exc_info:
            await sender.send_to_token("tok", push_message)
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
        assert "connection refused" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_auth_error_propagates(self, push_message):
        recorder = Recorder()
        sender = _sender(recorder, token_provider=StaticTokenProvider(error=PushAuthenticationError("denied")))

        with pytest.raises(PushAuthenticationError):
            await sender.send_to_token("tok", push_message)
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_transient_status_retried_before_classification(self, push_message):
        responses = [create_fcm_error(503, "UNAVAILABLE", "busy", error_code=None), create_fcm_success()]
        recorder = Recorder(lambda request: responses[len(recorder.requests) - 1])
        sender = FCMSender(FCMConfig(project_id="test-project"), token_provider=StaticTokenProvider())
        sender._client = httpx.AsyncClient(transport=build_transport(
            RetryConfig(max_retries=2, base_delay=0, jitter_max=0),
            transport=httpx.MockTransport(recorder),
        ))

        result = await sender.send_to_token("tok", push_message)

        assert result.success is True
        assert len(recorder.requests) == 2


class TestFCMBatch:
    """Test batch sends"""

    @pytest.mark.asyncio
    async def test_duplicates_and_blanks_skipped(self, push_message):
        recorder = Recorder()
        sender = _sender(recorder)

        batch = await sender.send_batch(["a", "b", "a", "", "   "], push_message)

        assert batch.total_count == 2
        assert sorted(body["message"]["token"] for body in recorder.bodies()) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_empty_batch_makes_no_calls(self, push_message):
        recorder = Recorder()
        sender = _sender(recorder)

        batch = await sender.send_batch([], push_message)

        assert batch.total_count == 0
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_partial_success(self, push_message):
        def respond(request):
            if json.loads(request.content)["message"]["token"] == "stale":
                return create_fcm_error()
            return create_fcm_success()

        sender = _sender(Recorder(respond))

        batch = await sender.send_batch(["good-1", "stale", "good-2"], push_message)

        assert batch.success_count == 2
        assert batch.failure_count == 1
        assert batch.is_partial_success is True
        assert batch.invalid_tokens == ["stale"]

    @pytest.mark.asyncio
    async def test_parallelism_ceiling(self, push_message):
        in_flight = 0
        peak = 0

        async def respond(request):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return create_fcm_success()

        config = FCMConfig(project_id="test-project", batch_parallelism=3)
        sender = FCMSender(config, token_provider=StaticTokenProvider())
        sender._client = mock_client(respond)

        batch = await sender.send_batch([f"token-{i}" for i in range(10)], push_message)

        assert batch.success_count == 10
        assert peak == 3

    @pytest.mark.asyncio
    async def test_infrastructure_error_aborts_batch(self, push_message):
        sender = _sender(Recorder(), token_provider=StaticTokenProvider(error=PushAuthenticationError("denied")))

        with pytest.raises(PushAuthenticationError):
            await sender.send_batch(["a", "b", "c"], push_message)


class TestFCMLifecycle:
    """Test close and context manager"""

    @pytest.mark.asyncio
    async def test_context_manager_closes_client(self, push_message):
        sender = _sender(Recorder())

        async with sender:
            await sender.send_to_token("tok", push_message)
            client = sender._client

        assert client.is_closed
        assert sender._client is None

    @pytest.mark.asyncio
    async def test_owned_token_provider_closed(self, fcm_config):
        sender = FCMSender(fcm_config)
        provider_client = await sender._token_provider._get_client()

        await sender.close()

        assert provider_client.is_closed
