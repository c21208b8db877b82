"""
Fluent builders for push messages.

Setters only record configuration and return the builder; build() is the
single step that validates and freezes the message.

Usage:
    message = (
        PushMessageBuilder()
        .with_data("event", "ORDER_SHIPPED")
        .with_data("order", {"id": "ORD-999", "items": 3})
        .with_notification("Your order shipped!", "It's on its way.")
        .with_android(priority=AndroidPriority.HIGH, ttl_seconds=86400)
        .build()
    )
"""

from typing import Any, Dict, Mapping, Optional

from pydantic_core import to_json

from pushgate.core.exceptions import PushValidationError
from pushgate.services.push.constants import APNS_PRIORITY_CONSERVE_POWER
from pushgate.services.push.models import (
    AndroidOptions,
    AndroidPriority,
    ApnMessage,
    ApnPushType,
    ApnsOptions,
    Notification,
    PushMessage,
    WebPushOptions,
)


def _to_data_string(value: Any) -> str:
    """Data maps only carry strings; structured values are JSON-encoded."""
    if isinstance(value, str):
        return value
    return to_json(value).decode("utf-8")


def _optional(model, values):
    return model(**values) if values is not None else None


class PushMessageBuilder:
    """Builder for PushMessage (FCM path)."""

    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}
        self._notification: Optional[Dict[str, Any]] = None
        self._android: Optional[Dict[str, Any]] = None
        self._apns: Optional[Dict[str, Any]] = None
        self._webpush: Optional[Dict[str, Any]] = None
        self._validate_only = False
        self._message_id: Optional[str] = None

    def with_data(self, key: str, value: Any) -> "PushMessageBuilder":
        """Add a data entry.

        Strings are stored as-is; any other value (dict, list, dataclass,
        pydantic model, ...) is JSON-serialized when the message is built.
        """
        self._data[key] = value
        return self

    def with_data_map(self, data: Mapping[str, Any]) -> "PushMessageBuilder":
        """Merge a mapping into the data payload."""
        for key, value in data.items():
            self.with_data(key, value)
        return self

    def with_notification(
        self,
        title: Optional[str] = None,
        body: Optional[str] = None,
        image_url: Optional[str] = None,
    ) -> "PushMessageBuilder":
        """Make the message visible. Without this call it stays silent."""
        self._notification = {"title": title, "body": body, "image_url": image_url}
        return self

    def with_android(
        self,
        priority: AndroidPriority = AndroidPriority.NORMAL,
        ttl_seconds: Optional[int] = None,
        collapse_key: Optional[str] = None,
        channel_id: Optional[str] = None,
    ) -> "PushMessageBuilder":
        self._android = {
            "priority": priority,
            "ttl_seconds": ttl_seconds,
            "collapse_key": collapse_key,
            "channel_id": channel_id,
        }
        return self

    def with_apns(
        self,
        headers: Optional[Mapping[str, str]] = None,
        aps_payload: Optional[Mapping[str, Any]] = None,
    ) -> "PushMessageBuilder":
        """APNS headers and extra aps fields used when FCM relays to Apple."""
        self._apns = {"headers": dict(headers or {}), "aps_payload": dict(aps_payload or {})}
        return self

    def with_webpush(
        self,
        headers: Optional[Mapping[str, str]] = None,
        data: Optional[Mapping[str, str]] = None,
    ) -> "PushMessageBuilder":
        self._webpush = {"headers": dict(headers or {}), "data": dict(data or {})}
        return self

    def with_message_id(self, message_id: str) -> "PushMessageBuilder":
        """Caller-assigned id, used as the trace id in logs."""
        self._message_id = message_id
        return self

    def dry_run(self, enabled: bool = True) -> "PushMessageBuilder":
        """Ask the provider to validate the message without delivering it."""
        self._validate_only = enabled
        return self

    def build(self) -> PushMessage:
        """Validate and freeze the message.

        Raises:
            PushValidationError: If the message has neither data nor a notification
        """
        if not self._data and self._notification is None:
            raise PushValidationError(
                "A PushMessage needs at least one data entry or a notification. "
                "Call with_data(...) or with_notification(...)."
            )

        try:
            return PushMessage(
                data={key: _to_data_string(value) for key, value in self._data.items()},
                notification=_optional(Notification, self._notification),
                android=_optional(AndroidOptions, self._android),
                apns=_optional(ApnsOptions, self._apns),
                webpush=_optional(WebPushOptions, self._webpush),
                validate_only=self._validate_only,
                message_id=self._message_id,
            )
        except (TypeError, ValueError) as e:
            raise PushValidationError(f"Invalid PushMessage: {e}") from e


class ApnMessageBuilder:
    """Builder for ApnMessage (direct APNS path)."""

    def __init__(self) -> None:
        self._alert: Optional[Dict[str, Any]] = None
        self._badge: Optional[int] = None
        self._sound: Optional[str] = None
        self._content_available: Optional[int] = None
        self._mutable_content: Optional[int] = None
        self._category: Optional[str] = None
        self._thread_id: Optional[str] = None
        self._custom_data: Dict[str, Any] = {}
        self._push_type = ApnPushType.ALERT
        self._priority: Optional[int] = None
        self._expiration_seconds: Optional[int] = None
        self._collapse_id: Optional[str] = None
        self._validate_only = False

    def with_alert(
        self,
        title: Optional[str] = None,
        body: Optional[str] = None,
        subtitle: Optional[str] = None,
    ) -> "ApnMessageBuilder":
        self._alert = {"title": title, "body": body, "subtitle": subtitle}
        self._push_type = ApnPushType.ALERT
        return self

    def with_badge(self, count: int) -> "ApnMessageBuilder":
        self._badge = count
        return self

    def with_sound(self, sound: str = "default") -> "ApnMessageBuilder":
        self._sound = sound
        return self

    def as_background(self) -> "ApnMessageBuilder":
        """Silent background push that wakes the app to fetch content.

        Apple rejects background pushes at priority 10, so the flag, the
        push type and the priority always change together.
        """
        self._content_available = 1
        self._push_type = ApnPushType.BACKGROUND
        self._priority = APNS_PRIORITY_CONSERVE_POWER
        return self

    def with_mutable_content(self) -> "ApnMessageBuilder":
        self._mutable_content = 1
        return self

    def with_category(self, category: str) -> "ApnMessageBuilder":
        self._category = category
        return self

    def with_thread_id(self, thread_id: str) -> "ApnMessageBuilder":
        self._thread_id = thread_id
        return self

    def with_custom_data(self, key: str, value: Any) -> "ApnMessageBuilder":
        """Add a root-level payload key. Any JSON-serializable value."""
        self._custom_data[key] = value
        return self

    def with_collapse_id(self, collapse_id: str) -> "ApnMessageBuilder":
        self._collapse_id = collapse_id
        return self

    def with_priority(self, priority: int) -> "ApnMessageBuilder":
        self._priority = priority
        return self

    def expires_in(self, seconds: int) -> "ApnMessageBuilder":
        """Expiry in seconds from send time; 0 delivers once and discards."""
        self._expiration_seconds = seconds
        return self

    def as_push_type(self, push_type: ApnPushType) -> "ApnMessageBuilder":
        self._push_type = push_type
        return self

    def dry_run(self, enabled: bool = True) -> "ApnMessageBuilder":
        self._validate_only = enabled
        return self

    def build(self) -> ApnMessage:
        """Validate and freeze the message.

        Raises:
            PushValidationError: If the message has no alert, no content-available
                flag and no custom data, or a custom key collides with aps
        """
        if self._alert is None and self._content_available is None and not self._custom_data:
            raise PushValidationError(
                "An ApnMessage needs at least an alert, the content-available flag "
                "or custom data."
            )
        if "aps" in self._custom_data:
            raise PushValidationError("Custom data cannot use the reserved 'aps' key.")

        fields: Dict[str, Any] = {
            "aps": {
                "alert": self._alert,
                "badge": self._badge,
                "sound": self._sound,
                "content_available": self._content_available,
                "mutable_content": self._mutable_content,
                "category": self._category,
                "thread_id": self._thread_id,
            },
            "custom_data": dict(self._custom_data),
            "push_type": self._push_type,
            "collapse_id": self._collapse_id,
            "validate_only": self._validate_only,
        }
        if self._priority is not None:
            fields["priority"] = self._priority
        if self._expiration_seconds is not None:
            fields["expiration_seconds"] = self._expiration_seconds

        try:
            return ApnMessage(**fields)
        except ValueError as e:
            raise PushValidationError(f"Invalid ApnMessage: {e}") from e
