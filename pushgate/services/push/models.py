"""
Models for push notification delivery.

Value objects shared by both providers (targets, results), the FCM
message model, the native APNS message model and the provider
configuration models.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from pushgate.services.push.constants import (
    APNS_DEFAULT_BATCH_PARALLELISM,
    APNS_DEFAULT_EXPIRATION_SECONDS,
    APNS_PRIORITY_IMMEDIATE,
    APNS_PRODUCTION_HOST,
    APNS_SANDBOX_HOST,
    DEFAULT_MAX_RETRY_ATTEMPTS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_RETRY_BASE_DELAY_MS,
    FCM_DEFAULT_BASE_URL,
    FCM_DEFAULT_BATCH_PARALLELISM,
    FCM_MESSAGING_SCOPE,
    RETRYABLE_ERROR_CODES,
    TOKEN_INVALID_ERROR_CODES,
)

MASK_VISIBLE_CHARS = 6
MASK_MARKER = "…"


# =============================================================================
# Targets
# =============================================================================


class TargetType(str, Enum):
    """Kind of delivery target. Values double as FCM message field names."""

    TOKEN = "token"
    TOPIC = "topic"
    CONDITION = "condition"


@dataclass(frozen=True)
class PushTarget:
    """Where a push message should be delivered.

    Compared and hashed by value.
    """

    type: TargetType
    value: str

    @classmethod
    def token(cls, token: str) -> "PushTarget":
        """A single device registration token."""
        return cls(TargetType.TOKEN, token)

    @classmethod
    def topic(cls, topic: str) -> "PushTarget":
        """All devices subscribed to an FCM topic."""
        return cls(TargetType.TOPIC, topic)

    @classmethod
    def condition(cls, condition: str) -> "PushTarget":
        """A boolean topic expression, e.g. "'sports' in topics && 'news' in topics"."""
        return cls(TargetType.CONDITION, condition)

    def masked(self) -> str:
        """Log-safe rendering: long device tokens keep only their ends."""
        if self.type == TargetType.TOKEN and len(self.value) > 2 * MASK_VISIBLE_CHARS:
            return (
                f"{self.value[:MASK_VISIBLE_CHARS]}{MASK_MARKER}"
                f"{self.value[-MASK_VISIBLE_CHARS:]}"
            )
        return self.value

    def __str__(self) -> str:
        return f"{self.type.value}:{self.masked()}"


# =============================================================================
# FCM message model
# =============================================================================


class AndroidPriority(str, Enum):
    """Android delivery priority."""

    NORMAL = "normal"
    HIGH = "high"


class Notification(BaseModel):
    """Visible notification shown by the OS. All fields optional."""

    model_config = ConfigDict(frozen=True)

    title: Optional[str] = None
    body: Optional[str] = None
    image_url: Optional[str] = Field(None, description="Image shown with the notification")


class AndroidOptions(BaseModel):
    """Android-specific delivery options."""

    model_config = ConfigDict(frozen=True)

    priority: AndroidPriority = AndroidPriority.NORMAL
    ttl_seconds: Optional[int] = Field(
        None, ge=0, le=2_419_200, description="Offline storage time (max 28 days)"
    )
    collapse_key: Optional[str] = None
    channel_id: Optional[str] = Field(None, description="Android 8+ notification channel")


class ApnsOptions(BaseModel):
    """APNS options relayed by FCM when it delivers to Apple devices."""

    model_config = ConfigDict(frozen=True)

    headers: Dict[str, str] = Field(default_factory=dict)
    aps_payload: Dict[str, Any] = Field(
        default_factory=dict, description="Extra fields merged into the aps dictionary"
    )


class WebPushOptions(BaseModel):
    """Web Push delivery options."""

    model_config = ConfigDict(frozen=True)

    headers: Dict[str, str] = Field(default_factory=dict)
    data: Dict[str, str] = Field(default_factory=dict)


class PushMessage(BaseModel):
    """Provider-agnostic push message sent through FCM.

    Built with PushMessageBuilder; frozen once built. Data values must be
    strings and the whole data map should stay under ~4 KB, which callers
    are responsible for.

    Attributes:
        data: Key-value payload delivered to the app
        notification: Visible notification; None for a silent data message
        android: Android delivery tuning
        apns: APNS tuning for FCM-to-Apple delivery
        webpush: Web Push tuning
        validate_only: Provider validates without delivering
        message_id: Caller-assigned id used for tracing
    """

    model_config = ConfigDict(frozen=True)

    data: Dict[str, str] = Field(default_factory=dict)
    notification: Optional[Notification] = None
    android: Optional[AndroidOptions] = None
    apns: Optional[ApnsOptions] = None
    webpush: Optional[WebPushOptions] = None
    validate_only: bool = False
    message_id: Optional[str] = None

    @property
    def is_silent(self) -> bool:
        """True for data-only messages the OS does not display."""
        return self.notification is None


# =============================================================================
# Native APNS message model
# =============================================================================


class ApnPushType(str, Enum):
    """Values of the apns-push-type header."""

    ALERT = "alert"
    BACKGROUND = "background"
    LOCATION = "location"
    VOIP = "voip"
    COMPLICATION = "complication"
    FILE_PROVIDER = "fileprovider"
    MDM = "mdm"


class ApnAlert(BaseModel):
    """APNS alert dictionary."""

    model_config = ConfigDict(frozen=True)

    title: Optional[str] = None
    subtitle: Optional[str] = None
    body: Optional[str] = None


class ApnAps(BaseModel):
    """The aps dictionary of an APNS payload.

    Attributes:
        alert: Alert content
        badge: App icon badge number
        sound: Sound filename or "default"
        content_available: 1 wakes the app for a background fetch
        mutable_content: 1 routes through the Notification Service Extension
        category: Notification category for action buttons
        thread_id: Thread identifier for grouping
    """

    model_config = ConfigDict(frozen=True)

    alert: Optional[ApnAlert] = None
    badge: Optional[int] = Field(None, ge=0)
    sound: Optional[str] = None
    content_available: Optional[int] = None
    mutable_content: Optional[int] = None
    category: Optional[str] = None
    thread_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Render the aps dictionary, omitting unset fields."""
        aps: Dict[str, Any] = {}

        if self.alert is not None:
            aps["alert"] = self.alert.model_dump(exclude_none=True)
        if self.badge is not None:
            aps["badge"] = self.badge
        if self.sound is not None:
            aps["sound"] = self.sound
        if self.content_available is not None:
            aps["content-available"] = self.content_available
        if self.mutable_content is not None:
            aps["mutable-content"] = self.mutable_content
        if self.category is not None:
            aps["category"] = self.category
        if self.thread_id is not None:
            aps["thread-id"] = self.thread_id

        return aps


class ApnMessage(BaseModel):
    """Native APNS message, sent directly to Apple without Firebase.

    Built with ApnMessageBuilder; frozen once built.

    Attributes:
        aps: The aps dictionary
        custom_data: Root-level keys merged alongside aps
        push_type: apns-push-type header value
        priority: 10 delivers immediately, 5 conserves power
        expiration_seconds: Seconds from now; 0 means deliver once and discard
        collapse_id: apns-collapse-id header value
        validate_only: Build and check the request without delivering it
    """

    model_config = ConfigDict(frozen=True)

    aps: ApnAps = Field(default_factory=ApnAps)
    custom_data: Dict[str, Any] = Field(default_factory=dict)
    push_type: ApnPushType = ApnPushType.ALERT
    priority: int = APNS_PRIORITY_IMMEDIATE
    expiration_seconds: int = Field(APNS_DEFAULT_EXPIRATION_SECONDS, ge=0)
    collapse_id: Optional[str] = None
    validate_only: bool = False

    def to_apns_dict(self) -> Dict[str, Any]:
        """Convert to APNS payload dictionary format.

        Custom data is merged at the root level; it can never replace aps.

        Returns:
            Dictionary ready for JSON serialization to APNS.
        """
        payload = {key: value for key, value in self.custom_data.items() if key != "aps"}
        payload["aps"] = self.aps.to_dict()
        return payload


# =============================================================================
# Results
# =============================================================================


def status_reason(status_code: int) -> str:
    """Compact reason phrase used as an error code fallback, e.g. 503 -> "ServiceUnavailable"."""
    phrase = httpx.codes.get_reason_phrase(status_code)
    return "".join(phrase.split()) or str(status_code)


@dataclass(frozen=True)
class PushResult:
    """Outcome of one send to one target.

    Provider rejections are reported here, never raised.
    """

    success: bool
    target: PushTarget
    message_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    status_code: Optional[int] = None

    @classmethod
    def ok(cls, target: PushTarget, message_id: str, status_code: int = 200) -> "PushResult":
        return cls(success=True, target=target, message_id=message_id, status_code=status_code)

    @classmethod
    def failed(
        cls,
        target: PushTarget,
        error_code: str,
        error_message: str,
        status_code: Optional[int] = None,
    ) -> "PushResult":
        return cls(
            success=False,
            target=target,
            error_code=error_code,
            error_message=error_message,
            status_code=status_code,
        )

    @property
    def is_token_invalid(self) -> bool:
        """True when the target is permanently rejected and should be deleted."""
        return self.error_code in TOKEN_INVALID_ERROR_CODES

    @property
    def is_retryable(self) -> bool:
        """True when the failure is transient and a later retry may succeed."""
        return self.error_code in RETRYABLE_ERROR_CODES

    def __str__(self) -> str:
        if self.success:
            return f"[OK] {self.target} -> {self.message_id}"
        return (
            f"[FAIL] {self.target} -> HTTP {self.status_code} | "
            f"{self.error_code}: {self.error_message}"
        )


@dataclass(frozen=True)
class BatchPushResult:
    """Aggregated results of a batch send, in completion order."""

    results: Tuple[PushResult, ...] = field(default_factory=tuple)

    @property
    def total_count(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failure_count(self) -> int:
        return self.total_count - self.success_count

    @property
    def is_full_success(self) -> bool:
        return self.failure_count == 0

    @property
    def is_partial_success(self) -> bool:
        return self.success_count > 0 and self.failure_count > 0

    @property
    def is_full_failure(self) -> bool:
        return self.success_count == 0

    @property
    def invalid_tokens(self) -> List[str]:
        """Device tokens permanently rejected by the provider."""
        return [
            r.target.value
            for r in self.results
            if r.is_token_invalid and r.target.type == TargetType.TOKEN
        ]

    @property
    def retryable_tokens(self) -> List[str]:
        """Device tokens that failed with a transient error."""
        return [
            r.target.value
            for r in self.results
            if not r.success and r.is_retryable and r.target.type == TargetType.TOKEN
        ]

    def __str__(self) -> str:
        return (
            f"Batch: {self.success_count}/{self.total_count} succeeded, "
            f"{self.failure_count} failed"
        )


# =============================================================================
# Provider configuration
# =============================================================================


class FCMConfig(BaseModel):
    """Configuration for the FCM sender.

    Attributes:
        project_id: Firebase project ID
        service_account_json: Inline service account JSON (preferred)
        service_account_file: Path to the service account JSON file (fallback)
        max_retry_attempts: Retries on transient failures (0 disables)
        retry_base_delay_ms: Base delay for exponential backoff
        request_timeout_seconds: Per-request HTTP timeout
        batch_parallelism: Max concurrent sends in a batch
        base_url: FCM base URL, overridable for proxies and tests
        token_scope: OAuth2 scope requested for the access token
    """

    project_id: str = Field(..., min_length=1, description="Firebase project ID")
    service_account_json: Optional[str] = Field(None, description="Inline service account JSON")
    service_account_file: Optional[str] = Field(None, description="Path to service account JSON")
    max_retry_attempts: int = Field(DEFAULT_MAX_RETRY_ATTEMPTS, ge=0)
    retry_base_delay_ms: int = Field(DEFAULT_RETRY_BASE_DELAY_MS, ge=0)
    request_timeout_seconds: int = Field(DEFAULT_REQUEST_TIMEOUT_SECONDS, gt=0)
    batch_parallelism: int = Field(FCM_DEFAULT_BATCH_PARALLELISM, ge=1)
    base_url: str = FCM_DEFAULT_BASE_URL
    token_scope: str = FCM_MESSAGING_SCOPE

    @field_validator("project_id")
    @classmethod
    def validate_project_id(cls, v: str) -> str:
        """Validate that the project id is not blank."""
        if not v.strip():
            raise ValueError("project_id cannot be blank")
        return v.strip()

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def has_credentials(self) -> bool:
        return bool(
            (self.service_account_json and self.service_account_json.strip())
            or (self.service_account_file and self.service_account_file.strip())
        )


class APNSEnvironment(str, Enum):
    """APNS environment selecting the base host."""

    PRODUCTION = "production"
    SANDBOX = "sandbox"


class APNSConfig(BaseModel):
    """Configuration for the APNS sender.

    Attributes:
        private_key: Base64 body of the .p8 key, header/footer and whitespace stripped
        key_file: Path to a PEM .p8 auth key file (fallback)
        key_id: 10-character key identifier from Apple Developer Portal
        team_id: 10-character team identifier
        bundle_id: App bundle identifier, sent as apns-topic
        environment: Production or sandbox host
        base_url: Host override for proxies and tests
    """

    private_key: Optional[str] = Field(None, description="Base64 .p8 key content")
    key_file: Optional[str] = Field(None, description="Path to .p8 auth key file")
    key_id: str = Field(..., min_length=10, max_length=10, description="10-character key ID")
    team_id: str = Field(..., min_length=10, max_length=10, description="10-character team ID")
    bundle_id: str = Field(..., min_length=1, description="App bundle identifier")
    environment: APNSEnvironment = APNSEnvironment.PRODUCTION
    max_retry_attempts: int = Field(DEFAULT_MAX_RETRY_ATTEMPTS, ge=0)
    retry_base_delay_ms: int = Field(DEFAULT_RETRY_BASE_DELAY_MS, ge=0)
    request_timeout_seconds: int = Field(DEFAULT_REQUEST_TIMEOUT_SECONDS, gt=0)
    batch_parallelism: int = Field(APNS_DEFAULT_BATCH_PARALLELISM, ge=1)
    base_url: Optional[str] = Field(None, description="Override APNS base URL")

    @field_validator("key_id", "team_id")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        """Validate that identifiers are alphanumeric."""
        if not v.isalnum():
            raise ValueError("Must be alphanumeric")
        return v.upper()

    @property
    def host_url(self) -> str:
        """Base URL for the configured environment."""
        if self.base_url:
            return self.base_url.rstrip("/")
        host = APNS_SANDBOX_HOST if self.environment == APNSEnvironment.SANDBOX else APNS_PRODUCTION_HOST
        return f"https://{host}"
