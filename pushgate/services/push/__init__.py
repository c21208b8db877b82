"""
Push notification senders for mobile and web platforms.

This package contains:
- FCMSender - Firebase Cloud Messaging HTTP v1 (Android, iOS, Web)
- APNSSender - Apple Push Notification service over HTTP/2
- PushMessageBuilder / ApnMessageBuilder - fluent message construction
- PushResult / BatchPushResult - per-target and aggregated outcomes
"""

from pushgate.services.push.apns_sender import APNSSender
from pushgate.services.push.builders import ApnMessageBuilder, PushMessageBuilder
from pushgate.services.push.credentials import (
    AccessTokenProvider,
    APNSTokenProvider,
    FCMTokenProvider,
)
from pushgate.services.push.fcm_sender import FCMSender
from pushgate.services.push.models import (
    AndroidOptions,
    AndroidPriority,
    ApnAlert,
    ApnAps,
    ApnMessage,
    ApnPushType,
    APNSConfig,
    APNSEnvironment,
    ApnsOptions,
    BatchPushResult,
    FCMConfig,
    Notification,
    PushMessage,
    PushResult,
    PushTarget,
    TargetType,
    WebPushOptions,
)

__all__ = [
    # FCM
    "FCMSender",
    "FCMConfig",
    "FCMTokenProvider",
    "AccessTokenProvider",
    "PushMessage",
    "PushMessageBuilder",
    "Notification",
    "AndroidOptions",
    "AndroidPriority",
    "ApnsOptions",
    "WebPushOptions",
    # APNS
    "APNSSender",
    "APNSConfig",
    "APNSEnvironment",
    "APNSTokenProvider",
    "ApnMessage",
    "ApnMessageBuilder",
    "ApnAlert",
    "ApnAps",
    "ApnPushType",
    # Common
    "PushTarget",
    "TargetType",
    "PushResult",
    "BatchPushResult",
]
