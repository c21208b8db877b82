"""
pushgate - dual-provider push notification dispatch.

Sends push notifications through Firebase Cloud Messaging (HTTP v1) and
Apple Push Notification service (HTTP/2) with cached credentials, retry
with backoff and concurrency-bounded batch fan-out.
"""

__version__ = "1.0.0"
