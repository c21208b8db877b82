"""
Mock Factories Package

Provides factory functions for creating real httpx responses shaped like
the FCM, Google OAuth2 and APNS endpoints.
"""
from tests.mocks.http_mocks import (
    create_apns_error,
    create_apns_success,
    create_fcm_error,
    create_fcm_success,
    create_token_response,
    mock_client,
)

__all__ = [
    "create_apns_error",
    "create_apns_success",
    "create_fcm_error",
    "create_fcm_success",
    "create_token_response",
    "mock_client",
]
