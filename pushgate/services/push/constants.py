"""
Constants for FCM and APNS push notification providers.
"""

# FCM endpoints
FCM_DEFAULT_BASE_URL = "https://fcm.googleapis.com"
FCM_SEND_PATH = "/v1/projects/{project_id}/messages:send"
FCM_MESSAGING_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
GOOGLE_JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"

# FCM OAuth2 token lifetime
FCM_DEFAULT_TOKEN_LIFETIME_SECONDS = 3600  # Used only when the exchange omits expires_in
FCM_TOKEN_REFRESH_BUFFER_SECONDS = 60

# APNS Hosts
APNS_PRODUCTION_HOST = "api.push.apple.com"
APNS_SANDBOX_HOST = "api.sandbox.push.apple.com"

# APNS API path
APNS_DEVICE_PATH = "/3/device/{device_token}"

# JWT configuration
JWT_ALGORITHM = "ES256"
JWT_TOKEN_LIFETIME_SECONDS = 45 * 60  # Apple accepts up to 60 minutes

# APNS priorities
APNS_PRIORITY_IMMEDIATE = 10
APNS_PRIORITY_CONSERVE_POWER = 5  # Required for background pushes
APNS_DEFAULT_EXPIRATION_SECONDS = 3600

# Message id reported when APNS omits the apns-id header
APNS_ID_PLACEHOLDER = "ok"
DRY_RUN_MESSAGE_ID = "dry-run"

# Default batch fan-out ceilings; Apple throttles harder than Google
FCM_DEFAULT_BATCH_PARALLELISM = 100
APNS_DEFAULT_BATCH_PARALLELISM = 50

# Retry defaults
DEFAULT_MAX_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_BASE_DELAY_MS = 500
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
CONNECT_TIMEOUT_SECONDS = 10.0

# Permanently rejected targets: remove them from storage
TOKEN_INVALID_ERROR_CODES = frozenset({
    # FCM
    "UNREGISTERED",
    "INVALID_ARGUMENT",
    # APNS
    "BadDeviceToken",
    "Unregistered",
    "DeviceTokenNotForTopic",
})

# Transient failures: a later retry may succeed
RETRYABLE_ERROR_CODES = frozenset({
    # FCM
    "UNAVAILABLE",
    "INTERNAL",
    "QUOTA_EXCEEDED",
    # APNS
    "TooManyRequests",
    "InternalServerError",
    "ServiceUnavailable",
    "Shutdown",
})

# APNS rejections that mean the cached provider JWT must be re-signed
APNS_STALE_JWT_REASONS = frozenset({"ExpiredProviderToken", "InvalidProviderToken"})

# FCM rejections that mean the cached OAuth2 access token must be refreshed
FCM_STALE_TOKEN_CODES = frozenset({"UNAUTHENTICATED"})

# APNS Error Codes (from reason body field)
APNS_ERROR_CODES = {
    # Client errors
    "BadCollapseId": "The collapse identifier exceeds the maximum allowed size",
    "BadDeviceToken": "The specified device token is invalid",
    "BadExpirationDate": "The apns-expiration value is invalid",
    "BadMessageId": "The apns-id value is invalid",
    "BadPriority": "The apns-priority value is invalid",
    "BadTopic": "The apns-topic value is invalid",
    "DeviceTokenNotForTopic": "The device token doesn't match the specified topic",
    "DuplicateHeaders": "One or more headers are repeated",
    "IdleTimeout": "Idle timeout",
    "InvalidPushType": "The apns-push-type value is invalid",
    "MissingDeviceToken": "The device token is not specified in the request path",
    "MissingTopic": "The apns-topic header is missing from the request",
    "PayloadEmpty": "The message payload is empty",
    "PayloadTooLarge": "The message payload is too large",
    "TopicDisallowed": "Pushing to this topic is not allowed",

    # Token errors
    "BadCertificate": "The certificate is invalid",
    "BadCertificateEnvironment": "The client certificate is for the wrong environment",
    "ExpiredProviderToken": "The provider token is stale and a new token should be generated",
    "Forbidden": "The specified action is not allowed",
    "InvalidProviderToken": "The provider token is not valid or the token signature cannot be verified",
    "MissingProviderToken": "No provider certificate was used to connect to APNs",

    # Device token errors
    "Unregistered": "The device token is no longer active for the topic",

    # Server errors
    "TooManyProviderTokenUpdates": "The provider token has been updated too often",
    "TooManyRequests": "Too many requests were made consecutively to the same device token",
    "InternalServerError": "An internal server error occurred",
    "ServiceUnavailable": "The service is unavailable",
    "Shutdown": "The server is shutting down",
}
