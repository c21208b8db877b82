"""Application configuration using Pydantic Settings"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import ValidationError, field_validator
from functools import lru_cache
from typing import TYPE_CHECKING, Optional
import os

from pushgate.core.exceptions import PushConfigurationError

if TYPE_CHECKING:
    from pushgate.services.push.models import APNSConfig, FCMConfig


class Settings(BaseSettings):
    """Push delivery settings loaded from environment variables"""

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[str] = None  # Console-only logging when unset

    @field_validator('LOG_LEVEL', mode='after')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a standard logging level name."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    # FCM Configuration
    FCM_PROJECT_ID: Optional[str] = None  # Firebase project ID
    FCM_SERVICE_ACCOUNT_JSON: Optional[str] = None  # Inline service account JSON (preferred)
    FCM_CREDENTIALS_FILE: Optional[str] = None  # Path to service account JSON
    FCM_MAX_RETRY_ATTEMPTS: int = 3  # 0 disables retry
    FCM_RETRY_BASE_DELAY_MS: int = 500
    FCM_REQUEST_TIMEOUT_SECONDS: int = 30
    FCM_BATCH_PARALLELISM: int = 100
    FCM_BASE_URL: str = "https://fcm.googleapis.com"

    @property
    def fcm_ready(self) -> bool:
        """Check if FCM is properly configured and ready to use."""
        if not self.FCM_PROJECT_ID:
            return False
        if self.FCM_SERVICE_ACCOUNT_JSON and self.FCM_SERVICE_ACCOUNT_JSON.strip():
            return True
        return (
            self.FCM_CREDENTIALS_FILE is not None
            and os.path.exists(self.FCM_CREDENTIALS_FILE)
        )

    # APNS Configuration
    APNS_PRIVATE_KEY: Optional[str] = None  # Base64 .p8 body, header/footer stripped
    APNS_KEY_FILE: Optional[str] = None  # Path to .p8 auth key file
    APNS_KEY_ID: Optional[str] = None  # 10-character key identifier
    APNS_TEAM_ID: Optional[str] = None  # 10-character team identifier
    APNS_BUNDLE_ID: Optional[str] = None  # App bundle ID (e.g., com.example.app)
    APNS_USE_SANDBOX: bool = False  # Use sandbox for development
    APNS_MAX_RETRY_ATTEMPTS: int = 3
    APNS_RETRY_BASE_DELAY_MS: int = 500
    APNS_REQUEST_TIMEOUT_SECONDS: int = 30
    APNS_BATCH_PARALLELISM: int = 50

    @property
    def apns_ready(self) -> bool:
        """Check if APNS is properly configured and ready to use."""
        has_key = bool(self.APNS_PRIVATE_KEY and self.APNS_PRIVATE_KEY.strip()) or (
            self.APNS_KEY_FILE is not None and os.path.exists(self.APNS_KEY_FILE)
        )
        return (
            has_key
            and self.APNS_KEY_ID is not None
            and self.APNS_TEAM_ID is not None
            and self.APNS_BUNDLE_ID is not None
        )

    def fcm_config(self) -> "FCMConfig":
        """Build the FCM provider configuration.

        Raises:
            PushConfigurationError: If FCM is not configured or a value is invalid
        """
        # Import here to avoid circular imports
        from pushgate.services.push.models import FCMConfig

        if not self.fcm_ready:
            raise PushConfigurationError(
                "FCM is not configured: set FCM_PROJECT_ID and either "
                "FCM_SERVICE_ACCOUNT_JSON or an existing FCM_CREDENTIALS_FILE"
            )
        try:
            return FCMConfig(
                project_id=self.FCM_PROJECT_ID,
                service_account_json=self.FCM_SERVICE_ACCOUNT_JSON,
                service_account_file=self.FCM_CREDENTIALS_FILE,
                max_retry_attempts=self.FCM_MAX_RETRY_ATTEMPTS,
                retry_base_delay_ms=self.FCM_RETRY_BASE_DELAY_MS,
                request_timeout_seconds=self.FCM_REQUEST_TIMEOUT_SECONDS,
                batch_parallelism=self.FCM_BATCH_PARALLELISM,
                base_url=self.FCM_BASE_URL,
            )
        except ValidationError as e:
            raise PushConfigurationError(f"Invalid FCM configuration: {e}") from e

    def apns_config(self) -> "APNSConfig":
        """Build the APNS provider configuration.

        Raises:
            PushConfigurationError: If APNS is not configured or a value is invalid
        """
        from pushgate.services.push.models import APNSConfig, APNSEnvironment

        if not self.apns_ready:
            raise PushConfigurationError(
                "APNS is not configured: set APNS_PRIVATE_KEY (or APNS_KEY_FILE), "
                "APNS_KEY_ID, APNS_TEAM_ID and APNS_BUNDLE_ID"
            )
        try:
            return APNSConfig(
                private_key=self.APNS_PRIVATE_KEY,
                key_file=self.APNS_KEY_FILE,
                key_id=self.APNS_KEY_ID,
                team_id=self.APNS_TEAM_ID,
                bundle_id=self.APNS_BUNDLE_ID,
                environment=(
                    APNSEnvironment.SANDBOX if self.APNS_USE_SANDBOX else APNSEnvironment.PRODUCTION
                ),
                max_retry_attempts=self.APNS_MAX_RETRY_ATTEMPTS,
                retry_base_delay_ms=self.APNS_RETRY_BASE_DELAY_MS,
                request_timeout_seconds=self.APNS_REQUEST_TIMEOUT_SECONDS,
                batch_parallelism=self.APNS_BATCH_PARALLELISM,
            )
        except ValidationError as e:
            raise PushConfigurationError(f"Invalid APNS configuration: {e}") from e

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from the environment on first use."""
    return Settings()
