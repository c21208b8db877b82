"""
Credential providers for FCM and APNS.

Each provider caches one credential and refreshes it before it expires.
Reads of a fresh credential take no lock; refreshes are serialized with an
asyncio.Lock and re-check the cache once the lock is held, so concurrent
callers trigger at most one refresh.

- FCMTokenProvider: OAuth2 bearer token obtained by exchanging a
  service-account signed assertion (RS256) at Google's token endpoint.
- APNSTokenProvider: self-signed ES256 provider JWT, re-signed every
  45 minutes.
"""

import asyncio
import base64
import binascii
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

import httpx
import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from pushgate.core.exceptions import PushAuthenticationError, PushConfigurationError
from pushgate.services.push.constants import (
    CONNECT_TIMEOUT_SECONDS,
    FCM_DEFAULT_TOKEN_LIFETIME_SECONDS,
    FCM_TOKEN_REFRESH_BUFFER_SECONDS,
    GOOGLE_JWT_BEARER_GRANT,
    GOOGLE_TOKEN_URI,
    JWT_ALGORITHM,
    JWT_TOKEN_LIFETIME_SECONDS,
)
from pushgate.services.push.models import APNSConfig, FCMConfig

logger = logging.getLogger(__name__)


class AccessTokenProvider(Protocol):
    """Anything that can hand the FCM sender a bearer token."""

    async def get_access_token(self) -> str:
        ...


class FCMTokenProvider:
    """
    OAuth2 access token cache for the FCM HTTP v1 API.

    Usage:
        provider = FCMTokenProvider(config)
        token = await provider.get_access_token()

    Attributes:
        config: FCM configuration
        _access_token: Cached bearer token
        _expires_at: Unix time after which the cached token is refreshed
    """

    def __init__(self, config: FCMConfig):
        """
        Initialize the token provider.

        Args:
            config: FCM configuration with service account details

        Raises:
            PushConfigurationError: If no service account source is configured
        """
        if not config.has_credentials:
            raise PushConfigurationError(
                "No FCM credentials provided. Set service_account_json or service_account_file."
            )

        self.config = config
        self._access_token: Optional[str] = None
        self._expires_at: float = 0
        self._lock = asyncio.Lock()
        self._client: Optional[httpx.AsyncClient] = None

    def _is_fresh(self) -> bool:
        return self._access_token is not None and time.time() < self._expires_at

    async def get_access_token(self) -> str:
        """
        Return a valid bearer token, refreshing it if needed.

        Raises:
            PushConfigurationError: If the service account source is missing
            PushAuthenticationError: If loading or exchanging the credential fails
        """
        if self._is_fresh():
            return self._access_token

        async with self._lock:
            if self._is_fresh():
                return self._access_token

            logger.debug("Refreshing FCM OAuth2 access token")
            try:
                service_account = self._load_service_account()
                access_token, lifetime = await self._exchange(service_account)
            except (PushConfigurationError, PushAuthenticationError):
                raise
            except Exception as e:
                raise PushAuthenticationError(f"Failed to obtain Google access token: {e}") from e

            self._access_token = access_token
            self._expires_at = time.time() + lifetime - FCM_TOKEN_REFRESH_BUFFER_SECONDS

            logger.info(
                "FCM access token refreshed",
                extra={
                    "project_id": self.config.project_id,
                    "expires_in": lifetime - FCM_TOKEN_REFRESH_BUFFER_SECONDS,
                }
            )
            return self._access_token

    def invalidate(self) -> None:
        """Drop the cached token so the next call refreshes it."""
        self._access_token = None
        self._expires_at = 0

    def _load_service_account(self) -> Dict[str, Any]:
        """Load the service account, preferring inline JSON over the file path."""
        if self.config.service_account_json and self.config.service_account_json.strip():
            logger.debug("Loading FCM credentials from inline JSON")
            raw = self.config.service_account_json
        elif self.config.service_account_file and self.config.service_account_file.strip():
            path = Path(self.config.service_account_file)
            logger.debug(f"Loading FCM credentials from file: {path}")
            try:
                raw = path.read_text(encoding="utf-8")
            except OSError as e:
                raise PushAuthenticationError(f"Cannot read FCM credentials file {path}: {e}") from e
        else:
            raise PushConfigurationError(
                "No FCM credentials provided. Set service_account_json or service_account_file."
            )

        try:
            service_account = json.loads(raw)
        except json.JSONDecodeError as e:
            raise PushAuthenticationError(f"FCM service account is not valid JSON: {e}") from e

        if not isinstance(service_account, dict) or service_account.get("type") != "service_account":
            raise PushAuthenticationError(
                "Credential is not a service account key. Use a Firebase service account JSON."
            )
        for key in ("client_email", "private_key"):
            if not service_account.get(key):
                raise PushAuthenticationError(f"FCM service account is missing '{key}'")

        return service_account

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client used for the token exchange."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.request_timeout_seconds, connect=CONNECT_TIMEOUT_SECONDS),
            )
        return self._client

    async def _exchange(self, service_account: Dict[str, Any]) -> tuple[str, int]:
        """
        Exchange a signed assertion for an access token.

        Returns:
            Tuple of (access_token, lifetime_seconds)
        """
        now = int(time.time())
        token_uri = service_account.get("token_uri") or GOOGLE_TOKEN_URI

        assertion = jwt.encode(
            {
                "iss": service_account["client_email"],
                "scope": self.config.token_scope,
                "aud": token_uri,
                "iat": now,
                "exp": now + FCM_DEFAULT_TOKEN_LIFETIME_SECONDS,
            },
            service_account["private_key"],
            algorithm="RS256",
            headers={"kid": service_account["private_key_id"]} if service_account.get("private_key_id") else None,
        )

        client = await self._get_client()
        response = await client.post(
            token_uri,
            data={"grant_type": GOOGLE_JWT_BEARER_GRANT, "assertion": assertion},
        )

        if response.status_code != 200:
            raise PushAuthenticationError(
                f"Google token endpoint returned HTTP {response.status_code}: {response.text}"
            )

        payload = response.json()
        access_token = payload.get("access_token")
        if not access_token:
            raise PushAuthenticationError("Google returned no access token")

        # The returned lifetime is authoritative; the constant covers responses without it
        lifetime = int(payload.get("expires_in") or FCM_DEFAULT_TOKEN_LIFETIME_SECONDS)
        return access_token, lifetime

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


class APNSTokenProvider:
    """
    Provider JWT cache for APNS token-based authentication.

    The JWT is signed with ES256 using the .p8 private key and re-signed
    after 45 minutes. The private key is parsed once, at construction.

    Usage:
        provider = APNSTokenProvider(config)
        token = await provider.get_or_refresh_jwt()

    Attributes:
        config: APNS configuration
        _jwt_token: Cached JWT for authentication
        _jwt_expires_at: Unix time after which the JWT is re-signed
    """

    def __init__(self, config: APNSConfig):
        """
        Initialize the JWT provider.

        Args:
            config: APNS configuration with auth key details

        Raises:
            PushConfigurationError: If the private key is missing or cannot be parsed
        """
        self.config = config
        self._jwt_token: Optional[str] = None
        self._jwt_expires_at: float = 0
        self._lock = asyncio.Lock()
        self._private_key = self._load_private_key()

    def _load_private_key(self) -> ec.EllipticCurvePrivateKey:
        """Load the EC private key from base64 .p8 content or a PEM .p8 file."""
        try:
            if self.config.private_key and self.config.private_key.strip():
                key_bytes = base64.b64decode("".join(self.config.private_key.split()), validate=True)
                private_key = serialization.load_der_private_key(key_bytes, password=None)
                source = "inline key"
            elif self.config.key_file:
                key_path = Path(self.config.key_file)
                if not key_path.exists():
                    raise PushConfigurationError(f"APNS key file not found: {key_path}")
                private_key = serialization.load_pem_private_key(key_path.read_bytes(), password=None)
                source = str(key_path)
            else:
                raise PushConfigurationError(
                    "No APNS key provided. Set private_key (base64 .p8 body) or key_file."
                )
        except PushConfigurationError:
            raise
        except (binascii.Error, ValueError, TypeError, OSError) as e:
            raise PushConfigurationError(
                f"Failed to load APNS p8 private key: {e}. "
                "Ensure private_key is the base64 content only (no header/footer)."
            ) from e

        if not isinstance(private_key, ec.EllipticCurvePrivateKey):
            raise PushConfigurationError("APNS key must be an EC private key (ES256)")

        logger.debug(f"Loaded APNS private key from {source}")
        return private_key

    def _is_fresh(self) -> bool:
        return self._jwt_token is not None and time.time() < self._jwt_expires_at

    async def get_or_refresh_jwt(self) -> str:
        """
        Return a valid provider JWT, signing a new one when the cached one is stale.

        Raises:
            PushAuthenticationError: If signing fails
        """
        if self._is_fresh():
            return self._jwt_token

        async with self._lock:
            if self._is_fresh():
                return self._jwt_token

            now = time.time()
            try:
                self._jwt_token = jwt.encode(
                    {"iss": self.config.team_id, "iat": int(now)},
                    self._private_key,
                    algorithm=JWT_ALGORITHM,
                    headers={"kid": self.config.key_id},
                )
            except Exception as e:
                raise PushAuthenticationError(f"Failed to sign APNS JWT: {e}") from e
            self._jwt_expires_at = now + JWT_TOKEN_LIFETIME_SECONDS

            logger.debug(
                "Generated new APNS JWT",
                extra={
                    "team_id": self.config.team_id,
                    "key_id": self.config.key_id,
                    "expires_in": JWT_TOKEN_LIFETIME_SECONDS,
                }
            )
            return self._jwt_token

    def invalidate(self) -> None:
        """Force the next call to sign a fresh JWT."""
        self._jwt_token = None
        self._jwt_expires_at = 0
