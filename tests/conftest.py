"""Pytest fixtures and configuration for test suite

This module provides:
1. Throwaway signing keys (EC P-256 for APNS, RSA for the FCM service account)
2. Provider configurations built from those keys
3. Sample messages for both providers

Keys are generated once per session; nothing here touches the network.
"""
import base64
import json

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from pushgate.services.push.builders import ApnMessageBuilder, PushMessageBuilder
from pushgate.services.push.models import APNSConfig, APNSEnvironment, FCMConfig


# =============================================================================
# Keys
# =============================================================================

@pytest.fixture(scope="session")
def ec_private_key():
    """EC P-256 key standing in for an APNS .p8 auth key."""
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def ec_key_pem(ec_private_key) -> bytes:
    return ec_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def ec_key_base64(ec_private_key) -> str:
    """Base64 body of the .p8 file, header and footer stripped."""
    der = ec_private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return base64.b64encode(der).decode("ascii")


@pytest.fixture(scope="session")
def rsa_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def service_account(rsa_private_key) -> dict:
    """Firebase service account key with a real RSA private key."""
    pem = rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    return {
        "type": "service_account",
        "project_id": "test-project",
        "private_key_id": "abc123def456",
        "private_key": pem,
        "client_email": "firebase-adminsdk@test-project.iam.gserviceaccount.com",
        "token_uri": "https://oauth2.googleapis.com/token",
    }


# =============================================================================
# Configurations
# =============================================================================

@pytest.fixture
def fcm_config(service_account) -> FCMConfig:
    return FCMConfig(
        project_id="test-project",
        service_account_json=json.dumps(service_account),
        retry_base_delay_ms=0,
    )


@pytest.fixture
def apns_config(ec_key_base64) -> APNSConfig:
    return APNSConfig(
        private_key=ec_key_base64,
        key_id="KEYID12345",
        team_id="TEAMID1234",
        bundle_id="com.example.app",
        environment=APNSEnvironment.SANDBOX,
        retry_base_delay_ms=0,
    )


@pytest.fixture
def apns_key_file(tmp_path, ec_key_pem) -> str:
    """Temporary .p8 key file in PEM form."""
    key_file = tmp_path / "AuthKey_KEYID12345.p8"
    key_file.write_bytes(ec_key_pem)
    return str(key_file)


# =============================================================================
# Messages
# =============================================================================

@pytest.fixture
def push_message():
    return (
        PushMessageBuilder()
        .with_data("event", "ORDER_SHIPPED")
        .with_notification("Your order shipped!", "It's on its way.")
        .build()
    )


@pytest.fixture
def apn_message():
    return (
        ApnMessageBuilder()
        .with_alert("Your order shipped!", "It's on its way.")
        .with_badge(1)
        .with_sound()
        .build()
    )
