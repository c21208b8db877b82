"""
Error taxonomy for push delivery.

Infrastructure failures (configuration, authentication, transport) are
raised. Provider rejections of an individual message are never raised;
they come back as PushResult values.
"""


class PushError(Exception):
    """Base class for push infrastructure errors."""


class PushConfigurationError(PushError):
    """Missing or invalid credentials/configuration. Not retried."""


class PushAuthenticationError(PushError):
    """Credential exchange or signing failed. Not retried by the retry layer."""


class PushTransportError(PushError):
    """Network, DNS or timeout failure below the HTTP layer."""


class PushValidationError(PushError, ValueError):
    """A message builder was asked to build an invalid message."""
