"""
Error taxonomy for the Wealthsimple exporter.

Every fallible boundary (login, refresh, account fetch) raises one of these so
the caller can decide between retrying and failing loud.
"""

from typing import Optional


class ExporterError(Exception):
    """Base class for all exporter errors."""


class AuthError(ExporterError):
    """Bad credentials, bad OTP or a rejected refresh token."""


class Unauthorized(AuthError):
    """A data endpoint answered 401 for the current access token."""


class TransportError(ExporterError):
    """Network, timeout or unexpected HTTP status from upstream."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProtocolError(ExporterError):
    """Upstream answered with a body we cannot understand."""


class ConfigError(ExporterError):
    """Config file or WS_EXPORTER_* value that cannot be used."""
