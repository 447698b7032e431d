"""Exceptions raised by the authentication subsystem."""

from __future__ import annotations


class AuthError(Exception):
    """Base class for authentication errors."""


class TokenConfigurationError(AuthError):
    """Signing key, issuer or audience is missing or unusable.

    Fatal: raised at first use and never retried.
    """
