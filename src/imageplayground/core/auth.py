"""Optional password gate for mutating API routes.

The browser never sends the password itself.  It sends the hex SHA-256 digest
of the password, and the server compares it with the digest of
``APP_PASSWORD``.  When no password is configured the gate is disabled.
"""

import hashlib
import hmac
import logging
from enum import Enum

from imageplayground.core.errors import AuthError

logger = logging.getLogger(__name__)

MISSING_HASH_MESSAGE = "Unauthorized: Missing password hash."
INVALID_HASH_MESSAGE = "Unauthorized: Invalid password."


class AuthResult(Enum):
    """Outcome of a password check."""

    ALLOWED = "allowed"
    MISSING_HASH = "missing_hash"
    INVALID_HASH = "invalid_hash"


def hash_password(password: str) -> str:
    """Return the hex SHA-256 digest the client computes for *password*."""
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def authorize(configured_secret: str | None, supplied_hash: str | None) -> AuthResult:
    """Compare a client-supplied hash against the configured secret.

    Args:
        configured_secret: Plain-text ``APP_PASSWORD``.  ``None`` or empty
            disables the gate.
        supplied_hash: Hex digest sent by the client, if any.

    Returns:
        :attr:`AuthResult.ALLOWED` when the gate is disabled or the digests
        match, :attr:`AuthResult.MISSING_HASH` when no digest was sent, and
        :attr:`AuthResult.INVALID_HASH` otherwise.
    """
    if not configured_secret:
        return AuthResult.ALLOWED

    if not supplied_hash:
        return AuthResult.MISSING_HASH

    expected = hash_password(configured_secret)
    if hmac.compare_digest(expected.encode("utf-8"), supplied_hash.encode("utf-8")):
        return AuthResult.ALLOWED

    return AuthResult.INVALID_HASH


def require_authorized(configured_secret: str | None, supplied_hash: str | None) -> None:
    """Raise :class:`AuthError` unless :func:`authorize` allows the request."""
    result = authorize(configured_secret, supplied_hash)

    if result is AuthResult.MISSING_HASH:
        logger.warning("Rejected request without password hash")
        raise AuthError(MISSING_HASH_MESSAGE)
    if result is AuthResult.INVALID_HASH:
        logger.warning("Rejected request with invalid password hash")
        raise AuthError(INVALID_HASH_MESSAGE)
