"""
Verification of identity-provider JWTs.

Tokens are issued elsewhere; this service only verifies them. RS256 tokens
are checked against the provider's public key, HS* tokens against a shared
secret (local development and tests).
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import jwt

from steprewards.config import get_settings

_public_key: str | None = None


def _verification_key() -> str:
    """Return the key matching the configured algorithm (public key cached after first read)."""
    global _public_key  # noqa: PLW0603
    settings = get_settings()
    if settings.jwt_algorithm.startswith("HS"):
        return settings.jwt_secret
    if _public_key is None:
        _public_key = Path(settings.jwt_public_key_path).read_text()
    return _public_key


def reset_keys() -> None:
    """Reset cached keys (useful for testing)."""
    global _public_key  # noqa: PLW0603
    _public_key = None


def verify_token(token: str) -> dict[str, Any]:
    """
    Verify and decode a bearer token.

    Args:
        token: The encoded JWT string.

    Returns:
        Decoded payload dictionary; ``sub`` is the user's uid.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, or has no subject.
    """
    settings = get_settings()
    options: dict[str, Any] = {"require": ["sub", "exp"]}
    kwargs: dict[str, Any] = {}
    if settings.jwt_issuer:
        kwargs["issuer"] = settings.jwt_issuer
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            _verification_key(),
            algorithms=[settings.jwt_algorithm],
            options=options,
            **kwargs,
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    if not payload.get("sub"):
        msg = "Token has no subject"
        raise jwt.InvalidTokenError(msg)
    return payload
