# keygate/core/security.py
"""
Security module for key issuance and API authentication.
Handles license token generation and constant-time shared-secret comparison.
"""
import hmac
import secrets

# Token length in random bytes (hex-encoded: two characters per byte)
TOKEN_BYTES = 16
TOKEN_LENGTH = TOKEN_BYTES * 2


def generate_token() -> str:
    """
    Generate an unguessable license key token.

    Returns:
        32-character upper-case hexadecimal string built from 16 bytes of
        CSPRNG output.

    Note: Uniqueness is still enforced by the key store; a collision makes
    the insert fail and the caller regenerates.
    """
    return secrets.token_hex(TOKEN_BYTES).upper()


def looks_like_token(value: str) -> bool:
    """Cheap shape check on a normalized key; the chat redeem flow runs it before hitting the store."""
    if len(value) != TOKEN_LENGTH:
        return False
    return all(c in "0123456789ABCDEF" for c in value)


def verify_api_secret(provided: str | None, expected: str | None) -> bool:
    """
    Compare a client-supplied API secret with the configured one.

    Args:
        provided: Value of the x-api-key header (may be None)
        expected: Configured secret (None disables every protected route)

    Returns:
        True only if both are present and equal
    """
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
