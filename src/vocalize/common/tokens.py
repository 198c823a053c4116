"""
Access-token claim helpers.

The client never holds the signing key, so claims are read by decoding the
JWT payload segment without verification. Expiry checks are advisory: the
server remains the authority and may reject a token earlier.
"""

import base64
import binascii
import json
import logging
import time

from vocalize.common.errors import ErrorKind, VocalizeError
from vocalize.common.models import TokenClaims

logger = logging.getLogger(__name__)


def _b64url_decode(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def decode_claims(token: str) -> TokenClaims:
    """
    Decode the claims of a JWT access token.

    Raises:
        VocalizeError: (server_rejected) if the token is not a decodable JWT
            or lacks the ``sub``/``role``/``exp`` claims
    """
    parts = token.split(".") if token else []
    if len(parts) != 3:
        raise VocalizeError(ErrorKind.SERVER_REJECTED, "Malformed access token")
    try:
        payload = json.loads(_b64url_decode(parts[1]))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError, ValueError) as e:
        raise VocalizeError(
            ErrorKind.SERVER_REJECTED, "Malformed access token", cause=e
        ) from e

    if not isinstance(payload, dict):
        raise VocalizeError(ErrorKind.SERVER_REJECTED, "Malformed access token")

    sub = payload.get("sub")
    role = payload.get("role")
    exp = payload.get("exp")
    if sub is None or role is None or not isinstance(exp, (int, float)):
        raise VocalizeError(
            ErrorKind.SERVER_REJECTED, "Access token is missing required claims"
        )
    return TokenClaims(sub=str(sub), role=str(role), exp=int(exp), email=payload.get("email"))


def is_token_valid(token: str | None, now: float | None = None) -> bool:
    """True iff token decodes and its ``exp`` lies in the future."""
    if not token:
        return False
    try:
        claims = decode_claims(token)
    except VocalizeError:
        logger.debug("Stored access token could not be decoded")
        return False
    current = time.time() if now is None else now
    return claims.exp > current
