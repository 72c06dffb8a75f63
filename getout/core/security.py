"""JWT session tokens and at-rest encryption of Strava credentials."""

from __future__ import annotations

import os
from datetime import timedelta
from typing import Any, Dict

import jwt
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import ENCRYPTION_KEY, JWT_EXPIRES_DAYS, JWT_SECRET
from .time import utcnow

JWT_ALGORITHM = "HS256"
_NONCE_LENGTH = 12


class TokenDecryptionError(ValueError):
    """Stored ciphertext could not be decrypted with the configured key."""


def create_access_token(user_id: int, strava_id: int, is_admin: bool) -> str:
    """Issue a signed session token for a user."""

    now = utcnow()
    payload: Dict[str, Any] = {
        "sub": str(user_id),
        "strava_id": strava_id,
        "is_admin": is_admin,
        "iat": now,
        "exp": now + timedelta(days=JWT_EXPIRES_DAYS),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> Dict[str, Any]:
    """Decode a session token. Raises ``jwt.InvalidTokenError`` on failure."""

    return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])


def _cipher() -> AESGCM:
    return AESGCM(bytes.fromhex(ENCRYPTION_KEY))


def encrypt(plaintext: str) -> str:
    """Encrypt with AES-256-GCM; output is ``nonce_hex:ciphertext_hex``."""

    nonce = os.urandom(_NONCE_LENGTH)
    sealed = _cipher().encrypt(nonce, plaintext.encode("utf-8"), None)
    return f"{nonce.hex()}:{sealed.hex()}"


def decrypt(token: str) -> str:
    parts = token.split(":")
    if len(parts) != 2:
        raise TokenDecryptionError("Invalid encrypted data format")
    nonce_hex, sealed_hex = parts
    try:
        plain = _cipher().decrypt(bytes.fromhex(nonce_hex), bytes.fromhex(sealed_hex), None)
    except (InvalidTag, ValueError) as exc:
        raise TokenDecryptionError("Failed to decrypt sensitive data") from exc
    return plain.decode("utf-8")


__all__ = [
    "JWT_ALGORITHM",
    "TokenDecryptionError",
    "create_access_token",
    "decrypt",
    "encrypt",
    "verify_token",
]
