"""Symmetric encryption for the device token stored at rest."""

from __future__ import annotations

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from backend.exceptions import InternalServerError


def _fernet(secret_key: str) -> Fernet:
    """Build a Fernet cipher keyed from the application secret (SHA-256)."""
    digest = hashlib.sha256(secret_key.encode()).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def encrypt_credential(plaintext: str, secret_key: str) -> str:
    return _fernet(secret_key).encrypt(plaintext.encode()).decode()


def decrypt_credential(ciphertext: str, secret_key: str) -> str:
    """Decrypt a stored credential.

    Raises InternalServerError when the ciphertext was produced with another
    secret key or has been tampered with.
    """
    try:
        return _fernet(secret_key).decrypt(ciphertext.encode()).decode()
    except InvalidToken as exc:
        raise InternalServerError("Failed to decrypt stored credential") from exc
