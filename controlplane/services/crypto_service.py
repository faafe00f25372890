"""Symmetric encryption for provider credentials stored at rest."""

from __future__ import annotations

import base64
import hashlib
import json
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken


@lru_cache(maxsize=8)
def _fernet(secret_key: str) -> Fernet:
    """Build a Fernet cipher keyed by SHA-256 of the application secret."""
    digest = hashlib.sha256(secret_key.encode()).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def encrypt_credentials(credentials: dict[str, str], secret_key: str) -> str:
    """Serialize and encrypt a credentials mapping."""
    plaintext = json.dumps(credentials, sort_keys=True)
    return _fernet(secret_key).encrypt(plaintext.encode()).decode()


def decrypt_credentials(ciphertext: str, secret_key: str) -> dict[str, str]:
    """Decrypt a credentials mapping. Raises ValueError on any failure."""
    try:
        plaintext = _fernet(secret_key).decrypt(ciphertext.encode())
    except InvalidToken as exc:
        raise ValueError("Failed to decrypt credential data") from exc
    data = json.loads(plaintext)
    if not isinstance(data, dict):
        raise ValueError("Credential data is not a mapping")
    return {str(k): str(v) for k, v in data.items()}
