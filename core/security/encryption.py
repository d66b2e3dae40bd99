"""Credential encryption using AES-GCM.

Provides encryption for the persisted access/refresh token pair.
Uses AES-256-GCM for authenticated encryption.
"""

import base64
import json
import os
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict

from cryptography.hazmat.primitives.ciphers.aead import AESGCM


def generate_encryption_key() -> str:
    """Generate a new 256-bit encryption key.

    Returns:
        Base64-encoded 32-byte key suitable for AES-256
    """
    key = secrets.token_bytes(32)
    return base64.b64encode(key).decode('utf-8')


@dataclass
class EncryptedCredentials:
    """Encrypted credential payload with metadata."""
    ciphertext: str  # Base64-encoded encrypted data (GCM tag appended)
    nonce: str       # Base64-encoded 96-bit nonce
    created_at: str  # ISO timestamp
    origin: str      # API origin the credentials belong to
    key_version: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ciphertext": self.ciphertext,
            "nonce": self.nonce,
            "created_at": self.created_at,
            "origin": self.origin,
            "key_version": self.key_version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncryptedCredentials":
        return cls(
            ciphertext=data["ciphertext"],
            nonce=data["nonce"],
            created_at=data["created_at"],
            origin=data["origin"],
            key_version=data.get("key_version", 1),
        )


class TokenEncryption:
    """AES-256-GCM encryption for persisted credentials.

    The API origin is bound as additional authenticated data, so a credential
    file written for one backend cannot be decrypted for another.

    Usage:
        key = generate_encryption_key()
        enc = TokenEncryption(key)
        encrypted = enc.encrypt({"access_token": "...", "refresh_token": "..."}, origin="https://erp.example.com")
        tokens = enc.decrypt(encrypted)
    """

    def __init__(self, encryption_key: str):
        """Initialize with base64-encoded encryption key.

        Args:
            encryption_key: Base64-encoded 32-byte key (from generate_encryption_key())
        """
        try:
            self._key = base64.b64decode(encryption_key)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid encryption key: {e}")
        if len(self._key) != 32:
            raise ValueError("Invalid encryption key: key must be 32 bytes (256 bits)")

        self._aesgcm = AESGCM(self._key)

    def encrypt(
        self,
        payload: Dict[str, Any],
        origin: str,
        key_version: int = 1,
    ) -> EncryptedCredentials:
        plaintext = json.dumps(payload).encode('utf-8')
        nonce = os.urandom(12)
        ciphertext = self._aesgcm.encrypt(nonce, plaintext, origin.encode('utf-8'))

        return EncryptedCredentials(
            ciphertext=base64.b64encode(ciphertext).decode('utf-8'),
            nonce=base64.b64encode(nonce).decode('utf-8'),
            created_at=datetime.utcnow().isoformat(),
            origin=origin,
            key_version=key_version,
        )

    def decrypt(self, encrypted: EncryptedCredentials) -> Dict[str, Any]:
        """Decrypt a credential payload.

        Raises:
            ValueError: If decryption fails (wrong key, tampered data, wrong origin)
        """
        try:
            ciphertext = base64.b64decode(encrypted.ciphertext)
            nonce = base64.b64decode(encrypted.nonce)
            plaintext = self._aesgcm.decrypt(nonce, ciphertext, encrypted.origin.encode('utf-8'))
            return json.loads(plaintext.decode('utf-8'))
        except Exception as e:
            raise ValueError(f"Credential decryption failed: {e}")
