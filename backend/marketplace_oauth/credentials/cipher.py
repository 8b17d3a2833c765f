"""
AES-256-GCM encryption for refresh tokens and app credentials at rest.

SECURITY:
- Key is exactly 32 bytes, supplied once at construction (never read from env here)
- Each encryption uses a fresh 96-bit IV from the secrets module
- The 16-byte authentication tag is appended to the ciphertext, so
  (ciphertext, iv) is a complete, self-verifying unit
- Any tag mismatch raises CryptoError; corrupted plaintext is never returned
- Error messages never include key material or ciphertext

Usage:
    cipher = TokenCipher.from_base64_key(settings.master_key)

    ciphertext, iv = cipher.encrypt("v^1.1#refresh")
    plaintext = cipher.decrypt(ciphertext, iv)

    # Text columns store base64
    stored_ct, stored_iv = cipher.encrypt_to_storage("v^1.1#refresh")
    plaintext = cipher.decrypt_from_storage(stored_ct, stored_iv)
"""

import base64
import binascii
import logging
import secrets
from typing import Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)


# AES-GCM constants
IV_SIZE = 12     # 96 bits, recommended for AES-GCM
TAG_SIZE = 16    # 128 bits, standard for AES-GCM
KEY_SIZE = 32    # 256 bits for AES-256


class CryptoError(Exception):
    """
    Raised when a key is unusable or a ciphertext fails to decrypt.

    Never carries provider or key details; callers collapse it to a generic
    server error.
    """

    def __init__(self, message: str, operation: str = "unknown"):
        self.operation = operation
        super().__init__(message)


def _b64decode(value: str, what: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise CryptoError(f"Stored {what} is not valid base64", operation="decode") from e


def _b64encode(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


class TokenCipher:
    """
    AES-256-GCM cipher for token storage.

    SECURITY:
    - Never reuse IVs with the same key; every call to encrypt() draws a new one
    - Store the key out-of-band (never alongside the data, never in logs)
    """

    def __init__(self, key: Optional[bytes]):
        """
        Args:
            key: 32-byte encryption key

        Raises:
            CryptoError: If key is missing or wrong size
        """
        if not key:
            raise CryptoError("Encryption key is required", operation="init")
        if len(key) != KEY_SIZE:
            raise CryptoError(
                f"Encryption key must be {KEY_SIZE} bytes, got {len(key)}",
                operation="init",
            )
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_base64_key(cls, key_string: Optional[str]) -> "TokenCipher":
        """
        Build a cipher from the base64 master key configuration value.

        A missing or malformed key fails closed with CryptoError; there is
        no plaintext fallback.
        """
        if not key_string:
            raise CryptoError("Master key not configured", operation="init")
        try:
            key = base64.b64decode(key_string, validate=True)
        except (binascii.Error, ValueError) as e:
            raise CryptoError("Master key is not valid base64", operation="init") from e
        return cls(key)

    @staticmethod
    def generate_key_string() -> str:
        """Generate a new random base64 encoded 256-bit key."""
        return _b64encode(secrets.token_bytes(KEY_SIZE))

    @staticmethod
    def generate_iv() -> bytes:
        """12-byte IV from a cryptographically secure source."""
        return secrets.token_bytes(IV_SIZE)

    def encrypt(self, plaintext: str) -> Tuple[bytes, bytes]:
        """
        Encrypt a token.

        Returns:
            Tuple of (ciphertext || tag, iv)
        """
        iv = self.generate_iv()
        ciphertext = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        return ciphertext, iv

    def decrypt(self, ciphertext: bytes, iv: bytes) -> str:
        """
        Decrypt and verify a token.

        Raises:
            CryptoError: On tag mismatch, malformed IV or non UTF-8 plaintext
        """
        if len(iv) != IV_SIZE:
            raise CryptoError("Invalid IV length", operation="decrypt")
        if len(ciphertext) < TAG_SIZE:
            raise CryptoError("Ciphertext too short", operation="decrypt")
        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext, None)
        except InvalidTag:
            logger.warning(
                "Token decryption failed",
                extra={"operation": "decrypt", "reason": "tag_mismatch"},
            )
            raise CryptoError(
                "Decryption failed: data may have been tampered with",
                operation="decrypt",
            )
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CryptoError("Decrypted data is not valid UTF-8", operation="decrypt") from e

    def encrypt_to_storage(self, plaintext: str) -> Tuple[str, str]:
        """Encrypt and return (base64 ciphertext, base64 iv) for text columns."""
        ciphertext, iv = self.encrypt(plaintext)
        return _b64encode(ciphertext), _b64encode(iv)

    def decrypt_from_storage(self, ciphertext_b64: str, iv_b64: str) -> str:
        """Decrypt values read from text columns."""
        if not ciphertext_b64 or not iv_b64:
            raise CryptoError("Nothing to decrypt", operation="decrypt")
        return self.decrypt(
            _b64decode(ciphertext_b64, "ciphertext"),
            _b64decode(iv_b64, "iv"),
        )
