"""
Field-level encryption for contact PII.

AES-256-CBC with a key and IV derived from the configured key string:
- key = SHA-256(key string)
- IV = first 16 bytes of SHA-256(key string + "IV")

The IV is fixed, so encryption is deterministic: equal plaintexts give
equal ciphertexts. Output is standard base64 of the PKCS7-padded
ciphertext.
"""

import base64
import binascii
import hashlib
import logging
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from config_manager import ConfigurationError
from services.exceptions import EncryptionError

logger = logging.getLogger(__name__)

BLOCK_SIZE_BITS = 128


class EncryptionService:
    """Encrypts and decrypts string fields."""

    def __init__(self, key_string: str):
        if not key_string:
            raise ConfigurationError("Encryption key not configured")
        self._key = hashlib.sha256(key_string.encode('utf-8')).digest()
        self._iv = hashlib.sha256((key_string + "IV").encode('utf-8')).digest()[:16]

    def _cipher(self) -> Cipher:
        return Cipher(algorithms.AES(self._key), modes.CBC(self._iv))

    def encrypt(self, plaintext: Optional[str]) -> str:
        """Encrypt text; empty or missing input gives an empty string."""
        if not plaintext:
            return ""

        padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()
        padded = padder.update(plaintext.encode('utf-8')) + padder.finalize()

        encryptor = self._cipher().encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return base64.b64encode(ciphertext).decode('ascii')

    def decrypt(self, ciphertext: Optional[str]) -> str:
        """
        Decrypt text produced by encrypt().

        Raises:
            EncryptionError: If the input is not valid base64, not block
                aligned, or carries bad padding
        """
        if not ciphertext:
            return ""

        try:
            raw = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError) as e:
            raise EncryptionError(f"Ciphertext is not valid base64: {e}")

        if not raw or len(raw) % 16 != 0:
            raise EncryptionError("Ciphertext length is not a multiple of the block size")

        decryptor = self._cipher().decryptor()
        padded = decryptor.update(raw) + decryptor.finalize()

        try:
            unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
            data = unpadder.update(padded) + unpadder.finalize()
            return data.decode('utf-8')
        except ValueError as e:
            # UnicodeDecodeError is a ValueError too
            raise EncryptionError(f"Ciphertext could not be decrypted: {e}")
