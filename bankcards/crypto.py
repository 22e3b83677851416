"""
Card number protection: reversible AES-256-CBC encryption plus a display mask.

Stored format:
    base64( iv[16 bytes] || AES-256-CBC(PKCS7(plaintext)) )

A fresh random IV is generated for every encryption, so encrypting the same
card number twice never yields the same stored value. The key is a fixed
32-byte secret loaded at startup (CARD_ENCRYPTION_KEY); there is no rotation.

Decryption never raises. Rows written before encryption was introduced hold
the plain number, so anything that fails to decode or decrypt is returned
unchanged. The fallback cannot tell legacy data from corrupted data or a
wrong key, which is why every fallback is logged.

Masking is one-way and exposes exactly the last four characters:
    "4111111111111111" -> "**** **** **** 1111"
"""

import base64
import binascii
import os

import structlog
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from bankcards.config import settings
from bankcards.exceptions import CardEncryptionError

logger = structlog.get_logger(__name__)

KEY_SIZE = 32
IV_SIZE = 16
MASK_SENTINEL = "****"


class CardCipher:
    """AES-256-CBC codec for card numbers. Immutable and safe to share."""

    def __init__(self, key: bytes):
        if len(key) != KEY_SIZE:
            raise ValueError(f"AES-256 key must be {KEY_SIZE} bytes, got {len(key)}")
        self._key = key

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a card number.

        Returns:
            base64(iv || ciphertext) as a printable string.

        Raises:
            CardEncryptionError: If the cipher fails for any reason.
        """
        try:
            iv = os.urandom(IV_SIZE)
            padder = padding.PKCS7(algorithms.AES.block_size).padder()
            padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
            encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
            ciphertext = encryptor.update(padded) + encryptor.finalize()
        except (ValueError, TypeError, AttributeError) as exc:
            raise CardEncryptionError("Card number encryption failed") from exc
        return base64.b64encode(iv + ciphertext).decode("ascii")

    def decrypt(self, value: str) -> str:
        """
        Decrypt a stored card number.

        Returns the original input unchanged if it cannot be decoded or
        decrypted (legacy plaintext rows).
        """
        try:
            raw = base64.b64decode(value, validate=True)
            iv, ciphertext = raw[:IV_SIZE], raw[IV_SIZE:]
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plain = unpadder.update(padded) + unpadder.finalize()
            return plain.decode("utf-8")
        except (ValueError, binascii.Error) as exc:
            logger.warning("card_decrypt_fallback", reason=type(exc).__name__)
            return value


def mask_card_number(value: str | None) -> str:
    """Mask all but the last four characters; short or empty input yields '****'."""
    if not value or len(value) < 4:
        return MASK_SENTINEL
    return "**** **** **** " + value[-4:]


# Application-wide codec, keyed from the environment.
card_cipher = CardCipher(settings.CARD_ENCRYPTION_KEY.encode("utf-8"))
