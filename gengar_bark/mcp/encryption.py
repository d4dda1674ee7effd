# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Secret codec for MCP server auth tokens.

Uses AES-256-GCM so that tampered or foreign ciphertexts are detected on
decryption. The 256-bit key is the SHA-256 digest of the configured secret,
and every encryption uses a fresh 96-bit nonce.
"""

import base64
import binascii
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from gengar_bark.logging_config import get_logger
from gengar_bark.mcp.errors import DecryptionError


logger = get_logger(__name__)

MIN_KEY_LENGTH = 32
NONCE_SIZE = 12
TAG_SIZE = 16


class SecretCodec:
    """
    Encrypts and decrypts auth tokens with a process-wide key.

    The key is checked once at construction time; a missing or short key
    is a start-up failure, never a per-request one.
    """

    def __init__(self, encryption_key: str):
        """
        Initialize the codec.

        Args:
            encryption_key: Secret of at least 32 characters

        Raises:
            ValueError: If the key is missing or too short
        """
        if not encryption_key or len(encryption_key) < MIN_KEY_LENGTH:
            raise ValueError(
                f"MCP encryption key must be at least {MIN_KEY_LENGTH} characters"
            )

        self._aesgcm = AESGCM(hashlib.sha256(encryption_key.encode("utf-8")).digest())

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a token.

        Args:
            plaintext: Token to encrypt

        Returns:
            URL-safe base64 of nonce || ciphertext || tag
        """
        nonce = os.urandom(NONCE_SIZE)
        ciphertext = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.urlsafe_b64encode(nonce + ciphertext).decode("ascii")

    def decrypt(self, encrypted: str) -> str:
        """
        Decrypt a token produced by ``encrypt``.

        Args:
            encrypted: Encoded ciphertext

        Returns:
            Plaintext token

        Raises:
            DecryptionError: If the ciphertext is malformed, truncated,
                tampered with or was produced under a different key
        """
        try:
            raw = base64.urlsafe_b64decode(encrypted.encode("ascii"))
        except (binascii.Error, ValueError, UnicodeEncodeError) as e:
            logger.warning("Auth token ciphertext is not valid base64")
            raise DecryptionError() from e

        if len(raw) < NONCE_SIZE + TAG_SIZE:
            logger.warning("Auth token ciphertext is truncated")
            raise DecryptionError()

        nonce, ciphertext = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext, None)
        except InvalidTag as e:
            logger.warning("Auth token ciphertext failed authentication")
            raise DecryptionError() from e

        return plaintext.decode("utf-8")
