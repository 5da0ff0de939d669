"""Authenticated encryption for tenant payment credentials.

Values are stored as ``iv:tag:ciphertext`` (hex) using AES-256-GCM. The master
key comes from PAYMENT_CONFIG_ENC_KEY: 64 hex characters are used directly,
anything else is stretched with PBKDF2-HMAC-SHA256.
"""

import os
import re

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ordering.config import get_settings
from ordering.models.errors import SecretVaultError
from ordering.utils.logging import get_logger

logger = get_logger(__name__)

NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32
KDF_SALT = b"payment-config-salt"
KDF_ITERATIONS = 100_000

_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")


def derive_key(master_key: str) -> bytes:
    """Turn the configured master key into 32 bytes of AES key material."""
    if _HEX_KEY.match(master_key):
        return bytes.fromhex(master_key)

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=KDF_SALT,
        iterations=KDF_ITERATIONS,
    )
    return kdf.derive(master_key.encode("utf-8"))


class SecretVault:
    """Encrypts and decrypts credential strings with AES-256-GCM."""

    def __init__(self, master_key: str | None = None) -> None:
        key = master_key if master_key is not None else get_settings().encryption_key
        self._key = derive_key(key) if key else None

    def _cipher(self) -> AESGCM:
        if self._key is None:
            raise SecretVaultError(message="PAYMENT_CONFIG_ENC_KEY is not configured")
        return AESGCM(self._key)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a secret.

        Returns:
            ``iv:tag:ciphertext`` with each part hex-encoded
        """
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._cipher().encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return f"{nonce.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, value: str) -> str:
        """Decrypt a value produced by encrypt().

        A value without delimiters predates encryption and is returned
        unchanged. Anything that fails authentication raises instead of
        returning a wrong plaintext.

        Raises:
            SecretVaultError: Malformed value, bad tag, or no master key
        """
        if ":" not in value:
            logger.warning("Payment credential is not encrypted; re-save it to encrypt")
            return value

        parts = value.split(":")
        if len(parts) != 3:
            raise SecretVaultError(message="Encrypted value is malformed")

        try:
            nonce, tag, ciphertext = (bytes.fromhex(part) for part in parts)
        except ValueError as e:
            raise SecretVaultError(message="Encrypted value is malformed") from e

        if len(nonce) != NONCE_SIZE or len(tag) != TAG_SIZE:
            raise SecretVaultError(message="Encrypted value is malformed")

        try:
            plaintext = self._cipher().decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            raise SecretVaultError() from e

        return plaintext.decode("utf-8")


def get_secret_vault() -> SecretVault:
    """Build a vault from current settings."""
    return SecretVault()
