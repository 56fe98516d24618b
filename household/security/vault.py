"""
Credential vault: authenticated symmetric encryption for secrets at rest.

AES-256-GCM with a random 96-bit nonce per operation. The stored form is
base64(nonce || ciphertext || tag). The key is supplied once at start-up as
text and padded with zero bytes or truncated to 32 bytes.

Example:
    vault = CredentialVault(settings.encryption_key)
    stored = vault.encrypt_text("ynab-personal-token")
    token = vault.decrypt_text(stored)
"""

import base64
import binascii
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from household.errors import InvalidCiphertext, VaultNotInitialized

log = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 12


def normalize_key(key: str | bytes) -> bytes:
    raw = key.encode("utf-8") if isinstance(key, str) else bytes(key)
    return raw.ljust(KEY_SIZE, b"\x00")[:KEY_SIZE]


class CredentialVault:
    """Encrypts and decrypts opaque byte strings under the process key."""

    def __init__(self, key: str | bytes | None):
        if not key:
            raise VaultNotInitialized("ENCRYPTION_KEY must be set before using the credential vault")
        self._aead = AESGCM(normalize_key(key))

    def encrypt(self, plaintext: bytes) -> str:
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, bytes(plaintext), None)
        return base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, ciphertext: str) -> bytes:
        try:
            blob = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError, TypeError) as e:
            raise InvalidCiphertext("Ciphertext is not valid base64") from e

        if len(blob) < NONCE_SIZE + 16:
            raise InvalidCiphertext("Ciphertext too short")

        nonce, sealed = blob[:NONCE_SIZE], blob[NONCE_SIZE:]
        try:
            return self._aead.decrypt(nonce, sealed, None)
        except InvalidTag as e:
            raise InvalidCiphertext("Ciphertext failed authentication") from e

    def encrypt_text(self, plaintext: str) -> str:
        return self.encrypt(plaintext.encode("utf-8"))

    def decrypt_text(self, ciphertext: str) -> str:
        return self.decrypt(ciphertext).decode("utf-8")


_vault: CredentialVault | None = None


def init_vault(key: str | bytes | None) -> CredentialVault:
    """Install the process-wide vault. Called once during application start-up."""
    global _vault  # noqa: PLW0603
    _vault = CredentialVault(key)
    log.info("Credential vault initialized")
    return _vault


def get_vault() -> CredentialVault:
    if _vault is None:
        raise VaultNotInitialized("Credential vault used before ENCRYPTION_KEY was supplied")
    return _vault


def reset_vault() -> None:
    global _vault  # noqa: PLW0603
    _vault = None
