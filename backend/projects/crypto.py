"""Encryption at rest for environment variable values (NaCl SecretBox)."""
from __future__ import annotations

import logging
from typing import Optional

import nacl.utils
from nacl.encoding import Base64Encoder
from nacl.exceptions import CryptoError
from nacl.secret import SecretBox

logger = logging.getLogger("buildflow.projects")

KEY_LEN = SecretBox.KEY_SIZE


def parse_key(raw: str | None) -> bytes:
    """Decode a 64-char hex key. Raises ValueError when malformed."""
    value = (raw or "").strip()
    try:
        key = bytes.fromhex(value)
    except ValueError as exc:
        raise ValueError("ENV_VAR_ENCRYPTION_KEY must be hex") from exc
    if len(key) != KEY_LEN:
        raise ValueError(f"ENV_VAR_ENCRYPTION_KEY must decode to {KEY_LEN} bytes")
    return key


def generate_key() -> bytes:
    return nacl.utils.random(KEY_LEN)


class EnvVarCipher:
    def __init__(self, key: bytes) -> None:
        self._box = SecretBox(key)

    def encrypt(self, plaintext: str) -> str:
        # SecretBox prepends a random nonce to the ciphertext.
        return self._box.encrypt(plaintext.encode("utf-8"), encoder=Base64Encoder).decode("ascii")

    def decrypt(self, token: str) -> str:
        return self._box.decrypt(token.encode("ascii"), encoder=Base64Encoder).decode("utf-8")

    def decrypt_or_none(self, token: str | None) -> Optional[str]:
        """Decrypt for display; unreadable values (rotated key, corruption) become None."""
        if not token:
            return None
        try:
            return self.decrypt(token)
        except (CryptoError, ValueError, UnicodeError) as exc:
            logger.warning("Env var value could not be decrypted: %s", exc.__class__.__name__)
            return None
