"""Field-level encryption helpers for personally identifying columns."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from . import config

LOGGER = logging.getLogger(__name__)

_KDF_SALT = b"healthbot-field-encryption-v1"
_KDF_ITERATIONS = 200_000


class FieldEncryptionError(RuntimeError):
    """Raised when a protected field cannot be encrypted or decrypted."""


def _derive_fernet_key(passphrase: str) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=_KDF_SALT,
        iterations=_KDF_ITERATIONS,
    )
    return base64.urlsafe_b64encode(kdf.derive(passphrase.encode("utf-8")))


class FieldCipher:
    """Symmetric cipher for values encrypted at rest.

    Accepts either a ready Fernet key or an arbitrary passphrase, in which case a
    Fernet key is derived with PBKDF2-HMAC-SHA256.
    """

    def __init__(self, key: str) -> None:
        if not key:
            raise FieldEncryptionError("FIELD_ENCRYPTION_KEY is not configured")
        self._secret = key.encode("utf-8")
        try:
            self._fernet = Fernet(key.encode("ascii"))
        except (ValueError, UnicodeEncodeError):
            self._fernet = Fernet(_derive_fernet_key(key))

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise FieldEncryptionError("Stored value could not be decrypted (wrong key or tampered data)") from exc

    def digest(self, value: str) -> str:
        """Deterministic keyed digest used to look rows up by an encrypted value."""
        return hmac.new(self._secret, msg=value.encode("utf-8"), digestmod=hashlib.sha256).hexdigest()


@lru_cache(maxsize=4)
def _cipher_for(key: str) -> FieldCipher:
    return FieldCipher(key)


def get_field_cipher(key: Optional[str] = None) -> FieldCipher:
    """Return the process-wide cipher for the configured encryption key."""
    return _cipher_for(key if key is not None else config.FIELD_ENCRYPTION_KEY)


def normalize_mobile(mobile: str) -> str:
    """Strip formatting so the same number always produces the same digest."""
    stripped = "".join(ch for ch in mobile.strip() if ch.isdigit() or ch == "+")
    return stripped


def mask_mobile(mobile: Optional[str]) -> Optional[str]:
    if not mobile or len(mobile) < 4:
        return mobile
    return mobile[:2] + "****" + mobile[-2:]
