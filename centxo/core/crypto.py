"""Centxo — Access-token encryption at rest."""

import base64
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from centxo.config import settings

_SALT = b"centxo-salt-v1"
_ITERATIONS = 100_000


class TokenDecryptionError(ValueError):
    """Stored token cannot be decrypted with the configured key."""


@lru_cache(maxsize=4)
def _fernet(secret: str) -> Fernet:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(), length=32, salt=_SALT, iterations=_ITERATIONS
    )
    return Fernet(base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8"))))


def encrypt_token(token: str, secret: str | None = None) -> str:
    return _fernet(secret or settings.encryption_key).encrypt(token.encode("utf-8")).decode("ascii")


def decrypt_token(encrypted: str, secret: str | None = None) -> str:
    try:
        return _fernet(secret or settings.encryption_key).decrypt(encrypted.encode("ascii")).decode("utf-8")
    except (InvalidToken, ValueError) as e:
        raise TokenDecryptionError("Invalid encrypted token") from e
