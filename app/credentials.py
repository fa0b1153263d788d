"""Encryption of provider access tokens at rest"""

import base64
import logging

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from app.services.errors import SyncFatalError

logger = logging.getLogger(__name__)

_KDF_SALT = b"issuesync-credentials"
_KDF_ITERATIONS = 100_000


class CredentialDecryptionError(SyncFatalError):
    """A stored token cannot be decrypted (wrong secret or corrupted value)."""


class CredentialCipher:
    """Fernet cipher keyed by a PBKDF2 derivation of the configured secret"""

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("encryption secret must not be empty")
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=_KDF_SALT,
            iterations=_KDF_ITERATIONS,
        )
        key = base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))
        self._fernet = Fernet(key)

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt((ciphertext or "").encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError, ValueError) as e:
            logger.error("Failed to decrypt stored access token")
            raise CredentialDecryptionError("Failed to decrypt repository access token") from e
