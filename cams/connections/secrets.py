"""Encryption at rest for connection secrets.

Connection passwords, connection strings, API keys and GitHub tokens are
stored as Fernet tokens.  The key comes from ``CAMS_ENCRYPTION_KEY``: either
a urlsafe-base64 Fernet key or any passphrase, which is stretched to a key
with SHA-256.
"""

import base64
import hashlib
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from cams.config import get_encryption_key
from cams.errors import CamsPermanentError

logger = logging.getLogger("cams.connections.secrets")

_fernet = None
_fernet_source = None


def _derive_key(material: str) -> bytes:
    raw = material.encode("utf-8")
    try:
        if len(base64.urlsafe_b64decode(raw)) == 32:
            return raw
    except (ValueError, TypeError):
        pass  # not base64: treat as passphrase
    return base64.urlsafe_b64encode(hashlib.sha256(raw).digest())


def _get_fernet() -> Fernet:
    """Lazy-init the Fernet cipher; rebuilt when the configured key changes."""
    global _fernet, _fernet_source
    material = get_encryption_key()
    if _fernet is None or material != _fernet_source:
        _fernet = Fernet(_derive_key(material))
        _fernet_source = material
    return _fernet


def encrypt_secret(plaintext: Optional[str]) -> Optional[str]:
    """Encrypt a secret for storage.  Empty values are stored as NULL."""
    if not plaintext:
        return None
    return _get_fernet().encrypt(plaintext.encode("utf-8")).decode("utf-8")


def decrypt_secret(ciphertext: Optional[str]) -> Optional[str]:
    """Decrypt a stored secret.

    Raises:
        CamsPermanentError: the token was not produced with the current key.
    """
    if not ciphertext:
        return None
    try:
        return _get_fernet().decrypt(ciphertext.encode("utf-8")).decode("utf-8")
    except InvalidToken:
        logger.error("Stored secret could not be decrypted with the configured key")
        raise CamsPermanentError(
            "Stored secret could not be decrypted", service="secrets")
