"""Fernet encryption for LN Markets credentials, keyed per user.

Each user's key is derived with HKDF from the application secret and a
one-way hash of their email, so one user's tokens never decrypt under
another user's key and the raw email is never part of a storage key.
"""

import base64
import hashlib
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from btc_monitor.config import settings

_HKDF_INFO = b"btc-monitor/lnm-credential-vault/v1"


class CredentialCipherError(Exception):
    """Base class for vault encryption failures."""


class EncryptionError(CredentialCipherError):
    pass


class DecryptionError(CredentialCipherError):
    pass


def _app_secret() -> str:
    secret = settings.vault_secret
    if not secret:
        raise RuntimeError(
            "BTCM_VAULT_SECRET not set. Generate one with: "
            "python -c \"import secrets; print(secrets.token_urlsafe(32))\""
        )
    return secret


def normalize_identity(identity: str) -> str:
    return identity.strip().lower()


def identity_hash(identity: str) -> str:
    """Deterministic SHA-256 hex digest of an identity, salted with the app secret."""
    payload = normalize_identity(identity) + _app_secret()
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@lru_cache(maxsize=256)
def _fernet_for(app_secret: str, id_hash: str) -> Fernet:
    hkdf = HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=_HKDF_INFO)
    key = hkdf.derive(app_secret.encode("utf-8") + id_hash.encode("utf-8"))
    return Fernet(base64.urlsafe_b64encode(key))


def _get_fernet(identity: str) -> Fernet:
    return _fernet_for(_app_secret(), identity_hash(identity))


def encrypt(plaintext: str, identity: str) -> str:
    """Encrypt a string for ``identity`` and return the Fernet token."""
    if plaintext is None:
        raise EncryptionError("cannot encrypt a missing value")
    try:
        return _get_fernet(identity).encrypt(plaintext.encode("utf-8")).decode("ascii")
    except RuntimeError:
        raise
    except Exception as e:
        raise EncryptionError(f"encryption failed: {type(e).__name__}") from e


def decrypt(ciphertext: str, identity: str) -> str:
    """Decrypt a Fernet token written for ``identity``."""
    try:
        return _get_fernet(identity).decrypt(ciphertext.encode("ascii")).decode("utf-8")
    except InvalidToken as e:
        raise DecryptionError("stored credentials could not be decrypted") from e
    except (UnicodeError, AttributeError, TypeError) as e:
        raise DecryptionError(f"malformed credential token: {type(e).__name__}") from e
