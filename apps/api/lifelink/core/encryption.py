"""Encryption utilities for tenant push credentials at rest.

Credentials are stored as ``ivHex:cipherHex`` where the cipher text is
AES-256-GCM output (ciphertext + 16-byte tag). The key must be supplied
through PUSH_ENCRYPTION_KEY; nothing is generated on the fly.
"""

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from lifelink.core.config import settings
from lifelink.core.errors import CredentialError


NONCE_BYTES = 12
KEY_BYTES = 32
MASKED_SECRET = "********"

_aesgcm: AESGCM | None = None
_aesgcm_key: str | None = None


def _parse_key(raw: str) -> bytes:
    try:
        key = bytes.fromhex(raw.strip())
    except ValueError:
        raise RuntimeError("PUSH_ENCRYPTION_KEY must be hex encoded")
    if len(key) != KEY_BYTES:
        raise RuntimeError(
            f"PUSH_ENCRYPTION_KEY must decode to {KEY_BYTES} bytes ({KEY_BYTES * 2} hex chars)"
        )
    return key


def get_aesgcm() -> AESGCM:
    """Get or create the AES-GCM cipher for credential encryption."""
    global _aesgcm, _aesgcm_key
    raw = settings.PUSH_ENCRYPTION_KEY
    if not raw:
        raise RuntimeError(
            "PUSH_ENCRYPTION_KEY not configured. "
            'Generate with: python -m lifelink.cli generate-key'
        )
    if _aesgcm is None or _aesgcm_key != raw:
        _aesgcm = AESGCM(_parse_key(raw))
        _aesgcm_key = raw
    return _aesgcm


def generate_key() -> str:
    """Return a new random key suitable for PUSH_ENCRYPTION_KEY."""
    return AESGCM.generate_key(bit_length=KEY_BYTES * 8).hex()


def assert_encryption_configured() -> None:
    """Fail fast (startup) when the credential key is missing or malformed."""
    get_aesgcm()


def is_encryption_configured() -> bool:
    """Check if credential encryption is properly configured."""
    try:
        get_aesgcm()
    except RuntimeError:
        return False
    return True


def encrypt_credential(plaintext: str | None) -> str | None:
    """Encrypt a secret for storage. Empty input stores nothing."""
    if not plaintext:
        return None
    nonce = os.urandom(NONCE_BYTES)
    cipher = get_aesgcm().encrypt(nonce, plaintext.encode(), None)
    return f"{nonce.hex()}:{cipher.hex()}"


def decrypt_credential(blob: str | None) -> str | None:
    """
    Decrypt a stored secret.

    Raises CredentialError on tamper, wrong key, or malformed input.
    """
    if not blob:
        return None
    iv_hex, sep, cipher_hex = blob.partition(":")
    if not sep or not iv_hex or not cipher_hex:
        raise CredentialError("Encrypted credential is malformed")
    try:
        nonce = bytes.fromhex(iv_hex)
        cipher = bytes.fromhex(cipher_hex)
    except ValueError:
        raise CredentialError("Encrypted credential is not valid hex")
    if len(nonce) != NONCE_BYTES:
        raise CredentialError("Encrypted credential has an invalid IV")
    try:
        return get_aesgcm().decrypt(nonce, cipher, None).decode()
    except InvalidTag:
        raise CredentialError("Invalid or corrupted encrypted credential")
    except UnicodeDecodeError:
        raise CredentialError("Decrypted credential is not valid text")


def mask_secret(value: str | None) -> str | None:
    """Fixed placeholder for secrets on read paths."""
    return MASKED_SECRET if value else None
