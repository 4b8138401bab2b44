"""Tests for push credential encryption at rest."""

import pytest

from lifelink.core import encryption
from lifelink.core.config import settings
from lifelink.core.errors import CredentialError


def test_round_trip_uses_iv_cipher_format():
    blob = encryption.encrypt_credential("secret-key")
    iv_hex, _, cipher_hex = blob.partition(":")
    assert len(bytes.fromhex(iv_hex)) == encryption.NONCE_BYTES
    assert cipher_hex
    assert "secret-key" not in blob
    assert encryption.decrypt_credential(blob) == "secret-key"


def test_same_plaintext_encrypts_differently():
    assert encryption.encrypt_credential("value") != encryption.encrypt_credential("value")


def test_empty_values_store_nothing():
    assert encryption.encrypt_credential("") is None
    assert encryption.encrypt_credential(None) is None
    assert encryption.decrypt_credential(None) is None


def test_tampered_cipher_raises_credential_error():
    blob = encryption.encrypt_credential("secret-key")
    iv_hex, _, cipher_hex = blob.partition(":")
    flipped = format(int(cipher_hex[0], 16) ^ 1, "x") + cipher_hex[1:]
    with pytest.raises(CredentialError):
        encryption.decrypt_credential(f"{iv_hex}:{flipped}")


@pytest.mark.parametrize("blob", ["no-separator", ":abcd", "zz:abcd", "abcd:abcd"])
def test_malformed_blob_raises_credential_error(blob):
    with pytest.raises(CredentialError):
        encryption.decrypt_credential(blob)


def test_wrong_key_raises_credential_error(monkeypatch):
    blob = encryption.encrypt_credential("secret-key")
    monkeypatch.setattr(settings, "PUSH_ENCRYPTION_KEY", "ff" * 32)
    with pytest.raises(CredentialError):
        encryption.decrypt_credential(blob)


def test_missing_key_fails_fast(monkeypatch):
    monkeypatch.setattr(settings, "PUSH_ENCRYPTION_KEY", "")
    assert not encryption.is_encryption_configured()
    with pytest.raises(RuntimeError, match="PUSH_ENCRYPTION_KEY"):
        encryption.assert_encryption_configured()


def test_short_key_rejected(monkeypatch):
    monkeypatch.setattr(settings, "PUSH_ENCRYPTION_KEY", "abcd")
    with pytest.raises(RuntimeError, match="32 bytes"):
        encryption.assert_encryption_configured()


def test_generated_key_is_usable(monkeypatch):
    key = encryption.generate_key()
    assert len(key) == 64
    monkeypatch.setattr(settings, "PUSH_ENCRYPTION_KEY", key)
    assert encryption.decrypt_credential(encryption.encrypt_credential("x")) == "x"


def test_mask_secret():
    assert encryption.mask_secret("anything") == encryption.MASKED_SECRET
    assert encryption.mask_secret(None) is None
