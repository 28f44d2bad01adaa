import pytest

from app.exceptions import CryptoError
from app.services.encryption_service import EncryptionService, IV_LENGTH, TAG_LENGTH


def test_encrypted_payload_decrypts_back(encryption):
    data = b"[0.1, -0.2, 0.3]"
    payload = encryption.encrypt(data)
    assert len(payload.iv) == IV_LENGTH
    assert len(payload.auth_tag) == TAG_LENGTH
    assert payload.ciphertext != data
    assert encryption.decrypt(payload.ciphertext, payload.iv, payload.auth_tag) == data


def test_each_encryption_uses_a_fresh_iv(encryption):
    first, second = encryption.encrypt(b"same"), encryption.encrypt(b"same")
    assert first.iv != second.iv
    assert first.ciphertext != second.ciphertext


def test_tampered_ciphertext_is_rejected(encryption):
    payload = encryption.encrypt(b"descripteur")
    tampered = bytes([payload.ciphertext[0] ^ 0xFF]) + payload.ciphertext[1:]
    with pytest.raises(CryptoError):
        encryption.decrypt(tampered, payload.iv, payload.auth_tag)


def test_wrong_key_is_rejected(encryption):
    payload = encryption.encrypt(b"descripteur")
    with pytest.raises(CryptoError):
        EncryptionService("une-autre-cle").decrypt(payload.ciphertext, payload.iv, payload.auth_tag)


def test_incomplete_payload_is_rejected(encryption):
    with pytest.raises(CryptoError):
        encryption.decrypt(b"abc", None, b"0" * TAG_LENGTH)
