# Tests for vault encryption
# Covers: PBKDF2 key derivation, AES-GCM envelopes, validation token,
#         async wrappers, master password policy

import os

import pytest

from strongbox.core.config import MIN_KDF_ITERATIONS
from strongbox.vault.encryption import EncryptionService, verify_master_password
from strongbox.vault.exceptions import DecryptionFailed
from strongbox.vault.models import Envelope


@pytest.fixture
def salt():
    return EncryptionService.generate_salt()


@pytest.fixture
def key(salt):
    return EncryptionService.derive_key("correct-horse", salt)


class TestKeyDerivation:
    def test_same_password_and_salt_give_same_key(self, salt):
        k1 = EncryptionService.derive_key("correct-horse", salt)
        k2 = EncryptionService.derive_key("correct-horse", salt)
        assert k1 == k2
        assert len(k1) == EncryptionService.KEY_LENGTH

    def test_different_salt_gives_different_key(self, salt):
        other = EncryptionService.generate_salt()
        assert salt != other
        assert (
            EncryptionService.derive_key("correct-horse", salt)
            != EncryptionService.derive_key("correct-horse", other)
        )

    def test_different_password_gives_different_key(self, salt):
        assert (
            EncryptionService.derive_key("correct-horse", salt)
            != EncryptionService.derive_key("battery-staple", salt)
        )

    def test_salt_length(self):
        assert len(EncryptionService.generate_salt()) == 16

    def test_iterations_below_floor_rejected(self, salt):
        with pytest.raises(ValueError):
            EncryptionService.derive_key("pw", salt, iterations=MIN_KDF_ITERATIONS - 1)

    def test_unicode_password(self, salt):
        key = EncryptionService.derive_key("pässwörd-🔑", salt)
        assert len(key) == 32


class TestEnvelopes:
    def test_roundtrip(self, key):
        envelope = EncryptionService.encrypt(b"hello vault", key)
        assert EncryptionService.decrypt(envelope, key) == b"hello vault"

    def test_fresh_nonce_each_call(self, key):
        a = EncryptionService.encrypt(b"same", key)
        b = EncryptionService.encrypt(b"same", key)
        assert len(a.nonce) == 12
        assert a.nonce != b.nonce
        assert a.ciphertext != b.ciphertext

    def test_nonces_unique_over_many_encryptions(self):
        key = os.urandom(32)
        count = 10_000
        envelopes = [EncryptionService.encrypt(b"same", key) for _ in range(count)]
        assert all(len(e.nonce) == 12 for e in envelopes)
        assert len({e.nonce for e in envelopes}) == count

    def test_wrong_key_fails(self, key):
        envelope = EncryptionService.encrypt(b"secret", key)
        with pytest.raises(DecryptionFailed):
            EncryptionService.decrypt(envelope, os.urandom(32))

    def test_tampered_ciphertext_fails(self, key):
        envelope = EncryptionService.encrypt(b"secret", key)
        flipped = bytes([envelope.ciphertext[0] ^ 0x01]) + envelope.ciphertext[1:]
        with pytest.raises(DecryptionFailed):
            EncryptionService.decrypt(Envelope(ciphertext=flipped, nonce=envelope.nonce), key)

    def test_bad_nonce_length_fails(self, key):
        envelope = EncryptionService.encrypt(b"secret", key)
        with pytest.raises(DecryptionFailed):
            EncryptionService.decrypt(Envelope(ciphertext=envelope.ciphertext, nonce=b"short"), key)

    def test_ciphertext_includes_tag(self, key):
        envelope = EncryptionService.encrypt(b"abc", key)
        assert len(envelope.ciphertext) == 3 + 16


class TestValidationToken:
    def test_verify_correct_key(self, key):
        token = EncryptionService.create_validation_token(key)
        assert EncryptionService.verify(key, token) is True

    def test_verify_wrong_key(self, key):
        token = EncryptionService.create_validation_token(key)
        assert EncryptionService.verify(os.urandom(32), token) is False

    def test_wrong_sentinel_is_rejected(self, key):
        token = EncryptionService.encrypt(b"NOPE", key)
        assert EncryptionService.verify(key, token) is False


class TestAsyncWrappers:
    @pytest.mark.asyncio
    async def test_async_matches_sync(self, salt):
        key = await EncryptionService.derive_key_async("correct-horse", salt)
        assert key == EncryptionService.derive_key("correct-horse", salt)

        envelope = await EncryptionService.encrypt_async(b"payload", key)
        assert await EncryptionService.decrypt_async(envelope, key) == b"payload"


class TestMasterPasswordPolicy:
    def test_empty_rejected(self):
        ok, msg = verify_master_password("")
        assert not ok
        assert msg

    def test_whitespace_rejected(self):
        ok, _ = verify_master_password("   ")
        assert not ok

    def test_short_passphrase_accepted(self):
        assert verify_master_password("correct-horse") == (True, "")
