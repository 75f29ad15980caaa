# Vault - Encryption Service
#
# Master password -> session key (PBKDF2-HMAC-SHA256)
# Record encryption (AES-256-GCM envelopes, fresh nonce per call)
# Validation token: the sentinel "VALID" sealed under the session key

import asyncio
import os
from typing import Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..core.config import MIN_KDF_ITERATIONS, get_settings
from .exceptions import DecryptionFailed
from .models import NONCE_LENGTH, SALT_LENGTH, Envelope


class EncryptionService:
    """
    Handles key derivation and envelope encryption for the vault.

    Flow:
    1. User enters master password
    2. PBKDF2 derives a 256-bit key from password + per-vault salt
    3. The key is checked against the stored validation token
    4. AES-256-GCM seals/opens each item payload under that key
    5. Each encryption gets its own random 96-bit nonce
    """

    KEY_LENGTH = 32  # 256 bits for AES-256
    SALT_LENGTH = SALT_LENGTH
    NONCE_LENGTH = NONCE_LENGTH
    VALIDATION_SENTINEL = b"VALID"

    @staticmethod
    def derive_key(
        master_password: str,
        salt: bytes,
        iterations: Optional[int] = None,
    ) -> bytes:
        """
        Derive the session key from master password using PBKDF2.

        Args:
            master_password: User's master password
            salt: Per-vault random salt (stored in VaultMeta)
            iterations: PBKDF2 rounds (default: configured kdf_iterations)

        Returns:
            256-bit key
        """
        if iterations is None:
            iterations = get_settings().kdf_iterations
        if iterations < MIN_KDF_ITERATIONS:
            raise ValueError(f"PBKDF2 iterations must be at least {MIN_KDF_ITERATIONS}")

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=EncryptionService.KEY_LENGTH,
            salt=salt,
            iterations=iterations,
        )
        return kdf.derive(master_password.encode("utf-8"))

    @staticmethod
    def generate_salt() -> bytes:
        """Generate cryptographically random salt."""
        return os.urandom(EncryptionService.SALT_LENGTH)

    @staticmethod
    def encrypt(plaintext: bytes, key: bytes) -> Envelope:
        """
        Encrypt plaintext using AES-256-GCM.

        Args:
            plaintext: Bytes to seal
            key: 256-bit session key

        Returns:
            Envelope with ciphertext (tag appended) and the fresh nonce
        """
        nonce = os.urandom(EncryptionService.NONCE_LENGTH)
        ciphertext = AESGCM(key).encrypt(nonce, plaintext, None)
        return Envelope(ciphertext=ciphertext, nonce=nonce)

    @staticmethod
    def decrypt(envelope: Envelope, key: bytes) -> bytes:
        """
        Decrypt an envelope using AES-256-GCM.

        Raises:
            DecryptionFailed: wrong key, tampered/corrupt ciphertext, or a
                malformed nonce/key. Nothing is returned on failure.
        """
        if len(envelope.nonce) != EncryptionService.NONCE_LENGTH:
            raise DecryptionFailed("Malformed nonce")
        try:
            return AESGCM(key).decrypt(envelope.nonce, envelope.ciphertext, None)
        except InvalidTag:
            raise DecryptionFailed("Authentication tag mismatch") from None
        except (ValueError, TypeError) as e:
            raise DecryptionFailed(f"Malformed envelope: {e}") from None

    @staticmethod
    def create_validation_token(key: bytes) -> Envelope:
        """Seal the sentinel under key; proves a candidate key later."""
        return EncryptionService.encrypt(EncryptionService.VALIDATION_SENTINEL, key)

    @staticmethod
    def verify(key: bytes, token: Envelope) -> bool:
        """
        Check a candidate key against the validation token.

        A failed tag and a wrong sentinel are the same answer: False.
        """
        try:
            plaintext = EncryptionService.decrypt(token, key)
        except DecryptionFailed:
            return False
        return plaintext == EncryptionService.VALIDATION_SENTINEL

    # ── Async wrappers (CPU-bound work off the event loop) ───────────

    @staticmethod
    async def derive_key_async(
        master_password: str,
        salt: bytes,
        iterations: Optional[int] = None,
    ) -> bytes:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, EncryptionService.derive_key, master_password, salt, iterations
        )

    @staticmethod
    async def encrypt_async(plaintext: bytes, key: bytes) -> Envelope:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, EncryptionService.encrypt, plaintext, key)

    @staticmethod
    async def decrypt_async(envelope: Envelope, key: bytes) -> bytes:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, EncryptionService.decrypt, envelope, key)


def verify_master_password(password: str) -> Tuple[bool, str]:
    """
    Check a new master password is usable.

    The vault cannot recover a lost password, so only the obvious
    mistakes are rejected here: empty or whitespace-only input.

    Returns:
        (is_valid, error_message)
    """
    if not password or not password.strip():
        return False, "Master password must not be empty"
    return True, ""
