from __future__ import annotations
import hashlib
from nacl.secret import SecretBox
from nacl.utils import random as nacl_random
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives import hashes

INFO_PREFIX = b"pool-notes-cache-v1|"


def hash_pubkey(value: str) -> str:
    """Stable lookup key that never stores the identity or pool in clear."""
    return hashlib.sha256(value.strip().lower().encode()).hexdigest()


class FieldEncryption:
    """
    Authenticated encryption of cached payloads.

    Each scope (identity + pool) gets its own key, HKDF-derived from one master
    key, so a leaked row key never unlocks another scope.
    """

    def __init__(self, master_key: bytes):
        if len(master_key) < 32:
            raise ValueError("Master key must be at least 32 bytes")
        self._master_key = master_key

    @classmethod
    def from_hex(cls, master_key_hex: str) -> "FieldEncryption":
        return cls(bytes.fromhex(master_key_hex.strip().removeprefix("0x")))

    def _scope_key(self, scope: str) -> bytes:
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=SecretBox.KEY_SIZE,
            salt=None,
            info=INFO_PREFIX + scope.encode(),
        )
        return hkdf.derive(self._master_key)

    def encrypt(self, plaintext: bytes, scope: str) -> bytes:
        box = SecretBox(self._scope_key(scope))  # XSalsa20-Poly1305
        nonce = nacl_random(SecretBox.NONCE_SIZE)
        return bytes(box.encrypt(plaintext, nonce))  # nonce || ciphertext

    def decrypt(self, blob: bytes, scope: str) -> bytes:
        """Raises nacl.exceptions.CryptoError on a wrong key or tampered blob."""
        box = SecretBox(self._scope_key(scope))
        return box.decrypt(blob)
