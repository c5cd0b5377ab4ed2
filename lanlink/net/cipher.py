"""AES-256-CBC encryption for lanlink datagrams.

Security model
--------------
- Both devices hold the same 256-bit key, carried in the pairing code.
- The key is either random (``generate_key``) or derived from a shared
  password with PBKDF2-HMAC-SHA256 (``derive_key``).  Derivation is
  deterministic so each device can recompute it locally.
- Every message uses a fresh random 128-bit IV.
- Plaintext is PKCS7-padded.  There is no MAC: a wrong key usually shows up
  as a padding failure, and the rare wrong-key plaintext that happens to pad
  correctly is rejected later when it fails to parse as an envelope.

Text encodings
--------------
Keys and IVs travel as hex, ciphertext as base64, so everything fits in JSON.
"""

from __future__ import annotations

import base64
import binascii
import os
import secrets
from dataclasses import dataclass

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from lanlink.net.errors import DecryptionError

KEY_BITS = 256
KEY_BYTES = KEY_BITS // 8
IV_LENGTH = 16  # AES block size; CBC needs one full block


@dataclass(frozen=True)
class EncryptedPayload:
    """Result of :func:`encrypt`: base64 ciphertext plus hex IV."""

    ciphertext: str
    iv: str


# ------------------------------------------------------------------
# Keys
# ------------------------------------------------------------------

def derive_key(password: str, salt: str, iterations: int, output_bits: int = KEY_BITS) -> str:
    """Derive a hex key from *password* and *salt* with PBKDF2-HMAC-SHA256.

    The same inputs always give the same key.
    """
    if output_bits <= 0 or output_bits % 8:
        raise ValueError(f"output_bits must be a positive multiple of 8, got {output_bits}")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=output_bits // 8,
        salt=salt.encode("utf-8"),
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8")).hex()


def generate_key() -> str:
    """Return a random 256-bit key as hex."""
    return secrets.token_bytes(KEY_BYTES).hex()


def _key_bytes(key: str | bytes) -> bytes:
    raw = bytes.fromhex(key) if isinstance(key, str) else bytes(key)
    if len(raw) != KEY_BYTES:
        raise ValueError(f"key must be {KEY_BYTES} bytes, got {len(raw)}")
    return raw


# ------------------------------------------------------------------
# Encrypt / decrypt
# ------------------------------------------------------------------

def encrypt(plaintext: bytes | str, key: str | bytes) -> EncryptedPayload:
    """Encrypt *plaintext* under *key* with a fresh random IV."""
    if isinstance(plaintext, str):
        plaintext = plaintext.encode("utf-8")
    iv = os.urandom(IV_LENGTH)

    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext) + padder.finalize()

    encryptor = Cipher(algorithms.AES(_key_bytes(key)), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()

    return EncryptedPayload(
        ciphertext=base64.b64encode(ciphertext).decode("ascii"),
        iv=iv.hex(),
    )


def decrypt(ciphertext: str, iv: str, key: str | bytes) -> bytes:
    """Decrypt a payload produced by :func:`encrypt`.

    Raises :class:`DecryptionError` for a wrong key or IV, bad encodings,
    or a truncated / corrupted ciphertext.
    """
    try:
        raw = base64.b64decode(ciphertext, validate=True)
        iv_bytes = bytes.fromhex(iv)
        if len(iv_bytes) != IV_LENGTH:
            raise ValueError(f"iv must be {IV_LENGTH} bytes, got {len(iv_bytes)}")
        if not raw or len(raw) % IV_LENGTH:
            raise ValueError("ciphertext is not a whole number of blocks")

        decryptor = Cipher(algorithms.AES(_key_bytes(key)), modes.CBC(iv_bytes)).decryptor()
        padded = decryptor.update(raw) + decryptor.finalize()

        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        return unpadder.update(padded) + unpadder.finalize()
    except (ValueError, TypeError, binascii.Error) as exc:
        raise DecryptionError(str(exc)) from exc
