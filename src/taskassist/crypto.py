"""
Passphrase encryption for the sync payload.

Envelope layout (base64 of the concatenation):

    salt (16 bytes) | nonce (12 bytes) | AES-256-GCM ciphertext + tag

The key is derived per envelope with PBKDF2-HMAC-SHA256 (100,000
iterations) from the passphrase and the envelope's own salt, so the
passphrase is the only thing needed to decrypt. Salt and nonce are fresh
random bytes on every call.

No passphrase, no encryption: the sync engine uploads plaintext JSON
when the user has not set one.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import DecryptionError

SALT_BYTES = 16
NONCE_BYTES = 12
KEY_BYTES = 32
KDF_ITERATIONS = 100_000


def _derive_key(passphrase: str, salt: bytes, iterations: int = KDF_ITERATIONS) -> bytes:
    """Derive a 256-bit AES key from a passphrase with PBKDF2-HMAC-SHA256.

    Args:
        passphrase: User passphrase.
        salt: Per-envelope random salt.
        iterations: PBKDF2 iteration count.

    Returns:
        32 bytes of key material.
    """
    kdf = PBKDF2HMAC(
        algorithm=SHA256(),
        length=KEY_BYTES,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(passphrase.encode("utf-8"))


def encrypt(plaintext: str, passphrase: str) -> str:
    """Encrypt ``plaintext`` into a self-describing base64 envelope.

    Args:
        plaintext: Text to protect (the serialized snapshot).
        passphrase: User passphrase.

    Returns:
        str: base64(salt | nonce | ciphertext).
    """
    salt = os.urandom(SALT_BYTES)
    nonce = os.urandom(NONCE_BYTES)
    key = _derive_key(passphrase, salt)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(salt + nonce + ciphertext).decode("ascii")


def decrypt(envelope: str, passphrase: str) -> str:
    """Decrypt an envelope produced by ``encrypt``.

    Args:
        envelope: base64(salt | nonce | ciphertext).
        passphrase: User passphrase.

    Returns:
        str: The original plaintext.

    Raises:
        DecryptionError: Wrong passphrase, corrupted or tampered envelope.
    """
    try:
        raw = base64.b64decode(envelope.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionError(f"Envelope is not valid base64: {exc}") from exc

    # GCM tag alone is 16 bytes
    if len(raw) < SALT_BYTES + NONCE_BYTES + 16:
        raise DecryptionError("Envelope too short")

    salt = raw[:SALT_BYTES]
    nonce = raw[SALT_BYTES:SALT_BYTES + NONCE_BYTES]
    ciphertext = raw[SALT_BYTES + NONCE_BYTES:]

    key = _derive_key(passphrase, salt)
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)
    except InvalidTag as exc:
        raise DecryptionError("Decryption failed. Wrong passphrase?") from exc

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecryptionError("Decrypted payload is not UTF-8") from exc


async def encrypt_async(plaintext: str, passphrase: str) -> str:
    """``encrypt`` on a worker thread; the KDF is too slow for the event loop."""
    return await asyncio.to_thread(encrypt, plaintext, passphrase)


async def decrypt_async(envelope: str, passphrase: str) -> str:
    """``decrypt`` on a worker thread."""
    return await asyncio.to_thread(decrypt, envelope, passphrase)
