"""Tests for passphrase encryption of the sync payload."""

from __future__ import annotations

import base64

import pytest

from taskassist.crypto import (
    NONCE_BYTES,
    SALT_BYTES,
    decrypt,
    decrypt_async,
    encrypt,
    encrypt_async,
)
from taskassist.errors import DecryptionError


class TestEnvelope:
    def test_roundtrip(self):
        envelope = encrypt('{"tasks": []}', "correct horse")
        assert decrypt(envelope, "correct horse") == '{"tasks": []}'

    def test_unicode_roundtrip(self):
        text = "Купить молоко ✓"
        assert decrypt(encrypt(text, "pw"), "pw") == text

    def test_layout_is_salt_nonce_ciphertext(self):
        """Envelope = base64(salt || nonce || ciphertext+tag)."""
        raw = base64.b64decode(encrypt("abc", "pw"))
        # 3 bytes of plaintext + 16 byte GCM tag
        assert len(raw) == SALT_BYTES + NONCE_BYTES + 3 + 16

    def test_fresh_salt_and_nonce_every_time(self):
        a = encrypt("same", "pw")
        b = encrypt("same", "pw")
        assert a != b
        assert decrypt(a, "pw") == decrypt(b, "pw") == "same"

    def test_wrong_passphrase(self):
        envelope = encrypt("secret", "right")
        with pytest.raises(DecryptionError):
            decrypt(envelope, "wrong")

    def test_tampered_ciphertext(self):
        raw = bytearray(base64.b64decode(encrypt("secret", "pw")))
        raw[-1] ^= 0x01
        with pytest.raises(DecryptionError):
            decrypt(base64.b64encode(bytes(raw)).decode(), "pw")

    def test_not_base64(self):
        with pytest.raises(DecryptionError):
            decrypt("this is {not} base64!", "pw")

    def test_too_short(self):
        with pytest.raises(DecryptionError):
            decrypt(base64.b64encode(b"short").decode(), "pw")


class TestAsync:
    @pytest.mark.asyncio
    async def test_async_roundtrip(self):
        envelope = await encrypt_async("payload", "pw")
        assert await decrypt_async(envelope, "pw") == "payload"

    @pytest.mark.asyncio
    async def test_async_wrong_passphrase(self):
        envelope = await encrypt_async("payload", "pw")
        with pytest.raises(DecryptionError):
            await decrypt_async(envelope, "nope")
