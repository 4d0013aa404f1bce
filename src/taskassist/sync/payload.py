"""
Blob payload codec: Snapshot <-> remote blob text.

Upload: snapshot JSON, encrypted into an envelope when a passphrase is set.
Download: try plaintext JSON first, then decrypt with the passphrase.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from pydantic import ValidationError

from ..crypto import decrypt_async, encrypt_async
from ..errors import UnrecognizedFormatError
from ..models import Snapshot

logger = logging.getLogger("taskassist.sync.payload")


def _loads_object(text: str) -> Optional[dict[str, Any]]:
    """Parse ``text`` as a JSON object, or return None."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def _to_snapshot(data: dict[str, Any]) -> Snapshot:
    try:
        return Snapshot.model_validate(data)
    except ValidationError as exc:
        raise UnrecognizedFormatError(
            f"Remote data is JSON but not a snapshot: {exc.error_count()} error(s)"
        ) from exc


async def encode_snapshot(snapshot: Snapshot, passphrase: Optional[str] = None) -> str:
    """Serialize ``snapshot`` for upload, encrypting when ``passphrase`` is set."""
    text = snapshot.to_json()
    if passphrase:
        return await encrypt_async(text, passphrase)
    return text


async def decode_snapshot(content: str, passphrase: Optional[str] = None) -> Snapshot:
    """Parse downloaded blob text into a Snapshot.

    Raises:
        DecryptionError: Content is not JSON and the passphrase fails.
        UnrecognizedFormatError: Content is not JSON and no passphrase was
            given, or decrypted text is not a snapshot.
    """
    data = _loads_object(content)
    if data is not None:
        return _to_snapshot(data)

    if not passphrase:
        raise UnrecognizedFormatError(
            "Remote data is not JSON; it is encrypted or in an unknown format"
        )

    plaintext = await decrypt_async(content, passphrase)
    data = _loads_object(plaintext)
    if data is None:
        raise UnrecognizedFormatError("Decrypted remote data is not a JSON object")
    logger.debug("Remote payload decrypted (%d chars)", len(plaintext))
    return _to_snapshot(data)
