"""
Error taxonomy for the store and the sync core.

Everything that can go wrong below the UI is one of five kinds. Adapters
and codecs funnel whatever they catch (httpx errors, JSON errors, provider
error payloads, plain strings) through ``normalize_error`` so orchestration
code only ever sees these classes.
"""

from __future__ import annotations

import json
from typing import Any, Optional

import httpx


class TaskAssistError(Exception):
    """Base class for every error raised by taskassist."""


class NotFoundError(TaskAssistError):
    """A local update or lookup targeted a record id that does not exist."""

    def __init__(self, collection: str, record_id: str) -> None:
        super().__init__(f"{collection}: record '{record_id}' not found")
        self.collection = collection
        self.record_id = record_id


class ConflictError(TaskAssistError):
    """A local add targeted a record id that already exists."""

    def __init__(self, collection: str, record_id: str) -> None:
        super().__init__(f"{collection}: record '{record_id}' already exists")
        self.collection = collection
        self.record_id = record_id


class DecryptionError(TaskAssistError):
    """Ciphertext is present but the passphrase is wrong or the data is corrupt."""


class RemoteUnavailableError(TaskAssistError):
    """The remote provider could not be reached or answered with an error.

    Attributes:
        status_code: HTTP status when the provider answered, else None.
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UnrecognizedFormatError(TaskAssistError):
    """Downloaded content is neither JSON nor decryptable with the given passphrase."""


def _provider_message(payload: Any) -> Optional[str]:
    """Dig a human readable message out of a provider error body.

    Google answers ``{"error": {"message": ...}}``, GitHub answers
    ``{"message": ...}``; anything else is ignored.
    """
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str) and err:
            return err
        if payload.get("message"):
            return str(payload["message"])
    return None


def normalize_error(exc: Any, context: str = "") -> TaskAssistError:
    """Convert any raised value into a member of the taxonomy.

    Args:
        exc: The exception (or stray string / provider dict) to convert.
        context: Short description of the operation, used as a prefix.

    Returns:
        TaskAssistError: ``exc`` itself when it already belongs to the
        taxonomy, otherwise the closest matching kind.
    """
    prefix = f"{context}: " if context else ""

    if isinstance(exc, TaskAssistError):
        return exc

    if isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        detail = None
        try:
            detail = _provider_message(response.json())
        except (json.JSONDecodeError, ValueError):
            pass
        return RemoteUnavailableError(
            f"{prefix}HTTP {response.status_code}"
            + (f" ({detail})" if detail else ""),
            status_code=response.status_code,
        )

    if isinstance(exc, httpx.TimeoutException):
        return RemoteUnavailableError(f"{prefix}request timed out")

    if isinstance(exc, httpx.HTTPError):
        return RemoteUnavailableError(f"{prefix}{exc.__class__.__name__}: {exc}")

    if isinstance(exc, (json.JSONDecodeError, UnicodeDecodeError)):
        return UnrecognizedFormatError(f"{prefix}{exc}")

    if isinstance(exc, OSError):
        return RemoteUnavailableError(f"{prefix}{exc}")

    if isinstance(exc, dict):
        message = _provider_message(exc) or json.dumps(exc, default=str)[:200]
        return RemoteUnavailableError(f"{prefix}{message}")

    if isinstance(exc, str):
        return RemoteUnavailableError(f"{prefix}{exc}")

    return RemoteUnavailableError(f"{prefix}{exc!r}")
