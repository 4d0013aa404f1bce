"""
Authentication boundary.

The sync core only needs two things from auth: an opaque bearer token
and which provider issued it. OAuth flows happen elsewhere; whatever
completes them hands the result to ``SessionAuth.set``.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional, Protocol

from . import APP_HOME
from .sync.models import ProviderId

logger = logging.getLogger("taskassist.auth")

TOKEN_ENV = "TASKASSIST_TOKEN"
PROVIDER_ENV = "TASKASSIST_PROVIDER"


class AuthSource(Protocol):
    def get_token(self) -> Optional[str]: ...

    def get_provider(self) -> Optional[ProviderId]: ...


class SessionAuth:
    """Token/provider pair kept in ``<home>/session.json``.

    ``TASKASSIST_TOKEN`` and ``TASKASSIST_PROVIDER`` override the file.

    Args:
        home: App home directory.
    """

    def __init__(self, home: Optional[Path] = None) -> None:
        self.home = (home or Path(APP_HOME)).expanduser()
        self._session_file = self.home / "session.json"

    def _load(self) -> dict:
        if not self._session_file.exists():
            return {}
        try:
            data = json.loads(self._session_file.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            logger.warning("Ignoring corrupt session file: %s", exc)
            return {}
        return data if isinstance(data, dict) else {}

    def get_token(self) -> Optional[str]:
        return os.environ.get(TOKEN_ENV) or self._load().get("token") or None

    def get_provider(self) -> Optional[ProviderId]:
        raw = os.environ.get(PROVIDER_ENV) or self._load().get("provider")
        if not raw:
            return None
        try:
            return ProviderId(raw)
        except ValueError:
            logger.warning("Unknown provider in session: %r", raw)
            return None

    def set(self, token: str, provider: ProviderId | str) -> None:
        """Persist a new session (owner-only permissions)."""
        self.home.mkdir(parents=True, exist_ok=True)
        self._session_file.write_text(
            json.dumps({"token": token, "provider": ProviderId(provider).value}),
            encoding="utf-8",
        )
        self._session_file.chmod(0o600)
        logger.info("Session stored for provider %s", ProviderId(provider).value)

    def clear(self) -> None:
        self._session_file.unlink(missing_ok=True)
