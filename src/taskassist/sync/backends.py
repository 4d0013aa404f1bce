"""
Remote backends -- where the snapshot blob travels.

Each backend keeps exactly one blob per account and knows how to find it,
read it and overwrite it. The engine never sees provider details.

GoogleDrive: file in the hidden ``appDataFolder`` space, found by name.
Gist: private GitHub gist, found by id when known, else by description.

All HTTP goes through ``RemoteBackend._request`` which turns every httpx
failure, non-2xx answer and unparseable response into a
RemoteUnavailableError. Nothing above this module sniffs provider errors.
"""

from __future__ import annotations

import json
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

import httpx

from ..errors import RemoteUnavailableError, normalize_error
from ..models import now_ms
from .models import BlobHandle, ProviderId, SyncConfig

logger = logging.getLogger("taskassist.sync.backends")


def _iso_to_ms(value: Optional[str]) -> int:
    """Parse an RFC 3339 timestamp into epoch milliseconds (0 if missing)."""
    if not value:
        return 0
    try:
        return int(datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp() * 1000)
    except ValueError:
        logger.warning("Unparseable remote timestamp: %r", value)
        return 0


class RemoteBackend(ABC):
    """Abstract single-blob remote store.

    Args:
        config: Sync configuration (endpoints, timeouts, names).
        transport: Optional httpx transport, used by tests to mock the network.
    """

    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config or SyncConfig()
        self._transport = transport

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider label used in logs and status messages."""

    @abstractmethod
    def _auth_headers(self, token: str) -> dict[str, str]:
        """Authorization header(s) for this provider."""

    @abstractmethod
    async def locate(self, token: str) -> Optional[BlobHandle]:
        """Find the blob for this account.

        Returns:
            BlobHandle, or None when no blob exists yet.
        """

    @abstractmethod
    async def read(self, token: str, handle: BlobHandle) -> str:
        """Fetch the full blob content."""

    @abstractmethod
    async def write(
        self, token: str, content: str, handle: Optional[BlobHandle]
    ) -> BlobHandle:
        """Create the blob (``handle`` is None) or overwrite it in place."""

    async def _request(
        self,
        method: str,
        url: str,
        token: str,
        *,
        expect: str = "json",
        headers: Optional[dict[str, str]] = None,
        **kwargs: Any,
    ) -> Any:
        """Issue one authenticated request and decode the answer.

        Args:
            method: HTTP verb.
            url: Absolute URL.
            token: Bearer credential.
            expect: ``"json"`` or ``"text"``.
            headers: Extra headers merged over the auth headers.

        Raises:
            RemoteUnavailableError: Transport failure, timeout, non-2xx
                status or a body that does not decode as expected.
        """
        all_headers = self._auth_headers(token)
        all_headers.update(headers or {})
        context = f"{self.name} {method} {url.split('?')[0]}"

        try:
            async with httpx.AsyncClient(
                timeout=self.config.request_timeout,
                transport=self._transport,
            ) as client:
                resp = await client.request(method, url, headers=all_headers, **kwargs)
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise normalize_error(exc, context) from exc

        if expect == "text":
            return resp.text
        try:
            return resp.json()
        except ValueError as exc:
            raise RemoteUnavailableError(f"{context}: malformed response") from exc


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_BACKENDS: dict[ProviderId, type[RemoteBackend]] = {}


def register_backend(provider: ProviderId):
    """Decorator registering a backend class for a provider."""
    def wrapper(cls: type[RemoteBackend]) -> type[RemoteBackend]:
        _BACKENDS[provider] = cls
        return cls
    return wrapper


def create_backend(
    provider: ProviderId | str,
    config: Optional[SyncConfig] = None,
    **kwargs: Any,
) -> Optional[RemoteBackend]:
    """Instantiate the backend for ``provider``.

    Args:
        provider: Provider id.
        config: Sync configuration.
        **kwargs: Backend-specific options (``transport``, ``gist_id``).

    Returns:
        RemoteBackend, or None for providers that have no remote store
        (``local``, ``yandex``).

    Raises:
        ValueError: If ``provider`` is not a known provider id.
    """
    provider = ProviderId(provider)
    cls = _BACKENDS.get(provider)
    if cls is None:
        return None
    return cls(config=config, **kwargs)


# ---------------------------------------------------------------------------
# Google Drive
# ---------------------------------------------------------------------------


@register_backend(ProviderId.GOOGLE)
class GoogleDriveBackend(RemoteBackend):
    """Blob stored as a file in the Drive ``appDataFolder`` space."""

    @property
    def name(self) -> str:
        return "google-drive"

    def _auth_headers(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    async def locate(self, token: str) -> Optional[BlobHandle]:
        query = (
            f"name = '{self.config.file_name}' and 'appDataFolder' in parents "
            "and trashed = false"
        )
        data = await self._request(
            "GET",
            f"{self.config.drive_api_url}/files",
            token,
            params={
                "q": query,
                "spaces": "appDataFolder",
                "fields": "files(id, modifiedTime)",
            },
        )
        if not isinstance(data, dict):
            raise RemoteUnavailableError(f"{self.name}: file list is not an object")
        files = data.get("files") or []
        if not files:
            return None
        if len(files) > 1:
            logger.warning(
                "%d copies of %s in Drive, using the first",
                len(files), self.config.file_name,
            )
        first = files[0]
        return BlobHandle(
            blob_id=first["id"],
            updated_at=_iso_to_ms(first.get("modifiedTime")),
        )

    async def read(self, token: str, handle: BlobHandle) -> str:
        return await self._request(
            "GET",
            f"{self.config.drive_api_url}/files/{handle.blob_id}",
            token,
            expect="text",
            params={"alt": "media"},
        )

    async def write(
        self, token: str, content: str, handle: Optional[BlobHandle]
    ) -> BlobHandle:
        if handle is not None:
            data = await self._request(
                "PATCH",
                f"{self.config.drive_upload_url}/files/{handle.blob_id}",
                token,
                params={"uploadType": "media", "fields": "id,modifiedTime"},
                headers={"Content-Type": "application/json"},
                content=content.encode("utf-8"),
            )
        else:
            boundary = f"taskassist-{uuid.uuid4().hex}"
            metadata = {"name": self.config.file_name, "parents": ["appDataFolder"]}
            body = (
                f"--{boundary}\r\n"
                "Content-Type: application/json; charset=UTF-8\r\n\r\n"
                f"{json.dumps(metadata)}\r\n"
                f"--{boundary}\r\n"
                "Content-Type: application/json\r\n\r\n"
                f"{content}\r\n"
                f"--{boundary}--\r\n"
            )
            data = await self._request(
                "POST",
                f"{self.config.drive_upload_url}/files",
                token,
                params={"uploadType": "multipart", "fields": "id,modifiedTime"},
                headers={"Content-Type": f"multipart/related; boundary={boundary}"},
                content=body.encode("utf-8"),
            )

        if not isinstance(data, dict) or "id" not in data:
            raise RemoteUnavailableError(f"{self.name}: upload response has no file id")
        logger.info("Drive file %s written (%d bytes)", data["id"], len(content))
        return BlobHandle(
            blob_id=data["id"],
            updated_at=_iso_to_ms(data.get("modifiedTime")) or now_ms(),
        )


# ---------------------------------------------------------------------------
# GitHub Gist
# ---------------------------------------------------------------------------


@register_backend(ProviderId.GITHUB)
class GistBackend(RemoteBackend):
    """Blob stored as one file of a private gist.

    Args:
        gist_id: Cached gist id; when unknown the gist is found by its
            description and the id is remembered after the first write.
    """

    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        gist_id: Optional[str] = None,
    ) -> None:
        super().__init__(config=config, transport=transport)
        self.gist_id = gist_id

    @property
    def name(self) -> str:
        return "github-gist"

    def _auth_headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"token {token}",
            "Accept": "application/vnd.github+json",
        }

    def _handle_from_gist(self, gist: dict[str, Any]) -> BlobHandle:
        entry = (gist.get("files") or {}).get(self.config.file_name) or {}
        content = entry.get("content")
        return BlobHandle(
            blob_id=gist["id"],
            updated_at=_iso_to_ms(gist.get("updated_at")),
            content=content,
            raw_url=entry.get("raw_url"),
            truncated=bool(gist.get("truncated") or entry.get("truncated") or content is None),
        )

    async def locate(self, token: str) -> Optional[BlobHandle]:
        api = self.config.github_api_url
        if self.gist_id:
            try:
                gist = await self._request("GET", f"{api}/gists/{self.gist_id}", token)
                return self._handle_from_gist(gist)
            except RemoteUnavailableError as exc:
                # Provider answered (e.g. 404 after deletion): search instead
                if exc.status_code is None:
                    raise
                logger.warning(
                    "Cached gist %s not readable (%s), searching by description",
                    self.gist_id, exc,
                )

        gists = await self._request("GET", f"{api}/gists", token, params={"per_page": 100})
        if not isinstance(gists, list):
            raise RemoteUnavailableError(f"{self.name}: gist list is not a list")
        for gist in gists:
            if gist.get("description") == self.config.gist_description:
                self.gist_id = gist["id"]
                return self._handle_from_gist(gist)
        return None

    async def read(self, token: str, handle: BlobHandle) -> str:
        if handle.content is not None and not handle.truncated:
            return handle.content

        if handle.raw_url:
            return await self._request("GET", handle.raw_url, token, expect="text")

        # List responses omit file bodies; fetch the gist itself
        gist = await self._request(
            "GET", f"{self.config.github_api_url}/gists/{handle.blob_id}", token
        )
        full = self._handle_from_gist(gist)
        if full.content is not None and not full.truncated:
            return full.content
        if full.raw_url:
            return await self._request("GET", full.raw_url, token, expect="text")
        logger.info("Gist %s has no %s file", handle.blob_id, self.config.file_name)
        return ""

    async def write(
        self, token: str, content: str, handle: Optional[BlobHandle]
    ) -> BlobHandle:
        api = self.config.github_api_url
        body: dict[str, Any] = {
            "description": self.config.gist_description,
            "files": {self.config.file_name: {"content": content}},
        }
        if handle is not None:
            gist = await self._request("PATCH", f"{api}/gists/{handle.blob_id}", token, json=body)
        else:
            body["public"] = False
            gist = await self._request("POST", f"{api}/gists", token, json=body)

        if not isinstance(gist, dict) or "id" not in gist:
            raise RemoteUnavailableError(f"{self.name}: write response has no gist id")
        self.gist_id = gist["id"]
        logger.info("Gist %s written (%d bytes)", self.gist_id, len(content))
        written = self._handle_from_gist(gist)
        if not written.updated_at:
            written = written.model_copy(update={"updated_at": now_ms()})
        return written
