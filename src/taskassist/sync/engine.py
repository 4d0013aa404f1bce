"""
Sync Engine -- orchestrates snapshot capture, backup, encryption and transport.

This is the command center. It owns no copy of the data: every upload
reads a fresh snapshot from the entity store, and the store is only
written after a download has been fully decoded (and merged).

    mutation -> journal -> schedule_upload (debounced) -> upload
    login    -> initial_sync -> download -> replace or apply settings
    button   -> sync_now -> download -> merge into store -> upload

States: idle, uploading, downloading, error. ``error`` is not terminal;
the next operation moves the engine on.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Optional

import httpx
import yaml

from ..errors import TaskAssistError, normalize_error
from ..models import Snapshot, now_ms
from ..state import AppStateContainer, MutationEvent, MutationJournal, SyncStatus
from ..store import EntityStore
from . import merge as merge_engine
from .backends import GistBackend, RemoteBackend, create_backend
from .models import DownloadResult, ProviderId, SyncConfig, SyncState
from .payload import decode_snapshot, encode_snapshot

if TYPE_CHECKING:
    from ..auth import AuthSource

logger = logging.getLogger("taskassist.sync.engine")

PRE_SYNC_LABEL = "Pre-Sync Backup"
PRE_LOGIN_LABEL = "Pre-Login Backup"
PASSPHRASE_KEY = "encryptionPassword"
GIST_ID_KEY = "githubGistId"


class LoginOutcome(str, Enum):
    """What ``initial_sync`` did."""

    REPLACED = "replaced"
    SETTINGS_APPLIED = "settings_applied"
    NO_REMOTE = "no_remote"
    SKIPPED = "skipped"
    FAILED = "failed"


class SyncEngine:
    """Coordinates local state with one remote blob per account.

    Args:
        store: The entity store (single source of truth).
        state: UI state container that receives status updates.
        auth: Token/provider source for background uploads.
        config: Overrides ``<home>/sync/config.yaml``.
        backends: Pre-built backends per provider (tests, custom endpoints).
        transport: httpx transport handed to backends built on demand.
    """

    def __init__(
        self,
        store: EntityStore,
        state: Optional[AppStateContainer] = None,
        auth: Optional[AuthSource] = None,
        config: Optional[SyncConfig] = None,
        backends: Optional[dict[ProviderId, Optional[RemoteBackend]]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.store = store
        self.state = state or AppStateContainer()
        self.auth = auth
        self.sync_dir = store.home / "sync"
        self.sync_dir.mkdir(parents=True, exist_ok=True)

        self.config = config or self._load_config()
        self.sync_state = self._load_state()

        self._backends: dict[ProviderId, Optional[RemoteBackend]] = dict(backends or {})
        self._transport = transport
        self._upload_locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._timer: Optional[asyncio.Task] = None
        self._inflight: set[asyncio.Task] = set()
        self._unsubscribe: Optional[Callable[[], None]] = None

    # ------------------------------------------------------------------
    # Config & state persistence
    # ------------------------------------------------------------------

    def _load_config(self) -> SyncConfig:
        """Load sync configuration from disk."""
        config_file = self.sync_dir / "config.yaml"
        if config_file.exists():
            try:
                data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
                return SyncConfig(**data)
            except (yaml.YAMLError, TypeError, ValueError) as exc:
                logger.warning("Failed to load sync config: %s", exc)
        return SyncConfig()

    def save_config(self) -> None:
        """Persist sync configuration to disk."""
        config_file = self.sync_dir / "config.yaml"
        config_file.write_text(
            yaml.dump(self.config.model_dump(mode="json"), default_flow_style=False),
            encoding="utf-8",
        )

    def _load_state(self) -> SyncState:
        """Load sync bookkeeping from disk."""
        state_file = self.sync_dir / "state.json"
        if state_file.exists():
            try:
                return SyncState(**json.loads(state_file.read_text(encoding="utf-8")))
            except (json.JSONDecodeError, TypeError, ValueError) as exc:
                logger.warning("Failed to load sync state: %s", exc)
        return SyncState()

    def _save_state(self) -> None:
        state_file = self.sync_dir / "state.json"
        state_file.write_text(self.sync_state.model_dump_json(indent=2), encoding="utf-8")

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def _set_status(self, status: SyncStatus, message: Optional[str] = None) -> None:
        self.state.set_state(
            sync_status=status,
            is_syncing=status in (SyncStatus.UPLOADING, SyncStatus.DOWNLOADING),
            status_message=message,
        )

    def _record_failure(self, operation: str, exc: TaskAssistError) -> None:
        logger.error("%s failed: %s", operation, exc)
        self.sync_state.last_error = f"{operation}: {exc}"
        self._save_state()
        self.state.set_state(
            sync_status=SyncStatus.ERROR,
            is_syncing=False,
            status_message=f"Sync failed: {exc}",
            last_error=str(exc),
        )

    def status(self) -> dict[str, Any]:
        """Snapshot of engine status for display."""
        app = self.state.get_state()
        return {
            "status": app.sync_status.value,
            "message": app.status_message,
            "last_synced": app.last_synced,
            "pending_upload": self._timer is not None and not self._timer.done(),
            "state": self.sync_state.model_dump(mode="json"),
            "config": self.config.model_dump(mode="json"),
        }

    # ------------------------------------------------------------------
    # Backends
    # ------------------------------------------------------------------

    def _backend(
        self, provider: ProviderId | str, settings: Optional[dict[str, Any]] = None
    ) -> Optional[RemoteBackend]:
        provider = ProviderId(provider)
        if provider not in self._backends:
            self._backends[provider] = create_backend(
                provider, self.config, transport=self._transport
            )
        backend = self._backends[provider]
        if isinstance(backend, GistBackend) and not backend.gist_id and settings:
            backend.gist_id = settings.get(GIST_ID_KEY) or None
        return backend

    def _upload_lock(self, token: str, provider: ProviderId) -> asyncio.Lock:
        key = (provider.value, token)
        if key not in self._upload_locks:
            self._upload_locks[key] = asyncio.Lock()
        return self._upload_locks[key]

    def _credentials(
        self, token: Optional[str], provider: Optional[ProviderId | str]
    ) -> tuple[Optional[str], Optional[ProviderId]]:
        if token is None and self.auth is not None:
            token = self.auth.get_token()
        if provider is None and self.auth is not None:
            provider = self.auth.get_provider()
        return token, ProviderId(provider) if provider else None

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def download(
        self,
        token: str,
        provider: ProviderId | str,
        passphrase: Optional[str] = None,
    ) -> DownloadResult:
        """Fetch and decode the remote snapshot.

        Args:
            token: Bearer credential.
            provider: Which backend to use.
            passphrase: Used only if the blob is not plaintext JSON.

        Returns:
            DownloadResult: ``data`` is None when no remote blob exists.

        Raises:
            RemoteUnavailableError: Network or provider failure.
            DecryptionError: Blob is encrypted and the passphrase fails.
            UnrecognizedFormatError: Blob is neither JSON nor decryptable.
        """
        provider = ProviderId(provider)
        backend = self._backend(provider, await self.store.get_settings())
        if backend is None:
            logger.info("Provider %s has no remote store, nothing to download", provider.value)
            return DownloadResult()

        self._set_status(SyncStatus.DOWNLOADING, f"Downloading from {backend.name}")
        try:
            handle = await backend.locate(token)
            if handle is None:
                result = DownloadResult()
            else:
                content = await backend.read(token, handle)
                if not content.strip():
                    result = DownloadResult()
                else:
                    data = await decode_snapshot(content, passphrase)
                    result = DownloadResult(data=data, updated_at=handle.updated_at)
        except TaskAssistError as exc:
            self._record_failure("Download", exc)
            raise

        self.sync_state.last_download = datetime.now(timezone.utc)
        self.sync_state.last_provider = provider.value
        self.sync_state.download_count += 1
        self.sync_state.last_error = None
        self._save_state()
        self._set_status(
            SyncStatus.IDLE,
            "Remote data downloaded" if result.found else "No remote data found",
        )
        logger.info(
            "Downloaded from %s: %s",
            backend.name,
            f"{result.data.record_count()} records" if result.found else "no data",
        )
        return result

    async def upload(
        self,
        state: Optional[Snapshot],
        token: str,
        provider: ProviderId | str,
    ) -> None:
        """Back up locally, then write the full snapshot to the remote blob.

        Uploads for one account never overlap. When ``state`` is None the
        snapshot is read from the store after the upload slot is acquired,
        so mutations that landed while waiting are included.

        Raises:
            RemoteUnavailableError: Network or provider failure, or the local
                store could not be written.
        """
        provider = ProviderId(provider)
        async with self._upload_lock(token, provider):
            snapshot = state if state is not None else await self.store.snapshot()
            backend = self._backend(provider, snapshot.settings)
            if backend is None:
                logger.info("Provider %s has no remote store, upload skipped", provider.value)
                return

            self._set_status(SyncStatus.UPLOADING, f"Uploading to {backend.name}")
            try:
                await self.store.create_backup(snapshot, PRE_SYNC_LABEL)
                passphrase = snapshot.settings.get(PASSPHRASE_KEY) or None
                content = await encode_snapshot(snapshot, passphrase)
                handle = await backend.locate(token)
                await backend.write(token, content, handle)

                if isinstance(backend, GistBackend) and backend.gist_id != snapshot.settings.get(GIST_ID_KEY):
                    await self.store.update_settings({GIST_ID_KEY: backend.gist_id}, notify=False)

                synced_at = await self.store.mark_synced()
            except Exception as exc:
                error = normalize_error(exc, "Upload")
                self._record_failure("Upload", error)
                if error is exc:
                    raise
                raise error from exc

            self.sync_state.last_upload = datetime.now(timezone.utc)
            self.sync_state.last_provider = provider.value
            self.sync_state.upload_count += 1
            self.sync_state.last_error = None
            self._save_state()
            self.state.set_state(last_synced=synced_at)
            self._set_status(SyncStatus.IDLE, "Synced")
            logger.info(
                "Uploaded %d records to %s (%s)",
                snapshot.record_count(), backend.name,
                "encrypted" if passphrase else "plaintext",
            )

    def merge(self, local: Snapshot, remote: Snapshot) -> Snapshot:
        """Per-record last-updated-wins merge (see ``sync.merge``)."""
        return merge_engine.merge(local, remote)

    async def _merge_async(self, local: Snapshot, remote: Snapshot) -> Snapshot:
        merged = await merge_engine.merge_async(
            local, remote, offload_threshold=self.config.offload_threshold
        )
        # lastSynced only moves once the upload is confirmed
        return merged.model_copy(update={"last_synced": local.last_synced})

    async def pull(self, token: str, provider: ProviderId | str) -> Optional[Snapshot]:
        """Download the remote snapshot and merge it into the store.

        Returns:
            The merged snapshot now in the store, or None if there was no
            remote data.

        Raises:
            TaskAssistError: Whatever ``download`` raises.
        """
        settings = await self.store.get_settings()
        result = await self.download(token, provider, settings.get(PASSPHRASE_KEY))
        if result.data is None:
            return None
        merged = await self.store.reconcile(result.data, self._merge_async)
        logger.info("Merged remote snapshot (%d records)", merged.record_count())
        return merged

    # ------------------------------------------------------------------
    # Lifecycle entry points (never raise into the UI)
    # ------------------------------------------------------------------

    async def initial_sync(
        self,
        token: Optional[str] = None,
        provider: Optional[ProviderId | str] = None,
    ) -> LoginOutcome:
        """Login-time reconciliation.

        If the remote blob is newer than the local ``lastSynced`` by more
        than ``login_threshold_ms``, local state is replaced wholesale by
        the remote snapshot. Otherwise only remote settings are applied.
        This is deliberately stronger than the steady-state merge.
        """
        token, provider = self._credentials(token, provider)
        if not token or provider is None:
            logger.info("Not signed in, skipping login sync")
            return LoginOutcome.SKIPPED

        try:
            local = await self.store.snapshot()
            result = await self.download(token, provider, local.settings.get(PASSPHRASE_KEY))
            if result.data is None:
                return LoginOutcome.NO_REMOTE

            remote = result.data
            local_time = local.last_synced or 0
            if result.updated_at > local_time + self.config.login_threshold_ms:
                logger.info(
                    "Remote is newer (%d > %d + %d ms), replacing local state",
                    result.updated_at, local_time, self.config.login_threshold_ms,
                )
                await self.store.create_backup(local, PRE_LOGIN_LABEL)
                synced_at = now_ms()
                await self.store.replace_all(remote.model_copy(update={
                    "settings": remote.settings or local.settings,
                    "last_synced": synced_at,
                }))
                self.state.set_state(last_synced=synced_at)
                self._set_status(SyncStatus.IDLE, "Replaced local data with cloud copy")
                return LoginOutcome.REPLACED

            if remote.settings:
                await self.store.update_settings(remote.settings, notify=False)
            self._set_status(SyncStatus.IDLE, "Cloud settings applied")
            return LoginOutcome.SETTINGS_APPLIED
        except Exception as exc:
            if self.state.get_state().sync_status != SyncStatus.ERROR:
                self._record_failure("Login sync", normalize_error(exc, "Login sync"))
            return LoginOutcome.FAILED

    async def sync_now(
        self,
        token: Optional[str] = None,
        provider: Optional[ProviderId | str] = None,
    ) -> bool:
        """Manual sync: download, merge into the store, upload the result.

        Returns:
            bool: True on success. Failures are reported via the state
            container, never raised.
        """
        token, provider = self._credentials(token, provider)
        if not token or provider is None:
            self._set_status(SyncStatus.IDLE, "Not signed in")
            return False

        try:
            await self.pull(token, provider)
            await self.upload(None, token, provider)
            return True
        except Exception as exc:
            if self.state.get_state().sync_status != SyncStatus.ERROR:
                self._record_failure("Sync", normalize_error(exc, "Sync"))
            return False

    # ------------------------------------------------------------------
    # Debounced background upload
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Subscribe to the store's mutation journal."""
        if self._unsubscribe is None and self.store.journal is not None:
            self._unsubscribe = self.store.journal.subscribe(self._on_mutation)

    def _on_mutation(self, event: MutationEvent) -> None:
        logger.debug("Mutation %s %s/%s", event.op.value, event.collection, event.record_id)
        self.schedule_upload()

    def schedule_upload(self) -> None:
        """(Re)start the quiet-period timer for a background upload.

        A call during the quiet period restarts it. Once the timer has fired
        the upload runs to completion; later calls start a new cycle.
        """
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._debounced_upload())

    async def _debounced_upload(self) -> None:
        await asyncio.sleep(self.config.debounce_ms / 1000)
        # Past the quiet period: detach so new mutations start a new cycle
        self._timer = None
        task = asyncio.current_task()
        if task is not None:
            self._inflight.add(task)
        try:
            await self._background_upload()
        finally:
            if task is not None:
                self._inflight.discard(task)

    async def _background_upload(self) -> None:
        token, provider = self._credentials(None, None)
        if not token or provider is None:
            logger.debug("Not signed in, background upload skipped")
            return
        try:
            await self.upload(None, token, provider)
        except TaskAssistError as exc:
            # upload() already published the error status
            logger.debug("Background upload abandoned: %s", exc)
        except Exception as exc:
            self._record_failure("Upload", normalize_error(exc, "Upload"))

    async def flush(self) -> None:
        """Run a pending debounced upload now and wait for in-flight ones."""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
            self._timer = None
            await self._background_upload()
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    async def close(self) -> None:
        """Stop listening, drop pending timers, wait for in-flight uploads."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)


def build_engine(
    home: Path,
    state: Optional[AppStateContainer] = None,
    auth: Optional[AuthSource] = None,
    **kwargs: Any,
) -> SyncEngine:
    """Wire store, journal and engine for ``home`` in one call.

    Args:
        home: App home directory.
        state: UI state container (a new one if omitted).
        auth: Token/provider source.
        **kwargs: Passed to ``SyncEngine``.

    Returns:
        SyncEngine: Started (subscribed to the journal).
    """
    store = EntityStore(home, journal=MutationJournal())
    engine = SyncEngine(store, state=state, auth=auth, **kwargs)
    store.backup_limit = engine.config.backup_limit
    engine.start()
    return engine
