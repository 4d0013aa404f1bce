"""
Sync data models -- configuration, persisted state, and transport results.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from ..models import Snapshot

BACKUP_FILE_NAME = "task_assistant_data.json"
GIST_DESCRIPTION = "TaskAssist Backup"


class ProviderId(str, Enum):
    """Account providers. Only some of them have a remote backend."""

    GOOGLE = "google"
    GITHUB = "github"
    YANDEX = "yandex"
    LOCAL = "local"


class SyncConfig(BaseModel):
    """Tunables for the sync engine, loaded from ``sync/config.yaml``."""

    debounce_ms: int = 2000
    login_threshold_ms: int = 60_000
    backup_limit: int = 5
    offload_threshold: int = Field(
        default=5000,
        description="Merge on a worker thread above this many records",
    )
    request_timeout: float = 30.0

    file_name: str = BACKUP_FILE_NAME
    gist_description: str = GIST_DESCRIPTION

    drive_api_url: str = "https://www.googleapis.com/drive/v3"
    drive_upload_url: str = "https://www.googleapis.com/upload/drive/v3"
    github_api_url: str = "https://api.github.com"


class SyncState(BaseModel):
    """Sync bookkeeping persisted to ``sync/state.json``."""

    last_upload: Optional[datetime] = None
    last_download: Optional[datetime] = None
    last_provider: Optional[str] = None
    upload_count: int = 0
    download_count: int = 0
    last_error: Optional[str] = None


class BlobHandle(BaseModel):
    """Where the remote blob lives, as returned by a backend's ``locate``.

    Attributes:
        blob_id: Provider id (Drive file id, gist id).
        updated_at: Remote modification time, ms since epoch.
        content: Inline content when the lookup already returned it.
        raw_url: URL of the full content when ``content`` is truncated.
        truncated: Whether ``content`` is incomplete.
    """

    blob_id: str
    updated_at: int = 0
    content: Optional[str] = None
    raw_url: Optional[str] = None
    truncated: bool = False


class DownloadResult(BaseModel):
    """Result of a download: the remote snapshot (or None) and its mtime."""

    data: Optional[Snapshot] = None
    updated_at: int = 0

    @property
    def found(self) -> bool:
        return self.data is not None
