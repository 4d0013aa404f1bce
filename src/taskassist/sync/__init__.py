"""
Cloud Sync -- one snapshot blob per account, last-updated-wins merge.

Every upload backs up locally first. Encryption is opt-in: set the
``encryptionPassword`` setting and the blob travels as AES-256-GCM.

Backends: Google Drive (appDataFolder), GitHub Gist (private).
Accounts on other providers stay local-only.
"""

from .engine import LoginOutcome, SyncEngine, build_engine
from .merge import merge, merge_async

__all__ = ["LoginOutcome", "SyncEngine", "build_engine", "merge", "merge_async"]
