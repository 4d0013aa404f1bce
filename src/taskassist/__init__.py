"""
TaskAssist — offline-first task, note and calendar state with cloud sync.

Local state lives in an on-device entity store. The sync core reconciles it
with a single remote blob (Google Drive app data or a private GitHub gist),
optionally encrypted with a passphrase before it leaves the machine.
"""

import os

__version__ = "0.1.0"
__author__ = "TaskAssist"

APP_HOME = os.environ.get("TASKASSIST_HOME", "~/.taskassist")
