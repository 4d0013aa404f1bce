"""
TaskAssist CLI -- tasks, sync, backups from the command line.

Each command group lives in its own module and is registered on the main
Click group via its register function.

Entry point: taskassist.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="taskassist")
@click.option("--verbose", "-v", is_flag=True, help="Log to stderr.")
def main(verbose: bool):
    """TaskAssist -- offline-first tasks with cloud sync."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .task_cmd import register_task_commands
from .sync_cmd import register_sync_commands
from .backup import register_backup_commands
from .export_cmd import register_export_commands
from .auth_cmd import register_auth_commands

register_task_commands(main)
register_sync_commands(main)
register_backup_commands(main)
register_export_commands(main)
register_auth_commands(main)
