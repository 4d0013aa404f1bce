"""Backup commands: create, list, restore."""

from __future__ import annotations

import click
from rich.panel import Panel
from rich.table import Table

from ._common import APP_HOME, console, fail, fmt_ms, run, session


def register_backup_commands(main: click.Group) -> None:
    """Register the backup command group."""

    @main.group()
    def backup():
        """Local backups -- the last few snapshots, kept on this device.

        One is taken automatically before every upload. Older ones are
        evicted once the limit is reached.
        """

    @backup.command("create")
    @click.option("--home", default=APP_HOME, type=click.Path(), help="App home directory.")
    @click.option("--label", default="Manual Backup", help="Shown in backup list.")
    def backup_create(home: str, label: str):
        """Snapshot the current local state.

        Examples:

            taskassist backup create

            taskassist backup create --label "before cleanup"
        """

        async def _create():
            async with session(home, flush=False) as engine:
                snap = await engine.store.snapshot()
                return await engine.store.create_backup(snap, label)

        created = run(_create())
        console.print(Panel(
            f"[bold green]Backup created[/]\n"
            f"ID: {created.id}\n"
            f"Label: {created.label}\n"
            f"Records: {created.data.record_count()}",
            title="Backup Complete",
            border_style="green",
        ))

    @backup.command("list")
    @click.option("--home", default=APP_HOME, type=click.Path(), help="App home directory.")
    def backup_list(home: str):
        """List available backups, newest first."""

        async def _list():
            async with session(home, flush=False) as engine:
                return await engine.store.list_backups()

        backups = run(_list())
        if not backups:
            console.print("\n  [dim]No backups found.[/]\n")
            return

        table = Table(title=f"Backups ({len(backups)})", show_lines=True)
        table.add_column("ID", style="cyan")
        table.add_column("Label", style="bold")
        table.add_column("Created", style="dim")
        table.add_column("Records", justify="right")
        for b in backups:
            table.add_row(b.id, b.label, fmt_ms(b.timestamp), str(b.record_count))

        console.print()
        console.print(table)
        console.print()

    @backup.command("restore")
    @click.argument("backup_id")
    @click.option("--home", default=APP_HOME, type=click.Path(), help="App home directory.")
    @click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
    def backup_restore(backup_id: str, home: str, yes: bool):
        """Replace local records with a backup.

        Settings are left alone. The restored state is uploaded when
        signed in.

        Examples:

            taskassist backup restore 3f2a... --yes
        """
        if not yes:
            click.confirm("Replace all local data with this backup?", abort=True)

        async def _restore():
            async with session(home) as engine:
                found = await engine.store.restore_backup(backup_id)
                if found is None:
                    return None
                await engine.store.replace_collections(found.data, notify=True)
                return found

        restored = run(_restore())
        if restored is None:
            fail(f"Backup {backup_id} not found")
            return
        console.print(
            f"\n  [green]Restored[/] {restored.label} "
            f"[dim]({restored.data.record_count()} records)[/]\n"
        )
