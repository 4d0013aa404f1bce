"""Export and import commands: export json, export csv, import."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click

from ._common import APP_HOME, console, fail, run, session
from ..errors import UnrecognizedFormatError
from ..export import export_filename, export_json, export_tasks_csv, import_snapshot, load_snapshot


def _write(output: Optional[str], kind: str, content: str) -> Path:
    path = Path(output).expanduser() if output else Path.cwd() / export_filename(kind)
    path.write_text(content, encoding="utf-8")
    return path


def register_export_commands(main: click.Group) -> None:
    """Register the export group and the import command."""

    @main.group()
    def export():
        """Export local data to a file (never encrypted)."""

    @export.command("json")
    @click.option("--home", default=APP_HOME, type=click.Path())
    @click.option("--output", "-o", default=None, type=click.Path(), help="Output file.")
    def export_json_cmd(home, output):
        """Full snapshot as JSON (importable)."""

        async def _snap():
            async with session(home, flush=False) as engine:
                return await engine.store.snapshot()

        snap = run(_snap())
        path = _write(output, "json", export_json(snap))
        console.print(f"  [green]Exported[/] {snap.record_count()} records to [cyan]{path}[/]")

    @export.command("csv")
    @click.option("--home", default=APP_HOME, type=click.Path())
    @click.option("--output", "-o", default=None, type=click.Path(), help="Output file.")
    def export_csv_cmd(home, output):
        """Tasks as CSV."""

        async def _tasks():
            async with session(home, flush=False) as engine:
                return await engine.store.tasks.get_all()

        tasks = run(_tasks())
        path = _write(output, "csv", export_tasks_csv(tasks))
        console.print(f"  [green]Exported[/] {len(tasks)} tasks to [cyan]{path}[/]")

    @main.command("import")
    @click.argument("file", type=click.Path(exists=True, dir_okay=False))
    @click.option("--home", default=APP_HOME, type=click.Path())
    @click.option("--replace", is_flag=True, help="Replace local data instead of merging.")
    def import_cmd(file, home, replace):
        """Load a JSON export into local state.

        By default records are merged (newer edit wins). With --replace
        every collection is swapped for the file's.
        """
        try:
            snap = load_snapshot(Path(file).read_text(encoding="utf-8"))
        except UnrecognizedFormatError as exc:
            fail(str(exc))
            return

        async def _import():
            async with session(home) as engine:
                return await import_snapshot(engine.store, snap, merge=not replace)

        result = run(_import())
        mode = "replaced" if replace else "merged"
        console.print(
            f"  [green]Imported[/] {snap.record_count()} records ({mode}); "
            f"{result.record_count()} now stored"
        )
