"""Task commands: add, list, update, done, delete."""

from __future__ import annotations

from typing import Any, Optional

import click
from rich.table import Table

from ._common import APP_HOME, console, fail, fmt_ms, parse_date, run, session
from ..errors import NotFoundError
from ..models import Task
from ..store import EntityStore


async def _resolve_id(store: EntityStore, prefix: str) -> str:
    """Expand a unique id prefix (as shown by ``task list``)."""
    tasks = await store.tasks.get_all()
    matches = [t.id for t in tasks if t.id.startswith(prefix)]
    if prefix in matches:
        return prefix
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise NotFoundError("tasks", prefix)
    raise click.ClickException(f"Ambiguous id prefix {prefix!r} ({len(matches)} tasks)")


def register_task_commands(main: click.Group) -> None:
    """Register the task command group."""

    @main.group()
    def task():
        """Tasks -- add, list, change, complete, remove.

        Every change is saved locally first and uploaded in the
        background when signed in.
        """

    @task.command("add")
    @click.argument("title")
    @click.option("--home", default=APP_HOME, type=click.Path())
    @click.option("--description", "-d", default=None)
    @click.option("--tag", "tags", multiple=True, help="Repeatable.")
    @click.option("--status", default="", help="Board column id.")
    @click.option("--board", default=None, help="Board id.")
    @click.option("--deadline", default=None, help="YYYY-MM-DD")
    def task_add(home, title, description, tags, status, board, deadline):
        """Create a task."""
        new = Task(
            title=title,
            description=description,
            tags=list(tags),
            status=status,
            board_id=board,
            deadline=parse_date(deadline),
        )

        async def _add() -> Task:
            async with session(home) as engine:
                return await engine.store.tasks.add(new)

        created = run(_add())
        console.print(f"  [green]Added[/] [cyan]{created.id[:8]}[/] {created.title} [dim]({created.status})[/]")

    @task.command("list")
    @click.option("--home", default=APP_HOME, type=click.Path())
    @click.option("--all", "show_all", is_flag=True, help="Include completed tasks.")
    @click.option("--tag", default=None, help="Only tasks with this tag.")
    def task_list(home, show_all, tag):
        """List tasks, most recently changed first."""

        async def _list() -> list[Task]:
            async with session(home, flush=False) as engine:
                return await engine.store.tasks.get_all()

        tasks = run(_list())
        if not show_all:
            tasks = [t for t in tasks if not t.completed]
        if tag:
            tasks = [t for t in tasks if tag in t.tags]

        if not tasks:
            console.print("\n  [dim]No tasks.[/]\n")
            return

        table = Table(title=f"Tasks ({len(tasks)})", show_lines=False)
        table.add_column("ID", style="cyan")
        table.add_column("Title", style="bold")
        table.add_column("Status")
        table.add_column("Tags", style="dim")
        table.add_column("Updated", style="dim")
        for t in sorted(tasks, key=lambda t: t.updated_at, reverse=True):
            status = f"[green]{t.status}[/]" if t.completed else t.status
            table.add_row(t.id[:8], t.title, status, ", ".join(t.tags), fmt_ms(t.updated_at))

        console.print()
        console.print(table)
        console.print()

    @task.command("update")
    @click.argument("task_id")
    @click.option("--home", default=APP_HOME, type=click.Path())
    @click.option("--title", default=None)
    @click.option("--description", "-d", default=None)
    @click.option("--status", default=None)
    @click.option("--tag", "tags", multiple=True, help="Replaces all tags.")
    @click.option("--deadline", default=None, help="YYYY-MM-DD")
    def task_update(home, task_id, title, description, status, tags, deadline):
        """Change fields of a task."""
        changes: dict[str, Any] = {}
        if title is not None:
            changes["title"] = title
        if description is not None:
            changes["description"] = description
        if status is not None:
            changes["status"] = status
        if tags:
            changes["tags"] = list(tags)
        if deadline is not None:
            changes["deadline"] = parse_date(deadline)
        if not changes:
            fail("Nothing to update.")

        _apply(home, task_id, changes, "Updated")

    @task.command("done")
    @click.argument("task_id")
    @click.option("--home", default=APP_HOME, type=click.Path())
    def task_done(home, task_id):
        """Mark a task completed."""
        _apply(home, task_id, {"completed": True, "status": "done"}, "Completed")

    @task.command("delete")
    @click.argument("task_id")
    @click.option("--home", default=APP_HOME, type=click.Path())
    def task_delete(home, task_id):
        """Remove a task."""

        async def _delete() -> Optional[str]:
            async with session(home) as engine:
                try:
                    full_id = await _resolve_id(engine.store, task_id)
                except NotFoundError:
                    return None
                await engine.store.tasks.delete(full_id)
                return full_id

        deleted = run(_delete())
        if deleted is None:
            fail(f"No task {task_id}")
        console.print(f"  [green]Deleted[/] [cyan]{deleted[:8]}[/]")


def _apply(home: str, task_id: str, changes: dict[str, Any], verb: str) -> None:
    async def _update() -> Task:
        async with session(home) as engine:
            full_id = await _resolve_id(engine.store, task_id)
            return await engine.store.tasks.update(full_id, changes)

    try:
        updated = run(_update())
    except NotFoundError as exc:
        fail(str(exc))
        return
    console.print(f"  [green]{verb}[/] [cyan]{updated.id[:8]}[/] {updated.title} [dim]({updated.status})[/]")
