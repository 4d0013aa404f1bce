"""Sync commands: push, pull, now, login, status."""

from __future__ import annotations

import click
from rich.panel import Panel

from ._common import APP_HOME, console, fail, fmt_ms, require_session, run, session
from ..errors import TaskAssistError
from ..state import SyncStatus
from ..sync import LoginOutcome

_STATUS_STYLE = {
    SyncStatus.IDLE.value: "[bold green]IDLE[/]",
    SyncStatus.UPLOADING.value: "[bold cyan]UPLOADING[/]",
    SyncStatus.DOWNLOADING.value: "[bold cyan]DOWNLOADING[/]",
    SyncStatus.ERROR.value: "[bold red]ERROR[/]",
}


def register_sync_commands(main: click.Group) -> None:
    """Register the sync command group."""

    @main.group()
    def sync():
        """Cloud sync -- one snapshot per account.

        Local data is backed up before every upload. Set the
        encryptionPassword setting to encrypt the remote copy.
        """

    @sync.command("push")
    @click.option("--home", default=APP_HOME, type=click.Path())
    def sync_push(home):
        """Upload local state, overwriting the remote copy."""
        token, provider = require_session(home)

        async def _push() -> None:
            async with session(home, flush=False) as engine:
                await engine.upload(None, token, provider)

        console.print(f"\n  Uploading to [cyan]{provider.value}[/]...", end=" ")
        try:
            run(_push())
        except TaskAssistError as exc:
            console.print("[red]failed[/]")
            fail(str(exc))
        console.print("[green]done[/]\n")

    @sync.command("pull")
    @click.option("--home", default=APP_HOME, type=click.Path())
    def sync_pull(home):
        """Download the remote copy and merge it into local state."""
        token, provider = require_session(home)

        async def _pull():
            async with session(home, flush=False) as engine:
                return await engine.pull(token, provider)

        console.print(f"\n  Pulling from [cyan]{provider.value}[/]...", end=" ")
        try:
            merged = run(_pull())
        except TaskAssistError as exc:
            console.print("[red]failed[/]")
            fail(str(exc))
            return
        if merged is None:
            console.print("[yellow]no remote data[/]\n")
            return
        console.print(f"[green]merged[/] [dim]({merged.record_count()} records)[/]\n")

    @sync.command("now")
    @click.option("--home", default=APP_HOME, type=click.Path())
    def sync_now(home):
        """Pull, merge, then push."""
        require_session(home)

        async def _sync():
            async with session(home, flush=False) as engine:
                ok = await engine.sync_now()
                return ok, engine.state.get_state().status_message

        ok, message = run(_sync())
        if not ok:
            fail(message or "Sync failed")
        console.print(f"\n  [green]{message}[/]\n")

    @sync.command("login")
    @click.option("--home", default=APP_HOME, type=click.Path())
    def sync_login(home):
        """Reconcile with the cloud after signing in.

        A remote copy newer than the last local sync replaces local
        data (a backup is taken first). Otherwise only remote settings
        are applied.
        """
        require_session(home)

        async def _login():
            async with session(home, flush=False) as engine:
                outcome = await engine.initial_sync()
                return outcome, engine.state.get_state().status_message

        outcome, message = run(_login())
        if outcome == LoginOutcome.FAILED:
            fail(message or "Login sync failed")
        console.print(f"\n  [cyan]{outcome.value}[/] {message or ''}\n")

    @sync.command("status")
    @click.option("--home", default=APP_HOME, type=click.Path())
    def sync_status(home):
        """Show sync configuration and recent activity."""

        async def _status():
            async with session(home, flush=False) as engine:
                settings = await engine.store.get_settings()
                snap = await engine.store.snapshot()
                return engine.status(), engine.auth, settings, snap.last_synced

        status, auth, settings, last_synced = run(_status())
        state = status["state"]
        config = status["config"]
        provider = auth.get_provider() if auth is not None else None
        encrypted = bool(settings.get("encryptionPassword"))

        console.print()
        console.print(
            Panel(
                f"Provider: [cyan]{provider.value if provider else 'not signed in'}[/]\n"
                f"Status: {_STATUS_STYLE.get(status['status'], status['status'])}\n"
                f"Encryption: {'[green]on[/]' if encrypted else '[yellow]off[/]'}\n"
                f"Last Synced: {fmt_ms(last_synced)}\n"
                f"Last Upload: {state['last_upload'] or '[dim]never[/]'}\n"
                f"Last Download: {state['last_download'] or '[dim]never[/]'}\n"
                f"Uploads/Downloads: {state['upload_count']}/{state['download_count']}\n"
                f"Last Error: {state['last_error'] or '[dim]none[/]'}\n"
                f"Debounce: {config['debounce_ms']} ms",
                title="Cloud Sync",
                border_style="magenta",
            )
        )
        console.print()
