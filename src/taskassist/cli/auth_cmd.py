"""Session and settings commands: auth set|clear|show, settings set|show."""

from __future__ import annotations

from pathlib import Path

import click
from rich.table import Table

from ._common import APP_HOME, console, run, session
from ..auth import SessionAuth
from ..sync.models import ProviderId

_SECRET_KEYS = {"encryptionPassword"}


def _mask(value: str) -> str:
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:4]}...{value[-4:]}"


def register_auth_commands(main: click.Group) -> None:
    """Register the auth and settings groups."""

    @main.group()
    def auth():
        """Account session -- the token sync uses.

        Tokens come from the provider's OAuth flow (or a GitHub personal
        access token with the gist scope).
        """

    @auth.command("set")
    @click.argument("token")
    @click.option(
        "--provider", "-p",
        type=click.Choice([p.value for p in ProviderId]),
        required=True,
    )
    @click.option("--home", default=APP_HOME, type=click.Path())
    def auth_set(token, provider, home):
        """Store a token for a provider."""
        SessionAuth(Path(home).expanduser()).set(token, provider)
        console.print(f"  [green]Signed in[/] with [cyan]{provider}[/]")

    @auth.command("clear")
    @click.option("--home", default=APP_HOME, type=click.Path())
    def auth_clear(home):
        """Forget the stored token. Local data is kept."""
        SessionAuth(Path(home).expanduser()).clear()
        console.print("  [green]Signed out[/]")

    @auth.command("show")
    @click.option("--home", default=APP_HOME, type=click.Path())
    def auth_show(home):
        """Show the current provider and a masked token."""
        session_auth = SessionAuth(Path(home).expanduser())
        token = session_auth.get_token()
        provider = session_auth.get_provider()
        if not token or provider is None:
            console.print("  [yellow]Not signed in[/]")
            return
        console.print(f"  Provider: [cyan]{provider.value}[/]")
        console.print(f"  Token: [dim]{_mask(token)}[/]")

    @main.group()
    def settings():
        """App settings (synced with the remote copy)."""

    @settings.command("set")
    @click.argument("key")
    @click.argument("value")
    @click.option("--home", default=APP_HOME, type=click.Path())
    def settings_set(key, value, home):
        """Set one setting, e.g. ``settings set encryptionPassword s3cret``."""

        async def _set():
            async with session(home) as engine:
                await engine.store.update_settings({key: value})

        run(_set())
        shown = _mask(value) if key in _SECRET_KEYS else value
        console.print(f"  [green]{key}[/] = {shown}")

    @settings.command("show")
    @click.option("--home", default=APP_HOME, type=click.Path())
    def settings_show(home):
        """List settings (secrets masked)."""

        async def _get():
            async with session(home, flush=False) as engine:
                return await engine.store.get_settings()

        values = run(_get())
        if not values:
            console.print("\n  [dim]No settings.[/]\n")
            return
        table = Table(title="Settings")
        table.add_column("Key", style="cyan")
        table.add_column("Value")
        for key, value in sorted(values.items()):
            text = str(value)
            table.add_row(key, _mask(text) if key in _SECRET_KEYS else text)
        console.print()
        console.print(table)
        console.print()
