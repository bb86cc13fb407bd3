"""
TimeWellSpent sync CLI
Commands: status, sync, devices, rename-device, login, callback, logout,
profile, friends, requests, add-friend, accept, decline, cancel, server
"""

import asyncio
import logging
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich import box

app = typer.Typer(
    name="timewellspent",
    help="TimeWellSpent: multi-device sync and friends",
    add_completion=False,
)
console = Console()

logging.getLogger("httpx").setLevel(logging.WARNING)


def _bootstrap():
    """Initialize DB before any command that needs it."""
    from timewellspent.storage.database import init_db
    init_db()


def _run(action):
    """Run `action(engine)` on the engine singleton and close its HTTP clients."""
    _bootstrap()
    from timewellspent.sync.engine import sync_engine

    async def main():
        try:
            return await action(sync_engine)
        finally:
            await sync_engine.aclose()

    return asyncio.run(main())


def _fail(message: str):
    console.print(f"[red]Error:[/] {message}")
    raise typer.Exit(1)


def _check(result: dict):
    if not result.get("ok"):
        _fail(result.get("error") or "unknown error")


def _social(call):
    """Run a friend-graph mutation, turning its errors into CLI failures."""
    from timewellspent.sync.errors import SyncError

    async def action(engine):
        try:
            return await call(engine.social)
        except SyncError as e:
            return e

    result = _run(action)
    if isinstance(result, Exception):
        _fail(str(result))
    return result


# ── status ────────────────────────────────────────────────────────────────────

@app.command()
def status():
    """Show sync configuration, account and last pass."""
    st = _run(lambda engine: engine.get_status())
    user = st["user"]["email"] or st["user"]["id"] if st["user"] else "[dim]signed out[/]"
    device = f"{st['device']['name']} ({st['device']['id'][:8]})" if st["device"] else "—"
    console.print(Panel(
        f"Configured  : {'[green]yes[/]' if st['configured'] else '[yellow]no[/]'}\n"
        f"Account     : {user}\n"
        f"Device      : [cyan]{device}[/]\n"
        f"Last sync   : {st['last_sync_at'] or '[dim]never[/]'}\n"
        f"Last error  : {'[red]' + st['last_error'] + '[/]' if st['last_error'] else '[dim]none[/]'}",
        title="Sync Status",
        border_style="blue",
    ))


# ── sync ──────────────────────────────────────────────────────────────────────

@app.command()
def sync():
    """Run one sync pass now."""
    result = _run(lambda engine: engine.sync_now())
    _check(result)

    table = Table(title="Sync pass", box=box.ROUNDED)
    table.add_column("Stream", style="cyan")
    table.add_column("Pushed", justify="right")
    table.add_column("Pulled", justify="right")
    table.add_column("Applied", justify="right")
    for stream, stats in result["streams"].items():
        table.add_row(stream, str(stats["pushed"]), str(stats["pulled"]), str(stats["applied"]))
    console.print(table)
    if result["housekeeping"].get("ran"):
        console.print("[dim]Housekeeping ran.[/]")


# ── devices ───────────────────────────────────────────────────────────────────

@app.command()
def devices():
    """List this account's devices."""
    rows = _run(lambda engine: engine.list_devices())
    if not rows:
        console.print("[dim]No devices (signed out or not configured).[/]")
        return

    table = Table(title="Devices", box=box.ROUNDED)
    table.add_column("ID", style="cyan", no_wrap=True, max_width=12)
    table.add_column("Name")
    table.add_column("Platform")
    table.add_column("Last seen", no_wrap=True)
    table.add_column("", justify="center")
    for d in rows:
        table.add_row(
            d["id"][:8],
            d["name"],
            d["platform"],
            d["last_seen_at"] or "—",
            "[green]this device[/]" if d["is_current"] else "",
        )
    console.print(table)


@app.command("rename-device")
def rename_device(name: str = typer.Argument(..., help="New display name")):
    """Rename this device."""
    _check(_run(lambda engine: engine.set_device_name(name)))
    console.print(f"[green]Device renamed[/] → {name.strip()}")


# ── account ───────────────────────────────────────────────────────────────────

@app.command()
def login(provider: str = typer.Option("github", "--provider", "-p", help="google | github")):
    """Start OAuth sign-in and print the URL to open."""
    result = _run(lambda engine: engine.sign_in(provider))
    _check(result)
    console.print(Panel(
        f"Open this URL in a browser:\n[cyan]{result['url']}[/]\n"
        f"[dim]Then run [bold]timewellspent callback <redirect-url>[/][/]",
        title="Sign in",
        border_style="green",
    ))


@app.command()
def callback(url: str = typer.Argument(..., help="Redirect URL carrying ?code=...")):
    """Finish sign-in with the provider's redirect URL."""
    result = _run(lambda engine: engine.handle_auth_callback(url))
    _check(result)
    console.print(f"[green]Signed in[/] as [cyan]{result['user_id']}[/]")


@app.command()
def logout():
    """Sign out of the remote account."""
    _check(_run(lambda engine: engine.sign_out()))
    console.print("[yellow]Signed out[/]")


# ── friends ───────────────────────────────────────────────────────────────────

@app.command()
def profile(
    handle: Optional[str] = typer.Option(None, "--handle"),
    name: Optional[str] = typer.Option(None, "--name"),
    color: Optional[str] = typer.Option(None, "--color"),
):
    """Show or update your public profile."""
    fields = {}
    if handle is not None:
        fields["handle"] = handle
    if name is not None:
        fields["display_name"] = name
    if color is not None:
        fields["color"] = color

    if fields:
        p = _social(lambda social: social.update_profile(**fields))
    else:
        p = _run(lambda engine: engine.social.get_profile())
    if p is None:
        _fail("Not signed in or sync not configured")
    console.print(Panel(
        f"Handle  : [cyan]{p['handle'] or '—'}[/]\n"
        f"Name    : {p['display_name'] or '—'}\n"
        f"Colour  : {p['color'] or '—'}",
        title="Profile",
        border_style="cyan",
    ))


@app.command()
def friends(window: int = typer.Option(24, "--window", "-w", help="Summary window in hours")):
    """List friends with their recent activity."""

    async def action(engine):
        return await engine.social.list_friends(), await engine.social.get_friend_summaries(window)

    rows, summaries = _run(action)
    if not rows:
        console.print("[dim]No friends yet.[/]")
        return

    table = Table(title=f"Friends (last {window}h)", box=box.ROUNDED)
    table.add_column("Handle", style="cyan")
    table.add_column("Name")
    table.add_column("Active", justify="right")
    table.add_column("Productive", justify="right")
    table.add_column("Friendship", style="dim", no_wrap=True, max_width=12)
    for f in rows:
        s = summaries.get(f["user_id"])
        table.add_row(
            f["handle"] or "—",
            f["display_name"] or "—",
            f"{s['total_active_seconds'] / 3600:.1f}h" if s else "—",
            f"{s['productivity_score']}%" if s else "—",
            f["id"][:8],
        )
    console.print(table)


@app.command()
def requests():
    """List pending friend requests."""
    result = _run(lambda engine: engine.social.list_requests())
    if not result["incoming"] and not result["outgoing"]:
        console.print("[dim]No pending requests.[/]")
        return

    table = Table(title="Friend requests", box=box.ROUNDED)
    table.add_column("ID", style="cyan")
    table.add_column("Direction")
    table.add_column("Handle")
    table.add_column("Sent", no_wrap=True)
    for r in result["incoming"] + result["outgoing"]:
        table.add_row(r["id"], r["direction"], r["handle"] or "—", r["created_at"] or "—")
    console.print(table)


@app.command("add-friend")
def add_friend(handle: str = typer.Argument(...)):
    """Send a friend request by handle."""
    _social(lambda social: social.request_friend(handle))
    console.print(f"[green]Request sent[/] → {handle}")


@app.command()
def accept(request_id: str = typer.Argument(...)):
    """Accept an incoming friend request."""
    _social(lambda social: social.accept_request(request_id))
    console.print("[green]Accepted[/]")


@app.command()
def decline(request_id: str = typer.Argument(...)):
    """Decline an incoming friend request."""
    _social(lambda social: social.decline_request(request_id))
    console.print("[yellow]Declined[/]")


@app.command()
def cancel(request_id: str = typer.Argument(...)):
    """Cancel a request you sent."""
    _social(lambda social: social.cancel_request(request_id))
    console.print("[yellow]Canceled[/]")


# ── server ────────────────────────────────────────────────────────────────────

@app.command()
def server(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
    reload: bool = typer.Option(False, "--reload"),
):
    """Start the sync API server."""
    import uvicorn
    console.print(f"[green]Starting TimeWellSpent API server[/] → http://{host}:{port}")
    uvicorn.run("timewellspent.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
