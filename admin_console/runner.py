"""
CLI entrypoint for the admin console network core.
"""
import asyncio
import sys

import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from admin_console.client.api_client import ApiClient
from admin_console.client.auth import AuthSession
from admin_console.client.base_client import EventTransport
from admin_console.client.credentials import file_backed_store
from admin_console.client.notifications import NotificationCenter, NotificationsApi
from admin_console.client.signals import ConsoleToast, TerminalBell
from admin_console.client.sse_client import SSETransport
from admin_console.client.subscriber import EventStreamSubscriber
from admin_console.client.visualizer import Visualizer
from admin_console.client.websocket_client import WebSocketTransport
from admin_console.shared.client_utils import BackoffPolicy
from admin_console.shared.config import settings
from admin_console.shared.errors import ApiError, AuthError

app = typer.Typer(help="Admin console: authenticated API access and the live notification bell")
console = Console()


def _configure_logging() -> None:
    logger.remove()
    logger.add(sys.stderr, level=settings.LOG_LEVEL.upper())


def _redirect_to_sign_in(sign_in_url: str) -> None:
    console.print(f"[yellow]Session expired. Sign in again with `admin-console login` ({sign_in_url}).[/]")


def build_api() -> ApiClient:
    return ApiClient(file_backed_store(), settings.API_BASE_URL, redirect_to_sign_in=_redirect_to_sign_in)


def build_transport(api: ApiClient, protocol: str) -> EventTransport:
    if protocol == "sse":
        return SSETransport(
            api.base_url, settings.EVENTS_PATH, api.auth_headers, read_timeout_s=settings.STREAM_READ_TIMEOUT_S
        )
    if protocol == "websocket":
        return WebSocketTransport(api.base_url, settings.EVENTS_PATH, api.auth_headers)
    raise typer.BadParameter(f"Unknown transport: {protocol} (expected sse or websocket)")


def _run(coro):
    _configure_logging()
    try:
        return asyncio.run(coro)
    except AuthError as e:
        console.print(f"[red]{escape(str(e))}[/]")
        raise typer.Exit(1)
    except ApiError as e:
        console.print(f"[red]{escape(e.message)}[/]")
        raise typer.Exit(1)


@app.command()
def login(
    email: str = typer.Option(..., prompt=True, help="Admin account email"),
    password: str = typer.Option(..., prompt=True, hide_input=True, help="Admin account password"),
):
    """Sign in and store the access credential."""
    async def _login():
        async with build_api() as api:
            user = await AuthSession(api).login(email, password)
            console.print(f"[green]Signed in as {user.full_name or user.email}[/]")

    _run(_login())


@app.command()
def logout():
    """Sign out and forget the stored credential."""
    async def _logout():
        async with build_api() as api:
            await AuthSession(api).logout()

    _run(_logout())


@app.command()
def whoami():
    """Validate the stored credential and show the signed-in admin."""
    async def _whoami():
        async with build_api() as api:
            user = await AuthSession(api).restore()
            if user is None:
                console.print("Not signed in.")
                raise typer.Exit(1)
            console.print(f"{user.full_name or '-'} <{user.email}> (id={user.id})")

    _run(_whoami())


@app.command()
def notifications(
    page: int = typer.Option(1, help="Page number"),
    limit: int = typer.Option(settings.PAGE_LIMIT, help="Items per page"),
    q: str = typer.Option(None, help="Search text"),
):
    """List notifications, one page at a time."""
    async def _list():
        async with build_api() as api:
            result = await NotificationsApi(api).fetch_page(page, limit, q)

        table = Table(title=f"Notifications (page {result.page}/{result.pages}, {result.total} total)")
        table.add_column("Id", style="blue")
        table.add_column("Created", style="cyan")
        table.add_column("Title", style="magenta")
        table.add_column("Body", style="green")
        for n in result.items:
            table.add_row(n.id, n.created_at.isoformat() if n.created_at else "-", escape(n.title), escape(n.body or ""))
        console.print(table)

    _run(_list())


@app.command("mark-read")
def mark_read(notification_id: str = typer.Argument(..., help="Notification id")):
    """Mark one notification as read."""
    async def _mark():
        async with build_api() as api:
            await NotificationsApi(api).mark_read(notification_id)
        console.print(f"Marked {notification_id} as read.")

    _run(_mark())


@app.command("mark-all-read")
def mark_all_read():
    """Mark every notification as read."""
    async def _mark_all():
        async with build_api() as api:
            await NotificationsApi(api).mark_all_read()
        console.print("All notifications marked as read.")

    _run(_mark_all())


@app.command()
def watch(
    transport: str = typer.Option(settings.EVENTS_TRANSPORT, help="Event transport: sse or websocket"),
    duration: float = typer.Option(3600.0, help="How long to keep the bell open, in seconds"),
    mute: bool = typer.Option(not settings.NOTIFY_SOUND, "--mute", help="Do not ring the terminal bell"),
):
    """Open the live notification bell dashboard."""
    async def _watch():
        async with build_api() as api:
            event_transport = build_transport(api, transport)
            subscriber = EventStreamSubscriber(
                event_transport,
                BackoffPolicy.from_settings(),
                on_unauthorized=api.renew_credential,
            )
            center = NotificationCenter(
                NotificationsApi(api),
                subscriber,
                signals=[TerminalBell(console, muted=mute), ConsoleToast(console)],
            )
            try:
                await Visualizer(center, transport, console).run(duration)
            finally:
                await event_transport.aclose()

    try:
        _run(_watch())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    app()
