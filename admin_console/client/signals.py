"""
MODULE OVERVIEW:
User-facing signals for a freshly arrived notification: a sound and a toast.

WHAT IS HAPPENING HERE:
In the browser these are an <audio> element and a toast library, and both can fail
(autoplay blocked, nothing mounted). Here they are the terminal bell and a Rich panel.
The NotificationCenter calls them best-effort: whatever they raise is swallowed there,
so a signal can never corrupt the unread count or the dedup set.
"""
from datetime import datetime
from typing import Protocol

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from admin_console.shared.models import NotificationEvent


class NotificationSignal(Protocol):
    def notify(self, event: NotificationEvent) -> None: ...


class TerminalBell:
    def __init__(self, console: Console | None = None, muted: bool = False):
        self.console = console or Console(stderr=True)
        self.muted = muted

    def notify(self, event: NotificationEvent) -> None:
        if self.muted:
            return
        self.console.bell()


class ConsoleToast:
    def __init__(self, console: Console | None = None):
        self.console = console or Console(stderr=True)

    def notify(self, event: NotificationEvent) -> None:
        created = (event.created_at or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
        lines = [f"[bold]{escape(event.title)}[/]"]
        if event.body:
            body = event.body if len(event.body) <= 140 else event.body[:137] + "..."
            lines.append(escape(body))
        lines.append(f"[dim]{created}[/]")
        self.console.print(Panel("\n".join(lines), title="Notification", border_style="cyan", expand=False))
