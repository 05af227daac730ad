"""
MODULE OVERVIEW:
The Rich terminal notification bell.

WHAT IS HAPPENING HERE:
The NotificationCenter runs in the background; we redraw a Layout four times a second
from its read-only view (unread badge, latest buffer) and from the subscription handle
(state, backoff, reconnects). State transitions are captured through the handle's
`on_state_change` hook into a short timeline.
"""

import asyncio
from collections import deque
from datetime import datetime

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from admin_console.client.notifications import NotificationCenter
from admin_console.shared.models import SubscriptionState

STATE_COLORS = {
    SubscriptionState.CONNECTED: "green",
    SubscriptionState.CONNECTING: "yellow",
    SubscriptionState.DISCONNECTED: "red",
}


class Visualizer:
    def __init__(self, center: NotificationCenter, protocol_name: str, console: Console | None = None):
        self.center = center
        self.protocol_name = protocol_name
        self.console = console
        self.timeline = deque(maxlen=6)

    def on_state_change(self, state: SubscriptionState):
        ts = datetime.now().strftime("%H:%M:%S")
        self.timeline.appendleft(f"[{ts}] State: {state.value}")

    def generate_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="main")
        )
        layout["main"].split_row(
            Layout(name="left", ratio=2),
            Layout(name="right", ratio=1)
        )
        layout["right"].split_column(
            Layout(name="stats"),
            Layout(name="timeline")
        )

        handle = self.center.handle
        state = handle.state if handle else SubscriptionState.DISCONNECTED
        color = STATE_COLORS[state]
        layout["header"].update(Panel(
            f"[{color} bold]Transport: {self.protocol_name} | Stream: {state.value} | "
            f"Unread: {self.center.unread_count}[/]",
            style=color,
        ))

        table = Table(title="Latest Notifications", expand=True)
        table.add_column("Received", justify="left", style="cyan", no_wrap=True)
        table.add_column("Title", style="magenta")
        table.add_column("Body", style="green")
        table.add_column("Id", style="blue")

        for n in self.center.latest:
            created = n.created_at.strftime("%H:%M:%S") if n.created_at else "-"
            body = n.body or ""
            table.add_row(created, escape(n.title), escape(body[:40] + "..." if len(body) > 40 else body), n.id)

        layout["left"].update(Panel(table, title="Bell"))

        stats = handle.stats if handle else {}
        delays = ", ".join(str(d) for d in list(stats.get("recent_delays_ms", []))[-3:]) or "-"
        stats_text = (
            f"Events Received: {stats.get('events_received', 0)}\n"
            f"Duplicates Dropped: {self.center.duplicates_dropped}\n"
            f"Reconnects: {stats.get('reconnect_count', 0)}\n"
            f"Next Backoff: {handle.backoff_ms if handle else '-'} ms\n"
            f"Recent Delays: {delays}"
        )
        layout["stats"].update(Panel(stats_text, title="Connection Stats"))

        layout["timeline"].update(Panel("\n".join(self.timeline), title="Timeline"))

        return layout

    async def run(self, duration_s: float):
        handle = await self.center.start()
        handle.on_state_change = self.on_state_change
        self.on_state_change(handle.state)

        try:
            with Live(self.generate_layout(), console=self.console, refresh_per_second=4) as live:
                loop = asyncio.get_running_loop()
                deadline = loop.time() + duration_s
                while not handle.closed and loop.time() < deadline:
                    live.update(self.generate_layout())
                    await asyncio.sleep(0.25)
        finally:
            await self.center.stop()
