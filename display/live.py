"""Rich live display — one panel per mesh server, updating in real time.

The display layer is fully decoupled from the router. It subscribes to an
asyncio.Queue of Notifications and renders them into a live terminal
layout. The router runs whether or not a display is attached; the notifier
just puts notifications into the queue and never checks if anyone reads.

Usage:
    queue = asyncio.Queue()
    notifier.attach_queue(queue)
    feed = MeshFeed()

    with feed.make_live() as live:
        consumer = asyncio.create_task(feed.consume(queue, live))
        ...
        await queue.put(None)  # sentinel, tells consume() to stop
        await consumer
"""

import asyncio
from dataclasses import dataclass, field

from rich.columns import Columns
from rich.console import Group
from rich.live import Live
from rich.panel import Panel
from rich.text import Text

from schemas.events import Notification, NotificationName

MAX_MESSAGES = 4


# ── Per-server state ──────────────────────────────────────────────────────────

@dataclass
class _ServerState:
    """Mutable state for one server's panel.

    Updated by apply() each time a notification about that server arrives.
    """
    name: str
    status: str = "seen"    # seen | online | offline | error
    last_seen_ms: int = 0
    notifications: int = 0
    messages: list[str] = field(default_factory=list)


# ── Display ───────────────────────────────────────────────────────────────────

class MeshFeed:
    """Manages the Rich live layout and subscribes to the notification queue.

    Attributes:
        _states: Dict of server name → _ServerState, created on first sight.
        _order:  Server names in order of first appearance, so the
            panel layout stays stable as new servers dock.
    """

    def __init__(self) -> None:
        self._states: dict[str, _ServerState] = {}
        self._order: list[str] = []

    @property
    def servers(self) -> list[str]:
        return list(self._order)

    def state(self, server: str) -> _ServerState | None:
        return self._states.get(server)

    def make_live(self) -> Live:
        """Return a Rich Live context manager ready to use with `with`."""
        return Live(self._render(), refresh_per_second=8, transient=False)

    async def consume(self, queue: asyncio.Queue, live: Live) -> None:
        """Read notifications from the queue and update the display until sentinel.

        Args:
            queue: The asyncio.Queue attached to the Notifier.
            live:  The active Rich Live context to update on each notification.
        """
        while True:
            notification = await queue.get()
            if notification is None:
                break
            self.apply(notification)
            live.update(self._render())

    def apply(self, notification: Notification) -> None:
        """Update the sending server's state from one notification."""
        payload = notification.payload
        server = payload.get("server") or payload.get("serverId") or "unknown"

        state = self._states.get(server)
        if state is None:
            state = _ServerState(name=server)
            self._states[server] = state
            self._order.append(server)

        state.last_seen_ms = notification.timestamp_ms
        state.notifications += 1
        name = notification.name

        if name == NotificationName.SERVER_HEARTBEAT:
            state.status = "online"

        elif name == NotificationName.SERVER_SHUTDOWN:
            state.status = "offline"
            state.messages.append("✗ shutting down")

        elif name == NotificationName.ERROR_RECEIVED:
            state.status = "error"
            state.messages.append(f"✗ error: {payload.get('error')}")

        elif name in (NotificationName.PATTERN_CANDIDATE, NotificationName.LESSON_LEARNED):
            state.messages.append(f"! {name.value}: {payload.get('type')}")

        elif name == NotificationName.ASTROSENTRY_EVENT:
            state.messages.append(
                f"→ {payload.get('eventType')}:{payload.get('operation')} "
                f"{payload.get('outcome') or ''}".rstrip()
            )

        else:
            state.messages.append(f"→ {payload.get('type', name.value)}")

        # Keep only the last few lines so panels don't grow unbounded
        state.messages = state.messages[-MAX_MESSAGES:]

    # ── Private ───────────────────────────────────────────────────────────────

    def _render_panel(self, state: _ServerState) -> Panel:
        """Build a Rich Panel for one server from its current state."""
        icons = {
            "seen":    "[dim]○[/dim]",
            "online":  "[bold green]●[/bold green]",
            "offline": "[dim]◌[/dim]",
            "error":   "[bold red]✗[/bold red]",
        }
        border_styles = {
            "seen":    "dim",
            "online":  "green",
            "offline": "bright_black",
            "error":   "red",
        }

        icon = icons.get(state.status, "○")
        header = Text.from_markup(f"{icon}  [dim]{state.notifications} notifications[/dim]")

        lines: list[Text] = [header]
        for msg in state.messages:
            lines.append(Text(f"  {msg}", style="dim"))

        return Panel(
            Group(*lines),
            title=f"[bold]{state.name}[/bold]",
            border_style=border_styles.get(state.status, "dim"),
            width=48,
        )

    def _render(self) -> Group:
        """Build the full layout: panels arranged in rows of two."""
        if not self._order:
            return Group(Text("Waiting for mesh traffic...", style="dim"))
        panels = [self._render_panel(self._states[name]) for name in self._order]
        rows = []
        for i in range(0, len(panels), 2):
            rows.append(Columns(panels[i : i + 2], equal=True))
        return Group(*rows)
