from abc import ABC, abstractmethod
from typing import AsyncIterator, Callable, Sequence

from admin_console.shared.models import StreamFrame

HeadersFactory = Callable[[], dict[str, str]]


class EventTransport(ABC):
    """A way of holding a server-push connection open.

    The subscriber only cares that `open()` yields frames until the connection drops.
    A clean end of iteration counts as a drop; the subscriber reconnects either way.
    """
    protocol_name: str = "unknown"

    def __init__(self, server_base_url: str, events_path: str, auth_headers: HeadersFactory | None = None):
        self.server_base_url = server_base_url.rstrip('/')
        self.events_path = events_path
        self.auth_headers = auth_headers or (lambda: {})

    @property
    def url(self) -> str:
        return f"{self.server_base_url}{self.events_path}"

    @abstractmethod
    def open(self, topics: Sequence[str]) -> AsyncIterator[StreamFrame]:
        """Connect and yield frames. Raise on failure."""

    async def aclose(self) -> None:
        pass
