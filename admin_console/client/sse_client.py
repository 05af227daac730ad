"""
MODULE OVERVIEW:
The Server-Sent Events transport.

WHAT IS HAPPENING HERE:
We use HTTPX `stream()` context manager to keep the body open, and parse the raw
`event:` / `data:` / `id:` text protocol ourselves, which is exactly what the browser
EventSource does under the hood. Unlike EventSource we do NOT reconnect here: the
subscriber owns reconnect and backoff, so this class just yields frames until the
stream ends or fails.
"""
from typing import AsyncIterator, Sequence

import httpx

from admin_console.client.base_client import EventTransport, HeadersFactory
from admin_console.shared.errors import StreamAuthError
from admin_console.shared.models import StreamFrame


def parse_sse_block(block: str) -> StreamFrame | None:
    """Turn one blank-line separated SSE block into a frame. Comment-only blocks give None."""
    event_type = "message"
    event_id = None
    data_lines = []

    for line in block.split("\n"):
        if not line or line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event_type = value.strip() or "message"
        elif field == "data":
            data_lines.append(value)
        elif field == "id":
            event_id = value

    if not data_lines:
        return None
    return StreamFrame(event=event_type, data="\n".join(data_lines), id=event_id)


class SSETransport(EventTransport):
    protocol_name: str = "sse"

    def __init__(
        self,
        server_base_url: str,
        events_path: str,
        auth_headers: HeadersFactory | None = None,
        client: httpx.AsyncClient | None = None,
        read_timeout_s: float = 90.0,
    ):
        super().__init__(server_base_url, events_path, auth_headers)
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(10.0, read=read_timeout_s))

    async def aclose(self) -> None:
        await self.client.aclose()

    async def open(self, topics: Sequence[str]) -> AsyncIterator[StreamFrame]:
        params = {"topics": ",".join(topics)} if topics else None
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache", **self.auth_headers()}

        async with self.client.stream("GET", self.url, params=params, headers=headers) as response:
            if response.status_code in (401, 403):
                raise StreamAuthError(f"event stream rejected credential status={response.status_code}")
            response.raise_for_status()

            buffer = ""
            async for chunk in response.aiter_text():
                buffer += chunk.replace("\r\n", "\n")
                while "\n\n" in buffer:
                    block, buffer = buffer.split("\n\n", 1)
                    frame = parse_sse_block(block)
                    if frame is not None:
                        yield frame
