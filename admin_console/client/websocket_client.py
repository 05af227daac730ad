"""
MODULE OVERVIEW:
The WebSocket transport.

WHAT IS HAPPENING HERE:
We use the `websockets` library. The server authenticates the socket through a `token`
query param (browsers cannot set headers on a WebSocket handshake), we announce our topics
with a subscribe message, and we answer application-level pings so the server does not
reap us as a zombie. Every other message is `{"event": name, "data": payload}` and becomes
the same StreamFrame the SSE transport produces.
"""
import json
from typing import AsyncIterator, Sequence
from urllib.parse import urlencode

import websockets

from admin_console.client.base_client import EventTransport
from admin_console.shared.errors import StreamAuthError
from admin_console.shared.models import StreamFrame

# Close codes the server uses to reject a handshake credential.
AUTH_CLOSE_CODES = {4001, 4003}


def ws_url_for(http_url: str) -> str:
    return http_url.replace('http://', 'ws://', 1).replace('https://', 'wss://', 1)


class WebSocketTransport(EventTransport):
    protocol_name: str = "websocket"

    def build_url(self, topics: Sequence[str]) -> str:
        query = {}
        if topics:
            query["topics"] = ",".join(topics)
        authorization = self.auth_headers().get("Authorization", "")
        if authorization.startswith("Bearer "):
            query["token"] = authorization[len("Bearer "):]
        url = ws_url_for(self.url)
        return f"{url}?{urlencode(query)}" if query else url

    async def open(self, topics: Sequence[str]) -> AsyncIterator[StreamFrame]:
        try:
            async with websockets.connect(self.build_url(topics), ping_interval=None) as ws:
                await ws.send(json.dumps({"action": "subscribe", "topics": list(topics)}))

                async for message in ws:
                    try:
                        data = json.loads(message)
                    except json.JSONDecodeError:
                        continue
                    if not isinstance(data, dict):
                        continue
                    if data.get("type") == "ping":
                        await ws.send(json.dumps({"type": "pong"}))
                        continue
                    yield StreamFrame(
                        event=data.get("event") or data.get("type") or "message",
                        data=json.dumps(data.get("data")),
                        id=None if data.get("id") is None else str(data["id"]),
                    )
        except websockets.ConnectionClosed as e:
            if e.rcvd is not None and e.rcvd.code in AUTH_CLOSE_CODES:
                raise StreamAuthError(f"event socket rejected credential code={e.rcvd.code}") from e
            raise
