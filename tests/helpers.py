"""Shared fakes for the test-suite: an HTTP router for httpx.MockTransport and a scripted event transport."""

import asyncio
import inspect
import json

import httpx

from admin_console.client.base_client import EventTransport
from admin_console.shared.models import StreamFrame

BASE = "http://api.test/api"

# Placed at the end of a transport script: keep the connection open until cancelled.
HOLD = object()


class Router:
    """Routes requests by (method, path) and remembers every request it saw."""

    def __init__(self):
        self.routes = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, handler):
        if isinstance(handler, httpx.Response):
            response = handler
            handler = lambda request: response
        self.routes[(method, path)] = handler

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"error": "not found"})
        result = handler(request)
        if inspect.isawaitable(result):
            result = await result
        return result


def frame(event: str, payload) -> StreamFrame:
    return StreamFrame(event=event, data=json.dumps(payload))


class ScriptedTransport(EventTransport):
    """Each `open()` consumes one script entry: an exception to raise, or a list of frames.

    An exception inside a frame list is raised mid-stream, after the frames before it.

    A frame list ending in HOLD keeps the connection open; otherwise the stream ends
    cleanly after the last frame. Once the scripts run out, connections are held open.
    """
    protocol_name = "scripted"

    def __init__(self, *scripts):
        super().__init__(BASE, "/events/sse")
        self.scripts = list(scripts)
        self.opens = 0
        self.topics_seen = []
        self.streams_closed = 0

    async def open(self, topics):
        self.opens += 1
        self.topics_seen.append(list(topics))
        script = self.scripts.pop(0) if self.scripts else [HOLD]
        if isinstance(script, BaseException):
            raise script
        try:
            for item in script:
                if item is HOLD:
                    await asyncio.Event().wait()
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            self.streams_closed += 1


async def eventually(predicate, timeout: float = 2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)
