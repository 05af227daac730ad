"""
MODULE OVERVIEW:
Named-channel dispatch for frames coming off the event stream.

WHAT IS HAPPENING HERE:
The server multiplexes several logical channels (`connected`, `notification`, `ping`,
`order`, ...) over one connection. Consumers register a handler per channel name; frames
for names nobody registered are dropped silently, so the server can add channels without
breaking older clients. A failing handler is logged and never takes the stream down.
"""
import inspect
import json
from typing import Any, Awaitable, Callable, Dict, List

from loguru import logger

from .models import StreamFrame

Handler = Callable[[Any], Awaitable[None] | None]


class EventDispatcher:
    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = {}

    def on(self, event_name: str, handler: Handler) -> None:
        self._handlers.setdefault(event_name, []).append(handler)

    def off(self, event_name: str, handler: Handler) -> None:
        handlers = self._handlers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    def has_handlers(self, event_name: str) -> bool:
        return bool(self._handlers.get(event_name))

    async def dispatch(self, frame: StreamFrame) -> bool:
        """Decode `frame.data` and hand it to every handler for `frame.event`.

        Returns False when the frame was ignored (unknown channel or malformed payload).
        """
        handlers = list(self._handlers.get(frame.event, []))
        if not handlers:
            return False
        try:
            payload = json.loads(frame.data) if frame.data else None
        except json.JSONDecodeError:
            logger.debug(f"event={frame.event} reason=malformed_payload")
            return False

        for handler in handlers:
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error in handler for event={frame.event}: {e}")
        return True
