"""
MODULE OVERVIEW:
The Event Stream Subscriber: one persistent server-push connection per handle, kept alive
across transient failures.

WHAT IS HAPPENING HERE:
Each handle runs one background task:

    DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED (error / drop) -> sleep(backoff) -> CONNECTING ...

The server's `connected` event is what puts a handle into CONNECTED and resets the backoff
to the floor. On a failure the handle waits its current backoff, then grows it for next
time: min(backoff * growth, ceiling). With the defaults that is 1000 -> 1800 -> 3240 ms ...

`close()` is the only cancellation point. It cancels the task, which interrupts a pending
backoff sleep, so a reconnect can never fire after teardown (e.g. the dashboard is gone).
"""
import asyncio
import itertools
from contextlib import aclosing
from typing import Any, Awaitable, Callable, Sequence

import httpx
import websockets
from loguru import logger
from pydantic import ValidationError

from admin_console.client.base_client import EventTransport
from admin_console.shared.client_utils import BackoffPolicy, make_subscription_stats, utcnow_iso
from admin_console.shared.errors import StreamAuthError, StreamError
from admin_console.shared.events import EventDispatcher, Handler
from admin_console.shared.models import ConnectedEvent, StreamFrame, SubscriptionState

ErrorCallback = Callable[[BaseException], None]
StateCallback = Callable[[SubscriptionState], None]
UnauthorizedHook = Callable[[], Awaitable[str | None]]

RECONNECTABLE_ERRORS = (ConnectionError, OSError, StreamError, httpx.HTTPError, websockets.WebSocketException)

_handle_ids = itertools.count(1)


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class SubscriptionHandle:
    def __init__(self, topics: Sequence[str], policy: BackoffPolicy, on_error: ErrorCallback | None = None):
        self.id = next(_handle_ids)
        self.topics = list(topics)
        self.policy = policy
        self.backoff_ms = policy.floor_ms
        self.state = SubscriptionState.DISCONNECTED
        self.dispatcher = EventDispatcher()
        self.stats = make_subscription_stats()

        self.on_error = on_error
        self.on_state_change: StateCallback | None = None

        self._closed = False
        self._task: asyncio.Task | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def on(self, event_name: str, handler: Handler) -> "SubscriptionHandle":
        self.dispatcher.on(event_name, handler)
        return self

    def _set_state(self, state: SubscriptionState) -> None:
        if state == self.state:
            return
        self.state = state
        if self.on_state_change:
            try:
                self.on_state_change(state)
            except Exception as e:
                logger.error(f"Error in state change callback: {e}")

    def _report(self, error: BaseException) -> None:
        if self.on_error:
            try:
                self.on_error(error)
            except Exception as e:
                logger.error(f"Error in stream error callback: {e}")

    def close(self) -> None:
        """Tear the subscription down. Safe to call any number of times."""
        if self._closed:
            return
        self._closed = True
        if self._task is not None and not self._task.done() and self._task is not _current_task():
            self._task.cancel()
        self._set_state(SubscriptionState.DISCONNECTED)
        logger.info(f"subscription={self.id} event=closed reason=teardown")

    async def wait_closed(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)


class EventStreamSubscriber:
    def __init__(
        self,
        transport: EventTransport,
        policy: BackoffPolicy | None = None,
        on_unauthorized: UnauthorizedHook | None = None,
    ):
        self.transport = transport
        self.policy = policy or BackoffPolicy.from_settings()
        self.on_unauthorized = on_unauthorized

    def connect(
        self,
        topics: Sequence[str],
        on_event: Handler | None = None,
        on_error: ErrorCallback | None = None,
    ) -> SubscriptionHandle:
        """Start a subscription in the background and return its handle.

        `on_event` receives unnamed (`message`) frames; register named channels with
        `handle.on(name, handler)` before the next await.
        """
        handle = SubscriptionHandle(topics, self.policy, on_error)
        handle.on("connected", lambda payload: self._mark_connected(handle, payload))
        if on_event is not None:
            handle.on("message", on_event)
        handle._task = asyncio.create_task(self._run(handle))
        return handle

    def close(self, handle: SubscriptionHandle) -> None:
        handle.close()

    def _mark_connected(self, handle: SubscriptionHandle, payload: Any) -> None:
        try:
            info = ConnectedEvent.model_validate(payload if isinstance(payload, dict) else {})
        except ValidationError:
            info = ConnectedEvent()
        handle.backoff_ms = self.policy.floor_ms
        handle.stats["connected_at"] = utcnow_iso()
        handle.stats["client_id"] = info.client_id
        handle._set_state(SubscriptionState.CONNECTED)
        logger.info(
            f"subscription={handle.id} protocol={self.transport.protocol_name} "
            f"event=connected client_id={info.client_id}"
        )

    async def _dispatch(self, handle: SubscriptionHandle, frame: StreamFrame) -> None:
        handle.stats["events_received"] += 1
        handle.stats["last_event_at"] = utcnow_iso()
        await handle.dispatcher.dispatch(frame)

    async def _run(self, handle: SubscriptionHandle) -> None:
        while not handle.closed:
            handle._set_state(SubscriptionState.CONNECTING)
            try:
                async with aclosing(self.transport.open(handle.topics)) as frames:
                    async for frame in frames:
                        await self._dispatch(handle, frame)
                        # A handler may have closed us; drop the connection now, not on the next frame.
                        if handle.closed:
                            return
                raise StreamError("event stream closed by server")
            except StreamAuthError as e:
                handle._report(e)
                if not await self._renew_credential(handle):
                    return
            except RECONNECTABLE_ERRORS as e:
                handle._report(e)
            except Exception as e:
                logger.error(f"subscription={handle.id} event=stream_failed error='{e!r}'")
                handle._report(e)

            if handle.closed:
                return
            handle._set_state(SubscriptionState.DISCONNECTED)
            delay_ms = handle.backoff_ms
            handle.backoff_ms = self.policy.next(delay_ms)
            handle.stats["reconnect_count"] += 1
            handle.stats["recent_delays_ms"].append(delay_ms)
            logger.warning(
                f"subscription={handle.id} protocol={self.transport.protocol_name} "
                f"event=reconnect_scheduled delay_ms={delay_ms}"
            )
            await asyncio.sleep(delay_ms / 1000.0)

    async def _renew_credential(self, handle: SubscriptionHandle) -> bool:
        """Ask for a fresh credential after the stream rejected ours. False means give up."""
        if self.on_unauthorized is None:
            return True
        try:
            token = await self.on_unauthorized()
        except Exception as e:
            logger.error(f"subscription={handle.id} event=renew_failed error='{e!r}'")
            return True
        if token is None:
            logger.warning(f"subscription={handle.id} event=closed reason=unauthorized")
            handle.close()
            return False
        return True
