"""
MODULE OVERVIEW:
The Notification Delivery Coordinator and the typed REST wrappers it uses.

WHAT IS HAPPENING HERE:
Two sources feed one view. At start we fetch a REST snapshot (latest + unread); after
that the live stream pushes new notifications. The two overlap: an event created a moment
before the snapshot can arrive again over the stream. `seen_ids` catches exactly that, so
each id bumps the unread badge at most once.

The view the rest of the app reads:
  - `latest`        newest-first, bounded (deque(maxlen=capacity) + appendleft)
  - `unread_count`  never negative
  - `seen_ids`      only grows, until `reset()` (logout)
"""
import asyncio
import inspect
from collections import deque
from typing import Any, Awaitable, Callable, Iterable, List, Sequence
from urllib.parse import quote

from loguru import logger
from pydantic import ValidationError

from admin_console.client.api_client import ApiClient
from admin_console.client.signals import NotificationSignal
from admin_console.client.subscriber import EventStreamSubscriber, SubscriptionHandle
from admin_console.shared.config import settings
from admin_console.shared.errors import ApiError, SessionExpiredError
from admin_console.shared.models import NotificationEvent, NotificationsPage, SubscriptionState, UnreadSnapshot


class NotificationsApi:
    def __init__(self, api: ApiClient, base_path: str = settings.NOTIFICATIONS_PATH):
        self.api = api
        self.base_path = base_path.rstrip("/")

    async def fetch_unread(self, limit: int = settings.LATEST_SNAPSHOT_LIMIT) -> UnreadSnapshot:
        data = await self.api.get(f"{self.base_path}/unread", params={"limit": limit})
        return UnreadSnapshot.model_validate(data)

    async def fetch_latest(self, limit: int = settings.LATEST_SNAPSHOT_LIMIT) -> List[NotificationEvent]:
        page = await self.fetch_page(1, limit)
        return page.items

    async def fetch_page(self, page: int = 1, limit: int = settings.PAGE_LIMIT, q: str | None = None) -> NotificationsPage:
        params: dict[str, Any] = {"page": page, "limit": limit}
        if q:
            params["q"] = q
        data = await self.api.get(self.base_path, params=params)
        return NotificationsPage.model_validate(data or {})

    async def mark_read(self, notification_id: str) -> Any:
        if not notification_id:
            raise ValueError("notification_id_required")
        return await self.api.post(f"{self.base_path}/{quote(str(notification_id), safe='')}/read")

    async def mark_all_read(self) -> Any:
        return await self.api.post(f"{self.base_path}/read-all")

    async def create(
        self,
        title: str,
        body: str | None = None,
        *,
        user_id: str | None = None,
        role_id: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Any:
        payload = {"title": title, "body": body, "user_id": user_id, "role_id": role_id, "metadata": metadata}
        return await self.api.post(self.base_path, json={k: v for k, v in payload.items() if v is not None})


class NotificationCenter:
    def __init__(
        self,
        api: NotificationsApi,
        subscriber: EventStreamSubscriber,
        *,
        topics: Sequence[str] = tuple(settings.EVENT_TOPICS),
        capacity: int = settings.LATEST_CAPACITY,
        snapshot_limit: int = settings.LATEST_SNAPSHOT_LIMIT,
        signals: Iterable[NotificationSignal] = (),
    ):
        self.api = api
        self.subscriber = subscriber
        self.topics = list(topics)
        self.snapshot_limit = snapshot_limit
        self.signals = list(signals)

        self._latest: deque[NotificationEvent] = deque(maxlen=capacity)
        self._seen_ids: set[str] = set()
        self._unread_count = 0
        self.duplicates_dropped = 0

        self.handle: SubscriptionHandle | None = None
        self._listeners: List[Callable[[], Any]] = []
        self._listener_tasks: set[asyncio.Future] = set()

    # ==========================
    # READ-ONLY VIEW
    # ==========================
    @property
    def unread_count(self) -> int:
        return self._unread_count

    @property
    def latest(self) -> List[NotificationEvent]:
        return list(self._latest)

    @property
    def seen_ids(self) -> frozenset[str]:
        return frozenset(self._seen_ids)

    @property
    def subscribe_ready(self) -> bool:
        return self.handle is not None and self.handle.state == SubscriptionState.CONNECTED

    def add_listener(self, listener: Callable[[], Any]) -> None:
        self._listeners.append(listener)

    def _changed(self) -> None:
        for listener in self._listeners:
            try:
                result = listener()
            except Exception as e:
                logger.error(f"Error in notification listener: {e}")
                continue
            if inspect.isawaitable(result):
                self._schedule_listener(result)

    def _schedule_listener(self, awaitable: Awaitable[Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Sync caller with no loop (e.g. reset() during shutdown): nothing can run it.
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.warning("notifications=listener_skipped reason=no_running_loop")
            return
        task = asyncio.ensure_future(awaitable, loop=loop)
        self._listener_tasks.add(task)
        task.add_done_callback(self._listener_done)

    def _listener_done(self, task: asyncio.Future) -> None:
        self._listener_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Error in notification listener: {error}")

    # ==========================
    # LIFECYCLE (mount / unmount)
    # ==========================
    async def initialize(self) -> None:
        try:
            latest = await self.api.fetch_latest(self.snapshot_limit)
        except SessionExpiredError:
            raise
        except (ApiError, ValidationError) as e:
            logger.warning(f"notifications=snapshot kind=latest reason='{e}'")
            latest = []
        self._latest.clear()
        for event in latest[: self._latest.maxlen]:
            self._latest.append(event)
            self._seen_ids.add(event.id)

        try:
            unread = await self.api.fetch_unread(self.snapshot_limit)
        except SessionExpiredError:
            raise
        except (ApiError, ValidationError) as e:
            logger.warning(f"notifications=snapshot kind=unread reason='{e}'")
            unread = None
        if unread is None:
            self._unread_count = 0
        else:
            self._unread_count = unread.total if unread.total is not None else len(unread.items)
            self._seen_ids.update(event.id for event in unread.items)
        self._changed()

    async def start(self) -> SubscriptionHandle:
        await self.initialize()
        self.handle = self.subscriber.connect(self.topics, on_error=self._on_stream_error)
        self.handle.on("notification", self.handle_notification)
        return self.handle

    async def stop(self) -> None:
        if self.handle is not None:
            self.subscriber.close(self.handle)
            await self.handle.wait_closed()
        if self._listener_tasks:
            await asyncio.gather(*self._listener_tasks, return_exceptions=True)

    async def __aenter__(self) -> "NotificationCenter":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    def reset(self) -> None:
        """Forget everything. Used on logout."""
        self._latest.clear()
        self._seen_ids.clear()
        self._unread_count = 0
        self.duplicates_dropped = 0
        self._changed()

    def _on_stream_error(self, error: BaseException) -> None:
        logger.debug(f"notifications=stream_error error='{error}'")

    # ==========================
    # PUSHED EVENTS
    # ==========================
    def handle_notification(self, payload: Any) -> bool:
        """Apply one pushed notification. Returns False when it was dropped."""
        try:
            event = payload if isinstance(payload, NotificationEvent) else NotificationEvent.model_validate(payload)
        except ValidationError:
            logger.debug("notifications=dropped reason=invalid_payload")
            return False

        if event.id in self._seen_ids:
            self.duplicates_dropped += 1
            return False

        self._seen_ids.add(event.id)
        self._latest.appendleft(event)
        self._unread_count += 1
        self._signal(event)
        self._changed()
        return True

    def _signal(self, event: NotificationEvent) -> None:
        for signal in self.signals:
            try:
                signal.notify(event)
            except Exception as e:
                logger.debug(f"notifications=signal_failed signal={type(signal).__name__} error='{e}'")

    # ==========================
    # IMPERATIVE OPERATIONS
    # ==========================
    async def fetch_page(self, page: int, limit: int = settings.PAGE_LIMIT, q: str | None = None) -> NotificationsPage:
        return await self.api.fetch_page(page, limit, q)

    async def mark_read(self, notification_id: str) -> bool:
        if not notification_id:
            return False
        try:
            await self.api.mark_read(notification_id)
        except SessionExpiredError:
            raise
        except ApiError as e:
            logger.debug(f"notifications=mark_read id={notification_id} reason='{e}'")
            return False
        self._unread_count = max(0, self._unread_count - 1)
        self._seen_ids.add(str(notification_id))
        self._changed()
        return True

    async def mark_all_read(self) -> bool:
        """Zero the badge whatever the server says; returns whether the server agreed."""
        try:
            await self.api.mark_all_read()
            return True
        except SessionExpiredError:
            raise
        except ApiError as e:
            logger.debug(f"notifications=mark_all_read reason='{e}'")
            return False
        finally:
            self._unread_count = 0
            self._changed()
