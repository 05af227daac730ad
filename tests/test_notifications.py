"""Tests for the notification delivery coordinator and its REST wrappers."""

import asyncio
import json

import httpx
import pytest
from loguru import logger
from pydantic import ValidationError

from admin_console.client.notifications import NotificationCenter, NotificationsApi
from admin_console.client.subscriber import EventStreamSubscriber
from admin_console.shared.client_utils import BackoffPolicy
from admin_console.shared.errors import SessionExpiredError
from admin_console.shared.models import NotificationEvent, NotificationsPage
from helpers import HOLD, ScriptedTransport, eventually, frame

LIST = "/api/notifications"
UNREAD = "/api/notifications/unread"
READ_ALL = "/api/notifications/read-all"


def _note(id_, title="New order"):
    return {"id": id_, "title": title, "body": f"body of {id_}", "created_at": "2026-01-05T10:00:00Z"}


def _center(api, transport=None, **kwargs):
    subscriber = EventStreamSubscriber(transport or ScriptedTransport(), BackoffPolicy(floor_ms=10, ceiling_ms=60))
    return NotificationCenter(NotificationsApi(api), subscriber, **kwargs)


class RecordingSignal:
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event.id)


class BrokenSignal:
    def notify(self, event):
        raise RuntimeError("autoplay blocked")


# ==========================
# SNAPSHOT
# ==========================
@pytest.mark.asyncio
async def test_initialize_seeds_latest_unread_and_seen(api, router):
    router.add("GET", LIST, httpx.Response(200, json={"items": [_note("c"), _note("b")], "page": 1, "total": 2}))
    router.add("GET", UNREAD, httpx.Response(200, json={"items": [_note("a"), _note("b")]}))
    center = _center(api)

    await center.initialize()

    assert [n.id for n in center.latest] == ["c", "b"]
    assert center.unread_count == 2
    assert center.seen_ids == {"a", "b", "c"}
    assert router.calls("GET", UNREAD)[0].url.params["limit"] == "8"


@pytest.mark.asyncio
async def test_initialize_prefers_server_total(api, router):
    router.add("GET", LIST, httpx.Response(200, json={"items": []}))
    router.add("GET", UNREAD, httpx.Response(200, json={"items": [_note("a")], "total": 17}))
    center = _center(api)

    await center.initialize()

    assert center.unread_count == 17


@pytest.mark.asyncio
async def test_snapshot_failures_start_empty(api, router):
    router.add("GET", LIST, httpx.Response(500, json={"error": "db down"}))
    router.add("GET", UNREAD, httpx.Response(500, json={"error": "db down"}))
    center = _center(api)

    await center.initialize()

    assert center.latest == []
    assert center.unread_count == 0


@pytest.mark.asyncio
async def test_expired_session_during_snapshot_propagates(api, router, store):
    store.set("stale")
    router.add("GET", LIST, httpx.Response(401))
    router.add("POST", "/api/auth/refresh", httpx.Response(401))
    center = _center(api)

    with pytest.raises(SessionExpiredError):
        await center.initialize()


# ==========================
# PUSHED EVENTS
# ==========================
@pytest.mark.asyncio
async def test_duplicate_of_snapshot_event_is_dropped(api, router):
    router.add("GET", LIST, httpx.Response(200, json={"items": []}))
    router.add("GET", UNREAD, httpx.Response(200, json=[_note("a"), _note("b")]))
    signal = RecordingSignal()
    center = _center(api, signals=[signal])
    await center.initialize()

    assert center.handle_notification(_note("a")) is False

    assert center.unread_count == 2
    assert center.latest == []
    assert center.duplicates_dropped == 1
    assert signal.events == []


@pytest.mark.asyncio
async def test_new_events_are_prepended_and_counted_once(api):
    center = _center(api)
    signal = RecordingSignal()
    center.signals.append(signal)

    assert center.handle_notification(_note("x"))
    assert center.handle_notification({"id": 7, "title": "Stock low"})
    assert not center.handle_notification(_note("x"))

    assert [n.id for n in center.latest] == ["7", "x"]
    assert center.unread_count == 2
    assert signal.events == ["x", "7"]


@pytest.mark.asyncio
async def test_latest_is_bounded_newest_first(api):
    center = _center(api, capacity=3)

    for i in range(5):
        center.handle_notification(_note(f"n{i}"))

    assert [n.id for n in center.latest] == ["n4", "n3", "n2"]
    assert center.unread_count == 5
    assert len(center.seen_ids) == 5


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [None, "text", {"title": "no id"}, {"id": ""}, {"id": "   "}])
async def test_invalid_payloads_are_dropped(api, payload):
    center = _center(api)

    assert center.handle_notification(payload) is False
    assert center.unread_count == 0
    assert center.latest == []


@pytest.mark.asyncio
async def test_failing_signal_does_not_affect_state(api):
    center = _center(api, signals=[BrokenSignal(), RecordingSignal()])

    assert center.handle_notification(_note("x"))

    assert center.unread_count == 1
    assert center.signals[1].events == ["x"]


@pytest.mark.asyncio
async def test_listeners_are_told_about_changes(api):
    center = _center(api)
    calls = []
    center.add_listener(lambda: calls.append(center.unread_count))

    center.handle_notification(_note("x"))
    center.handle_notification(_note("x"))
    center.reset()

    assert calls == [1, 0]
    assert center.seen_ids == frozenset()


# ==========================
# IMPERATIVE OPERATIONS
# ==========================
@pytest.mark.asyncio
async def test_mark_read_decrements_and_never_goes_negative(api, router):
    router.add("POST", "/api/notifications/x/read", httpx.Response(200, json={"ok": True}))
    router.add("POST", "/api/notifications/y/read", httpx.Response(200, json={"ok": True}))
    center = _center(api)
    center.handle_notification(_note("x"))

    assert await center.mark_read("x") is True
    assert center.unread_count == 0

    assert await center.mark_read("y") is True
    assert center.unread_count == 0
    assert "y" in center.seen_ids


@pytest.mark.asyncio
async def test_mark_read_failure_leaves_count(api, router):
    router.add("POST", "/api/notifications/x/read", httpx.Response(500, json={"error": "nope"}))
    center = _center(api)
    center.handle_notification(_note("x"))

    assert await center.mark_read("x") is False
    assert await center.mark_read("") is False
    assert center.unread_count == 1


@pytest.mark.asyncio
async def test_mark_read_quotes_the_id(api, router):
    router.add("POST", "/api/notifications/a/b/read", httpx.Response(200, json={"ok": True}))

    await NotificationsApi(api).mark_read("a/b")

    assert b"/notifications/a%2Fb/read" in router.requests[0].url.raw_path


@pytest.mark.asyncio
async def test_mark_read_requires_an_id(api):
    with pytest.raises(ValueError, match="notification_id_required"):
        await NotificationsApi(api).mark_read("")


@pytest.mark.asyncio
@pytest.mark.parametrize("response, agreed", [
    (httpx.Response(200, json={"ok": True}), True),
    (httpx.Response(500, json={"error": "boom"}), False),
])
async def test_mark_all_read_always_zeroes(api, router, response, agreed):
    router.add("POST", READ_ALL, response)
    center = _center(api)
    for i in range(3):
        center.handle_notification(_note(f"n{i}"))

    assert await center.mark_all_read() is agreed
    assert center.unread_count == 0
    assert len(center.latest) == 3


@pytest.mark.asyncio
async def test_fetch_page_does_not_touch_live_state(api, router):
    router.add("GET", LIST, httpx.Response(200, json={
        "items": [_note("p1"), _note("p2")],
        "pagination": {"page": 2, "limit": 2, "total": 9, "pages": 5},
    }))
    center = _center(api)
    center.handle_notification(_note("x"))

    page = await center.fetch_page(2, limit=2, q="order")

    assert isinstance(page, NotificationsPage)
    assert [n.id for n in page.items] == ["p1", "p2"]
    assert (page.page, page.total, page.pages) == (2, 9, 5)
    assert router.requests[0].url.params["q"] == "order"
    assert center.unread_count == 1
    assert [n.id for n in center.latest] == ["x"]


@pytest.mark.asyncio
async def test_create_drops_unset_fields(api, router):
    router.add("POST", LIST, httpx.Response(201, json={"ok": True}))

    await NotificationsApi(api).create("Restock", "RUBY-1 is low", role_id=1)

    assert json.loads(router.requests[0].content) == {"title": "Restock", "body": "RUBY-1 is low", "role_id": 1}


# ==========================
# LIFECYCLE
# ==========================
@pytest.mark.asyncio
async def test_start_streams_notifications_until_stopped(api, router):
    router.add("GET", LIST, httpx.Response(200, json={"items": [_note("old")]}))
    router.add("GET", UNREAD, httpx.Response(200, json={"items": [], "total": 0}))
    transport = ScriptedTransport([
        frame("connected", {"clientId": "c1"}),
        frame("notification", _note("old")),
        frame("notification", _note("n9", "Order #9")),
        HOLD,
    ])
    center = _center(api, transport)

    async with center:
        await eventually(lambda: center.unread_count == 1)
        assert center.subscribe_ready
        assert [n.id for n in center.latest] == ["n9", "old"]
        assert transport.topics_seen == [["notifications"]]

    assert center.handle.closed
    assert not center.subscribe_ready


def test_notification_model_is_frozen_and_coerces_id():
    event = NotificationEvent.model_validate({"id": 12, "title": None})

    assert event.id == "12"
    assert event.title == "Notification"
    with pytest.raises(ValidationError):
        event.title = "changed"


# ==========================
# MALFORMED SNAPSHOTS
# ==========================
@pytest.mark.asyncio
async def test_invalid_snapshot_items_are_skipped(api, router):
    router.add("GET", LIST, httpx.Response(200, json={"items": [{"id": "a"}, {"title": "missing id"}]}))
    router.add("GET", UNREAD, httpx.Response(200, json={"items": [{"id": "b"}, {"id": ""}, "junk"]}))
    center = _center(api)

    await center.initialize()

    assert [n.id for n in center.latest] == ["a"]
    assert center.unread_count == 1
    assert center.seen_ids == {"a", "b"}


@pytest.mark.asyncio
async def test_malformed_snapshot_bodies_start_empty(api, router):
    router.add("GET", LIST, httpx.Response(200, json={"items": [_note("a")], "page": "first"}))
    router.add("GET", UNREAD, httpx.Response(200, json={"items": [], "total": "lots"}))
    center = _center(api)

    await center.initialize()

    assert center.latest == []
    assert center.unread_count == 0


@pytest.mark.asyncio
async def test_fetch_page_skips_rows_without_id(api, router):
    router.add("GET", LIST, httpx.Response(200, json={"items": [_note("p1"), {"title": "orphan"}], "total": 2}))

    page = await NotificationsApi(api).fetch_page(1)

    assert [n.id for n in page.items] == ["p1"]
    assert page.total == 2


# ==========================
# LISTENERS
# ==========================
@pytest.mark.asyncio
async def test_async_listener_failure_is_logged(api):
    center = _center(api)
    messages = []
    sink_id = logger.add(lambda message: messages.append(str(message)), level="ERROR")

    async def listener():
        raise RuntimeError("render failed")

    center.add_listener(listener)
    try:
        center.handle_notification(_note("x"))
        await eventually(lambda: not center._listener_tasks)
    finally:
        logger.remove(sink_id)

    assert any("render failed" in m for m in messages)
    assert center.unread_count == 1


@pytest.mark.asyncio
async def test_stop_waits_for_async_listeners(api):
    center = _center(api)
    seen = []

    async def listener():
        await asyncio.sleep(0.01)
        seen.append(center.unread_count)

    center.add_listener(listener)
    center.handle_notification(_note("x"))
    await center.stop()

    assert seen == [1]
    assert not center._listener_tasks


def test_reset_without_running_loop_skips_async_listeners():
    subscriber = EventStreamSubscriber(ScriptedTransport(), BackoffPolicy(floor_ms=10, ceiling_ms=60))
    center = NotificationCenter(NotificationsApi(None), subscriber)
    calls = []

    async def listener():
        calls.append("ran")

    center.add_listener(listener)
    center.reset()

    assert calls == []
    assert not center._listener_tasks
