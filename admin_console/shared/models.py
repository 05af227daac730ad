"""
MODULE OVERVIEW:
The strictly typed data structures shared by the request executor, the event stream
subscriber and the notification center, powered by Pydantic v2.

WHAT IS HAPPENING HERE:
The backend is loose about shapes: ids arrive as numbers or strings, pagination is
sometimes flat and sometimes nested, the stream sends camelCase. We normalise all of that
at the edge so the rest of the client only ever sees one shape.
"""
from datetime import datetime
from enum import Enum
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator


class SubscriptionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


# WHAT IS HAPPENING HERE:
# One pushed (or fetched) notification. Identity is `id`; frozen because events are
# never edited after we receive them, only deduplicated and displayed.
class NotificationEvent(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    title: str = "Notification"
    body: str | None = None
    created_at: datetime | None = None
    data: dict[str, Any] | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        if isinstance(value, str) and not value.strip():
            raise ValueError("notification id must not be empty")
        return value

    @field_validator("title", mode="before")
    @classmethod
    def _default_title(cls, value: Any) -> Any:
        return value or "Notification"


# The payload of the `connected` stream event.
class ConnectedEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    client_id: str | None = Field(default=None, alias="clientId")
    ts: datetime | None = None
    user_id: str | None = Field(default=None, alias="userId")
    topics: list[str] = Field(default_factory=list)
    is_admin: bool = Field(default=False, alias="isAdmin")


def _valid_notifications(items: Any) -> Any:
    # One bad row (no id, wrong shape) must not throw away the rest of a listing.
    if not isinstance(items, list):
        return items
    events = []
    for item in items:
        try:
            events.append(item if isinstance(item, NotificationEvent) else NotificationEvent.model_validate(item))
        except ValidationError:
            logger.debug("notifications=skipped reason=invalid_item")
    return events


class NotificationsPage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    items: list[NotificationEvent] = Field(default_factory=list)
    page: int = 1
    limit: int | None = None
    total: int = 0
    pages: int = 1

    @model_validator(mode="before")
    @classmethod
    def _flatten_pagination(cls, data: Any) -> Any:
        # Some listings nest paging info under `pagination`, others return it flat.
        if isinstance(data, dict) and isinstance(data.get("pagination"), dict):
            data = {**data["pagination"], **{k: v for k, v in data.items() if k != "pagination"}}
        if isinstance(data, dict) and data.get("items") is None:
            data = {**data, "items": []}
        return data

    @field_validator("items", mode="before")
    @classmethod
    def _drop_invalid_items(cls, items: Any) -> Any:
        return _valid_notifications(items)


class UnreadSnapshot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    items: list[NotificationEvent] = Field(default_factory=list)
    total: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_list(cls, data: Any) -> Any:
        if isinstance(data, list):
            return {"items": data}
        if data is None:
            return {"items": []}
        return data

    @field_validator("items", mode="before")
    @classmethod
    def _drop_invalid_items(cls, items: Any) -> Any:
        return _valid_notifications(items)


class AuthUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    email: str
    full_name: str | None = None
    role_id: int

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


class LoginResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    ok: bool = False
    user: AuthUser | None = None
    token: str | None = None
    error: str | None = None


class TokenResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    token: str


# A single unit read off an event transport, before any JSON decoding.
class StreamFrame(BaseModel):
    event: str = "message"
    data: str = ""
    id: str | None = None
