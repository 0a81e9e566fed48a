"""Shared fixtures: an in-memory gateway double and HTTP response helpers."""
from __future__ import annotations

import json
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import pytest
import requests

from recipebox import state
from recipebox.api_interface import APIError, RateLimitedError
from recipebox.data_models import (
    AuthSession,
    Conversation,
    Message,
    NotificationItem,
    Pagination,
    UserSummary,
)

ME = "user-me"
_BASE = datetime(2024, 5, 1, 12, 0, 0)


def make_user(user_id: str, username: Optional[str] = None) -> UserSummary:
    return UserSummary(id=user_id, username=username or f"u_{user_id}", name=f"User {user_id}")


def make_message(message_id: str, content: str = "hi", sender_id: str = ME,
                 receiver_id: str = "bob", conversation_id: Optional[str] = "bob") -> Message:
    return Message(
        id=message_id,
        conversation_id=conversation_id,
        sender_id=sender_id,
        receiver_id=receiver_id,
        content=content,
        created_at=_BASE + timedelta(minutes=int(message_id) if message_id.isdigit() else 0),
    )


def make_conversation(user_id: str, unread: int = 0, last: Optional[Message] = None,
                      empty: bool = False) -> Conversation:
    if last is None and not empty:
        last = make_message("1", "hello there", sender_id=user_id, receiver_id=ME, conversation_id=user_id)
    return Conversation(id=user_id, other_user=make_user(user_id), last_message=last, unread_count=unread)


def make_notification(notification_id: str, is_read: bool = False, kind: str = "like") -> NotificationItem:
    return NotificationItem(id=notification_id, type=kind, message=f"notification {notification_id}", is_read=is_read)


class FakeSessions:
    """Stand-in for SessionManager as seen by the gateway and synchronizers."""

    def __init__(self, user_id: Optional[str] = ME, token: str = "token-1"):
        self.session = AuthSession(access_token=token, refresh_token="refresh-1", user_id=user_id)
        self.refresh_result: Optional[str] = "token-2"
        self.refresh_calls = 0
        self.ended: List[str] = []
        self.sign_in_threads: List[int] = []
        self._listeners: List[Callable] = []

    @property
    def access_token(self) -> Optional[str]:
        return self.session.access_token if self.session else None

    @property
    def user_id(self) -> Optional[str]:
        return self.session.user_id if self.session else None

    @property
    def is_active(self) -> bool:
        return self.session is not None

    def refresh(self) -> AuthSession:
        from recipebox.auth import AuthError

        self.refresh_calls += 1
        if self.refresh_result is None:
            raise AuthError("refresh rejected")
        self.session.access_token = self.refresh_result
        return self.session

    def sign_in(self, email: str, password: str) -> AuthSession:
        self.sign_in_threads.append(threading.get_ident())
        return self.session

    def restore(self) -> Optional[AuthSession]:
        return self.session

    def end(self, reason: str = "ended") -> None:
        if self.session is None:
            return
        self.ended.append(reason)
        self.session = None

    def subscribe(self, listener: Callable) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)


class FakeAPI:
    """Records every gateway call in order and serves canned server state."""

    def __init__(self) -> None:
        self.sessions = FakeSessions()
        self.calls: List[Tuple[Any, ...]] = []
        self.failures: Dict[str, Exception] = {}
        self.conversations: List[Conversation] = []
        self.conversations_after_send: Optional[List[Conversation]] = None
        self.messages: Dict[str, List[Message]] = {}
        self.unread_messages = 0
        self.unread_notifications = 0
        self.notification_pages: Dict[int, Tuple[List[NotificationItem], Pagination]] = {}
        self._next_id = 500

    # --- bookkeeping ---
    def _call(self, name: str, *args: Any) -> None:
        self.calls.append((name,) + args)
        exc = self.failures.get(name)
        if exc is not None:
            raise exc

    def names(self) -> List[str]:
        return [c[0] for c in self.calls]

    def called(self, name: str) -> List[Tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == name]

    # --- messages ---
    def get_conversations(self) -> List[Conversation]:
        self._call("get_conversations")
        return list(self.conversations)

    def get_messages(self, conversation_id: str) -> List[Message]:
        self._call("get_messages", conversation_id)
        return list(self.messages.get(conversation_id, []))

    def send_message(self, content: str, receiver_id: str, conversation_id: Optional[str] = None) -> Message:
        self._call("send_message", content, receiver_id, conversation_id)
        self._next_id += 1
        if self.conversations_after_send is not None:
            self.conversations = self.conversations_after_send
        return make_message(str(self._next_id), content, sender_id=self.sessions.user_id,
                            receiver_id=receiver_id, conversation_id=conversation_id)

    def mark_conversation_read(self, conversation_id: str) -> None:
        self._call("mark_conversation_read", conversation_id)

    def delete_message(self, message_id: str) -> None:
        self._call("delete_message", message_id)

    def get_unread_message_count(self) -> int:
        self._call("get_unread_message_count")
        return self.unread_messages

    # --- notifications ---
    def get_notifications(self, page: int = 1, limit: int = 20, unread_only: bool = False):
        self._call("get_notifications", page, limit, unread_only)
        items, pagination = self.notification_pages.get(page, ([], Pagination(page=page, limit=limit)))
        return list(items), pagination

    def get_notification_unread_count(self) -> int:
        self._call("get_notification_unread_count")
        return self.unread_notifications

    def mark_notification_read(self, notification_id: str) -> None:
        self._call("mark_notification_read", notification_id)

    def mark_all_notifications_read(self) -> None:
        self._call("mark_all_notifications_read")

    def delete_notification(self, notification_id: str) -> None:
        self._call("delete_notification", notification_id)


@pytest.fixture
def fake_api() -> FakeAPI:
    return FakeAPI()


@pytest.fixture
def server_error() -> APIError:
    return APIError("Internal server error", status_code=500, payload={"message": "Internal server error"})


@pytest.fixture
def rate_limited() -> APIError:
    return RateLimitedError("Too many requests", status_code=429)


# --- raw HTTP doubles for the gateway client and session provider ---


def fake_response(status: int, body: Any = None, url: str = "http://test/api") -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    resp.url = url
    if body is None:
        resp._content = b""
    else:
        resp._content = json.dumps(body).encode("utf-8")
        resp.headers["Content-Type"] = "application/json"
    return resp


class FakeHTTP:
    """Minimal requests.Session replacement that replays queued responses."""

    def __init__(self, responses: Optional[List[Any]] = None):
        self.headers: Dict[str, str] = {}
        self.queue: List[Any] = list(responses or [])
        self.requests: List[Dict[str, Any]] = []

    def _next(self, record: Dict[str, Any]) -> requests.Response:
        self.requests.append(record)
        item = self.queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def request(self, method, url, json=None, params=None, headers=None, timeout=None):
        return self._next({"method": method, "url": url, "json": json, "params": params,
                           "headers": dict(headers or {})})

    def post(self, url, params=None, json=None, headers=None, timeout=None):
        return self._next({"method": "POST", "url": url, "json": json, "params": params,
                           "headers": dict(headers or {})})


class FakeStorage:
    def __init__(self, stored: Optional[AuthSession] = None):
        self.stored = stored
        self.saved: List[AuthSession] = []
        self.cleared = 0

    def save_tokens(self, session: AuthSession) -> None:
        self.saved.append(session)
        self.stored = session

    def load_tokens(self) -> Optional[AuthSession]:
        return self.stored

    def clear_tokens(self) -> None:
        self.cleared += 1
        self.stored = None


@pytest.fixture
def storage() -> Iterator[FakeStorage]:
    yield FakeStorage()


@pytest.fixture
def rollback(monkeypatch) -> None:
    """Undo optimistic changes when the server call fails."""
    monkeypatch.setattr(state, "ROLLBACK_OPTIMISTIC", True)
