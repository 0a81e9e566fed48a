from typing import Any, Dict, List, Optional, Tuple

import requests
from requests import Session

from .auth import LOGIN_REQUIRED_EVENT, AuthError, LoginRequired, SessionManager
from .config import BACKEND_URL, REQUEST_TIMEOUT, get_logger
from .data_models import Conversation, Message, NotificationItem, Pagination

logger = get_logger("api")


class APIError(Exception):
    """A gateway call failed. `status_code` is None for transport failures."""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429

    @classmethod
    def from_response(cls, resp: requests.Response) -> "APIError":
        try:
            payload = resp.json()
        except ValueError:
            payload = resp.text
        message = None
        if isinstance(payload, dict):
            message = payload.get("message") or payload.get("error")
        message = message or f"HTTP {resp.status_code}"
        err_cls = RateLimitedError if resp.status_code == 429 else cls
        return err_cls(message, status_code=resp.status_code, payload=payload)


class RateLimitedError(APIError):
    pass


def unwrap_envelope(body: Any) -> Tuple[Any, Optional[Dict[str, Any]]]:
    """Split a `{success, data, pagination?}` envelope into (data, pagination).

    Bodies that are not envelopes are returned unchanged.
    """
    if isinstance(body, dict) and "success" in body:
        if not body.get("success"):
            raise APIError(body.get("message") or "Request was not successful", payload=body)
        return body.get("data"), body.get("pagination")
    return body, None


class APIClient:
    """Authenticated client for the REST gateway.

    Every call carries the active session's bearer token. A 401 triggers one
    session refresh and one retry; everything else is raised as APIError.
    """

    def __init__(self, sessions: SessionManager, base_url: str = BACKEND_URL, timeout: float = REQUEST_TIMEOUT,
                 http: Optional[Session] = None):
        self.sessions = sessions
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http: Session = http or requests.Session()
        self.http.headers.update({"Content-Type": "application/json"})

    # --- helpers ---
    def _send(self, method: str, path: str, body: Any, params: Optional[Dict[str, Any]]) -> requests.Response:
        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = {}
        token = self.sessions.access_token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            return self.http.request(method, url, json=body, params=params, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise APIError(f"Network error: {e}") from e

    def request(self, method: str, path: str, body: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        resp = self._send(method, path, body, params)
        if resp.status_code == 401:
            if not self.sessions.is_active:
                raise LoginRequired("Not signed in")
            logger.debug("%s %s returned 401; refreshing session", method, path)
            try:
                self.sessions.refresh()
            except AuthError as e:
                logger.info("Session refresh failed: %s", e)
                self.sessions.end(reason=LOGIN_REQUIRED_EVENT)
                raise LoginRequired("Session expired; please sign in again") from e
            resp = self._send(method, path, body, params)

        if not resp.ok:
            err = APIError.from_response(resp)
            logger.debug("%s %s -> HTTP %s: %s", method, path, resp.status_code, err.message)
            raise err
        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise APIError("Malformed JSON response", status_code=resp.status_code, payload=resp.text) from e

    def _data(self, method: str, path: str, body: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        data, _ = unwrap_envelope(self.request(method, path, body=body, params=params))
        return data

    # --- messages ---
    def get_conversations(self) -> List[Conversation]:
        data = self._data("GET", "/messages/conversations")
        return [Conversation.from_dict(c) for c in data or []]

    def get_messages(self, conversation_id: str) -> List[Message]:
        data = self._data("GET", f"/messages/conversations/{conversation_id}/messages")
        return [Message.from_dict(m) for m in data or []]

    def send_message(self, content: str, receiver_id: str, conversation_id: Optional[str] = None) -> Message:
        data = self._data(
            "POST",
            "/messages/send",
            body={"content": content, "conversation_id": conversation_id, "receiver_id": receiver_id},
        )
        return Message.from_dict(data)

    def mark_conversation_read(self, conversation_id: str) -> None:
        self._data("PUT", f"/messages/conversations/{conversation_id}/read")

    def delete_message(self, message_id: str) -> None:
        self._data("DELETE", f"/messages/messages/{message_id}")

    def get_unread_message_count(self) -> int:
        data = self._data("GET", "/messages/unread-count") or {}
        return int(data.get("unread_count") or 0)

    # --- notifications ---
    def get_notifications(self, page: int = 1, limit: int = 20,
                          unread_only: bool = False) -> Tuple[List[NotificationItem], Pagination]:
        # The backend compares unread_only against the literal string 'true'
        params = {"page": page, "limit": limit, "unread_only": "true" if unread_only else "false"}
        data, pagination = unwrap_envelope(self.request("GET", "/notifications", params=params))
        items = [NotificationItem.from_dict(n) for n in data or []]
        return items, Pagination.from_dict(pagination, default_page=page, default_limit=limit)

    def get_notification_unread_count(self) -> int:
        data = self._data("GET", "/notifications/unread-count") or {}
        return int(data.get("unread_count") or 0)

    def mark_notification_read(self, notification_id: str) -> None:
        self._data("PUT", f"/notifications/{notification_id}/read")

    def mark_all_notifications_read(self) -> None:
        self._data("PUT", "/notifications/read-all")

    def delete_notification(self, notification_id: str) -> None:
        self._data("DELETE", f"/notifications/{notification_id}")
