"""
Data models for recipebox.
These records mirror the JSON payloads of the REST gateway. Every collection
built from them is a cache of server state.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from .config import get_logger

logger = get_logger("data_models")

NOTIFICATION_TYPES = (
    "like",
    "comment",
    "follow",
    "message",
    "recipe_match",
    "mention",
    "recipe_shared",
)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp as sent by the backend ('Z' suffix allowed)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        logger.debug("Unparseable timestamp %r", value)
        return None


@dataclass
class UserSummary:
    """The other participant of a conversation, or a user picked from search."""
    id: str
    username: str = ""
    name: str = ""
    avatar_url: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> "UserSummary":
        d = d or {}
        return cls(
            id=str(d.get("id") or ""),
            username=d.get("username") or "",
            name=d.get("name") or "",
            avatar_url=d.get("avatar_url"),
        )

    @property
    def display_name(self) -> str:
        return self.name or self.username or self.id


@dataclass
class Message:
    """Represents a direct message."""
    id: str
    conversation_id: Optional[str]
    sender_id: str
    receiver_id: str
    content: str
    created_at: Optional[datetime] = None
    read_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Message":
        conversation_id = d.get("conversation_id")
        return cls(
            id=str(d.get("id")),
            conversation_id=str(conversation_id) if conversation_id is not None else None,
            sender_id=str(d.get("sender_id") or ""),
            receiver_id=str(d.get("receiver_id") or ""),
            content=d.get("content") or "",
            created_at=parse_timestamp(d.get("created_at")),
            read_at=parse_timestamp(d.get("read_at")),
        )


@dataclass
class Conversation:
    """A pairing of the current user with one other user."""
    id: str
    other_user: UserSummary
    last_message: Optional[Message] = None
    unread_count: int = 0
    updated_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Conversation":
        last = d.get("last_message")
        # Some payloads wrap the last message in a one-element list
        if isinstance(last, list):
            last = last[0] if last else None
        return cls(
            id=str(d.get("id")),
            other_user=UserSummary.from_dict(d.get("other_user")),
            last_message=Message.from_dict(last) if last else None,
            unread_count=int(d.get("unread_count") or 0),
            updated_at=parse_timestamp(d.get("updated_at")),
        )

    @property
    def is_empty(self) -> bool:
        """True for a freshly started conversation with nothing sent yet."""
        return self.last_message is None


@dataclass
class NotificationItem:
    """Represents a notification."""
    id: str
    type: str
    message: str = ""
    is_read: bool = False
    created_at: Optional[datetime] = None
    title: str = ""
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "NotificationItem":
        kind = d.get("type") or ""
        if kind not in NOTIFICATION_TYPES:
            logger.debug("Unknown notification type %r (id=%s)", kind, d.get("id"))
        return cls(
            id=str(d.get("id")),
            type=kind,
            message=d.get("message") or "",
            is_read=bool(d.get("is_read")),
            created_at=parse_timestamp(d.get("created_at")),
            title=d.get("title") or "",
            data=dict(d.get("data") or {}),
        )


@dataclass
class Pagination:
    page: int = 1
    limit: int = 20
    total: int = 0
    total_pages: int = 0

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]], default_page: int = 1, default_limit: int = 20) -> "Pagination":
        d = d or {}
        return cls(
            page=int(d.get("page") or default_page),
            limit=int(d.get("limit") or default_limit),
            total=int(d.get("total") or 0),
            total_pages=int(d.get("total_pages") or 0),
        )

    @property
    def has_more(self) -> bool:
        return self.page < self.total_pages


@dataclass
class AuthSession:
    """Tokens and identity issued by the hosted auth provider."""
    access_token: str
    refresh_token: Optional[str] = None
    user_id: Optional[str] = None
    email: Optional[str] = None
    username: Optional[str] = None
    expires_at: Optional[int] = None

    @classmethod
    def from_token_response(cls, d: Dict[str, Any]) -> "AuthSession":
        user = d.get("user") or {}
        meta = user.get("user_metadata") or {}
        return cls(
            access_token=d["access_token"],
            refresh_token=d.get("refresh_token"),
            user_id=user.get("id"),
            email=user.get("email"),
            username=meta.get("username") or user.get("email"),
            expires_at=d.get("expires_at"),
        )
