"""One shared set of synchronizers per signed-in user."""
from typing import Callable, Optional

from .api_interface import APIClient
from .auth import LOGIN_REQUIRED_EVENT, SESSION_ENDED, SessionManager
from .config import MESSAGE_POLL_INTERVAL, NOTIFICATION_POLL_INTERVAL, get_logger
from .conversations import ConversationList
from .message_stream import MessageStream
from .notifications import NotificationFeed
from .polling import Poller, bind_to_session
from .unread import UnreadCounter

logger = get_logger("store")


class SyncStore:
    """Owns the unread counters and the synchronizers that share them.

    Pollers run while a session is active. When the session ends every cache
    is cleared so the next user starts from server state.
    """

    def __init__(self, api: APIClient, sessions: Optional[SessionManager] = None,
                 message_poll_interval: float = MESSAGE_POLL_INTERVAL,
                 notification_poll_interval: float = NOTIFICATION_POLL_INTERVAL):
        self.api = api
        self.sessions = sessions or api.sessions

        self.message_unread = UnreadCounter("messages", api.get_unread_message_count)
        self.notification_unread = UnreadCounter("notifications", api.get_notification_unread_count)

        self.conversations = ConversationList(api, self.message_unread)
        self.stream = MessageStream(api, self.message_unread, on_message_sent=self.conversations.note_message_sent)
        self.notifications = NotificationFeed(api, self.notification_unread)

        self.pollers = [
            Poller("messages-unread", message_poll_interval, self.message_unread.fetch),
            Poller("notifications-unread", notification_poll_interval, self.notification_unread.fetch),
        ]
        self._unsubscribers: list = []

    def start(self) -> None:
        if self._unsubscribers:
            return
        self._unsubscribers.append(bind_to_session(self.sessions, self.pollers))
        self._unsubscribers.append(self.sessions.subscribe(self._on_session))

    def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        for poller in self.pollers:
            poller.stop()

    def _on_session(self, event, _session) -> None:
        if event == SESSION_ENDED:
            logger.debug("Session ended; clearing cached state")
            self.clear()

    def clear(self) -> None:
        self.stream.close()
        self.conversations.reset()
        self.notifications.reset()
        self.message_unread.reset()
        self.notification_unread.reset()

    def open_conversation(self, conversation) -> None:
        """Select a conversation in the list and load it in the stream."""
        self.conversations.select(conversation)
        self.stream.open(conversation)


def build_store(on_login_required: Optional[Callable[[], None]] = None) -> SyncStore:
    """Create a store wired to the configured backend and auth provider."""
    sessions = SessionManager()
    if on_login_required is not None:
        sessions.subscribe(lambda event, _s: on_login_required() if event == LOGIN_REQUIRED_EVENT else None)
    return SyncStore(APIClient(sessions))
