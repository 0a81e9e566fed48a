"""Messages of the open conversation."""
from dataclasses import replace
from enum import Enum
from typing import Callable, List, Optional

from .api_interface import APIClient, APIError
from .auth import AuthError
from .config import MAX_MESSAGE_LENGTH, get_logger
from .data_models import Conversation, Message
from .state import OptimisticUpdate, StateCell, run_optimistic
from .unread import UnreadCounter

logger = get_logger("message_stream")


class StreamState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    ERRORED = "errored"


class MessageStream:
    """Holds the message list of one selected conversation.

    Opening a conversation fetches its messages, marks it read and then
    refreshes the unread counter, in that order. An empty conversation is
    shown immediately without touching the network.
    """

    def __init__(self, api: APIClient, unread: UnreadCounter,
                 on_message_sent: Optional[Callable[[Conversation, Message], None]] = None):
        self.api = api
        self.unread = unread
        self.on_message_sent = on_message_sent
        self.conversation: Optional[Conversation] = None
        self.state = StateCell(StreamState.IDLE, name="stream.state")
        self.messages = StateCell([], name="stream.messages")
        self.error = StateCell(None, name="stream.error")
        self.send_error = StateCell(None, name="stream.send_error")
        self.sending = StateCell(False, name="stream.sending")
        # Bumped on every open/close; responses for an older generation are dropped
        self._generation = 0

    @property
    def items(self) -> List[Message]:
        return self.messages.get()

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def open(self, conversation: Conversation) -> None:
        self._generation += 1
        self.conversation = conversation
        self.error.set(None)
        self.send_error.set(None)

        if conversation.is_empty:
            self.messages.set([])
            self.state.set(StreamState.LOADED)
            return

        self.messages.set([])
        if self.fetch():
            self.mark_as_read()

    def close(self) -> None:
        self._generation += 1
        self.conversation = None
        self.messages.set([])
        self.error.set(None)
        self.send_error.set(None)
        self.state.set(StreamState.IDLE)

    def fetch(self) -> bool:
        conversation = self.conversation
        if conversation is None:
            return False
        generation = self._generation
        self.state.set(StreamState.LOADING)
        try:
            messages = self.api.get_messages(conversation.id)
        except (APIError, AuthError) as e:
            if self._is_current(generation):
                logger.warning("Failed to load messages for %s: %s", conversation.id, e)
                self.error.set("Failed to load messages")
                self.state.set(StreamState.ERRORED)
            return False

        if not self._is_current(generation):
            logger.debug("Dropping messages for closed conversation %s", conversation.id)
            return False
        self.messages.set(messages)
        self.error.set(None)
        self.state.set(StreamState.LOADED)
        return True

    retry = fetch

    def mark_as_read(self) -> None:
        conversation = self.conversation
        if conversation is None or conversation.is_empty:
            return
        try:
            self.api.mark_conversation_read(conversation.id)
        except (APIError, AuthError) as e:
            logger.warning("Error marking conversation %s as read: %s", conversation.id, e)
            return
        # Must follow the mark-read call or the count comes back stale
        self.unread.fetch()

    def validate(self, content: str) -> Optional[str]:
        text = (content or "").strip()
        if not text:
            return "Message content is required"
        if len(text) > MAX_MESSAGE_LENGTH:
            return f"Message is limited to {MAX_MESSAGE_LENGTH} characters"
        return None

    def send(self, content: str) -> Optional[Message]:
        conversation = self.conversation
        if conversation is None:
            self.send_error.set("No conversation selected")
            return None
        problem = self.validate(content)
        if problem:
            self.send_error.set(problem)
            return None
        if self.sending.get():
            return None

        generation = self._generation
        self.sending.set(True)
        try:
            message = self.api.send_message(
                content.strip(), receiver_id=conversation.other_user.id, conversation_id=conversation.id
            )
        except (APIError, AuthError) as e:
            logger.warning("Error sending message: %s", e)
            self.send_error.set(getattr(e, "message", None) or "Failed to send message")
            return None
        finally:
            self.sending.set(False)

        self.send_error.set(None)
        if self._is_current(generation):
            self.conversation = replace(
                conversation, last_message=message, updated_at=message.created_at or conversation.updated_at
            )
            self.messages.update(lambda items: list(items) + [message])
        if self.on_message_sent is not None:
            self.on_message_sent(conversation, message)
        return message

    def can_delete(self, message: Message) -> bool:
        me = self.api.sessions.user_id
        return me is not None and message.sender_id == str(me)

    def delete(self, message_id: str) -> bool:
        target = next((m for m in self.items if m.id == str(message_id)), None)
        if target is None or not self.can_delete(target):
            return False

        position = {}

        def _remove():
            def _drop(items):
                position["index"] = items.index(target)
                return [m for m in items if m.id != target.id]
            self.messages.update(_drop)

        def _restore():
            def _insert(items):
                items = list(items)
                items.insert(min(position.get("index", len(items)), len(items)), target)
                return items
            self.messages.update(_insert)

        update = OptimisticUpdate(_remove, _restore, description=f"delete message {target.id}")
        try:
            run_optimistic(update, lambda: self.api.delete_message(target.id))
        except (APIError, AuthError) as e:
            logger.warning("Error deleting message %s: %s", target.id, e)
            return False
        return True
