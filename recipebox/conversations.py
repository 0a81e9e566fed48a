"""Conversation list synchronization."""
from dataclasses import replace
from typing import List, Optional

from .api_interface import APIClient, APIError
from .auth import AuthError
from .config import get_logger
from .data_models import Conversation, Message, UserSummary
from .state import StateCell
from .unread import UnreadCounter

logger = get_logger("conversations")


class ConversationList:
    """Cache of the current user's conversations plus the active selection.

    Placeholders created by `create_or_get_conversation` live only here until
    their first message is sent.
    """

    def __init__(self, api: APIClient, unread: UnreadCounter):
        self.api = api
        self.unread = unread
        self.conversations = StateCell([], name="conversations")
        self.selected = StateCell(None, name="conversations.selected")
        self.loading = StateCell(False, name="conversations.loading")
        self.error = StateCell(None, name="conversations.error")

    @property
    def items(self) -> List[Conversation]:
        return self.conversations.get()

    def find(self, user_id: str, conversations: Optional[List[Conversation]] = None) -> Optional[Conversation]:
        source = self.items if conversations is None else conversations
        for conversation in source:
            if conversation.other_user.id == str(user_id):
                return conversation
        return None

    def list(self) -> List[Conversation]:
        """Fetch conversations in server order, keeping pending placeholders."""
        self.loading.set(True)
        try:
            fresh = self.api.get_conversations()
        except (APIError, AuthError) as e:
            logger.warning("Failed to load conversations: %s", e)
            self.error.set("Failed to load conversations")
            return self.items
        finally:
            self.loading.set(False)

        server_users = {c.other_user.id for c in fresh}
        pending = [c for c in self.items if c.is_empty and c.other_user.id not in server_users]
        merged = pending + fresh
        self.conversations.set(merged)
        self.error.set(None)

        current = self.selected.get()
        if current is not None:
            match = next((c for c in merged if c.id == current.id), None)
            if match is not None:
                self.selected.set(match)
        return merged

    retry = list

    def select(self, conversation: Conversation) -> None:
        self.selected.set(conversation)
        if conversation.unread_count:
            self.unread.decrement(conversation.unread_count)

    def clear_selection(self) -> None:
        self.selected.set(None)

    def create_or_get_conversation(self, target_user: UserSummary) -> Conversation:
        """Return the conversation with `target_user`, creating a local
        placeholder when none exists yet. Calling it twice yields the same
        entry.
        """
        self._check_target(target_user)
        existing = self.find(target_user.id)
        if existing is not None:
            return existing

        placeholder = Conversation(id=str(target_user.id), other_user=target_user)
        self.conversations.update(lambda items: [placeholder] + list(items))
        logger.debug("Created placeholder conversation with %s", target_user.id)
        return placeholder

    def start_or_find(self, target_user: UserSummary, initial_content: str = "") -> Optional[Conversation]:
        """Open a conversation with `target_user` and select it.

        Returns None when the conversation could not be located after
        creating it; the list stays as it is in that case.
        """
        self._check_target(target_user)
        existing = self.find(target_user.id)
        if existing is not None:
            self.select(existing)
            return existing

        content = (initial_content or "").strip()
        if not content:
            conversation = self.create_or_get_conversation(target_user)
            self.select(conversation)
            return conversation

        try:
            self.api.send_message(content, receiver_id=target_user.id)
        except (APIError, AuthError) as e:
            logger.warning("Could not start conversation with %s: %s", target_user.id, e)
            self.error.set("Failed to start conversation")
            return None

        # Search the list we just fetched, not the one held before the send
        fresh = self.list()
        created = self.find(target_user.id, fresh)
        if created is None:
            logger.info("Conversation with %s not listed yet after creation", target_user.id)
            return None
        self.select(created)
        return created

    def note_message_sent(self, conversation: Conversation, message: Message) -> None:
        """Record a server-confirmed message as the conversation's last one."""
        def _apply(items: List[Conversation]) -> List[Conversation]:
            out = []
            for c in items:
                if c.id == conversation.id:
                    c = replace(c, last_message=message, updated_at=message.created_at or c.updated_at)
                out.append(c)
            return out

        updated = self.conversations.update(_apply)
        current = self.selected.get()
        if current is not None and current.id == conversation.id:
            self.selected.set(next((c for c in updated if c.id == conversation.id), current))

    def reset(self) -> None:
        self.conversations.set([])
        self.selected.set(None)
        self.error.set(None)

    def _check_target(self, target_user: UserSummary) -> None:
        me = self.api.sessions.user_id
        if me is not None and str(target_user.id) == str(me):
            raise ValueError("Cannot start a conversation with yourself")
