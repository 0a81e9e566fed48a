from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal, VerticalScroll
from textual.widgets import Static, Input, Button
from textual.reactive import reactive
from textual.screen import ModalScreen
from rich.text import Text
from datetime import datetime
from typing import Callable, List
import threading

from .auth import AuthError, LOGIN_REQUIRED_EVENT, SESSION_STARTED
from .config import get_logger
from .data_models import UserSummary
from .message_stream import StreamState
from .store import SyncStore, build_store

logger = get_logger("ui")

NOTIFICATION_ICONS = {
    "like": "♥",
    "comment": "💬",
    "follow": "👥",
    "message": "✉",
    "recipe_match": "🍳",
    "mention": "📢",
    "recipe_shared": "🔁",
}


def format_time_ago(dt) -> str:
    """Format datetime as 'time ago' string."""
    if dt is None:
        return ""
    now = datetime.now(dt.tzinfo) if dt.tzinfo else datetime.now()
    diff = now - dt
    if diff.days > 0:
        return f"{diff.days}d ago"
    if diff.seconds < 60:
        return "just now"
    if diff.seconds < 3600:
        return f"{diff.seconds // 60}m ago"
    return f"{diff.seconds // 3600}h ago"


def badge(count: int) -> str:
    if count <= 0:
        return ""
    return " (9+)" if count > 9 else f" ({count})"


class CellBound:
    """Mixin for widgets that redraw when store cells change."""

    def bind_cells(self, cells, callback: Callable[[], None]) -> None:
        self._unbind: List[Callable[[], None]] = [
            cell.subscribe(lambda _value: self.app.ui(callback)) for cell in cells
        ]

    def on_unmount(self) -> None:
        for unsubscribe in getattr(self, "_unbind", []):
            unsubscribe()


# ───────── Items ─────────


class ConversationItem(Static):
    def __init__(self, conversation, selected: bool = False, **kwargs):
        super().__init__(**kwargs)
        self.conversation = conversation
        if selected:
            self.add_class("selected")

    def render(self) -> Text:
        c = self.conversation
        unread = c.unread_count
        marker = "● " if unread else "  "
        counter = f" [{'9+' if unread > 9 else unread}]" if unread else ""
        if c.last_message is None:
            preview = "No messages yet"
        else:
            content = c.last_message.content
            preview = content if len(content) <= 50 else content[:50] + "..."
        when = format_time_ago(c.last_message.created_at if c.last_message else c.updated_at)
        return Text(f"{marker}{c.other_user.display_name}{counter}\n  {preview}\n  {when}")


class ChatMessage(Static):
    def __init__(self, message, own: bool = False, **kwargs):
        super().__init__(**kwargs)
        self.message = message
        self.add_class("sent" if own else "received")

    def render(self) -> Text:
        seen = " ✓" if self.message.read_at and "sent" in self.classes else ""
        return Text(f"{self.message.content}\n{format_time_ago(self.message.created_at)}{seen}")


class NotificationRow(Static):
    def __init__(self, notification, **kwargs):
        super().__init__(**kwargs)
        self.notification = notification
        if not notification.is_read:
            self.add_class("unread")

    def render(self) -> Text:
        n = self.notification
        icon = NOTIFICATION_ICONS.get(n.type, "•")
        title = f"{n.title} " if n.title else ""
        return Text(f"{icon} {title}• {format_time_ago(n.created_at)}\n{n.message}")


# ───────── Messages ─────────


class ConversationsList(CellBound, VerticalScroll):
    cursor_position = reactive(0)
    can_focus = True

    def __init__(self, store: SyncStore, **kwargs):
        super().__init__(**kwargs)
        self.store = store

    def compose(self) -> ComposeResult:
        yield Static("conversations", classes="panel-header")
        yield Container(id="conversation-items")

    def on_mount(self) -> None:
        self.border_title = "Messages"
        conversations = self.store.conversations
        self.bind_cells(
            [conversations.conversations, conversations.selected, conversations.error, conversations.loading],
            self.redraw,
        )
        self.redraw()

    def redraw(self) -> None:
        sync = self.store.conversations
        items = sync.items
        selected = sync.selected.get()
        header = self.query_one(".panel-header", Static)
        if sync.loading.get():
            header.update("conversations | loading…")
        else:
            header.update(f"conversations | {len(items)}")

        box = self.query_one("#conversation-items", Container)
        box.remove_children()
        if sync.error.get():
            box.mount(Static(f"{sync.error.get()}\n[r] Retry", classes="error-text", markup=False))
            return
        if not items:
            box.mount(Static("No conversations yet\n\n[Ctrl+N] Start one", classes="empty-text", markup=False))
            return
        self.cursor_position = min(self.cursor_position, len(items) - 1)
        for i, conversation in enumerate(items):
            item = ConversationItem(
                conversation,
                selected=selected is not None and selected.id == conversation.id,
                classes="conversation-item",
            )
            if i == self.cursor_position:
                item.add_class("vim-cursor")
            box.mount(item)

    def watch_cursor_position(self, old: int, new: int) -> None:
        items = list(self.query(".conversation-item"))
        for item in items:
            item.remove_class("vim-cursor")
        if 0 <= new < len(items):
            items[new].add_class("vim-cursor")
            self.scroll_to_widget(items[new])

    def key_j(self) -> None:
        if self.cursor_position < len(self.store.conversations.items) - 1:
            self.cursor_position += 1

    def key_k(self) -> None:
        if self.cursor_position > 0:
            self.cursor_position -= 1

    def key_enter(self) -> None:
        items = self.store.conversations.items
        if 0 <= self.cursor_position < len(items):
            self.app.open_conversation(items[self.cursor_position])

    def key_r(self) -> None:
        self.app.in_background(self.store.conversations.retry)


class ChatView(CellBound, VerticalScroll):
    cursor_position = reactive(0)
    can_focus = True

    def __init__(self, store: SyncStore, **kwargs):
        super().__init__(**kwargs)
        self.store = store

    def compose(self) -> ComposeResult:
        yield Static("Select a conversation", classes="panel-header", markup=False)
        yield Container(id="chat-messages")
        yield Static("", id="send-error", classes="error-text", markup=False)
        yield Input(placeholder="Type a message and press Enter…", max_length=1000, id="message-input")

    def on_mount(self) -> None:
        self.border_title = "Chat"
        stream = self.store.stream
        self.bind_cells([stream.state, stream.messages, stream.error], self.redraw)
        self.bind_cells_send_error()
        self.redraw()

    def bind_cells_send_error(self) -> None:
        stream = self.store.stream
        self._unbind.append(stream.send_error.subscribe(lambda value: self.app.ui(self._show_send_error, value)))

    def _show_send_error(self, value) -> None:
        self.query_one("#send-error", Static).update(value or "")

    def redraw(self) -> None:
        stream = self.store.stream
        header = self.query_one(".panel-header", Static)
        box = self.query_one("#chat-messages", Container)
        box.remove_children()

        conversation = stream.conversation
        if conversation is None:
            header.update("Select a conversation")
            return
        header.update(f"@{conversation.other_user.username or conversation.other_user.id} | {conversation.other_user.name}")

        state = stream.state.get()
        if state == StreamState.LOADING:
            box.mount(Static("Loading…", classes="empty-text"))
            return
        if state == StreamState.ERRORED:
            box.mount(Static(f"{stream.error.get()}\n[r] Retry", classes="error-text", markup=False))
            return
        messages = stream.items
        if not messages:
            box.mount(Static("No messages yet. Start the conversation!", classes="empty-text", markup=False))
            return
        self.cursor_position = min(self.cursor_position, len(messages) - 1)
        for i, message in enumerate(messages):
            item = ChatMessage(message, own=stream.can_delete(message), classes="chat-message")
            if i == self.cursor_position:
                item.add_class("vim-cursor")
            box.mount(item)
        self.scroll_end(animate=False)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id != "message-input":
            return
        text = event.value
        stream = self.store.stream
        problem = stream.validate(text)
        if problem:
            stream.send_error.set(problem)
            return
        event.input.value = ""
        self.app.in_background(stream.send, text)

    def watch_cursor_position(self, old: int, new: int) -> None:
        items = list(self.query(".chat-message"))
        for item in items:
            item.remove_class("vim-cursor")
        if 0 <= new < len(items):
            items[new].add_class("vim-cursor")
            self.scroll_to_widget(items[new])

    def key_j(self) -> None:
        if self.cursor_position < len(self.store.stream.items) - 1:
            self.cursor_position += 1

    def key_k(self) -> None:
        if self.cursor_position > 0:
            self.cursor_position -= 1

    def key_r(self) -> None:
        if self.store.stream.state.get() == StreamState.ERRORED:
            self.app.in_background(self.store.stream.retry)

    def key_x(self) -> None:
        """Delete the message under the cursor (own messages only)."""
        stream = self.store.stream
        items = stream.items
        if not 0 <= self.cursor_position < len(items):
            return
        message = items[self.cursor_position]
        if not stream.can_delete(message):
            self.app.notify("You can only delete your own messages", severity="warning")
            return
        self.app.in_background(stream.delete, message.id)


class MessagesScreen(Horizontal):
    def __init__(self, store: SyncStore, **kwargs):
        super().__init__(**kwargs)
        self.store = store

    def compose(self) -> ComposeResult:
        yield ConversationsList(self.store, id="conversations")
        yield ChatView(self.store, id="chat")


# ───────── Notifications ─────────


class NotificationsFeed(CellBound, VerticalScroll):
    cursor_position = reactive(0)
    can_focus = True

    def __init__(self, store: SyncStore, **kwargs):
        super().__init__(**kwargs)
        self.store = store

    def compose(self) -> ComposeResult:
        yield Static("notifications", classes="panel-header", markup=False)
        yield Container(id="notification-items")
        yield Static(
            "\n[j/k] Navigate [Enter] Mark read [a] Mark all [x] Delete [m] More [r] Refresh",
            classes="help-text",
            markup=False,
        )

    def on_mount(self) -> None:
        self.border_title = "Notifications"
        feed = self.store.notifications
        self.bind_cells(
            [feed.notifications, feed.pagination, feed.error, feed.loading, self.store.notification_unread.count],
            self.redraw,
        )
        self.redraw()

    def _selected(self):
        items = self.store.notifications.items
        if 0 <= self.cursor_position < len(items):
            return items[self.cursor_position]
        return None

    def redraw(self) -> None:
        feed = self.store.notifications
        pagination = feed.pagination.get()
        unread = self.store.notification_unread.value
        header = self.query_one(".panel-header", Static)
        more = " | [m] more" if pagination.has_more else ""
        header.update(f"notifications | {unread} unread | page {pagination.page}/{pagination.total_pages or 1}{more}")

        box = self.query_one("#notification-items", Container)
        box.remove_children()
        if feed.error.get():
            box.mount(Static(f"{feed.error.get()}\n[r] Retry", classes="error-text", markup=False))
            return
        items = feed.items
        if not items:
            text = "Loading…" if feed.loading.get() else "No notifications"
            box.mount(Static(text, classes="empty-text", markup=False))
            return
        self.cursor_position = min(self.cursor_position, len(items) - 1)
        for i, notification in enumerate(items):
            row = NotificationRow(notification, classes="notification-item")
            if i == self.cursor_position:
                row.add_class("vim-cursor")
            box.mount(row)

    def watch_cursor_position(self, old: int, new: int) -> None:
        items = list(self.query(".notification-item"))
        for item in items:
            item.remove_class("vim-cursor")
        if 0 <= new < len(items):
            items[new].add_class("vim-cursor")
            self.scroll_to_widget(items[new])

    def key_j(self) -> None:
        items = self.store.notifications.items
        if self.cursor_position < len(items) - 1:
            self.cursor_position += 1
        elif self.store.notifications.pagination.get().has_more:
            self.app.in_background(self.store.notifications.load_more)

    def key_k(self) -> None:
        if self.cursor_position > 0:
            self.cursor_position -= 1

    def key_enter(self) -> None:
        notification = self._selected()
        if notification is not None and not notification.is_read:
            self.app.in_background(self.store.notifications.mark_as_read, notification.id)

    def key_a(self) -> None:
        self.app.in_background(self.store.notifications.mark_all_as_read)

    def key_x(self) -> None:
        notification = self._selected()
        if notification is not None:
            self.app.in_background(self.store.notifications.delete, notification.id)

    def key_m(self) -> None:
        self.app.in_background(self.store.notifications.load_more)

    def key_r(self) -> None:
        self.app.in_background(self.store.notifications.refresh)


# ───────── Dialogs ─────────


class LoginScreen(ModalScreen):
    """Email/password sign-in against the hosted auth provider."""

    def compose(self) -> ComposeResult:
        with Container(id="dialog-container"):
            yield Static("Sign in to recipebox", id="dialog-title")
            yield Input(placeholder="email", id="login-email")
            yield Input(placeholder="password", password=True, id="login-password")
            yield Static("", id="login-error", classes="error-text", markup=False)
            yield Button("Sign in", id="login-submit")

    def on_mount(self) -> None:
        self.query_one("#login-email", Input).focus()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id == "login-email":
            self.query_one("#login-password", Input).focus()
        else:
            self._submit()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "login-submit":
            self._submit()

    def _submit(self) -> None:
        email = self.query_one("#login-email", Input).value.strip()
        password = self.query_one("#login-password", Input).value
        if not email or not password:
            self._set_status("Email and password are required")
            return
        self._set_status("Signing in…")
        self.app.in_background(self._sign_in, email, password)

    def _sign_in(self, email: str, password: str) -> None:
        try:
            self.app.store.sessions.sign_in(email, password)
        except AuthError as e:
            logger.info("Sign-in failed: %s", e)
            self.app.ui(self._set_status, "Sign-in failed. Check your credentials.")
            return
        self.app.ui(self.dismiss, True)

    def _set_status(self, text: str) -> None:
        self.query_one("#login-error", Static).update(text)


class NewConversationDialog(ModalScreen):
    """Start or reopen a conversation with a user id from search or a profile."""

    def compose(self) -> ComposeResult:
        with Container(id="dialog-container"):
            yield Static("New message", id="dialog-title")
            yield Input(placeholder="user id", id="target-user")
            yield Static("", id="new-conversation-error", classes="error-text", markup=False)

    def on_mount(self) -> None:
        self.query_one("#target-user", Input).focus()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        user_id = event.value.strip()
        if not user_id:
            self.dismiss(None)
            return
        self.dismiss(UserSummary(id=user_id))

    def key_escape(self) -> None:
        self.dismiss(None)


# ───────── App ─────────


class RecipeboxApp(App):
    CSS_PATH = "main.tcss"
    ENABLE_COMMAND_PALETTE = False

    BINDINGS = [
        Binding("ctrl+q", "quit", "Quit", show=True),
        Binding("f1", "show_messages", "Messages", show=True),
        Binding("f2", "show_notifications", "Notifications", show=True),
        Binding("ctrl+n", "new_conversation", "New message", show=True),
        Binding("ctrl+l", "sign_out", "Sign out", show=True),
    ]

    current_screen_name = reactive("messages")

    def __init__(self, store: SyncStore = None, **kwargs):
        super().__init__(**kwargs)
        self.store = store or build_store()
        self._ui_thread = threading.get_ident()
        self._unbind: List[Callable[[], None]] = []

    # --- threading helpers ---
    def ui(self, fn: Callable, *args) -> None:
        """Run `fn` on the UI thread, whichever thread a cell changed on."""
        if threading.get_ident() == self._ui_thread:
            fn(*args)
        else:
            self.call_from_thread(fn, *args)

    def in_background(self, fn: Callable, *args) -> None:
        self.run_worker(lambda: fn(*args), thread=True, exit_on_error=False)

    # --- layout ---
    def compose(self) -> ComposeResult:
        yield Static("recipebox", id="app-header", markup=False)
        yield MessagesScreen(self.store, id="messages-screen")
        yield NotificationsFeed(self.store, id="notifications-feed")
        yield Static(
            "[F1] Messages [F2] Notifications [Ctrl+N] New message [Ctrl+L] Sign out [Ctrl+Q] Quit",
            id="app-footer",
            markup=False,
        )

    def on_mount(self) -> None:
        self._ui_thread = threading.get_ident()
        self.query_one("#notifications-feed").display = False
        self._unbind.append(self.store.message_unread.count.subscribe(lambda _v: self.ui(self.update_header)))
        self._unbind.append(self.store.notification_unread.count.subscribe(lambda _v: self.ui(self.update_header)))
        self._unbind.append(self.store.sessions.subscribe(lambda event, _s: self.ui(self._on_session, event)))
        self.store.start()
        self.update_header()
        self.in_background(self._restore_session)

    def on_unmount(self) -> None:
        for unsubscribe in self._unbind:
            unsubscribe()
        self.store.stop()

    def update_header(self) -> None:
        session = self.store.sessions.session
        who = f"@{session.username}" if session and session.username else "signed out"
        messages = badge(self.store.message_unread.value)
        notifications = badge(self.store.notification_unread.value)
        self.query_one("#app-header", Static).update(
            f"recipebox [{self.current_screen_name}] {who} | messages{messages} | notifications{notifications}"
        )

    # --- session ---
    def _restore_session(self) -> None:
        if self.store.sessions.restore() is None:
            self.ui(self._show_login)

    def _show_login(self) -> None:
        if not isinstance(self.screen, LoginScreen):
            self.push_screen(LoginScreen())

    def _on_session(self, event: str) -> None:
        self.update_header()
        if event == SESSION_STARTED:
            self.in_background(self._initial_load)
        elif event == LOGIN_REQUIRED_EVENT:
            self.notify("Your session expired. Please sign in again.", severity="warning")
            self._show_login()

    def _initial_load(self) -> None:
        self.store.conversations.list()
        self.store.notifications.fetch()

    # --- actions ---
    def open_conversation(self, conversation) -> None:
        self.in_background(self.store.open_conversation, conversation)
        self.query_one("#message-input", Input).focus()

    def action_show_messages(self) -> None:
        self.current_screen_name = "messages"
        self.query_one("#notifications-feed").display = False
        self.query_one("#messages-screen").display = True
        self.query_one("#conversations").focus()
        self.update_header()

    def action_show_notifications(self) -> None:
        self.current_screen_name = "notifications"
        self.query_one("#messages-screen").display = False
        feed = self.query_one("#notifications-feed")
        feed.display = True
        feed.focus()
        self.update_header()

    def action_new_conversation(self) -> None:
        def _started(target) -> None:
            if target is None:
                return
            try:
                conversation = self.store.conversations.start_or_find(target)
            except ValueError as e:
                self.notify(str(e), severity="warning")
                return
            if conversation is not None:
                self.action_show_messages()
                self.open_conversation(conversation)

        self.push_screen(NewConversationDialog(), _started)

    def action_sign_out(self) -> None:
        self.in_background(self.store.sessions.sign_out)
        self._show_login()


def main():
    logger.debug("starting RecipeboxApp")
    RecipeboxApp().run()


if __name__ == "__main__":
    main()
