from __future__ import annotations

import pytest

from conftest import make_conversation, make_message
from recipebox.message_stream import MessageStream, StreamState
from recipebox.unread import UnreadCounter


@pytest.fixture
def unread(fake_api) -> UnreadCounter:
    return UnreadCounter("messages", fake_api.get_unread_message_count)


@pytest.fixture
def stream(fake_api, unread) -> MessageStream:
    return MessageStream(fake_api, unread)


def test_open_fetches_then_marks_read_then_refreshes_count(fake_api, stream, unread) -> None:
    fake_api.messages["bob"] = [make_message("1", "hey", sender_id="bob", receiver_id="user-me")]
    fake_api.unread_messages = 0

    stream.open(make_conversation("bob", unread=1))

    assert fake_api.names() == ["get_messages", "mark_conversation_read", "get_unread_message_count"]
    assert stream.state.get() == StreamState.LOADED
    assert [m.content for m in stream.items] == ["hey"]
    assert unread.value == 0


def test_empty_conversation_short_circuits(fake_api, stream) -> None:
    stream.open(make_conversation("dave", empty=True))

    assert stream.state.get() == StreamState.LOADED
    assert stream.items == []
    assert fake_api.calls == []


def test_first_message_in_empty_conversation_is_appended_without_fetch(fake_api, stream) -> None:
    stream.open(make_conversation("dave", empty=True))

    sent = stream.send("hello")

    assert [m.content for m in stream.items] == ["hello"]
    assert sent is stream.items[0]
    assert "get_messages" not in fake_api.names()
    assert fake_api.called("send_message") == [("send_message", "hello", "dave", "dave")]


def test_first_send_makes_stream_conversation_non_empty(fake_api, stream) -> None:
    stream.open(make_conversation("dave", empty=True))

    sent = stream.send("hello")
    stream.mark_as_read()

    assert not stream.conversation.is_empty
    assert stream.conversation.last_message is sent
    assert fake_api.called("mark_conversation_read") == [("mark_conversation_read", "dave")]


def test_send_reports_conversation_to_callback(fake_api, unread) -> None:
    seen = []
    stream = MessageStream(fake_api, unread, on_message_sent=lambda c, m: seen.append((c.id, m.content)))
    stream.open(make_conversation("dave", empty=True))

    stream.send("hi")

    assert seen == [("dave", "hi")]


def test_fetch_failure_sets_error_and_retry_reloads(fake_api, stream, server_error) -> None:
    fake_api.failures["get_messages"] = server_error

    stream.open(make_conversation("bob"))

    assert stream.state.get() == StreamState.ERRORED
    assert stream.error.get() == "Failed to load messages"
    assert "mark_conversation_read" not in fake_api.names()

    del fake_api.failures["get_messages"]
    fake_api.messages["bob"] = [make_message("1")]
    stream.retry()

    assert stream.state.get() == StreamState.LOADED
    assert stream.error.get() is None
    assert len(stream.items) == 1


def test_mark_read_failure_skips_count_refresh(fake_api, stream, server_error) -> None:
    fake_api.failures["mark_conversation_read"] = server_error

    stream.open(make_conversation("bob"))

    assert stream.state.get() == StreamState.LOADED
    assert "get_unread_message_count" not in fake_api.names()


@pytest.mark.parametrize("content", ["", "   ", "x" * 1001])
def test_invalid_content_is_rejected_locally(fake_api, stream, content) -> None:
    stream.open(make_conversation("dave", empty=True))

    assert stream.send(content) is None

    assert stream.send_error.get()
    assert fake_api.calls == []


def test_send_failure_keeps_list_and_surfaces_error(fake_api, stream, server_error) -> None:
    stream.open(make_conversation("dave", empty=True))
    fake_api.failures["send_message"] = server_error

    assert stream.send("hello") is None

    assert stream.items == []
    assert stream.send_error.get() == "Internal server error"
    assert stream.sending.get() is False


def test_delete_own_message_removes_it(fake_api, stream) -> None:
    fake_api.messages["bob"] = [make_message("1", "mine"), make_message("2", "theirs", sender_id="bob")]
    stream.open(make_conversation("bob"))

    assert stream.delete("1") is True

    assert [m.id for m in stream.items] == ["2"]
    assert fake_api.called("delete_message") == [("delete_message", "1")]


def test_cannot_delete_someone_elses_message(fake_api, stream) -> None:
    fake_api.messages["bob"] = [make_message("2", "theirs", sender_id="bob")]
    stream.open(make_conversation("bob"))

    assert stream.delete("2") is False

    assert [m.id for m in stream.items] == ["2"]
    assert fake_api.called("delete_message") == []


def test_failed_delete_keeps_message_removed(fake_api, stream, server_error) -> None:
    fake_api.messages["bob"] = [make_message("1", "a"), make_message("2", "b"), make_message("3", "c")]
    stream.open(make_conversation("bob"))
    fake_api.failures["delete_message"] = server_error

    assert stream.delete("2") is False

    assert [m.id for m in stream.items] == ["1", "3"]


def test_failed_delete_restores_message_in_place_when_rollback_enabled(rollback, fake_api, stream,
                                                                       server_error) -> None:
    fake_api.messages["bob"] = [make_message("1", "a"), make_message("2", "b"), make_message("3", "c")]
    stream.open(make_conversation("bob"))
    fake_api.failures["delete_message"] = server_error

    assert stream.delete("2") is False

    assert [m.id for m in stream.items] == ["1", "2", "3"]


def test_response_for_closed_conversation_is_dropped(fake_api, stream) -> None:
    fake_api.messages["bob"] = [make_message("1")]
    original = fake_api.get_messages

    def get_messages_then_close(conversation_id):
        result = original(conversation_id)
        stream.close()
        return result

    fake_api.get_messages = get_messages_then_close
    stream.open(make_conversation("bob"))

    assert stream.state.get() == StreamState.IDLE
    assert stream.items == []
    assert "mark_conversation_read" not in fake_api.names()
