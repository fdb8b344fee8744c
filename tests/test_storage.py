"""Tests for the SQLite conversation store."""

from __future__ import annotations

import pytest

from ollamate.models import ChatMessage
from ollamate.storage import DEFAULT_SYSTEM_PROMPT, ConversationStore, StorageError


@pytest.fixture
def store(tmp_path):
    store = ConversationStore(tmp_path / "nested" / "chats.db")
    yield store
    store.close()


def test_database_directory_is_created(tmp_path):
    path = tmp_path / "a" / "b" / "chats.db"
    ConversationStore(path).close()
    assert path.exists()


def test_conversations_are_listed_newest_first(store):
    first = store.create_conversation()
    second = store.create_conversation("Planning")

    listed = store.list_conversations()

    assert [c.conversation_id for c in listed] == [second.conversation_id, first.conversation_id]
    assert listed[0].title == "Planning"
    assert listed[1].title == "New Chat"


def test_messages_round_trip_in_insertion_order(store):
    conversation = store.create_conversation()
    store.append_messages(
        conversation.conversation_id,
        [ChatMessage.user("2+2?"), ChatMessage.assistant("4")],
    )
    store.append_messages(
        conversation.conversation_id,
        [ChatMessage.user("and 3+3?"), ChatMessage.assistant("6")],
    )

    assert store.load_messages(conversation.conversation_id) == [
        ChatMessage.user("2+2?"),
        ChatMessage.assistant("4"),
        ChatMessage.user("and 3+3?"),
        ChatMessage.assistant("6"),
    ]


def test_default_title_is_replaced_by_first_user_message(store):
    conversation = store.create_conversation()
    store.append_messages(conversation.conversation_id, [ChatMessage.user("  Explain   Python decorators please ")])
    store.append_messages(conversation.conversation_id, [ChatMessage.user("something else")])

    assert store.list_conversations()[0].title == "Explain Python decorators please"


def test_custom_title_is_kept(store):
    conversation = store.create_conversation("Work")
    store.append_messages(conversation.conversation_id, [ChatMessage.user("hello")])
    assert store.list_conversations()[0].title == "Work"


def test_rename_conversation(store):
    conversation = store.create_conversation()
    store.rename_conversation(conversation.conversation_id, "Renamed")
    assert store.list_conversations()[0].title == "Renamed"


def test_delete_conversation_removes_its_messages(store):
    keep = store.create_conversation()
    drop = store.create_conversation()
    store.append_messages(keep.conversation_id, [ChatMessage.user("keep me")])
    store.append_messages(drop.conversation_id, [ChatMessage.user("drop me")])

    store.delete_conversation(drop.conversation_id)

    assert [c.conversation_id for c in store.list_conversations()] == [keep.conversation_id]
    assert store.load_messages(drop.conversation_id) == []
    assert store.load_messages(keep.conversation_id) == [ChatMessage.user("keep me")]


def test_append_to_unknown_conversation_fails(store):
    with pytest.raises(StorageError, match="Unknown conversation"):
        store.append_messages(999, [ChatMessage.user("hello")])


def test_append_nothing_is_a_no_op(store):
    conversation = store.create_conversation()
    store.append_messages(conversation.conversation_id, [])
    assert store.load_messages(conversation.conversation_id) == []


def test_system_prompt_defaults_and_can_be_replaced(store):
    assert store.get_system_prompt() == DEFAULT_SYSTEM_PROMPT

    store.set_system_prompt("Answer in French.")
    store.set_system_prompt("Answer in German.")

    assert store.get_system_prompt() == "Answer in German."


def test_system_prompt_persists_across_connections(tmp_path):
    path = tmp_path / "chats.db"
    first = ConversationStore(path)
    first.set_system_prompt("Be terse.")
    first.close()

    second = ConversationStore(path)
    try:
        assert second.get_system_prompt() == "Be terse."
    finally:
        second.close()


def test_in_memory_database_is_supported():
    store = ConversationStore(":memory:")
    try:
        conversation = store.create_conversation()
        assert store.load_messages(conversation.conversation_id) == []
    finally:
        store.close()
