"""Tests for the completion invoker, history buffer and model lister."""

from __future__ import annotations

import threading

import pytest

from ollamate.chat_service import ChatHistory, ChatService, ChatServiceError
from ollamate.models import ChatMessage, EmptyMessagesError
from ollamate.ollama_client import OllamaError
from tests.conftest import FakeOllamaClient


def test_unknown_mode_is_rejected(fake_client):
    with pytest.raises(ValueError, match="Unknown history mode"):
        ChatService(fake_client, mode="sometimes")  # type: ignore[arg-type]


def test_stateless_mode_has_no_history_buffer(fake_client):
    service = ChatService(fake_client, mode="stateless")
    assert service.history is None


@pytest.mark.parametrize("mode", ["stateless", "stateful"])
def test_empty_messages_fail_without_touching_the_network(fake_client, mode):
    service = ChatService(fake_client, mode=mode)

    with pytest.raises(EmptyMessagesError, match="No messages provided"):
        service.ask([], "llama3")

    assert fake_client.requests == []


def test_stateless_ask_sends_full_list_and_returns_reply():
    client = FakeOllamaClient(replies=["4"])
    service = ChatService(client, mode="stateless")
    messages = [
        {"role": "system", "content": "You are a calculator."},
        {"role": "user", "content": "2+2?"},
    ]

    assert service.ask(messages, "llama3") == "4"
    model, sent = client.requests[0]
    assert model == "llama3"
    assert sent == [ChatMessage.system("You are a calculator."), ChatMessage.user("2+2?")]


@pytest.mark.parametrize("mode", ["stateless", "stateful"])
def test_bare_string_is_sent_as_one_user_turn(fake_client, mode):
    service = ChatService(fake_client, mode=mode)

    service.ask("hello", "llama3")

    assert fake_client.requests == [("llama3", [ChatMessage.user("hello")])]


def test_stateless_calls_are_independent(fake_client):
    service = ChatService(fake_client, mode="stateless")

    service.ask([{"role": "user", "content": "first"}], "m1")
    service.ask([{"role": "user", "content": "second"}], "m1")

    assert [m.content for m in fake_client.requests[0][1]] == ["first"]
    assert [m.content for m in fake_client.requests[1][1]] == ["second"]


def test_stateful_sends_only_newest_message_and_accumulates_history(fake_client):
    service = ChatService(fake_client, mode="stateful")

    service.ask([{"role": "user", "content": "hello"}], "m1")
    assert len(service.history) == 2
    service.ask(
        [
            {"role": "user", "content": "ignored context"},
            {"role": "assistant", "content": "also ignored"},
            {"role": "user", "content": "world"},
        ],
        "m1",
    )
    assert len(service.history) == 4

    first, second = fake_client.requests
    assert [m.content for m in first[1]] == ["hello"]
    assert [m.content for m in second[1]] == ["hello", "reply 1", "world"]
    assert service.history.snapshot() == [
        ChatMessage.user("hello"),
        ChatMessage.assistant("reply 1"),
        ChatMessage.user("world"),
        ChatMessage.assistant("reply 2"),
    ]


def test_clear_then_ask_starts_from_empty_buffer(fake_client):
    service = ChatService(fake_client, mode="stateful")
    service.ask([{"role": "user", "content": "hello"}], "m1")

    service.clear()
    assert len(service.history) == 0
    service.ask([{"role": "user", "content": "fresh"}], "m1")

    assert [m.content for m in fake_client.requests[-1][1]] == ["fresh"]


def test_clear_is_idempotent(fake_client):
    service = ChatService(fake_client, mode="stateful")
    service.clear()
    service.clear()
    assert service.history.snapshot() == []


def test_clear_in_stateless_mode_is_a_no_op(fake_client):
    ChatService(fake_client, mode="stateless").clear()


@pytest.mark.parametrize("mode", ["stateless", "stateful"])
def test_client_failures_become_descriptive_errors(failing_client, mode):
    service = ChatService(failing_client, mode=mode)

    with pytest.raises(ChatServiceError) as excinfo:
        service.ask([{"role": "user", "content": "2+2?"}], "llama3")

    assert str(excinfo.value) == (
        "Error communicating with Ollama: Ollama connection failed: [Errno 111] Connection refused"
    )
    assert isinstance(excinfo.value.__cause__, OllamaError)


def test_failed_stateful_ask_does_not_grow_history(failing_client):
    service = ChatService(failing_client, mode="stateful")

    with pytest.raises(ChatServiceError):
        service.ask([{"role": "user", "content": "hi"}], "llama3")

    assert len(service.history) == 0


def test_list_models_returns_summaries(sample_models):
    service = ChatService(FakeOllamaClient(models=sample_models))
    assert service.list_models() == sample_models


def test_list_models_with_no_local_models_is_empty(fake_client):
    assert ChatService(fake_client).list_models() == []


def test_list_models_failure_is_reported(failing_client):
    with pytest.raises(ChatServiceError, match="^Error fetching Ollama models: Ollama connection failed"):
        ChatService(failing_client).list_models()


def test_lock_failure_is_mapped_to_chat_service_error():
    history = ChatHistory()

    class BrokenLock:
        def acquire(self):
            raise RuntimeError("lock is poisoned")

        def release(self):  # pragma: no cover - never acquired
            pass

    history._lock = BrokenLock()

    with pytest.raises(ChatServiceError, match="Failed to lock chat history"):
        history.clear()


def test_clear_waits_for_in_flight_stateful_ask():
    client = FakeOllamaClient(replies=["slow reply"])
    client.gate = threading.Event()
    service = ChatService(client, mode="stateful")
    results = []
    clear_done = threading.Event()

    asker = threading.Thread(
        target=lambda: results.append(service.ask([{"role": "user", "content": "hello"}], "m1"))
    )
    clearer = threading.Thread(target=lambda: (service.clear(), clear_done.set()))

    asker.start()
    assert client.entered.wait(timeout=5)
    clearer.start()
    # ask がロックを握っている間は clear が終わらない
    assert not clear_done.wait(timeout=0.2)

    client.gate.set()
    asker.join(timeout=5)
    clearer.join(timeout=5)

    assert results == ["slow reply"]
    assert clear_done.is_set()
    assert service.history.snapshot() == []


def test_concurrent_asks_are_serialized_without_torn_history():
    client = FakeOllamaClient()
    service = ChatService(client, mode="stateful")

    threads = [
        threading.Thread(target=service.ask, args=([{"role": "user", "content": f"q{i}"}], "m1"))
        for i in range(8)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    history = service.history.snapshot()
    assert len(history) == 16
    # 各リクエストはその時点の完全な履歴を見ている
    assert sorted(len(sent) for _, sent in client.requests) == [1, 3, 5, 7, 9, 11, 13, 15]
    assert [m.role for m in history] == ["user", "assistant"] * 8
