"""
Shared fixtures and fake clients for the Ollamate test suite.

No test talks to a real Ollama server: the chat service is driven through
``FakeOllamaClient`` and the HTTP client is exercised by patching ``urlopen``.
"""

from __future__ import annotations

import json
import os
import threading
import time
from unittest.mock import MagicMock

import pytest

from ollamate.models import ChatMessage, ModelSummary
from ollamate.ollama_client import OllamaError

# ウィジェットのテストはディスプレイ無しでも動くようにする
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")


class FakeOllamaClient:
    """In-process stand-in for :class:`ollamate.ollama_client.OllamaClient`.

    Every outbound request is recorded in ``requests`` as ``(model, messages)``
    where ``messages`` is a copy of exactly what would have been sent.
    """

    def __init__(self, replies=None, error=None, models=None):
        self.replies = list(replies or [])
        self.error = error
        self.models = list(models or [])
        self.requests: list[tuple[str, list[ChatMessage]]] = []
        self.gate: threading.Event | None = None
        self.entered = threading.Event()

    def chat(self, model, messages):
        messages = list(messages)
        self.requests.append((model, messages))
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        content = self.replies.pop(0) if self.replies else f"reply {len(self.requests)}"
        return ChatMessage.assistant(content)

    def chat_with_history(self, history, model, message):
        reply = self.chat(model, [*history, message])
        history.append(message)
        history.append(reply)
        return reply

    def list_local_models(self):
        if self.error is not None:
            raise self.error
        return list(self.models)


@pytest.fixture
def fake_client():
    return FakeOllamaClient()


@pytest.fixture
def failing_client():
    return FakeOllamaClient(error=OllamaError("Ollama connection failed: [Errno 111] Connection refused"))


@pytest.fixture
def sample_models():
    return [
        ModelSummary(name="llama3:latest", modified_at="2024-05-01T10:00:00Z", size=4661224676),
        ModelSummary(name="mistral:7b", modified_at="2024-04-12T08:30:00Z", size=4109865159),
    ]


def make_urlopen_response(payload):
    """Create a context-manager mock shaped like ``urlopen``'s return value."""
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
    response = MagicMock()
    response.read.return_value = body
    response.__enter__.return_value = response
    response.__exit__.return_value = False
    return response


@pytest.fixture(scope="session")
def qt_app():
    from PySide6.QtWidgets import QApplication

    app = QApplication.instance() or QApplication([])
    app.setQuitOnLastWindowClosed(False)
    yield app


def wait_until(app, predicate, timeout=5.0):
    """Pump the Qt event loop until ``predicate()`` holds or fail after ``timeout``."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        app.processEvents()
        time.sleep(0.01)
