from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterable, Iterator, Literal, Mapping, Protocol

from .models import (
    ChatMessage,
    ChatServiceError,
    EmptyMessagesError,
    ModelSummary,
    adapt_messages,
    split_prompt,
)

logger = logging.getLogger(__name__)

HistoryMode = Literal["stateless", "stateful"]
HISTORY_MODES: tuple[HistoryMode, ...] = ("stateless", "stateful")

ASK_ERROR_PREFIX = "Error communicating with Ollama"
LIST_ERROR_PREFIX = "Error fetching Ollama models"
LOCK_ERROR = "Failed to lock chat history"

__all__ = [
    "ChatHistory",
    "ChatService",
    "ChatServiceError",
    "EmptyMessagesError",
    "HistoryMode",
    "HISTORY_MODES",
]


class ChatClient(Protocol):
    def chat(self, model: str, messages: Iterable[ChatMessage]) -> ChatMessage: ...

    def chat_with_history(
        self, history: list[ChatMessage], model: str, message: ChatMessage
    ) -> ChatMessage: ...

    def list_local_models(self) -> list[ModelSummary]: ...


class ChatHistory:
    """Process-wide conversation buffer guarded by a single lock.

    The lock is held for the whole of a stateful ``ask`` including the
    network round trip, so history-mode requests run one at a time.
    """

    def __init__(self) -> None:
        self._messages: list[ChatMessage] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self.locked() as messages:
            return len(messages)

    @contextmanager
    def locked(self) -> Iterator[list[ChatMessage]]:
        try:
            self._lock.acquire()
        except RuntimeError as exc:
            raise ChatServiceError(LOCK_ERROR) from exc
        try:
            yield self._messages
        finally:
            self._lock.release()

    def snapshot(self) -> list[ChatMessage]:
        with self.locked() as messages:
            return list(messages)

    def clear(self) -> None:
        with self.locked() as messages:
            messages.clear()


class ChatService:
    """Send chat turns to the local model server, optionally keeping history."""

    def __init__(
        self,
        client: ChatClient,
        mode: HistoryMode = "stateless",
        history: ChatHistory | None = None,
    ) -> None:
        if mode not in HISTORY_MODES:
            raise ValueError(f"Unknown history mode: {mode!r}")
        self._client = client
        self._mode: HistoryMode = mode
        # stateless モードでは履歴バッファ自体を持たない
        self._history = history if mode == "stateful" else None
        if mode == "stateful" and self._history is None:
            self._history = ChatHistory()

    @property
    def mode(self) -> HistoryMode:
        return self._mode

    @property
    def history(self) -> ChatHistory | None:
        return self._history

    def ask(self, messages: str | Iterable[ChatMessage | Mapping], model: str) -> str:
        if isinstance(messages, str):
            # プロンプト文字列だけが渡された場合は 1 件のユーザ発話として扱う
            messages = [ChatMessage.user(messages)]
        adapted = adapt_messages(messages)
        context, newest = split_prompt(adapted)
        if self._history is None:
            return self._ask_stateless([*context, newest], model)
        return self._ask_stateful(self._history, newest, model)

    def clear(self) -> None:
        if self._history is None:
            logger.debug("Clear requested in stateless mode; nothing to do")
            return
        self._history.clear()
        logger.info("Chat history cleared")

    def list_models(self) -> list[ModelSummary]:
        try:
            models = self._client.list_local_models()
        except Exception as exc:
            logger.warning("Listing Ollama models failed: %s", exc)
            raise ChatServiceError(f"{LIST_ERROR_PREFIX}: {exc}") from exc
        logger.debug("Ollama reported %d local models", len(models))
        return models

    def _ask_stateless(self, messages: list[ChatMessage], model: str) -> str:
        logger.info("Sending %d messages to %s", len(messages), model)
        try:
            reply = self._client.chat(model, messages)
        except Exception as exc:
            logger.warning("Chat request to %s failed: %s", model, exc)
            raise ChatServiceError(f"{ASK_ERROR_PREFIX}: {exc}") from exc
        return reply.content

    def _ask_stateful(self, history: ChatHistory, message: ChatMessage, model: str) -> str:
        # ネットワーク往復の間もロックを保持する（履歴系リクエストは直列化される）
        with history.locked() as buffer:
            logger.info("Sending 1 message to %s with %d history turns", model, len(buffer))
            try:
                reply = self._client.chat_with_history(buffer, model, message)
            except Exception as exc:
                logger.warning("Chat request to %s failed: %s", model, exc)
                raise ChatServiceError(f"{ASK_ERROR_PREFIX}: {exc}") from exc
        return reply.content
