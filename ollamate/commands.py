"""
Operations exposed to the UI layer.

Each command takes the explicitly constructed :class:`AppState` and either
returns a plain serializable value or raises :class:`CommandError` whose text
is shown to the user as-is.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

from .chat_service import ChatService, ChatServiceError
from .config import AppConfig
from .models import ChatMessage
from .ollama_client import OllamaClient

logger = logging.getLogger(__name__)


class CommandError(RuntimeError):
    """Raised when a UI command fails; the message is user-facing."""


@dataclass
class AppState:
    service: ChatService

    @classmethod
    def from_config(cls, config: AppConfig) -> "AppState":
        client = OllamaClient(config.ollama_base_url, timeout=config.request_timeout)
        logger.info("Using Ollama at %s (%s history)", client.base_url, config.history_mode)
        return cls(service=ChatService(client, mode=config.history_mode))


def translate(text: str) -> str:
    return f"Hello world {text}"


def ask_llm(state: AppState, messages: str | Iterable[ChatMessage | Mapping], model: str) -> str:
    try:
        return state.service.ask(messages, model)
    except ChatServiceError as exc:
        raise CommandError(str(exc)) from exc


def get_ollama_models(state: AppState) -> list[dict]:
    try:
        models = state.service.list_models()
    except ChatServiceError as exc:
        raise CommandError(str(exc)) from exc
    return [model.to_dict() for model in models]


def clear_chat_history(state: AppState) -> None:
    try:
        state.service.clear()
    except ChatServiceError as exc:
        raise CommandError(str(exc)) from exc


def build_llm_messages(
    system_prompt: str | None,
    history: Sequence[ChatMessage],
    prompt: ChatMessage | str,
) -> list[ChatMessage]:
    """Assemble the system prompt, stored turns and the new user turn."""

    new_turn = ChatMessage.user(prompt) if isinstance(prompt, str) else prompt
    messages: list[ChatMessage] = []
    if system_prompt and system_prompt.strip():
        messages.append(ChatMessage.system(system_prompt))
    messages.extend(history)
    messages.append(new_turn)
    return messages
