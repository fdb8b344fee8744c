from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Literal, Mapping, Sequence


def utc_now_iso() -> str:
    # タイムゾーン付き ISO 文字列（秒精度）で現在時刻を取得するユーティリティ
    return datetime.now(tz=timezone.utc).replace(microsecond=0).isoformat()


ChatRole = Literal["system", "user", "assistant"]

_ROLE_TABLE: dict[str, ChatRole] = {
    "system": "system",
    "user": "user",
    "assistant": "assistant",
}
DEFAULT_ROLE: ChatRole = "user"
NO_MESSAGES_ERROR = "No messages provided"


class ChatServiceError(RuntimeError):
    """Raised when a chat request cannot be completed."""


class EmptyMessagesError(ChatServiceError):
    """Raised when a request carries no messages at all."""

    def __init__(self) -> None:
        super().__init__(NO_MESSAGES_ERROR)


def role_from_text(value: Any) -> ChatRole:
    """Map a UI role string onto a chat role. Unknown roles become ``user``."""

    if not isinstance(value, str):
        return DEFAULT_ROLE
    return _ROLE_TABLE.get(value.strip().lower(), DEFAULT_ROLE)


@dataclass(frozen=True)
class ChatMessage:
    role: ChatRole
    content: str

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str) -> "ChatMessage":
        return cls(role="assistant", content=content)

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role="system", content=content)

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ChatMessage":
        content = payload.get("content")
        return cls(
            role=role_from_text(payload.get("role")),
            content=content if isinstance(content, str) else "",
        )


def adapt_messages(records: Iterable[ChatMessage | Mapping[str, Any]]) -> list[ChatMessage]:
    # 中身の検証はしない。空文字もそのまま通す
    adapted: list[ChatMessage] = []
    for record in records:
        if isinstance(record, ChatMessage):
            adapted.append(record)
        elif isinstance(record, Mapping):
            adapted.append(ChatMessage.from_dict(record))
        else:
            raise ChatServiceError(f"Unsupported message record: {type(record).__name__}")
    return adapted


def split_prompt(messages: Sequence[ChatMessage]) -> tuple[list[ChatMessage], ChatMessage]:
    """Split messages into the settled context and the newest turn."""

    if not messages:
        raise EmptyMessagesError()
    return list(messages[:-1]), messages[-1]


@dataclass(frozen=True)
class ModelSummary:
    name: str
    modified_at: str
    size: int

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "modified_at": self.modified_at,
            "size": self.size,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ModelSummary":
        try:
            size = int(payload.get("size", 0))
        except (TypeError, ValueError):
            size = 0
        modified_at = payload.get("modified_at")
        return cls(
            name=str(payload.get("name", "")),
            modified_at=modified_at if isinstance(modified_at, str) else "",
            size=max(size, 0),
        )


DEFAULT_CONVERSATION_TITLE = "New Chat"


@dataclass
class StoredConversation:
    conversation_id: int
    title: str = DEFAULT_CONVERSATION_TITLE
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict:
        return {
            "conversation_id": self.conversation_id,
            "title": self.title,
            "created_at": self.created_at,
        }


def derive_title(message: ChatMessage) -> str:
    clean = " ".join(message.content.strip().split())
    return clean[:32] if clean else DEFAULT_CONVERSATION_TITLE
