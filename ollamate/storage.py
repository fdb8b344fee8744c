from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator

from .models import (
    DEFAULT_CONVERSATION_TITLE,
    ChatMessage,
    StoredConversation,
    derive_title,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT_KEY = "global_system_prompt"
DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."

_SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS chat_messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id INTEGER NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    role TEXT NOT NULL CHECK(role IN ('user', 'assistant', 'system')),
    content TEXT NOT NULL,
    timestamp TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class StorageError(RuntimeError):
    """Raised when the conversation database cannot be read or written."""


class ConversationStore:
    """SQLite-backed store for conversations and the global system prompt."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = str(db_path)
        self._lock = threading.Lock()
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        # UI スレッドとワーカーの双方から触るので check_same_thread は外してロックで守る
        try:
            self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.executescript(_SCHEMA)
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to open database {self._db_path}: {exc}") from exc
        logger.info("Conversation database ready at %s", self._db_path)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.Error as exc:
                raise StorageError(str(exc)) from exc

    # Conversations ------------------------------------------------------
    def create_conversation(self, title: str = DEFAULT_CONVERSATION_TITLE) -> StoredConversation:
        created_at = utc_now_iso()
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO conversations (title, created_at) VALUES (?, ?)",
                (title, created_at),
            )
        return StoredConversation(conversation_id=int(cursor.lastrowid), title=title, created_at=created_at)

    def list_conversations(self) -> list[StoredConversation]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT id, title, created_at FROM conversations ORDER BY id DESC"
            ).fetchall()
        return [StoredConversation(conversation_id=row[0], title=row[1], created_at=row[2]) for row in rows]

    def rename_conversation(self, conversation_id: int, title: str) -> None:
        with self._transaction() as conn:
            conn.execute("UPDATE conversations SET title = ? WHERE id = ?", (title, conversation_id))

    def delete_conversation(self, conversation_id: int) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM chat_messages WHERE conversation_id = ?", (conversation_id,))
            conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))

    # Messages -----------------------------------------------------------
    def load_messages(self, conversation_id: int) -> list[ChatMessage]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT role, content FROM chat_messages WHERE conversation_id = ? ORDER BY id ASC",
                (conversation_id,),
            ).fetchall()
        return [ChatMessage.from_dict({"role": row[0], "content": row[1]}) for row in rows]

    def append_messages(self, conversation_id: int, messages: Iterable[ChatMessage]) -> None:
        messages = list(messages)
        if not messages:
            return
        timestamp = utc_now_iso()
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT title FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
            if row is None:
                raise StorageError(f"Unknown conversation: {conversation_id}")
            conn.executemany(
                "INSERT INTO chat_messages (conversation_id, role, content, timestamp) VALUES (?, ?, ?, ?)",
                [(conversation_id, m.role, m.content, timestamp) for m in messages],
            )
            first_user = next((m for m in messages if m.role == "user" and m.content.strip()), None)
            if row[0] == DEFAULT_CONVERSATION_TITLE and first_user is not None:
                # 初回のユーザ発話から会話タイトルを自動で付ける
                conn.execute(
                    "UPDATE conversations SET title = ? WHERE id = ?",
                    (derive_title(first_user), conversation_id),
                )

    # Settings -----------------------------------------------------------
    def get_system_prompt(self) -> str:
        with self._transaction() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (SYSTEM_PROMPT_KEY,)).fetchone()
        return row[0] if row else DEFAULT_SYSTEM_PROMPT

    def set_system_prompt(self, text: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                (SYSTEM_PROMPT_KEY, text),
            )
