from __future__ import annotations

import html
from typing import Iterable

import markdown
from PySide6.QtCore import Signal
from PySide6.QtGui import QFont, QTextCursor
from PySide6.QtWidgets import (
    QComboBox,
    QHBoxLayout,
    QLabel,
    QPlainTextEdit,
    QPushButton,
    QSizePolicy,
    QTextEdit,
    QVBoxLayout,
    QWidget,
)

from ..models import ChatMessage

THINKING_TEXT = "AI is thinking..."
ASSISTANT_LABEL = "Assistant"


class ChatWidget(QWidget):
    message_submitted = Signal(str)
    model_selected = Signal(str)
    refresh_models_requested = Signal()

    def __init__(self, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        self._messages: list[ChatMessage] = []
        self._is_busy = False
        self._has_conversation = False

        model_label = QLabel("Model:", self)
        self._model_combo = QComboBox(self)
        self._model_combo.setMinimumWidth(220)
        self._model_combo.setSizePolicy(QSizePolicy.Expanding, QSizePolicy.Preferred)
        self._model_combo.currentTextChanged.connect(self._handle_model_changed)

        self._refresh_button = QPushButton("🔄", self)
        self._refresh_button.setToolTip("Refresh Models List")
        self._refresh_button.setFixedWidth(40)
        self._refresh_button.clicked.connect(self.refresh_models_requested.emit)

        top_layout = QHBoxLayout()
        top_layout.addWidget(model_label)
        top_layout.addWidget(self._model_combo, stretch=1)
        top_layout.addWidget(self._refresh_button)
        top_layout.setContentsMargins(8, 0, 8, 0)

        self._transcript = QTextEdit(self)
        self._transcript.setReadOnly(True)
        self._transcript.setMinimumHeight(300)
        font = QFont()
        font.setPointSize(13)
        self._transcript.setFont(font)

        self._status_label = QLabel("", self)
        self._status_label.setObjectName("StatusLabel")
        self._status_label.setStyleSheet("color: #666666;")

        self._error_label = QLabel("", self)
        self._error_label.setObjectName("ErrorLabel")
        self._error_label.setWordWrap(True)
        self._error_label.setStyleSheet("color: #c0392b;")
        self._error_label.hide()

        self._input = QPlainTextEdit(self)
        self._input.setFixedHeight(90)

        self._send_button = QPushButton("Send", self)
        self._send_button.clicked.connect(self._handle_submit)

        input_row = QHBoxLayout()
        input_row.addWidget(self._input, stretch=1)
        input_row.addWidget(self._send_button)
        input_row.setSpacing(8)

        layout = QVBoxLayout()
        layout.addLayout(top_layout)
        layout.addWidget(self._transcript, stretch=1)
        layout.addWidget(self._status_label)
        layout.addWidget(self._error_label)
        layout.addLayout(input_row)
        layout.setContentsMargins(8, 8, 8, 8)
        layout.setSpacing(10)
        self.setLayout(layout)
        self._refresh_controls()

    # Public API ---------------------------------------------------------
    @property
    def current_model(self) -> str:
        return self._model_combo.currentText()

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    @property
    def is_busy(self) -> bool:
        return self._is_busy

    @property
    def error_text(self) -> str:
        return self._error_label.text()

    def transcript_text(self) -> str:
        return self._transcript.toPlainText()

    def set_models(self, names: Iterable[str], preferred: str | None = None) -> None:
        names = list(names)
        current = self.current_model
        # 選択中のモデルが残っていれば維持し、なければ先頭を選ぶ
        if current in names:
            selected = current
        elif preferred in names:
            selected = preferred
        else:
            selected = names[0] if names else ""
        self._model_combo.blockSignals(True)
        self._model_combo.clear()
        self._model_combo.addItems(names)
        if selected:
            self._model_combo.setCurrentText(selected)
        self._model_combo.blockSignals(False)
        self._refresh_controls()
        if selected != current:
            self.model_selected.emit(selected)

    def set_has_conversation(self, has_conversation: bool) -> None:
        self._has_conversation = has_conversation
        self._refresh_controls()

    def show_messages(self, messages: Iterable[ChatMessage]) -> None:
        self._messages = [m for m in messages if m.role != "system"]
        self._render_messages()
        self.clear_error()

    def append_message(self, message: ChatMessage) -> None:
        self._messages.append(message)
        self._transcript.moveCursor(QTextCursor.End)
        self._transcript.insertHtml(self._format_message(message))
        self._transcript.insertPlainText("\n")
        self._transcript.moveCursor(QTextCursor.End)

    def remove_last_message(self) -> None:
        # 送信失敗時に楽観的に追加したユーザ発話を取り消す
        if self._messages:
            self._messages.pop()
            self._render_messages()

    def set_busy(self, is_busy: bool) -> None:
        self._is_busy = is_busy
        self._refresh_controls()
        self._status_label.setText(THINKING_TEXT if is_busy else "")

    def show_error(self, text: str) -> None:
        self._error_label.setText(text)
        self._error_label.show()

    def clear_error(self) -> None:
        self._error_label.clear()
        self._error_label.hide()

    # Internal helpers ---------------------------------------------------
    def _handle_submit(self) -> None:
        text = self._input.toPlainText().strip()
        if not text or not self._can_send():
            return
        self._input.clear()
        self.message_submitted.emit(text)

    def _handle_model_changed(self, name: str) -> None:
        self.clear_error()
        self.model_selected.emit(name)

    def _render_messages(self) -> None:
        self._transcript.clear()
        for message in self._messages:
            self._transcript.insertHtml(self._format_message(message))
            self._transcript.insertPlainText("\n")
        self._transcript.moveCursor(QTextCursor.End)

    def _format_message(self, message: ChatMessage) -> str:
        if message.role == "user":
            role_label = "👤 You"
            color = "#1f5fbf"
            content = html.escape(message.content).replace("\n", "<br>")
        else:
            # 保存済みの応答はどのモデルが返したか分からないので固定ラベルにする
            role_label = f"🤖 {ASSISTANT_LABEL}"
            color = "#2e7d32"
            content = markdown.markdown(message.content, extensions=["fenced_code", "tables", "nl2br"])
            # QTextEdit の HTML と競合しないよう外側の <p> を外す
            if content.startswith("<p>") and content.endswith("</p>"):
                content = content[3:-4]

        role_html = f'<p style="margin-bottom:0px;"><b style="color:{color}">{role_label}</b></p>'
        return f'<div style="margin-bottom: 10px;">{role_html}{content}</div>'

    def _can_send(self) -> bool:
        return not self._is_busy and bool(self.current_model) and self._has_conversation

    def _refresh_controls(self) -> None:
        can_send = self._can_send()
        self._send_button.setEnabled(can_send)
        self._input.setReadOnly(not can_send)
        self._model_combo.setEnabled(not self._is_busy and self._model_combo.count() > 0)
        self._refresh_button.setEnabled(not self._is_busy)
        if not self._has_conversation:
            self._input.setPlaceholderText("Select a chat")
        else:
            self._input.setPlaceholderText("Enter your prompt...")
