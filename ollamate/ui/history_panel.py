from __future__ import annotations

from datetime import datetime
from typing import Iterable

from PySide6.QtCore import Qt, Signal
from PySide6.QtWidgets import (
    QLabel,
    QListWidget,
    QListWidgetItem,
    QPushButton,
    QVBoxLayout,
    QWidget,
)

from ..models import StoredConversation


class HistoryPanel(QWidget):
    conversation_selected = Signal(int)
    new_conversation_requested = Signal()
    delete_requested = Signal(int)
    settings_requested = Signal()

    def __init__(self, parent: QWidget | None = None) -> None:
        super().__init__(parent)

        title = QLabel("Ollamate", self)
        title.setStyleSheet("font-weight: 600; font-size: 16px;")

        self._list = QListWidget(self)
        # クリックイベント中に会話ロードを行うため、selectionChanged で拾う
        self._list.itemSelectionChanged.connect(self._on_selection_changed)

        self._new_button = QPushButton("+ New Chat", self)
        self._new_button.clicked.connect(self.new_conversation_requested.emit)

        self._delete_button = QPushButton("🗑️ Delete Chat", self)
        self._delete_button.clicked.connect(self._on_delete_clicked)
        self._delete_button.setEnabled(False)

        self._settings_button = QPushButton("Settings", self)
        self._settings_button.clicked.connect(self.settings_requested.emit)

        layout = QVBoxLayout()
        layout.addWidget(title)
        layout.addWidget(self._new_button)
        layout.addWidget(self._delete_button)
        layout.addWidget(self._list, stretch=1)
        layout.addWidget(self._settings_button)
        layout.setContentsMargins(4, 4, 4, 4)
        layout.setSpacing(8)
        self.setLayout(layout)

    def set_conversations(self, conversations: Iterable[StoredConversation]) -> None:
        selected_id = self.current_conversation_id
        # リストを再構築する間は選択シグナルを止めて無限ループを防ぐ
        self._list.blockSignals(True)
        self._list.clear()
        for conversation in conversations:
            item = QListWidgetItem(self._format_title(conversation))
            item.setData(Qt.UserRole, conversation.conversation_id)
            self._list.addItem(item)
            if conversation.conversation_id == selected_id:
                self._list.setCurrentItem(item)
        self._list.blockSignals(False)
        self._delete_button.setEnabled(self.current_conversation_id is not None)

    def select_conversation(self, conversation_id: int) -> None:
        for index in range(self._list.count()):
            item = self._list.item(index)
            if item.data(Qt.UserRole) == conversation_id:
                self._list.setCurrentItem(item)
                return

    @property
    def current_conversation_id(self) -> int | None:
        item = self._list.currentItem()
        if not item:
            return None
        return item.data(Qt.UserRole)

    def _format_title(self, conversation: StoredConversation) -> str:
        try:
            timestamp = datetime.fromisoformat(conversation.created_at).strftime("%Y-%m-%d %H:%M")
        except ValueError:
            timestamp = conversation.created_at
        return f"{conversation.title}  ({timestamp})"

    def _on_selection_changed(self) -> None:
        conversation_id = self.current_conversation_id
        self._delete_button.setEnabled(conversation_id is not None)
        if conversation_id is not None:
            self.conversation_selected.emit(conversation_id)

    def _on_delete_clicked(self) -> None:
        conversation_id = self.current_conversation_id
        if conversation_id is not None:
            self.delete_requested.emit(conversation_id)
