from __future__ import annotations

import logging

from PySide6.QtCore import QObject, QThread, Qt
from PySide6.QtWidgets import QDialog, QMainWindow, QMessageBox, QSplitter

from ..commands import AppState, build_llm_messages
from ..config import AppConfig
from ..models import ChatMessage
from ..storage import ConversationStore, StorageError
from .chat_widget import ChatWidget
from .history_panel import HistoryPanel
from .settings_dialog import SettingsDialog
from .workers import ClearHistoryWorker, LLMWorker, ModelListWorker

logger = logging.getLogger(__name__)


class MainWindow(QMainWindow):
    def __init__(self, config: AppConfig, state: AppState, store: ConversationStore | None = None) -> None:
        super().__init__()
        self._config = config
        self._state = state
        self._store = store
        self._conversation_id: int | None = None
        self._pending: tuple[int | None, ChatMessage] | None = None
        # スレッド終了までワーカーを保持しておかないと GC で消える
        self._workers: dict[QThread, QObject] = {}
        self._closing = False

        self.setWindowTitle("Ollamate")
        self.resize(1100, 760)

        self._history_panel = HistoryPanel(self)
        self._chat = ChatWidget(self)

        splitter = QSplitter(Qt.Horizontal, self)
        splitter.addWidget(self._history_panel)
        splitter.addWidget(self._chat)
        splitter.setStretchFactor(0, 0)
        splitter.setStretchFactor(1, 1)
        splitter.setSizes([260, 840])
        self.setCentralWidget(splitter)

        self._history_panel.new_conversation_requested.connect(self._on_new_conversation)
        self._history_panel.conversation_selected.connect(self._on_conversation_selected)
        self._history_panel.delete_requested.connect(self._on_delete_conversation)
        self._history_panel.settings_requested.connect(self._on_settings_requested)
        self._chat.message_submitted.connect(self._on_message_submitted)
        self._chat.refresh_models_requested.connect(self.refresh_models)
        self._chat.model_selected.connect(self._on_model_selected)

        if self._store is None:
            # DB を使わない場合は単一の会話だけを扱う
            self._history_panel.setEnabled(False)
            self._chat.set_has_conversation(True)
        else:
            self._reload_conversations()
        self.refresh_models()

    @property
    def has_running_workers(self) -> bool:
        return any(thread.isRunning() for thread in self._workers)

    # Models -------------------------------------------------------------
    def refresh_models(self) -> None:
        self._chat.clear_error()
        worker = ModelListWorker(self._state)
        worker.finished.connect(self._on_models_loaded)
        worker.failed.connect(self._on_models_failed)
        self._start_worker(worker)

    def _on_models_loaded(self, models: list) -> None:
        if self._closing:
            return
        names = [model["name"] for model in models]
        logger.info("Loaded %d local models", len(names))
        self._chat.set_models(names, preferred=self._config.default_model)

    def _on_model_selected(self, name: str) -> None:
        if name:
            logger.info("Model changed to %s", name)

    def _on_models_failed(self, error: str) -> None:
        if self._closing:
            return
        self._chat.set_models([])
        self._chat.show_error(f"Failed to get models: {error}")

    # Conversations ------------------------------------------------------
    def _reload_conversations(self) -> None:
        if self._store is None:
            return
        try:
            conversations = self._store.list_conversations()
        except StorageError as exc:
            self._chat.show_error(f"Failed to load conversations: {exc}")
            return
        self._history_panel.set_conversations(conversations)
        if self._conversation_id is not None:
            self._history_panel.select_conversation(self._conversation_id)

    def _on_new_conversation(self) -> None:
        if self._store is None:
            return
        try:
            conversation = self._store.create_conversation()
        except StorageError as exc:
            self._chat.show_error(f"Failed to create chat: {exc}")
            return
        self._conversation_id = conversation.conversation_id
        self._reload_conversations()
        self._load_conversation(conversation.conversation_id)

    def _on_conversation_selected(self, conversation_id: int) -> None:
        if conversation_id == self._conversation_id:
            return
        self._load_conversation(conversation_id)

    def _load_conversation(self, conversation_id: int) -> None:
        if self._store is None:
            return
        self._conversation_id = conversation_id
        try:
            messages = self._store.load_messages(conversation_id)
        except StorageError as exc:
            self._chat.show_messages([])
            self._chat.show_error(f"Failed to load history: {exc}")
            return
        self._chat.show_messages(messages)
        self._chat.set_has_conversation(True)
        self._reset_session_history()

    def _on_delete_conversation(self, conversation_id: int) -> None:
        if self._store is None:
            return
        answer = QMessageBox.question(self, "Delete Chat", "Delete this conversation?")
        if answer != QMessageBox.Yes:
            return
        try:
            self._store.delete_conversation(conversation_id)
        except StorageError as exc:
            self._chat.show_error(f"Failed to delete chat: {exc}")
            return
        if conversation_id == self._conversation_id:
            self._conversation_id = None
            self._chat.show_messages([])
            self._chat.set_has_conversation(False)
            self._reset_session_history()
        self._reload_conversations()

    def _reset_session_history(self) -> None:
        # stateful モードでは会話を切り替えたらプロセス側の履歴も捨てる
        if self._state.service.mode != "stateful":
            return
        worker = ClearHistoryWorker(self._state)
        worker.failed.connect(self._chat.show_error)
        self._start_worker(worker)

    def _on_settings_requested(self) -> None:
        if self._store is None:
            return
        try:
            current = self._store.get_system_prompt()
        except StorageError as exc:
            self._chat.show_error(f"Failed to load context: {exc}")
            return
        dialog = SettingsDialog(current, self)
        if dialog.exec() != QDialog.Accepted:
            return
        try:
            self._store.set_system_prompt(dialog.system_prompt)
        except StorageError as exc:
            self._chat.show_error(f"Failed to save context: {exc}")

    # Chat ---------------------------------------------------------------
    def _on_message_submitted(self, text: str) -> None:
        model = self._chat.current_model
        if not model:
            return
        system_prompt = None
        if self._store is not None:
            try:
                system_prompt = self._store.get_system_prompt()
            except StorageError as exc:
                logger.warning("Using no system prompt: %s", exc)
        user_message = ChatMessage.user(text)
        messages = build_llm_messages(system_prompt, self._chat.messages, user_message)

        self._chat.clear_error()
        self._chat.append_message(user_message)
        self._chat.set_busy(True)

        worker = LLMWorker(self._state, messages, model)
        self._pending = (self._conversation_id, user_message)
        worker.finished.connect(self._on_reply)
        worker.failed.connect(self._on_reply_failed)
        self._start_worker(worker)

    def _on_reply(self, reply: str) -> None:
        if self._closing:
            return
        self._chat.set_busy(False)
        if self._pending is None:
            return
        conversation_id, user_message = self._pending
        self._pending = None
        assistant_message = ChatMessage.assistant(reply)
        if conversation_id == self._conversation_id:
            self._chat.append_message(assistant_message)
        if self._store is None or conversation_id is None:
            return
        try:
            self._store.append_messages(conversation_id, [user_message, assistant_message])
        except StorageError as exc:
            logger.warning("Failed to save interaction: %s", exc)
            self._chat.show_error(f"DB Save Error: {exc}")
            return
        self._reload_conversations()

    def _on_reply_failed(self, error: str) -> None:
        if self._closing:
            return
        self._chat.set_busy(False)
        pending, self._pending = self._pending, None
        if pending is not None and pending[0] == self._conversation_id:
            self._chat.remove_last_message()
        self._chat.show_error(f"Failed to get response: {error}")

    # Threads ------------------------------------------------------------
    def _start_worker(self, worker: QObject) -> None:
        thread = QThread(self)
        worker.moveToThread(thread)
        thread.started.connect(worker.run)
        # quit はワーカースレッド側で直接呼ぶ（GUI スレッドが wait 中でも止まれるように）
        worker.finished.connect(thread.quit, Qt.DirectConnection)
        worker.failed.connect(thread.quit, Qt.DirectConnection)
        thread.finished.connect(worker.deleteLater)
        thread.finished.connect(thread.deleteLater)
        thread.finished.connect(self._on_thread_finished)
        self._workers[thread] = worker
        thread.start()

    def _on_thread_finished(self) -> None:
        thread = self.sender()
        if isinstance(thread, QThread):
            self._workers.pop(thread, None)

    def closeEvent(self, event) -> None:  # noqa: N802 - Qt API
        self._closing = True
        for thread in list(self._workers):
            # run() が戻った後に quit が効くので、実行中のワーカーは完了まで待つ
            thread.quit()
            thread.wait()
        if self._store is not None:
            self._store.close()
        super().closeEvent(event)
