from __future__ import annotations

from typing import Iterable

from PySide6.QtCore import QObject, Signal, Slot

from ..commands import AppState, ask_llm, clear_chat_history, get_ollama_models
from ..models import ChatMessage


class LLMWorker(QObject):
    finished = Signal(str)
    failed = Signal(str)

    def __init__(self, state: AppState, messages: Iterable[ChatMessage], model: str) -> None:
        super().__init__()
        self._state = state
        self._messages = list(messages)
        self._model = model

    @Slot()
    def run(self) -> None:
        try:
            # GUI スレッドを塞がないよう別スレッドで推論を実行
            reply = ask_llm(self._state, self._messages, self._model)
        except Exception as exc:  # CommandError とその他の想定外エラーをまとめて UI へ通知
            self.failed.emit(str(exc))
            return
        self.finished.emit(reply)


class ModelListWorker(QObject):
    finished = Signal(object)
    failed = Signal(str)

    def __init__(self, state: AppState) -> None:
        super().__init__()
        self._state = state

    @Slot()
    def run(self) -> None:
        try:
            models = get_ollama_models(self._state)
        except Exception as exc:
            self.failed.emit(str(exc))
            return
        self.finished.emit(models)


class ClearHistoryWorker(QObject):
    finished = Signal()
    failed = Signal(str)

    def __init__(self, state: AppState) -> None:
        super().__init__()
        self._state = state

    @Slot()
    def run(self) -> None:
        try:
            # 推論中の ask が終わるまでロック待ちになるのでワーカーで実行する
            clear_chat_history(self._state)
        except Exception as exc:
            self.failed.emit(str(exc))
            return
        self.finished.emit()
