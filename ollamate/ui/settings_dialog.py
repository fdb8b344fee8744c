from __future__ import annotations

from PySide6.QtWidgets import (
    QDialog,
    QDialogButtonBox,
    QLabel,
    QPlainTextEdit,
    QVBoxLayout,
    QWidget,
)


class SettingsDialog(QDialog):
    """Editor for the global system prompt sent ahead of every conversation."""

    def __init__(self, system_prompt: str, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        self.setWindowTitle("Settings")
        self.resize(520, 360)

        label = QLabel("Global System Prompt:", self)
        self._editor = QPlainTextEdit(self)
        self._editor.setPlainText(system_prompt)

        buttons = QDialogButtonBox(QDialogButtonBox.Save | QDialogButtonBox.Cancel, self)
        buttons.accepted.connect(self.accept)
        buttons.rejected.connect(self.reject)

        layout = QVBoxLayout()
        layout.addWidget(label)
        layout.addWidget(self._editor, stretch=1)
        layout.addWidget(buttons)
        self.setLayout(layout)

    @property
    def system_prompt(self) -> str:
        return self._editor.toPlainText()
