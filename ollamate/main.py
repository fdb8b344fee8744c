from __future__ import annotations

import logging
import sys

from PySide6.QtWidgets import QApplication

from .commands import AppState
from .config import AppConfig
from .storage import ConversationStore, StorageError
from .ui import MainWindow

logger = logging.getLogger(__name__)


def main() -> None:
    # Qt アプリのエントリポイント。設定→状態→メインウィンドウの順に生成して実行する。
    app = QApplication(sys.argv)
    config = AppConfig()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    state = AppState.from_config(config)

    store = None
    if config.storage_enabled:
        try:
            store = ConversationStore(config.paths.database_path)
        except StorageError as exc:
            logger.error("Conversation storage disabled: %s", exc)

    window = MainWindow(config, state, store)
    window.show()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
