from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .chat_service import HISTORY_MODES, HistoryMode
from .ollama_client import DEFAULT_OLLAMA_URL
from .resources import app_root
from .settings import (
    get_bool_setting,
    get_choice_setting,
    get_float_setting,
    get_setting,
    get_str_setting,
    load_settings,
    resolve_path_setting,
)

logger = logging.getLogger(__name__)

OLLAMA_HOST_ENV = "OLLAMA_HOST"
DEFAULT_DATABASE_NAME = "chat_history_persistent.db"


@dataclass(frozen=True)
class AppPaths:
    root: Path
    data_dir: Path
    database_path: Path


class AppConfig:
    """Resolved application settings: JSON file, defaults and environment."""

    def __init__(self, root: Path | None = None, settings: dict[str, Any] | None = None) -> None:
        self.root = (root or app_root()).resolve()
        self.settings = settings if settings is not None else load_settings(self.root)
        self.paths = self._resolve_paths()

    def _resolve_paths(self) -> AppPaths:
        database_path = resolve_path_setting(self.settings, "storage.database_path", self.root)
        if database_path is None:
            database_path = self.root / DEFAULT_DATABASE_NAME
        return AppPaths(root=self.root, data_dir=database_path.parent, database_path=database_path)

    @property
    def ollama_base_url(self) -> str:
        override = os.getenv(OLLAMA_HOST_ENV, "").strip()
        if override:
            return normalize_base_url(override)
        return normalize_base_url(get_str_setting(self.settings, "ollama.base_url", DEFAULT_OLLAMA_URL))

    @property
    def request_timeout(self) -> float | None:
        timeout = get_float_setting(self.settings, "ollama.request_timeout", None)
        if timeout is not None and timeout <= 0:
            return None
        return timeout

    @property
    def history_mode(self) -> HistoryMode:
        return get_choice_setting(self.settings, "chat.history_mode", HISTORY_MODES, "stateless")  # type: ignore[return-value]

    @property
    def default_model(self) -> str | None:
        value = get_setting(self.settings, "chat.default_model")
        return value.strip() if isinstance(value, str) and value.strip() else None

    @property
    def storage_enabled(self) -> bool:
        return get_bool_setting(self.settings, "storage.enabled", True)

    @property
    def log_level(self) -> int:
        name = get_str_setting(self.settings, "logging.level", "INFO").upper()
        level = logging.getLevelName(name)
        return level if isinstance(level, int) else logging.INFO


def normalize_base_url(value: str) -> str:
    url = value.strip().rstrip("/")
    if "://" not in url:
        # OLLAMA_HOST は "127.0.0.1:11434" のようにスキーム無しで渡されることが多い
        url = f"http://{url}"
    return url
