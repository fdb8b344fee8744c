from __future__ import annotations

import json
import logging
from copy import deepcopy
from pathlib import Path
from typing import Any, Iterable, Mapping

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = "ollamate_settings.json"

DEFAULT_SETTINGS: dict[str, Any] = {
    "ollama": {
        "base_url": "http://127.0.0.1:11434",
        "request_timeout": None,
    },
    "chat": {
        "history_mode": "stateless",
        "default_model": None,
    },
    "storage": {
        "enabled": True,
        "database_path": "chat_history_persistent.db",
    },
    "logging": {
        "level": "INFO",
    },
}


def settings_path(root: Path) -> Path:
    return root / SETTINGS_FILENAME


def load_settings(root: Path) -> dict[str, Any]:
    path = settings_path(root)
    if not path.exists():
        return deepcopy(DEFAULT_SETTINGS)

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable settings file %s: %s", path, exc)
        return deepcopy(DEFAULT_SETTINGS)

    if not isinstance(payload, Mapping):
        logger.warning("Ignoring settings file %s: top level is not an object", path)
        return deepcopy(DEFAULT_SETTINGS)
    return _deep_merge(DEFAULT_SETTINGS, payload)


def save_settings(root: Path, settings: Mapping[str, Any]) -> Path:
    path = settings_path(root)
    path.write_text(json.dumps(settings, ensure_ascii=False, indent=2), encoding="utf-8")
    return path


def get_setting(settings: Mapping[str, Any], dotted_key: str, default: Any = None) -> Any:
    current: Any = settings
    for part in dotted_key.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return default
        current = current[part]
    return current


def get_bool_setting(settings: Mapping[str, Any], dotted_key: str, default: bool) -> bool:
    value = get_setting(settings, dotted_key, default)
    return value if isinstance(value, bool) else default


def get_float_setting(settings: Mapping[str, Any], dotted_key: str, default: float | None) -> float | None:
    value = get_setting(settings, dotted_key, default)
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def get_str_setting(settings: Mapping[str, Any], dotted_key: str, default: str) -> str:
    value = get_setting(settings, dotted_key, default)
    if not isinstance(value, str) or not value.strip():
        return default
    return value.strip()


def get_choice_setting(
    settings: Mapping[str, Any],
    dotted_key: str,
    choices: Iterable[str],
    default: str,
) -> str:
    value = get_str_setting(settings, dotted_key, default).lower()
    if value not in set(choices):
        logger.warning("Unsupported value %r for %s; using %r", value, dotted_key, default)
        return default
    return value


def resolve_path_setting(settings: Mapping[str, Any], dotted_key: str, root: Path) -> Path | None:
    value = get_setting(settings, dotted_key)
    if not isinstance(value, str) or not value.strip():
        return None
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = root / path
    return path.resolve()


def _deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    merged: dict[str, Any] = deepcopy(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
