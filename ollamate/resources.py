from __future__ import annotations

import sys
from functools import lru_cache
from pathlib import Path


@lru_cache(maxsize=1)
def app_root() -> Path:
    """Return the writable directory that holds settings and the chat database."""

    if getattr(sys, "frozen", False):
        # PyInstaller で固めた場合は実行ファイルの隣に設定と DB を置く
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parent.parent
