"""
Ollamate application package.

This package contains the desktop UI, conversation storage, and the
adapter for a locally running Ollama server.
"""

from .config import AppConfig

__all__ = ["AppConfig"]
