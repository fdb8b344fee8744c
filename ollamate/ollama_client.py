from __future__ import annotations

import json
import logging
from typing import Any, Iterable
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .models import ChatMessage, ModelSummary

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_URL = "http://127.0.0.1:11434"


class OllamaError(RuntimeError):
    """Raised when the local Ollama server cannot serve a request."""


class OllamaClient:
    """Minimal client for the local Ollama HTTP API."""

    def __init__(self, base_url: str = DEFAULT_OLLAMA_URL, timeout: float | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    @property
    def base_url(self) -> str:
        return self._base_url

    def chat(self, model: str, messages: Iterable[ChatMessage]) -> ChatMessage:
        payload = {
            "model": model,
            "messages": [message.to_dict() for message in messages],
            "stream": False,
        }
        logger.debug("POST /api/chat model=%s messages=%d", model, len(payload["messages"]))
        response = self._request_json("POST", "/api/chat", payload)
        return _reply_from_response(response)

    def chat_with_history(
        self,
        history: list[ChatMessage],
        model: str,
        message: ChatMessage,
    ) -> ChatMessage:
        # 履歴には送信前に追加しない。成功したときだけユーザ発話と応答を積む
        reply = self.chat(model, [*history, message])
        history.append(message)
        history.append(reply)
        return reply

    def list_local_models(self) -> list[ModelSummary]:
        response = self._request_json("GET", "/api/tags")
        if not isinstance(response, dict):
            raise OllamaError("Unexpected response from /api/tags.")
        models = response.get("models") or []
        return [ModelSummary.from_payload(item) for item in models if isinstance(item, dict)]

    def _request_json(self, method: str, path: str, payload: dict | None = None) -> Any:
        url = f"{self._base_url}{path}"
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        headers = {"Accept": "application/json"}
        if data is not None:
            headers["Content-Type"] = "application/json"
        request = Request(url, data=data, headers=headers, method=method)
        try:
            with urlopen(request, timeout=self._timeout) as response:
                body = response.read()
        except HTTPError as exc:
            raise OllamaError(f"Ollama error: {exc.code} {_error_detail(exc)}") from exc
        except URLError as exc:
            raise OllamaError(f"Ollama connection failed: {exc.reason}") from exc
        except OSError as exc:
            raise OllamaError(f"Ollama connection failed: {exc}") from exc

        if not body:
            return None
        try:
            return json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise OllamaError(f"Invalid JSON from Ollama: {exc}") from exc


def _reply_from_response(response: Any) -> ChatMessage:
    if not isinstance(response, dict):
        raise OllamaError("Ollama returned no content")
    if response.get("error"):
        raise OllamaError(str(response["error"]))
    message = response.get("message")
    if not isinstance(message, dict) or not isinstance(message.get("content"), str):
        raise OllamaError("Ollama returned no content")
    return ChatMessage.from_dict({"role": message.get("role", "assistant"), "content": message["content"]})


def _error_detail(exc: HTTPError) -> str:
    # Ollama はエラー本文を {"error": "..."} で返す
    try:
        body = exc.read()
    except OSError:  # pragma: no cover - body already consumed
        body = b""
    if body:
        try:
            payload = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            payload = None
        if isinstance(payload, dict) and payload.get("error"):
            return str(payload["error"])
    return str(exc.reason)
