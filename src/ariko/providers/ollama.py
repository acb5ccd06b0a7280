"""Ollama `/api/chat` strategy."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any

from .. import known_models
from ..config import ArikoSettings
from ..models import ChatMessage
from ..results import WebRequestResult
from .base import NO_CONTENT, AIProvider, ApiKeys, ProviderStrategy

logger = logging.getLogger(__name__)


def _message_to_chat(m: ChatMessage) -> dict[str, Any]:
    """Convert our ChatMessage to Ollama chat format."""
    return {"role": m.role.value.lower(), "content": m.content}


def _message_text(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    message = payload.get("message") or {}
    content = message.get("content") if isinstance(message, dict) else None
    return content if isinstance(content, str) else None


class OllamaStrategy(ProviderStrategy):
    """Locally hosted Ollama server; no authentication, NDJSON streaming."""

    provider = AIProvider.OLLAMA

    def resolve_models_url(
        self, settings: ArikoSettings, keys: ApiKeys
    ) -> WebRequestResult[str]:
        return WebRequestResult.success(f"{settings.effective_ollama_url}/api/tags")

    def resolve_chat_url(
        self, model: str, settings: ArikoSettings, keys: ApiKeys
    ) -> WebRequestResult[str]:
        return WebRequestResult.success(f"{settings.effective_ollama_url}/api/chat")

    def resolve_auth_header(
        self, settings: ArikoSettings, keys: ApiKeys
    ) -> WebRequestResult[str]:
        return WebRequestResult.success(None)

    def build_chat_body(self, messages: list[ChatMessage], model: str) -> str:
        return json.dumps(
            {
                "model": model,
                "messages": [_message_to_chat(m) for m in messages],
                "stream": False,
            }
        )

    def parse_chat_response(self, raw: str) -> str:
        text = _message_text(json.loads(raw))
        return NO_CONTENT if text is None else text

    def parse_chat_stream_chunk(self, chunk: bytes | str) -> str:
        parts: list[str] = []
        for line in self._stream.feed_lines(chunk):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except ValueError:
                logger.debug("Skipping malformed Ollama stream record: %s", line[:200])
                continue
            text = _message_text(record)
            if text:
                parts.append(text)
        return "".join(parts)

    def parse_models_response(
        self, raw: str, allowlist: Sequence[str] | None = None
    ) -> list[str]:
        payload = json.loads(raw)
        names = [
            m["name"] for m in payload.get("models") or [] if isinstance(m, dict) and m.get("name")
        ]
        return self.filter_models(names, known_models.OLLAMA if allowlist is None else allowlist)
