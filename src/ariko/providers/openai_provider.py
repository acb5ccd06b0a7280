"""OpenAI Chat Completions strategy."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any

from .. import known_models
from ..config import ArikoSettings
from ..models import ChatMessage, Role
from ..results import ErrorKind, WebRequestResult
from .base import NO_CONTENT, AIProvider, ApiKeys, ProviderStrategy

logger = logging.getLogger(__name__)

_ROLES = {
    Role.SYSTEM: "system",
    Role.USER: "user",
    Role.ASSISTANT: "assistant",
}


def _content_text(content: Any) -> str | None:
    """Join multi-part content into plain text."""
    if isinstance(content, list):
        return "".join(
            part.get("text", "") if isinstance(part, dict) else str(part)
            for part in content
        )
    return content if isinstance(content, str) else None


class OpenAIStrategy(ProviderStrategy):
    """OpenAI-compatible `/chat/completions` wire format with SSE streaming."""

    provider = AIProvider.OPENAI

    def resolve_models_url(
        self, settings: ArikoSettings, keys: ApiKeys
    ) -> WebRequestResult[str]:
        return WebRequestResult.success(f"{settings.openai_base_url.rstrip('/')}/models")

    def resolve_chat_url(
        self, model: str, settings: ArikoSettings, keys: ApiKeys
    ) -> WebRequestResult[str]:
        return WebRequestResult.success(
            f"{settings.openai_base_url.rstrip('/')}/chat/completions"
        )

    def resolve_auth_header(
        self, settings: ArikoSettings, keys: ApiKeys
    ) -> WebRequestResult[str]:
        key = keys.get(self.provider.value, "")
        if not key:
            return WebRequestResult.fail("OpenAI API key is missing.", ErrorKind.AUTH)
        return WebRequestResult.success(f"Bearer {key}")

    @staticmethod
    def _to_openai_messages(messages: list[ChatMessage]) -> list[dict[str, Any]]:
        return [{"role": _ROLES[m.role], "content": m.content} for m in messages]

    def build_chat_body(self, messages: list[ChatMessage], model: str) -> str:
        return json.dumps({"model": model, "messages": self._to_openai_messages(messages)})

    def parse_chat_response(self, raw: str) -> str:
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            return NO_CONTENT
        choices = payload.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return NO_CONTENT
        message = choices[0].get("message") or {}
        text = _content_text(message.get("content"))
        return NO_CONTENT if text is None else text

    def parse_chat_stream_chunk(self, chunk: bytes | str) -> str:
        parts: list[str] = []
        for line in self._stream.feed_lines(chunk):
            line = line.strip()
            if not line.startswith("data:"):
                continue
            data = line[len("data:"):].strip()
            if not data or data == "[DONE]":
                continue
            try:
                event = json.loads(data)
            except ValueError:
                logger.debug("Skipping malformed OpenAI stream record: %s", data[:200])
                continue
            choices = event.get("choices") if isinstance(event, dict) else None
            if not choices or not isinstance(choices[0], dict):
                continue
            delta = choices[0].get("delta") or {}
            text = _content_text(delta.get("content"))
            if text:
                parts.append(text)
        return "".join(parts)

    def parse_models_response(
        self, raw: str, allowlist: Sequence[str] | None = None
    ) -> list[str]:
        payload = json.loads(raw)
        ids = [m["id"] for m in payload.get("data") or [] if isinstance(m, dict) and m.get("id")]
        return self.filter_models(ids, known_models.OPENAI if allowlist is None else allowlist)
