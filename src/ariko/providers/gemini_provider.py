"""Google Gemini (generativelanguage v1beta) strategy."""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from .. import known_models
from ..config import ArikoSettings
from ..models import ChatMessage, Role
from ..results import ErrorKind, WebRequestResult
from .base import NO_CONTENT, AIProvider, ApiKeys, ProviderStrategy


def _candidate_text(payload: Any) -> str | None:
    """Join the text parts of the first candidate, or None if absent."""
    if not isinstance(payload, dict):
        return None
    candidates = payload.get("candidates") or []
    if not candidates or not isinstance(candidates[0], dict):
        return None
    content = candidates[0].get("content") or {}
    parts = content.get("parts") or []
    texts = [p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
    if not texts:
        return None
    return "".join(texts)


class GeminiStrategy(ProviderStrategy):
    """Gemini `generateContent` wire format; the API key travels in the URL."""

    provider = AIProvider.GOOGLE

    def __init__(self) -> None:
        super().__init__()
        self._decoder = json.JSONDecoder()

    def _api_key(self, keys: ApiKeys) -> str:
        return keys.get(self.provider.value, "")

    def resolve_models_url(
        self, settings: ArikoSettings, keys: ApiKeys
    ) -> WebRequestResult[str]:
        key = self._api_key(keys)
        if not key:
            return WebRequestResult.fail("Google API key is missing.", ErrorKind.AUTH)
        return WebRequestResult.success(
            f"{settings.google_base_url.rstrip('/')}/models?key={key}"
        )

    def resolve_chat_url(
        self, model: str, settings: ArikoSettings, keys: ApiKeys
    ) -> WebRequestResult[str]:
        key = self._api_key(keys)
        if not key:
            return WebRequestResult.fail("Google API key is missing.", ErrorKind.AUTH)
        if not model.startswith("models/"):
            model = f"models/{model}"
        return WebRequestResult.success(
            f"{settings.google_base_url.rstrip('/')}/{model}:generateContent?key={key}"
        )

    def resolve_auth_header(
        self, settings: ArikoSettings, keys: ApiKeys
    ) -> WebRequestResult[str]:
        return WebRequestResult.success(None)

    @staticmethod
    def _to_gemini_contents(messages: list[ChatMessage]) -> list[dict[str, Any]]:
        """Map messages onto Gemini turns.

        Gemini names the assistant "model" and has no system role, so system
        text is folded into the first user turn.
        """
        system_texts = [m.content for m in messages if m.role is Role.SYSTEM and m.content.strip()]
        contents: list[dict[str, Any]] = []
        for m in messages:
            if m.role is Role.SYSTEM:
                continue
            role = "model" if m.role is Role.ASSISTANT else "user"
            contents.append({"role": role, "parts": [{"text": m.content}]})

        if system_texts:
            preamble = "\n\n".join(system_texts)
            if contents and contents[0]["role"] == "user":
                first = contents[0]["parts"][0]
                first["text"] = f"{preamble}\n\n{first['text']}"
            else:
                contents.insert(0, {"role": "user", "parts": [{"text": preamble}]})
        return contents

    def build_chat_body(self, messages: list[ChatMessage], model: str) -> str:
        return json.dumps({"contents": self._to_gemini_contents(messages)})

    def parse_chat_response(self, raw: str) -> str:
        text = _candidate_text(json.loads(raw))
        return NO_CONTENT if text is None else text

    def parse_chat_stream_chunk(self, chunk: bytes | str) -> str:
        # The body is a sequence of JSON objects, possibly wrapped in a JSON
        # array or prefixed with "data:". Anything between objects is noise.
        self._stream.append(chunk)
        parts: list[str] = []
        while True:
            text = self._stream.text
            start = text.find("{")
            if start == -1:
                self._stream.consume(len(text))
                break
            try:
                payload, end = self._decoder.raw_decode(text, start)
            except ValueError:
                self._stream.consume(start)
                self._stream.enforce_limit()
                break
            self._stream.consume(end)
            delta = _candidate_text(payload)
            if delta:
                parts.append(delta)
        return "".join(parts)

    def parse_models_response(
        self, raw: str, allowlist: Sequence[str] | None = None
    ) -> list[str]:
        payload = json.loads(raw)
        names = [
            m["name"] for m in payload.get("models") or [] if isinstance(m, dict) and m.get("name")
        ]
        return self.filter_models(names, known_models.GOOGLE if allowlist is None else allowlist)
