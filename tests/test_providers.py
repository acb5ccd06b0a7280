"""Unit tests for provider strategies: wire bodies, response parsing, streaming, model lists."""
from __future__ import annotations

import json
import unittest

from ariko.config import ArikoSettings
from ariko.models import ChatMessage, Role
from ariko.providers import (
    AIProvider,
    GeminiStrategy,
    OllamaStrategy,
    OpenAIStrategy,
    StreamBuffer,
    default_strategies,
)
from ariko.providers.base import NO_CONTENT
from ariko.results import ErrorKind


def _conversation() -> list[ChatMessage]:
    return [
        ChatMessage(role=Role.SYSTEM, content="Be brief."),
        ChatMessage(role=Role.USER, content="What is a prefab?"),
        ChatMessage(role=Role.ASSISTANT, content="A reusable GameObject."),
        ChatMessage(role=Role.USER, content="Thanks, and a ScriptableObject?"),
    ]


class TestRegistry(unittest.TestCase):
    def test_default_strategies_cover_every_provider(self) -> None:
        strategies = default_strategies()
        self.assertEqual(set(strategies), set(AIProvider))
        for provider, strategy in strategies.items():
            self.assertIs(strategy.provider, provider)


class TestOpenAIStrategy(unittest.TestCase):
    def setUp(self) -> None:
        self.strategy = OpenAIStrategy()
        self.settings = ArikoSettings()

    def test_body_uses_lowercase_roles(self) -> None:
        body = json.loads(self.strategy.build_chat_body(_conversation(), "gpt-4o"))
        self.assertEqual(body["model"], "gpt-4o")
        self.assertEqual(
            [m["role"] for m in body["messages"]], ["system", "user", "assistant", "user"]
        )
        self.assertEqual(body["messages"][1]["content"], "What is a prefab?")

    def test_round_trip_through_response_shape(self) -> None:
        self.strategy.build_chat_body(_conversation(), "gpt-4o")
        raw = json.dumps({"choices": [{"message": {"role": "assistant", "content": "A data asset."}}]})
        self.assertEqual(self.strategy.parse_chat_response(raw), "A data asset.")

    def test_missing_fields_yield_placeholder(self) -> None:
        self.assertEqual(self.strategy.parse_chat_response('{"choices": []}'), NO_CONTENT)
        self.assertEqual(self.strategy.parse_chat_response("{}"), NO_CONTENT)

    def test_invalid_json_raises(self) -> None:
        with self.assertRaises(ValueError):
            self.strategy.parse_chat_response("not json")

    def test_auth_header_requires_key(self) -> None:
        missing = self.strategy.resolve_auth_header(self.settings, {})
        self.assertFalse(missing.is_success)
        self.assertEqual(missing.error_kind, ErrorKind.AUTH)
        present = self.strategy.resolve_auth_header(self.settings, {"OpenAI": "sk-test"})
        self.assertEqual(present.data, "Bearer sk-test")

    def test_urls(self) -> None:
        self.assertEqual(
            self.strategy.resolve_chat_url("gpt-4o", self.settings, {}).data,
            "https://api.openai.com/v1/chat/completions",
        )
        self.assertEqual(
            self.strategy.resolve_models_url(self.settings, {}).data,
            "https://api.openai.com/v1/models",
        )

    def test_split_line_emits_exactly_one_delta(self) -> None:
        deltas = [
            self.strategy.parse_chat_stream_chunk(b'data: {"choices":[{"delta":{"content":"Hel'),
            self.strategy.parse_chat_stream_chunk(b'lo"}}]}\n'),
        ]
        emitted = [d for d in deltas if d]
        self.assertEqual(emitted, ["Hello"])

    def test_stream_skips_done_sentinel_and_noise(self) -> None:
        chunk = (
            b": keep-alive\n"
            b'data: {"choices":[{"delta":{"role":"assistant"}}]}\n\n'
            b'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\n'
            b"data: [DONE]\n\n"
        )
        self.assertEqual(self.strategy.parse_chat_stream_chunk(chunk), "Hi")

    def test_reset_stream_drops_partial_line(self) -> None:
        self.strategy.parse_chat_stream_chunk(b'data: {"choices":[{"delta":{"content":"stale')
        self.strategy.reset_stream()
        self.assertEqual(
            self.strategy.parse_chat_stream_chunk(b'data: {"choices":[{"delta":{"content":"new"}}]}\n'),
            "new",
        )

    def test_models_filtered_to_known(self) -> None:
        raw = json.dumps({"data": [{"id": "gpt-4o"}, {"id": "whisper-1"}, {"id": "gpt-5"}]})
        self.assertEqual(self.strategy.parse_models_response(raw), ["gpt-4o", "gpt-5"])

    def test_models_allowlist_override(self) -> None:
        raw = json.dumps({"data": [{"id": "gpt-4o"}, {"id": "whisper-1"}]})
        self.assertEqual(self.strategy.parse_models_response(raw, ["whisper-1"]), ["whisper-1"])


class TestGeminiStrategy(unittest.TestCase):
    def setUp(self) -> None:
        self.strategy = GeminiStrategy()
        self.settings = ArikoSettings()

    def test_system_text_folded_into_first_user_turn(self) -> None:
        body = json.loads(self.strategy.build_chat_body(_conversation(), "models/gemini-2.5-flash"))
        contents = body["contents"]
        self.assertEqual([c["role"] for c in contents], ["user", "model", "user"])
        self.assertTrue(contents[0]["parts"][0]["text"].startswith("Be brief."))
        self.assertIn("What is a prefab?", contents[0]["parts"][0]["text"])

    def test_system_only_history_becomes_user_turn(self) -> None:
        body = json.loads(
            self.strategy.build_chat_body([ChatMessage(role=Role.SYSTEM, content="Rules")], "m")
        )
        self.assertEqual(body["contents"], [{"role": "user", "parts": [{"text": "Rules"}]}])

    def test_round_trip_through_response_shape(self) -> None:
        raw = json.dumps(
            {"candidates": [{"content": {"role": "model", "parts": [{"text": "A data "}, {"text": "asset."}]}}]}
        )
        self.assertEqual(self.strategy.parse_chat_response(raw), "A data asset.")

    def test_missing_candidates_yield_placeholder(self) -> None:
        self.assertEqual(self.strategy.parse_chat_response('{"candidates": []}'), NO_CONTENT)

    def test_key_required_for_both_urls(self) -> None:
        for result in (
            self.strategy.resolve_models_url(self.settings, {}),
            self.strategy.resolve_chat_url("gemini-2.5-pro", self.settings, {}),
        ):
            self.assertEqual(result.error_kind, ErrorKind.AUTH)

    def test_chat_url_carries_key_and_model_prefix(self) -> None:
        url = self.strategy.resolve_chat_url("gemini-2.5-pro", self.settings, {"Google": "g-key"}).data
        self.assertEqual(
            url,
            "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.5-pro:generateContent?key=g-key",
        )
        self.assertIsNone(self.strategy.resolve_auth_header(self.settings, {"Google": "g-key"}).data)

    def test_array_stream_split_across_chunks(self) -> None:
        first = b'[{"candidates":[{"content":{"parts":[{"text":"Hel'
        second = b'lo"}]}}]}\n,\r\n{"candidates":[{"content":{"parts":[{"text":" world"}]}}]}]'
        self.assertEqual(self.strategy.parse_chat_stream_chunk(first), "")
        self.assertEqual(self.strategy.parse_chat_stream_chunk(second), "Hello world")

    def test_models_filtered_to_known(self) -> None:
        raw = json.dumps({"models": [{"name": "models/gemini-2.5-pro"}, {"name": "models/embedding-001"}]})
        self.assertEqual(self.strategy.parse_models_response(raw), ["models/gemini-2.5-pro"])


class TestOllamaStrategy(unittest.TestCase):
    def setUp(self) -> None:
        self.strategy = OllamaStrategy()

    def test_body_disables_streaming(self) -> None:
        body = json.loads(self.strategy.build_chat_body(_conversation(), "llama3.2"))
        self.assertEqual(body["model"], "llama3.2")
        self.assertIs(body["stream"], False)
        self.assertEqual(body["messages"][0], {"role": "system", "content": "Be brief."})

    def test_round_trip_through_response_shape(self) -> None:
        raw = json.dumps({"message": {"role": "assistant", "content": "A data asset."}, "done": True})
        self.assertEqual(self.strategy.parse_chat_response(raw), "A data asset.")

    def test_urls_use_configured_base(self) -> None:
        settings = ArikoSettings(ollama_url="http://gpu-box:11434/")
        self.assertEqual(self.strategy.resolve_chat_url("m", settings, {}).data, "http://gpu-box:11434/api/chat")
        self.assertEqual(
            self.strategy.resolve_models_url(ArikoSettings(), {}).data,
            "http://localhost:11434/api/tags",
        )
        self.assertTrue(self.strategy.resolve_auth_header(settings, {}).is_success)

    def test_multibyte_character_split_across_chunks(self) -> None:
        line = json.dumps({"message": {"content": "café"}, "done": False}, ensure_ascii=False).encode("utf-8")
        cut = line.index("é".encode("utf-8")) + 1
        self.assertEqual(self.strategy.parse_chat_stream_chunk(line[:cut]), "")
        self.assertEqual(self.strategy.parse_chat_stream_chunk(line[cut:] + b"\n"), "café")

    def test_done_record_emits_nothing(self) -> None:
        chunk = b'{"message":{"content":"ok"},"done":false}\n{"message":{"content":""},"done":true}\n'
        self.assertEqual(self.strategy.parse_chat_stream_chunk(chunk), "ok")

    def test_every_installed_model_kept_by_default(self) -> None:
        raw = json.dumps({"models": [{"name": "llama3.2"}, {"name": "qwen2.5-coder"}]})
        self.assertEqual(self.strategy.parse_models_response(raw), ["llama3.2", "qwen2.5-coder"])


class TestStreamBuffer(unittest.TestCase):
    def test_keeps_incomplete_tail(self) -> None:
        buffer = StreamBuffer()
        self.assertEqual(buffer.feed_lines("a\nb"), ["a"])
        self.assertEqual(buffer.feed_lines("c\r\n"), ["bc"])
        self.assertEqual(buffer.text, "")

    def test_oversized_partial_line_is_dropped(self) -> None:
        buffer = StreamBuffer(limit=8)
        with self.assertLogs("ariko.providers.base", level="WARNING"):
            self.assertEqual(buffer.feed_lines("x" * 20), [])
        self.assertEqual(buffer.text, "")


if __name__ == "__main__":
    unittest.main()
