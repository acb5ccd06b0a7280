"""Unit tests for LLMClient against an in-process httpx MockTransport."""
from __future__ import annotations

import asyncio
import json
import unittest

import httpx

from ariko.config import ArikoSettings
from ariko.llm import LLMClient
from ariko.models import ChatMessage, Role
from ariko.providers import AIProvider
from ariko.results import ErrorKind

KEYS = {"OpenAI": "sk-test", "Google": "g-key"}


def _messages(text: str = "Hello") -> list[ChatMessage]:
    return [ChatMessage(role=Role.USER, content=text)]


def _openai_reply(text: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": text}}]})


class RecordingHandler:
    """MockTransport handler that records requests and answers from a callable."""

    def __init__(self, respond) -> None:
        self.respond = respond
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        result = self.respond(request)
        if asyncio.iscoroutine(result):
            result = await result
        return result


class TestSendChat(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.settings = ArikoSettings()

    def _client(self, respond) -> tuple[LLMClient, RecordingHandler]:
        handler = RecordingHandler(respond)
        return LLMClient(transport=httpx.MockTransport(handler)), handler

    async def test_empty_model_fails_without_network(self) -> None:
        client, handler = self._client(lambda r: _openai_reply("unused"))
        result = await client.send_chat(_messages(), AIProvider.OPENAI, "", self.settings, KEYS)
        self.assertFalse(result.is_success)
        self.assertEqual(result.error_kind, ErrorKind.UNKNOWN)
        self.assertEqual(len(handler.requests), 0)

    async def test_empty_messages_fail_without_network(self) -> None:
        client, handler = self._client(lambda r: _openai_reply("unused"))
        result = await client.send_chat([], AIProvider.OPENAI, "gpt-4o", self.settings, KEYS)
        self.assertEqual(result.error_kind, ErrorKind.UNKNOWN)
        self.assertIsNone(result.data)
        self.assertEqual(len(handler.requests), 0)

    async def test_missing_key_is_auth_failure(self) -> None:
        client, handler = self._client(lambda r: _openai_reply("unused"))
        result = await client.send_chat(_messages(), AIProvider.OPENAI, "gpt-4o", self.settings, {})
        self.assertEqual(result.error_kind, ErrorKind.AUTH)
        self.assertEqual(len(handler.requests), 0)

    async def test_unknown_provider(self) -> None:
        client, _ = self._client(lambda r: _openai_reply("unused"))
        result = await client.send_chat(_messages(), "Claude", "x", self.settings, KEYS)
        self.assertEqual(result.error_kind, ErrorKind.UNKNOWN)
        self.assertEqual(result.error_message, "Provider not supported.")

    async def test_success_posts_openai_request(self) -> None:
        client, handler = self._client(lambda r: _openai_reply("Hi there"))
        result = await client.send_chat(_messages(), "OpenAI", "gpt-4o", self.settings, KEYS)
        self.assertTrue(result.is_success)
        self.assertEqual(result.data, "Hi there")
        request = handler.requests[0]
        self.assertEqual(request.method, "POST")
        self.assertEqual(str(request.url), "https://api.openai.com/v1/chat/completions")
        self.assertEqual(request.headers["Authorization"], "Bearer sk-test")
        self.assertEqual(json.loads(request.content)["messages"], [{"role": "user", "content": "Hello"}])

    async def test_non_2xx_is_http_failure_with_details(self) -> None:
        client, _ = self._client(lambda r: httpx.Response(401, text='{"error": "bad key"}'))
        result = await client.send_chat(_messages(), AIProvider.OPENAI, "gpt-4o", self.settings, KEYS)
        self.assertEqual(result.error_kind, ErrorKind.HTTP)
        self.assertTrue(result.error_message.startswith("HTTP error: 401"))
        self.assertIn("bad key", result.error_message)

    async def test_invalid_json_is_parsing_failure(self) -> None:
        client, _ = self._client(lambda r: httpx.Response(200, text="<html>oops</html>"))
        result = await client.send_chat(_messages(), AIProvider.OPENAI, "gpt-4o", self.settings, KEYS)
        self.assertEqual(result.error_kind, ErrorKind.PARSING)

    async def test_transport_error_is_network_failure(self) -> None:
        def respond(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = self._client(respond)
        result = await client.send_chat(_messages(), AIProvider.OLLAMA, "llama3.2", self.settings, KEYS)
        self.assertEqual(result.error_kind, ErrorKind.NETWORK)
        self.assertIn("connection refused", result.error_message)

    async def test_timeout_is_network_failure(self) -> None:
        def respond(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client, _ = self._client(respond)
        result = await client.send_chat(_messages(), AIProvider.OPENAI, "gpt-4o", self.settings, KEYS)
        self.assertEqual(result.error_kind, ErrorKind.NETWORK)
        self.assertIn("timed out", result.error_message)

    async def test_slow_server_is_bounded_by_request_timeout(self) -> None:
        async def respond(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return _openai_reply("too late")

        client, _ = self._client(respond)
        settings = ArikoSettings(request_timeout=0.2)
        result = await asyncio.wait_for(
            client.send_chat(_messages(), AIProvider.OPENAI, "gpt-4o", settings, KEYS), timeout=3
        )
        self.assertEqual(result.error_kind, ErrorKind.NETWORK)
        self.assertEqual(result.error_message, "Network error: Request timed out after 0.2s.")
        self.assertFalse(client.is_busy)

    async def test_new_request_cancels_previous(self) -> None:
        started = asyncio.Event()

        async def respond(request: httpx.Request) -> httpx.Response:
            if b"slow" in request.content:
                started.set()
                await asyncio.sleep(30)
            return _openai_reply("fast answer")

        client, _ = self._client(respond)
        slow = asyncio.create_task(
            client.send_chat(_messages("slow"), AIProvider.OPENAI, "gpt-4o", self.settings, KEYS)
        )
        await started.wait()
        fast = await client.send_chat(_messages("quick"), AIProvider.OPENAI, "gpt-4o", self.settings, KEYS)
        first = await slow
        self.assertEqual(first.error_kind, ErrorKind.CANCELLATION)
        self.assertEqual(fast.data, "fast answer")
        self.assertFalse(client.is_busy)


class TestStreaming(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.settings = ArikoSettings()

    async def test_deltas_and_single_done(self) -> None:
        async def body():
            yield b'data: {"choices":[{"delta":{"content":"Hel'
            yield b'lo"}}]}\n\ndata: {"choices":[{"delta":{"content":" there"}}]}\n\n'
            yield b"data: [DONE]\n\n"

        seen: list[httpx.Request] = []

        def respond(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=body())

        client = LLMClient(transport=httpx.MockTransport(respond))
        deltas: list[str] = []
        done = []
        result = await client.send_chat_streamed(
            _messages(), AIProvider.OPENAI, "gpt-4o", self.settings, KEYS,
            on_delta=deltas.append, on_done=done.append,
        )
        self.assertEqual(deltas, ["Hello", " there"])
        self.assertEqual(result.data, "Hello there")
        self.assertEqual(len(done), 1)
        self.assertTrue(done[0].is_success)
        self.assertIs(json.loads(seen[0].content)["stream"], True)

    async def test_ignored_stream_flag_falls_back_to_full_parse(self) -> None:
        client = LLMClient(transport=httpx.MockTransport(lambda r: _openai_reply("whole reply")))
        deltas: list[str] = []
        done = []
        result = await client.send_chat_streamed(
            _messages(), AIProvider.OPENAI, "gpt-4o", self.settings, KEYS,
            on_delta=deltas.append, on_done=done.append,
        )
        self.assertEqual(result.data, "whole reply")
        self.assertEqual(deltas, [])
        self.assertEqual([r.data for r in done], ["whole reply"])

    async def test_precondition_failure_still_calls_done_once(self) -> None:
        client = LLMClient(transport=httpx.MockTransport(lambda r: _openai_reply("unused")))
        done = []
        await client.send_chat_streamed(
            _messages(), AIProvider.OPENAI, "", self.settings, KEYS, on_done=done.append
        )
        self.assertEqual([r.error_kind for r in done], [ErrorKind.UNKNOWN])

    async def test_cancel_yields_exactly_one_cancellation_callback(self) -> None:
        started = asyncio.Event()

        async def respond(request: httpx.Request) -> httpx.Response:
            started.set()
            await asyncio.sleep(30)
            return _openai_reply("too late")

        client = LLMClient(transport=httpx.MockTransport(respond))
        done = []
        task = asyncio.create_task(
            client.send_chat_streamed(
                _messages(), AIProvider.OLLAMA, "llama3.2", self.settings, KEYS, on_done=done.append
            )
        )
        await started.wait()
        client.cancel()
        result = await task

        self.assertEqual(result.error_kind, ErrorKind.CANCELLATION)
        self.assertEqual(len(done), 1)
        self.assertEqual(done[0].error_kind, ErrorKind.CANCELLATION)
        self.assertFalse(any(r.is_success for r in done))

    async def test_trickling_stream_is_bounded_by_request_timeout(self) -> None:
        async def body():
            for _ in range(50):
                yield b'{"message":{"content":"slo'
                await asyncio.sleep(0.1)
                yield b'w"},"done":false}\n'

        client = LLMClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, content=body())))
        settings = ArikoSettings(request_timeout=0.3)
        done = []
        result = await asyncio.wait_for(
            client.send_chat_streamed(
                _messages(), AIProvider.OLLAMA, "llama3.2", settings, KEYS, on_done=done.append
            ),
            timeout=3,
        )
        self.assertEqual(result.error_kind, ErrorKind.NETWORK)
        self.assertIn("timed out after 0.3s", result.error_message)
        self.assertEqual([r.error_kind for r in done], [ErrorKind.NETWORK])

    async def test_large_unstreamed_reply_is_parsed_whole(self) -> None:
        text = "x" * (1024 * 1024 + 100)
        client = LLMClient(transport=httpx.MockTransport(lambda r: _openai_reply(text)))
        result = await client.send_chat_streamed(
            _messages(), AIProvider.OPENAI, "gpt-4o", self.settings, KEYS
        )
        self.assertTrue(result.is_success)
        self.assertEqual(len(result.data), len(text))

    async def test_failing_delta_callback_is_ignored(self) -> None:
        payload = b'{"message":{"content":"a"},"done":false}\n{"message":{"content":"b"},"done":false}\n'
        client = LLMClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, content=payload)))

        def explode(_: str) -> None:
            raise RuntimeError("view gone")

        with self.assertLogs("ariko.llm", level="ERROR"):
            result = await client.send_chat_streamed(
                _messages(), AIProvider.OLLAMA, "llama3.2", self.settings, KEYS, on_delta=explode
            )
        self.assertEqual(result.data, "ab")


class TestFetchModels(unittest.IsolatedAsyncioTestCase):
    async def test_gemini_models_filtered(self) -> None:
        seen: list[httpx.Request] = []

        def respond(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200, json={"models": [{"name": "models/gemini-2.5-flash"}, {"name": "models/aqa"}]}
            )

        client = LLMClient(transport=httpx.MockTransport(respond))
        result = await client.fetch_models(AIProvider.GOOGLE, ArikoSettings(), KEYS)
        self.assertEqual(result.data, ["models/gemini-2.5-flash"])
        self.assertEqual(seen[0].method, "GET")
        self.assertEqual(seen[0].url.params["key"], "g-key")

    async def test_settings_allowlist_overrides_known_models(self) -> None:
        client = LLMClient(
            transport=httpx.MockTransport(
                lambda r: httpx.Response(200, json={"models": [{"name": "llama3.2"}, {"name": "phi4"}]})
            )
        )
        settings = ArikoSettings(allowed_models={"Ollama": ["phi4"]})
        result = await client.fetch_models("Ollama", settings, {})
        self.assertEqual(result.data, ["phi4"])

    async def test_missing_gemini_key(self) -> None:
        client = LLMClient(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        result = await client.fetch_models(AIProvider.GOOGLE, ArikoSettings(), {})
        self.assertEqual(result.error_kind, ErrorKind.AUTH)


if __name__ == "__main__":
    unittest.main()
