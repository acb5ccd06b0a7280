"""LLM client: strategy registry, HTTP transport, timeouts and cancellation."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Awaitable, Callable, Coroutine, Mapping
from dataclasses import dataclass
from functools import partial
from types import MappingProxyType
from typing import Any, TypeVar

import httpx

from .config import ArikoSettings
from .models import ChatMessage
from .providers import AIProvider, ApiKeys, ProviderStrategy, default_strategies
from .results import ErrorKind, WebRequestResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

DeltaCallback = Callable[[str], Awaitable[None] | None]
DoneCallback = Callable[[WebRequestResult[str]], Awaitable[None] | None]

_PARSE_ERRORS = (ValueError, KeyError, TypeError, IndexError, AttributeError)
_STREAMING_FLAG_PROVIDERS = (AIProvider.OPENAI, AIProvider.OLLAMA)


@dataclass(frozen=True)
class _PreparedChat:
    strategy: ProviderStrategy
    url: str
    auth: str | None
    body: str


def coerce_provider(provider: AIProvider | str) -> AIProvider | None:
    """Map a provider name ("OpenAI", "google", ...) onto AIProvider."""
    if isinstance(provider, AIProvider):
        return provider
    for candidate in AIProvider:
        if candidate.value.lower() == str(provider).strip().lower():
            return candidate
    if str(provider).strip().lower() == "gemini":
        return AIProvider.GOOGLE
    return None


class LLMClient:
    """
    Sends chat and model-list requests through a provider strategy.

    Only one request is in flight per client: starting a request cancels the
    previous one, and ``cancel()`` aborts the active one. A cancelled request
    completes with a Cancellation-kind result instead of raising.
    """

    def __init__(
        self,
        strategies: Mapping[AIProvider, ProviderStrategy] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._strategies = MappingProxyType(dict(strategies or default_strategies()))
        self._transport = transport
        self._active: asyncio.Task[Any] | None = None

    @property
    def strategies(self) -> Mapping[AIProvider, ProviderStrategy]:
        return self._strategies

    @property
    def is_busy(self) -> bool:
        return self._active is not None and not self._active.done()

    def cancel(self) -> None:
        """Abort the in-flight request, if any."""
        task = self._active
        if task is not None and not task.done():
            logger.info("Cancelling in-flight LLM request")
            task.cancel()

    # ------------------------------------------------------------------
    # Public requests
    # ------------------------------------------------------------------

    async def send_chat(
        self,
        messages: list[ChatMessage],
        provider: AIProvider | str,
        model: str,
        settings: ArikoSettings,
        keys: ApiKeys,
    ) -> WebRequestResult[str]:
        """Send a chat request and return the assistant text."""
        prepared = self._prepare_chat(messages, provider, model, settings, keys)
        if not prepared.is_success:
            return WebRequestResult.fail(prepared.error_message, prepared.error_kind)
        chat = prepared.data
        return await self._run_exclusive(
            self._send(
                "POST",
                chat.url,
                chat.auth,
                chat.body,
                settings.request_timeout,
                chat.strategy.parse_chat_response,
            )
        )

    async def send_chat_streamed(
        self,
        messages: list[ChatMessage],
        provider: AIProvider | str,
        model: str,
        settings: ArikoSettings,
        keys: ApiKeys,
        on_delta: DeltaCallback | None = None,
        on_done: DoneCallback | None = None,
    ) -> WebRequestResult[str]:
        """Stream a chat request.

        ``on_delta`` receives every non-empty decoded text increment and
        ``on_done`` is called exactly once with the aggregated text or the
        failure. The same result is returned.
        """
        prepared = self._prepare_chat(messages, provider, model, settings, keys)
        if not prepared.is_success:
            result: WebRequestResult[str] = WebRequestResult.fail(
                prepared.error_message, prepared.error_kind
            )
            await self._notify(on_done, result)
            return result

        chat = prepared.data
        body = self._enable_streaming(chat.strategy.provider, chat.body)
        try:
            result = await self._run_exclusive(
                self._stream(chat.strategy, chat.url, chat.auth, body, settings.request_timeout, on_delta)
            )
        except asyncio.CancelledError:
            await self._notify(
                on_done,
                WebRequestResult.fail("Request cancelled.", ErrorKind.CANCELLATION),
            )
            raise
        await self._notify(on_done, result)
        return result

    async def fetch_models(
        self,
        provider: AIProvider | str,
        settings: ArikoSettings,
        keys: ApiKeys,
    ) -> WebRequestResult[list[str]]:
        """Fetch the allow-listed models the provider offers."""
        resolved = coerce_provider(provider)
        strategy = self._strategies.get(resolved) if resolved else None
        if strategy is None:
            return WebRequestResult.fail("Provider not supported.", ErrorKind.UNKNOWN)

        url = strategy.resolve_models_url(settings, keys)
        if not url.is_success:
            return WebRequestResult.fail(url.error_message, url.error_kind)
        auth = strategy.resolve_auth_header(settings, keys)
        if not auth.is_success:
            return WebRequestResult.fail(auth.error_message, auth.error_kind)

        parser = partial(
            strategy.parse_models_response,
            allowlist=settings.allowed_models.get(strategy.provider.value),
        )
        return await self._run_exclusive(
            self._send("GET", url.data, auth.data, None, settings.request_timeout, parser)
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _prepare_chat(
        self,
        messages: list[ChatMessage],
        provider: AIProvider | str,
        model: str,
        settings: ArikoSettings,
        keys: ApiKeys,
    ) -> WebRequestResult[_PreparedChat]:
        if not model or not model.strip():
            return WebRequestResult.fail("No AI model selected.", ErrorKind.UNKNOWN)
        if not messages:
            return WebRequestResult.fail("Cannot send an empty message history.", ErrorKind.UNKNOWN)
        resolved = coerce_provider(provider)
        strategy = self._strategies.get(resolved) if resolved else None
        if strategy is None:
            return WebRequestResult.fail("Provider not supported.", ErrorKind.UNKNOWN)

        url = strategy.resolve_chat_url(model, settings, keys)
        if not url.is_success:
            return WebRequestResult.fail(url.error_message, url.error_kind)
        auth = strategy.resolve_auth_header(settings, keys)
        if not auth.is_success:
            return WebRequestResult.fail(auth.error_message, auth.error_kind)

        body = strategy.build_chat_body(messages, model)
        return WebRequestResult.success(_PreparedChat(strategy, url.data, auth.data, body))

    @staticmethod
    def _enable_streaming(provider: AIProvider, body: str) -> str:
        """Best effort: set ``"stream": true`` for providers that honour it."""
        if provider not in _STREAMING_FLAG_PROVIDERS:
            return body
        try:
            payload = json.loads(body)
        except ValueError:
            return body
        if not isinstance(payload, dict):
            return body
        payload["stream"] = True
        return json.dumps(payload)

    def _http_client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=self._transport)

    @staticmethod
    def _headers(auth: str | None) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if auth:
            headers["Authorization"] = auth
        return headers

    async def _run_exclusive(
        self, coro: Coroutine[Any, Any, WebRequestResult[T]]
    ) -> WebRequestResult[T]:
        self.cancel()
        task = asyncio.ensure_future(coro)
        self._active = task
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            return WebRequestResult.fail("Request cancelled by user.", ErrorKind.CANCELLATION)
        finally:
            if self._active is task:
                self._active = None

    async def _send(
        self,
        method: str,
        url: str,
        auth: str | None,
        body: str | None,
        timeout: float,
        parser: Callable[[str], T],
    ) -> WebRequestResult[T]:
        try:
            async with asyncio.timeout(timeout), self._http_client(timeout) as client:
                response = await client.request(
                    method,
                    url,
                    content=body.encode("utf-8") if body is not None else None,
                    headers=self._headers(auth),
                )
        except (httpx.TimeoutException, TimeoutError):
            return self._network_failure(f"Request timed out after {timeout:g}s.")
        except httpx.TransportError as e:
            return self._network_failure(str(e) or type(e).__name__)
        except Exception as e:
            logger.exception("Ariko: unexpected error while sending request")
            return WebRequestResult.fail(f"Unknown error: {e}", ErrorKind.UNKNOWN)
        return self._handle_response(response.status_code, response.text, parser)

    async def _stream(
        self,
        strategy: ProviderStrategy,
        url: str,
        auth: str | None,
        body: str,
        timeout: float,
        on_delta: DeltaCallback | None,
    ) -> WebRequestResult[str]:
        strategy.reset_stream()
        aggregate: list[str] = []
        raw = bytearray()
        try:
            async with asyncio.timeout(timeout), self._http_client(timeout) as client:
                async with client.stream(
                    "POST", url, content=body.encode("utf-8"), headers=self._headers(auth)
                ) as response:
                    if not 200 <= response.status_code < 300:
                        await response.aread()
                        return self._handle_response(
                            response.status_code, response.text, strategy.parse_chat_response
                        )
                    async for chunk in response.aiter_bytes():
                        delta = strategy.parse_chat_stream_chunk(chunk)
                        if delta:
                            raw.clear()
                            aggregate.append(delta)
                            await self._notify(on_delta, delta)
                        elif not aggregate:
                            raw.extend(chunk)
        except (httpx.TimeoutException, TimeoutError):
            return self._network_failure(f"Request timed out after {timeout:g}s.")
        except httpx.TransportError as e:
            return self._network_failure(str(e) or type(e).__name__)
        except Exception as e:
            logger.exception("Ariko: unexpected error while streaming response")
            return WebRequestResult.fail(f"Unknown error: {e}", ErrorKind.UNKNOWN)

        if aggregate:
            return WebRequestResult.success("".join(aggregate))
        # The provider ignored the stream flag and sent one complete body.
        return self._handle_response(
            200, raw.decode("utf-8", errors="replace"), strategy.parse_chat_response
        )

    @staticmethod
    def _network_failure(detail: str) -> WebRequestResult[Any]:
        message = f"Network error: {detail}"
        logger.error("Ariko: %s", message)
        return WebRequestResult.fail(message, ErrorKind.NETWORK)

    @staticmethod
    def _handle_response(
        status_code: int, text: str, parser: Callable[[str], T]
    ) -> WebRequestResult[T]:
        if not 200 <= status_code < 300:
            message = f"HTTP error: {status_code}"
            if text:
                message += f"\nDetails: {text}"
            logger.error("Ariko: %s", message)
            return WebRequestResult.fail(message, ErrorKind.HTTP)
        try:
            return WebRequestResult.success(parser(text))
        except _PARSE_ERRORS as e:
            message = f"Failed to parse JSON response: {e}"
            logger.error("Ariko: %s\nResponse: %s", message, text[:2000])
            return WebRequestResult.fail(message, ErrorKind.PARSING)
        except Exception as e:
            message = f"An unexpected error occurred during parsing: {e}"
            logger.error("Ariko: %s\nResponse: %s", message, text[:2000])
            return WebRequestResult.fail(message, ErrorKind.UNKNOWN)

    @staticmethod
    async def _notify(callback: Callable[[Any], Any] | None, value: Any) -> None:
        if callback is None:
            return
        try:
            outcome = callback(value)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("Ariko: response callback raised; ignoring")
