"""Abstract provider strategy interface for the LLM client."""

from __future__ import annotations

import codecs
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from enum import Enum

from ..config import ArikoSettings
from ..models import ChatMessage
from ..results import WebRequestResult

logger = logging.getLogger(__name__)

ApiKeys = Mapping[str, str]

NO_CONTENT = "No content found in response."
MAX_STREAM_BUFFER = 1024 * 1024


class AIProvider(str, Enum):
    """Supported LLM backends."""

    GOOGLE = "Google"
    OPENAI = "OpenAI"
    OLLAMA = "Ollama"


class StreamBuffer:
    """Accumulates streamed bytes and hands out complete lines.

    Bytes are decoded incrementally, so a multi-byte character split across
    two chunks is kept intact. The buffer is dropped when it grows past
    ``limit`` characters without producing a complete line.
    """

    def __init__(self, limit: int = MAX_STREAM_BUFFER) -> None:
        self.limit = limit
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._text = ""

    def reset(self) -> None:
        self._decoder.reset()
        self._text = ""

    @property
    def text(self) -> str:
        return self._text

    def append(self, chunk: bytes | str) -> None:
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._text += chunk

    def consume(self, count: int) -> None:
        """Drop the first ``count`` characters."""
        self._text = self._text[count:]

    def enforce_limit(self) -> bool:
        """Clear the buffer if it is over the limit. Returns True if cleared."""
        if len(self._text) > self.limit:
            logger.warning(
                "Stream buffer exceeded %d characters without a complete record; dropping it",
                self.limit,
            )
            self._text = ""
            return True
        return False

    def feed_lines(self, chunk: bytes | str) -> list[str]:
        """Append a chunk and return every complete line, without newlines."""
        self.append(chunk)
        *complete, rest = self._text.split("\n")
        self._text = rest
        self.enforce_limit()
        return [line.rstrip("\r") for line in complete]


class ProviderStrategy(ABC):
    """
    Translates provider-agnostic messages into one provider's wire format.

    The LLM client only depends on this interface. Every method either
    returns a tagged result or plain data; none of them performs I/O.
    """

    provider: AIProvider

    def __init__(self) -> None:
        self._stream = StreamBuffer()

    @abstractmethod
    def resolve_models_url(
        self, settings: ArikoSettings, keys: ApiKeys
    ) -> WebRequestResult[str]:
        ...

    @abstractmethod
    def resolve_chat_url(
        self, model: str, settings: ArikoSettings, keys: ApiKeys
    ) -> WebRequestResult[str]:
        ...

    @abstractmethod
    def resolve_auth_header(
        self, settings: ArikoSettings, keys: ApiKeys
    ) -> WebRequestResult[str]:
        """Return the Authorization header value, or a successful None."""
        ...

    @abstractmethod
    def build_chat_body(self, messages: list[ChatMessage], model: str) -> str:
        """Serialize the request body as JSON."""
        ...

    @abstractmethod
    def parse_chat_response(self, raw: str) -> str:
        """Extract the assistant text from a full response body.

        Raises ValueError on invalid JSON; returns a placeholder when the
        expected fields are missing.
        """
        ...

    @abstractmethod
    def parse_chat_stream_chunk(self, chunk: bytes | str) -> str:
        """Decode the text delta carried by the complete records in ``chunk``.

        Incomplete trailing data is buffered until the next call.
        """
        ...

    @abstractmethod
    def parse_models_response(
        self, raw: str, allowlist: Sequence[str] | None = None
    ) -> list[str]:
        """Extract model ids, filtered by ``allowlist`` or the built-in known models."""
        ...

    def reset_stream(self) -> None:
        """Forget any partially received stream data."""
        self._stream.reset()

    def filter_models(self, model_ids: list[str], allowlist: Sequence[str]) -> list[str]:
        """Keep only allow-listed models, preserving API order."""
        if not allowlist:
            return model_ids
        allowed = set(allowlist)
        return [m for m in model_ids if m in allowed]
