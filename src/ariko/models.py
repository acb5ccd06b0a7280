"""Data models for messages, sessions, and tool calls."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

PLACEHOLDER_SESSION_NAME = "New Chat"
SESSION_NAME_MAX_CHARS = 60
SESSION_NAME_MAX_WORDS = 6


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class Role(str, Enum):
    """Provider-agnostic message roles."""

    USER = "User"
    ASSISTANT = "Assistant"
    SYSTEM = "System"


class ChatMessage(BaseModel):
    """A single message in a conversation. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str = ""
    is_error: bool = False

    @field_validator("role", mode="before")
    @classmethod
    def _accept_legacy_role(cls, value: Any) -> Any:
        # Older history files name the assistant "Ariko".
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("ariko", "assistant", "model"):
                return Role.ASSISTANT
            if lowered == "user":
                return Role.USER
            if lowered == "system":
                return Role.SYSTEM
        return value


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def derive_session_name(text: str) -> str:
    """Build a session title from the first user message.

    Takes at most the first 60 characters, keeps the first six words and
    upper-cases the first letter of each word.
    """
    snippet = " ".join(text.split())[:SESSION_NAME_MAX_CHARS]
    words = snippet.split()[:SESSION_NAME_MAX_WORDS]
    if not words:
        return PLACEHOLDER_SESSION_NAME
    return " ".join(w[:1].upper() + w[1:] for w in words)


class ChatSession(BaseModel):
    """One continuous conversation thread."""

    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = PLACEHOLDER_SESSION_NAME
    renamed: bool = False
    created_at: str = Field(default_factory=_iso_now)
    messages: list[ChatMessage] = Field(default_factory=list)

    def append(self, message: ChatMessage) -> None:
        """Append a message; the first user message names the session."""
        first_user_message = message.role is Role.USER and not any(
            m.role is Role.USER for m in self.messages
        )
        self.messages.append(message)
        if first_user_message and not self.renamed:
            self.name = derive_session_name(message.content)

    def rename(self, name: str) -> None:
        self.name = name.strip() or self.name
        self.renamed = True


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class ToolCall(BaseModel):
    """A tool invocation proposed by the model, pending user confirmation."""

    thought: str = ""
    tool_name: str
    parameters: dict[str, Any] = Field(default_factory=dict)

    @field_validator("thought", mode="before")
    @classmethod
    def _none_thought(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("parameters", mode="before")
    @classmethod
    def _none_parameters(cls, value: Any) -> Any:
        return {} if value is None else value


@dataclass
class ToolDef:
    """Tool definition as exposed to clients."""

    name: str
    description: str
    parameters: dict[str, Any]  # JSON Schema

    def to_tool_schema(self) -> dict[str, Any]:
        """OpenAI-style function-calling schema."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }
