"""Ariko agent: LLM provider abstraction and the tool-confirming agent loop."""

from .config import ArikoSettings, SettingsStore, WorkMode, apply_environment
from .events import Event, EventBus, EventType
from .llm import LLMClient
from .loop import AgentOrchestrator, AgentState, parse_tool_call
from .models import ChatMessage, ChatSession, Role, ToolCall
from .providers import AIProvider
from .results import ErrorKind, WebRequestResult
from .session_store import HistoryStorage, SessionStore
from .tools import BaseTool, ToolExecutionContext, ToolRegistry

__all__ = [
    "AIProvider",
    "AgentOrchestrator",
    "AgentState",
    "ArikoSettings",
    "BaseTool",
    "ChatMessage",
    "ChatSession",
    "ErrorKind",
    "Event",
    "EventBus",
    "EventType",
    "HistoryStorage",
    "LLMClient",
    "Role",
    "SessionStore",
    "SettingsStore",
    "ToolCall",
    "ToolExecutionContext",
    "ToolRegistry",
    "WebRequestResult",
    "WorkMode",
    "apply_environment",
    "parse_tool_call",
]
