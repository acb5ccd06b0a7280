"""Assistant configuration: paths, defaults, settings model and environment overlay."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from enum import Enum
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

DATA_DIR = Path(os.getenv("ARIKO_DATA_DIR") or Path.cwd() / "db")
HISTORY_PATH = DATA_DIR / "chat_history.json"
SETTINGS_PATH = DATA_DIR / "settings.json"
PROJECT_ROOT = Path(os.getenv("ARIKO_PROJECT_ROOT") or Path.cwd())

DEFAULT_OLLAMA_URL = "http://localhost:11434"
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_GOOGLE_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_HISTORY_SIZE = 5
DEFAULT_MAX_AGENT_ITERATIONS = 10

# Provider name -> environment variables holding its API key, first match wins.
API_KEY_ENV_VARS: dict[str, tuple[str, ...]] = {
    "OpenAI": ("OPENAI_API_KEY",),
    "Google": ("GOOGLE_API_KEY", "GEMINI_API_KEY"),
}
OLLAMA_URL_ENV_VAR = "OLLAMA_URL"

DEFAULT_SYSTEM_PROMPT = (
    "You are Ariko, a helpful and friendly AI assistant integrated into the Unity Editor.\n"
    "Your goal is to assist developers with their Unity and C# questions.\n"
    "Be concise, accurate, and provide code examples when relevant.\n"
    "You are an expert in the Unity API."
)

DEFAULT_AGENT_SYSTEM_PROMPT = (
    "You are an expert Unity developer agent. Your goal is to help the user by performing "
    "actions in the Unity Editor.\n"
    "Analyze the user's request and break it down into steps.\n"
    "For each step, decide if you need to use a tool. If you do, you must respond ONLY with "
    "a JSON object in the following format:\n"
    "{\n"
    '  "thought": "A brief explanation of why you are choosing this tool.",\n'
    '  "tool_name": "TheNameOfTheToolToUse",\n'
    '  "parameters": { "param1": "value1", "param2": 123 }\n'
    "}\n"
    "If you do not need to use a tool, or if the task is complete, respond with a "
    "conversational message."
)


class WorkMode(str, Enum):
    """Ask: single request/response. Agent: tool-enabled loop."""

    ASK = "Ask"
    AGENT = "Agent"


class ArikoSettings(BaseModel):
    """Assistant settings, passed explicitly to every component."""

    ollama_url: str = Field(
        default="",
        description="Base URL of a local Ollama server. Empty means the default localhost URL.",
    )
    openai_base_url: str = DEFAULT_OPENAI_BASE_URL
    google_base_url: str = DEFAULT_GOOGLE_BASE_URL
    api_keys: dict[str, str] = Field(
        default_factory=dict,
        description="Persisted API keys by provider name (OpenAI, Google).",
    )

    selected_provider: str = "OpenAI"
    selected_models: dict[str, str] = Field(default_factory=dict)
    selected_work_mode: WorkMode = WorkMode.ASK

    chat_history_size: int = Field(
        default=DEFAULT_HISTORY_SIZE,
        ge=0,
        description="How many chat sessions to keep. 0 keeps all of them.",
    )
    enable_delete_tools: bool = Field(
        default=False,
        description="Registers the DeleteFile and DeleteGameObject agent tools.",
    )
    max_agent_iterations: int = Field(
        default=DEFAULT_MAX_AGENT_ITERATIONS,
        ge=0,
        description="Model requests allowed per user turn in Agent mode. 0 means no limit.",
    )
    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)
    stream_responses: bool = False
    allowed_models: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Per-provider model allowlist overriding the built-in known models.",
    )

    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    agent_system_prompt: str = DEFAULT_AGENT_SYSTEM_PROMPT

    @property
    def effective_ollama_url(self) -> str:
        return (self.ollama_url or DEFAULT_OLLAMA_URL).rstrip("/")


def apply_environment(
    settings: ArikoSettings,
    environ: Mapping[str, str] | None = None,
) -> ArikoSettings:
    """Fill empty API keys and the Ollama URL from the environment.

    Persisted non-empty values always win. When ``environ`` is omitted, a
    ``.env`` file is loaded first and ``os.environ`` is used.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    keys = dict(settings.api_keys)
    for provider, names in API_KEY_ENV_VARS.items():
        if keys.get(provider):
            continue
        for name in names:
            value = environ.get(name, "")
            if value:
                keys[provider] = value
                break

    update: dict[str, object] = {"api_keys": keys}
    if not settings.ollama_url and environ.get(OLLAMA_URL_ENV_VAR):
        update["ollama_url"] = environ[OLLAMA_URL_ENV_VAR]
    return settings.model_copy(update=update)


class SettingsStore:
    """Loads and saves settings as JSON at a fixed path."""

    def __init__(self, path: Path = SETTINGS_PATH) -> None:
        self.path = Path(path)

    def load(self) -> ArikoSettings:
        """Return the stored settings, or defaults if absent or unreadable."""
        if not self.path.exists():
            return ArikoSettings()
        try:
            return ArikoSettings.model_validate_json(self.path.read_bytes())
        except (OSError, UnicodeDecodeError, ValidationError) as e:
            logger.error("Failed to load settings from %s: %s", self.path, e)
            return ArikoSettings()

    def save(self, settings: ArikoSettings) -> None:
        """Persist settings; failures are logged, never raised."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(settings.model_dump_json(indent=2), encoding="utf-8")
        except OSError as e:
            logger.error("Failed to save settings to %s: %s", self.path, e)
