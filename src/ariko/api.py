"""FastAPI routers exposing the orchestrator to an editor plug-in or any HTTP client."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Mapping
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import ArikoSettings, SettingsStore, WorkMode, apply_environment
from .context import ContextBuilder, ContextItem
from .events import Event, EventBus, EventType
from .llm import LLMClient
from .loop import AgentOrchestrator, AgentState
from .models import ChatMessage, ChatSession, ToolCall
from .project import ProjectWorkspace, SceneGraph
from .prompts import split_console_entry
from .providers import AIProvider
from .results import ErrorKind
from .session_store import HistoryStorage, SessionStore

logger = logging.getLogger(__name__)

RECENT_EVENT_LIMIT = 50


class AgentRuntime:
    """Wires settings, sessions and the orchestrator for the HTTP layer.

    ``stored_settings`` is what gets persisted; the orchestrator runs on a copy
    with environment API keys and Ollama URL filled in.
    """

    def __init__(
        self,
        settings_store: SettingsStore | None = None,
        history_storage: HistoryStorage | None = None,
        llm_client: LLMClient | None = None,
        workspace: ProjectWorkspace | None = None,
        scene: SceneGraph | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.settings_store = settings_store or SettingsStore()
        self.environ = environ
        self.stored_settings = self.settings_store.load()
        settings = apply_environment(self.stored_settings, environ)

        self.events = EventBus()
        self.recent_events: deque[Event] = deque(maxlen=RECENT_EVENT_LIMIT)
        self.events.subscribe_all(self.recent_events.append)
        self.sessions = SessionStore(settings, history_storage or HistoryStorage(), self.events)
        self.orchestrator = AgentOrchestrator(
            settings,
            sessions=self.sessions,
            llm_client=llm_client,
            events=self.events,
            context=ContextBuilder(),
            workspace=workspace,
            scene=scene,
        )

    @property
    def settings(self) -> ArikoSettings:
        return self.orchestrator.settings

    def update_settings(self, changes: dict[str, Any]) -> ArikoSettings:
        """Validate, persist and apply a partial settings update."""
        stored = ArikoSettings.model_validate({**self.stored_settings.model_dump(), **changes})
        self.settings_store.save(stored)
        self.stored_settings = stored
        self.orchestrator.update_settings(apply_environment(stored, self.environ))
        return self.settings

    def last_error(self) -> str | None:
        for event in reversed(self.recent_events):
            if event.type is EventType.ERROR:
                return event.payload.get("message")
        return None


def get_runtime(request: Request) -> AgentRuntime:
    return request.app.state.runtime


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class ChatRequest(BaseModel):
    """Request body for POST /chat."""

    message: str = Field(..., description="User message")
    provider: AIProvider | None = Field(None, description="Provider; defaults to the selected one")
    model: str | None = Field(None, description="Model; defaults to the provider's selected model")


class ConfirmRequest(BaseModel):
    approved: bool


class ExplainErrorRequest(BaseModel):
    """Either an error and its stack trace, or a raw console entry to split."""

    error_text: str = ""
    stack_trace: str = ""
    console_entry: str | None = None
    provider: AIProvider | None = None
    model: str | None = None


class RenameRequest(BaseModel):
    name: str = Field(..., min_length=1)


class AttachRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_path: str = Field(..., alias="filePath")


class SettingsPatch(BaseModel):
    """Partial settings update; omitted fields keep their value."""

    selected_work_mode: WorkMode | None = None
    enable_delete_tools: bool | None = None
    chat_history_size: int | None = Field(None, ge=0)
    max_agent_iterations: int | None = Field(None, ge=0)
    selected_provider: AIProvider | None = None
    selected_model: str | None = Field(None, description="Model for the selected provider")
    stream_responses: bool | None = None
    ollama_url: str | None = None
    api_keys: dict[str, str] | None = None


class TurnState(BaseModel):
    state: AgentState
    session_id: str
    messages: list[ChatMessage]
    pending_tool_call: ToolCall | None = None
    last_error: str | None = None


class SessionSummary(BaseModel):
    session_id: str
    name: str
    created_at: str
    message_count: int
    active: bool


class SettingsView(BaseModel):
    selected_provider: str
    selected_models: dict[str, str]
    selected_work_mode: WorkMode
    chat_history_size: int
    enable_delete_tools: bool
    max_agent_iterations: int
    stream_responses: bool
    ollama_url: str
    api_keys_configured: dict[str, bool]
    tools: list[str]


class ModelList(BaseModel):
    provider: AIProvider
    models: list[str]


def _turn_state(runtime: AgentRuntime) -> TurnState:
    session = runtime.sessions.active
    return TurnState(
        state=runtime.orchestrator.state,
        session_id=session.session_id,
        messages=list(session.messages),
        pending_tool_call=runtime.orchestrator.pending_tool_call,
        last_error=runtime.last_error(),
    )


def _summary(runtime: AgentRuntime, session: ChatSession) -> SessionSummary:
    return SessionSummary(
        session_id=session.session_id,
        name=session.name,
        created_at=session.created_at,
        message_count=len(session.messages),
        active=session is runtime.sessions.active,
    )


def _settings_view(runtime: AgentRuntime) -> SettingsView:
    settings = runtime.settings
    return SettingsView(
        selected_provider=settings.selected_provider,
        selected_models=dict(settings.selected_models),
        selected_work_mode=settings.selected_work_mode,
        chat_history_size=settings.chat_history_size,
        enable_delete_tools=settings.enable_delete_tools,
        max_agent_iterations=settings.max_agent_iterations,
        stream_responses=settings.stream_responses,
        ollama_url=settings.effective_ollama_url,
        api_keys_configured={p.value: bool(settings.api_keys.get(p.value)) for p in AIProvider},
        tools=runtime.orchestrator.registry.names,
    )


def _find_session(runtime: AgentRuntime, session_id: str) -> ChatSession:
    session = runtime.sessions.find(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")
    return session


def _ensure_idle(runtime: AgentRuntime) -> None:
    if runtime.orchestrator.state is not AgentState.IDLE:
        raise HTTPException(status_code=409, detail="A request is already in progress")


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------

chat_router = APIRouter(prefix="/chat", tags=["chat"])


@chat_router.post("", response_model=TurnState)
async def chat(request: ChatRequest, runtime: AgentRuntime = Depends(get_runtime)) -> TurnState:
    """Send a user message; returns once the turn is answered or awaits confirmation."""
    if not request.message.strip():
        raise HTTPException(status_code=422, detail="Message must not be blank")
    _ensure_idle(runtime)
    await runtime.orchestrator.send_message(
        request.message,
        provider=request.provider.value if request.provider else None,
        model=request.model,
    )
    return _turn_state(runtime)


@chat_router.post("/confirm", response_model=TurnState)
async def confirm(request: ConfirmRequest, runtime: AgentRuntime = Depends(get_runtime)) -> TurnState:
    if runtime.orchestrator.pending_tool_call is None:
        raise HTTPException(status_code=409, detail="No tool call is awaiting confirmation")
    await runtime.orchestrator.respond_to_confirmation(request.approved)
    return _turn_state(runtime)


@chat_router.post("/cancel", response_model=TurnState)
async def cancel(runtime: AgentRuntime = Depends(get_runtime)) -> TurnState:
    runtime.orchestrator.cancel()
    return _turn_state(runtime)


@chat_router.get("/state", response_model=TurnState)
async def state(runtime: AgentRuntime = Depends(get_runtime)) -> TurnState:
    return _turn_state(runtime)


@chat_router.post("/explain-error", response_model=TurnState)
async def explain_error(
    request: ExplainErrorRequest, runtime: AgentRuntime = Depends(get_runtime)
) -> TurnState:
    error_text, stack_trace = request.error_text, request.stack_trace
    if request.console_entry:
        error_text, stack_trace = split_console_entry(request.console_entry)
    if not error_text.strip():
        raise HTTPException(status_code=422, detail="No error text to explain")
    _ensure_idle(runtime)
    await runtime.orchestrator.explain_error(
        error_text,
        stack_trace,
        provider=request.provider.value if request.provider else None,
        model=request.model,
    )
    return _turn_state(runtime)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

sessions_router = APIRouter(prefix="/sessions", tags=["sessions"])


@sessions_router.get("", response_model=list[SessionSummary])
async def list_sessions(runtime: AgentRuntime = Depends(get_runtime)) -> list[SessionSummary]:
    return [_summary(runtime, s) for s in runtime.sessions.history]


@sessions_router.post("", response_model=SessionSummary)
async def new_session(runtime: AgentRuntime = Depends(get_runtime)) -> SessionSummary:
    _ensure_idle(runtime)
    return _summary(runtime, runtime.sessions.new_session())


@sessions_router.delete("", status_code=204)
async def clear_sessions(runtime: AgentRuntime = Depends(get_runtime)) -> Response:
    _ensure_idle(runtime)
    runtime.sessions.clear_all()
    return Response(status_code=204)


@sessions_router.get("/{session_id}", response_model=ChatSession)
async def get_session(session_id: str, runtime: AgentRuntime = Depends(get_runtime)) -> ChatSession:
    return _find_session(runtime, session_id)


@sessions_router.post("/{session_id}/activate", response_model=SessionSummary)
async def activate_session(
    session_id: str, runtime: AgentRuntime = Depends(get_runtime)
) -> SessionSummary:
    session = _find_session(runtime, session_id)
    _ensure_idle(runtime)
    runtime.sessions.switch_to(session)
    return _summary(runtime, session)


@sessions_router.patch("/{session_id}", response_model=SessionSummary)
async def rename_session(
    session_id: str, request: RenameRequest, runtime: AgentRuntime = Depends(get_runtime)
) -> SessionSummary:
    session = _find_session(runtime, session_id)
    runtime.sessions.rename(session, request.name)
    return _summary(runtime, session)


@sessions_router.delete("/{session_id}", status_code=204)
async def delete_session(session_id: str, runtime: AgentRuntime = Depends(get_runtime)) -> Response:
    session = _find_session(runtime, session_id)
    _ensure_idle(runtime)
    runtime.sessions.delete(session)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Models, tools, settings, context
# ---------------------------------------------------------------------------

config_router = APIRouter(tags=["config"])

_STATUS_BY_KIND = {
    ErrorKind.AUTH: 401,
    ErrorKind.NETWORK: 502,
    ErrorKind.HTTP: 502,
    ErrorKind.PARSING: 502,
    ErrorKind.CANCELLATION: 409,
}


@config_router.get("/models/{provider}", response_model=ModelList)
async def list_models(provider: AIProvider, runtime: AgentRuntime = Depends(get_runtime)) -> ModelList:
    result = await runtime.orchestrator.fetch_models(provider.value)
    if not result.is_success:
        raise HTTPException(
            status_code=_STATUS_BY_KIND.get(result.error_kind, 500), detail=result.error_message
        )
    return ModelList(provider=provider, models=result.data or [])


@config_router.get("/tools")
async def list_tools(runtime: AgentRuntime = Depends(get_runtime)) -> list[dict[str, Any]]:
    return [tool.to_tool_schema() for tool in runtime.orchestrator.registry]


@config_router.get("/settings", response_model=SettingsView)
async def get_settings(runtime: AgentRuntime = Depends(get_runtime)) -> SettingsView:
    return _settings_view(runtime)


@config_router.patch("/settings", response_model=SettingsView)
async def patch_settings(patch: SettingsPatch, runtime: AgentRuntime = Depends(get_runtime)) -> SettingsView:
    changes = patch.model_dump(exclude_none=True, exclude={"selected_model", "api_keys"})
    stored = runtime.stored_settings
    provider = patch.selected_provider.value if patch.selected_provider else stored.selected_provider
    if patch.selected_model is not None:
        changes["selected_models"] = {**stored.selected_models, provider: patch.selected_model}
    if patch.api_keys is not None:
        changes["api_keys"] = {**stored.api_keys, **patch.api_keys}
    try:
        runtime.update_settings(changes)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return _settings_view(runtime)


@config_router.post("/context/attach", response_model=ContextItem)
async def attach_context(request: AttachRequest, runtime: AgentRuntime = Depends(get_runtime)) -> ContextItem:
    orchestrator = runtime.orchestrator
    item = orchestrator.context.attach_file(orchestrator.workspace, request.file_path)
    if item is None:
        raise HTTPException(status_code=404, detail=f"No asset at '{request.file_path}'")
    return item


@config_router.delete("/context", status_code=204)
async def clear_context(runtime: AgentRuntime = Depends(get_runtime)) -> Response:
    runtime.orchestrator.context.clear()
    return Response(status_code=204)


def create_app(runtime: AgentRuntime | None = None) -> FastAPI:
    """Build the FastAPI app around a runtime (a default one if omitted)."""
    app = FastAPI(title="Ariko Agent", version="0.1.0")
    app.state.runtime = runtime or AgentRuntime()
    app.include_router(chat_router)
    app.include_router(sessions_router)
    app.include_router(config_router)
    return app
