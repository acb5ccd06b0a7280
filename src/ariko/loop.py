"""Agent orchestrator: ask/agent request cycles and the tool confirmation loop."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum

from pydantic import ValidationError

from .config import PROJECT_ROOT, ArikoSettings, WorkMode
from .context import ContextBuilder
from .events import EventBus, EventType
from .llm import DeltaCallback, LLMClient
from .models import ChatMessage, ChatSession, Role, ToolCall
from .project import InMemorySceneGraph, ProjectWorkspace, SceneGraph
from .prompts import (
    build_agent_system_message,
    build_component_explanation_prompt,
    build_error_explanation_prompt,
    build_system_message,
    format_error_message,
)
from .results import ErrorKind, WebRequestResult
from .session_store import SessionStore
from .tools import ToolExecutionContext, ToolRegistry

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)\s*```")

DENIED_OBSERVATION = "Observation: User denied the action."
MODELS_ERROR_PLACEHOLDER = ["Error"]


class AgentState(str, Enum):
    IDLE = "Idle"
    AWAITING_MODEL_RESPONSE = "AwaitingModelResponse"
    AWAITING_CONFIRMATION = "AwaitingConfirmation"
    EXECUTING = "Executing"


def parse_tool_call(text: str | None, registry: ToolRegistry | None = None) -> ToolCall | None:
    """Interpret a model reply as a tool call.

    A fenced ```json block wins over the whole text. Anything that is not a JSON
    object naming a registered tool returns None and is treated as plain text.
    """
    if not text or not text.strip():
        return None
    match = _FENCED_JSON.search(text)
    candidate = match.group(1) if match else text.strip()
    try:
        payload = json.loads(candidate)
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None

    name = payload.get("tool_name")
    if not isinstance(name, str) or not name.strip():
        return None
    name = name.strip()
    if registry is not None and registry.get_tool(name) is None:
        logger.debug("Model proposed unknown tool %r; treating reply as text", name)
        return None

    parameters = payload.get("parameters")
    if parameters is not None and not isinstance(parameters, dict):
        return None
    thought = payload.get("thought")
    try:
        return ToolCall(
            thought=thought if isinstance(thought, str) else "",
            tool_name=name,
            parameters=parameters or {},
        )
    except ValidationError:
        return None


@dataclass
class _Turn:
    """One user turn in agent mode; messages go to the session it started in."""

    session: ChatSession
    provider: str
    model: str
    requests: int = 0


class AgentOrchestrator:
    """
    Drives a conversation against the selected provider.

    Ask mode sends one request per user message. Agent mode lets the model
    propose tool calls; each proposal waits for ``respond_to_confirmation``
    and its result is fed back as an observation until the model answers
    in plain text.
    """

    def __init__(
        self,
        settings: ArikoSettings,
        sessions: SessionStore | None = None,
        llm_client: LLMClient | None = None,
        events: EventBus | None = None,
        context: ContextBuilder | None = None,
        workspace: ProjectWorkspace | None = None,
        scene: SceneGraph | None = None,
    ) -> None:
        self.settings = settings
        self.events = events or (sessions.events if sessions is not None else EventBus())
        self.sessions = sessions or SessionStore(settings, events=self.events)
        self.llm = llm_client or LLMClient()
        self.context = context or ContextBuilder()
        self.workspace = workspace or ProjectWorkspace(PROJECT_ROOT)
        self.scene = scene or InMemorySceneGraph()
        self.registry = ToolRegistry(settings)
        self._state = AgentState.IDLE
        self._pending: ToolCall | None = None
        self._turn: _Turn | None = None

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def pending_tool_call(self) -> ToolCall | None:
        return self._pending

    @property
    def is_busy(self) -> bool:
        return self._state in (AgentState.AWAITING_MODEL_RESPONSE, AgentState.EXECUTING)

    def update_settings(self, settings: ArikoSettings) -> None:
        self.settings = settings
        self.sessions.settings = settings
        self.reload_tools()

    def reload_tools(self) -> None:
        """Rebuild the tool registry for the current work mode and delete-tool flag."""
        self.registry = ToolRegistry(self.settings)
        logger.info(
            "Tool registry reloaded (%s mode): %s",
            self.registry.work_mode.value,
            ", ".join(self.registry.names) or "no tools",
        )

    # ------------------------------------------------------------------
    # User turns
    # ------------------------------------------------------------------

    async def send_message(
        self,
        text: str,
        provider: str | None = None,
        model: str | None = None,
        on_delta: DeltaCallback | None = None,
    ) -> None:
        """Handle one user message. Blank text is ignored."""
        if not text or not text.strip():
            return
        if self._state is not AgentState.IDLE:
            self._emit_error("A request is already in progress.", ErrorKind.UNKNOWN)
            return

        provider = provider or self.settings.selected_provider
        model = model if model is not None else self.settings.selected_models.get(provider, "")
        session = self.sessions.active
        self.sessions.append_message(ChatMessage(role=Role.USER, content=text), session)

        if self.settings.selected_work_mode is WorkMode.AGENT:
            self._turn = _Turn(session=session, provider=provider, model=model)
            await self._agent_request(self._turn)
        else:
            await self._ask(session, provider, model, on_delta)

    async def explain_error(
        self, error_text: str, stack_trace: str, provider: str | None = None, model: str | None = None
    ) -> None:
        await self.send_message(build_error_explanation_prompt(error_text, stack_trace), provider, model)

    async def explain_component(
        self, component_name: str, provider: str | None = None, model: str | None = None
    ) -> None:
        await self.send_message(build_component_explanation_prompt(component_name), provider, model)

    async def respond_to_confirmation(self, approved: bool) -> None:
        """Resolve the pending tool call. A second response for the same call does nothing."""
        call = self._pending
        if call is None:
            return
        self._pending = None
        turn = self._turn
        if turn is None:
            self._set_state(AgentState.IDLE)
            return

        if not approved:
            logger.info("User denied tool call %s", call.tool_name)
            observation = DENIED_OBSERVATION
        else:
            self._set_state(AgentState.EXECUTING)
            tool = self.registry.get_tool(call.tool_name)
            if tool is None:
                observation = f"Observation: Error: Tool '{call.tool_name}' not found."
            else:
                logger.info("Executing tool %s with %s", call.tool_name, call.parameters)
                result = await tool.execute(
                    ToolExecutionContext(
                        arguments=dict(call.parameters),
                        provider=turn.provider,
                        model=turn.model,
                        settings=self.settings,
                        api_keys=self.settings.api_keys,
                        llm_client=self.llm,
                        workspace=self.workspace,
                        scene=self.scene,
                    )
                )
                observation = f"Observation: {result}"

        self.sessions.append_message(ChatMessage(role=Role.USER, content=observation), turn.session)
        await self._agent_request(turn)

    def cancel(self) -> None:
        """Abort the in-flight request; a pending confirmation is dropped."""
        self.llm.cancel()
        if self._state is AgentState.AWAITING_CONFIRMATION:
            self._pending = None
            self._turn = None
            self._set_state(AgentState.IDLE)

    async def fetch_models(self, provider: str) -> WebRequestResult[list[str]]:
        result = await self.llm.fetch_models(provider, self.settings, self.settings.api_keys)
        if result.is_success:
            self.events.emit(EventType.MODELS_FETCHED, provider=provider, models=list(result.data or []))
        else:
            self._emit_error(result.error_message, result.error_kind)
            self.events.emit(
                EventType.MODELS_FETCHED, provider=provider, models=list(MODELS_ERROR_PLACEHOLDER)
            )
        return result

    # ------------------------------------------------------------------
    # Request cycles
    # ------------------------------------------------------------------

    async def _ask(
        self,
        session: ChatSession,
        provider: str,
        model: str,
        on_delta: DeltaCallback | None,
    ) -> None:
        messages: list[ChatMessage] = []
        system = build_system_message(self.settings.system_prompt, self.context.build())
        if system is not None:
            messages.append(system)
        messages.extend(session.messages)

        self._set_state(AgentState.AWAITING_MODEL_RESPONSE)
        try:
            if self.settings.stream_responses:
                result = await self.llm.send_chat_streamed(
                    messages, provider, model, self.settings, self.settings.api_keys, on_delta=on_delta
                )
            else:
                result = await self.llm.send_chat(
                    messages, provider, model, self.settings, self.settings.api_keys
                )
        finally:
            self._set_state(AgentState.IDLE)
        self._append_result(session, result)

    async def _agent_request(self, turn: _Turn) -> None:
        limit = self.settings.max_agent_iterations
        if limit and turn.requests >= limit:
            message = f"Agent stopped after {limit} model requests without a final answer."
            logger.warning("%s", message)
            self.sessions.append_message(
                ChatMessage(role=Role.ASSISTANT, content=message, is_error=True), turn.session
            )
            self._emit_error(message, ErrorKind.UNKNOWN)
            self._end_turn()
            return
        turn.requests += 1

        messages = [
            build_agent_system_message(
                self.settings.agent_system_prompt,
                self.registry.render_catalog_for_prompt(),
                self.context.build(),
            ),
            *turn.session.messages,
        ]
        self._set_state(AgentState.AWAITING_MODEL_RESPONSE)
        try:
            result = await self.llm.send_chat(
                messages, turn.provider, turn.model, self.settings, self.settings.api_keys
            )
        except asyncio.CancelledError:
            self._end_turn()
            raise

        if not result.is_success:
            self._append_result(turn.session, result)
            self._end_turn()
            return

        call = parse_tool_call(result.data, self.registry)
        if call is None:
            self._append_result(turn.session, result)
            self._end_turn()
            return

        logger.info("Model proposed tool call %s", call.tool_name)
        self._pending = call
        self._set_state(AgentState.AWAITING_CONFIRMATION)
        self.events.emit(EventType.TOOL_CALL_CONFIRMATION_REQUESTED, tool_call=call)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _append_result(self, session: ChatSession, result: WebRequestResult[str]) -> None:
        if result.is_success:
            content, is_error = result.data or "", False
        else:
            content, is_error = format_error_message(result.error_message, result.error_kind), True
        self.sessions.append_message(
            ChatMessage(role=Role.ASSISTANT, content=content, is_error=is_error), session
        )
        if is_error:
            self._emit_error(content, result.error_kind)

    def _end_turn(self) -> None:
        self._turn = None
        self._pending = None
        self._set_state(AgentState.IDLE)

    def _set_state(self, state: AgentState) -> None:
        if state is self._state:
            return
        self._state = state
        self.events.emit(EventType.RESPONSE_STATUS_CHANGED, state=state.value, busy=self.is_busy)

    def _emit_error(self, message: str | None, kind: ErrorKind) -> None:
        self.events.emit(EventType.ERROR, message=message or "", kind=kind.value)
