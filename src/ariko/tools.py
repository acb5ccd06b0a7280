"""Agent tool protocol, the six editor tools, and the tool registry."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .config import ArikoSettings, WorkMode
from .models import ChatMessage, Role, ToolDef
from .project import ProjectWorkspace, SceneGraph, safe_replace
from .prompts import MODIFY_FILE_SYSTEM_PROMPT, build_modify_file_prompt, strip_code_fence

if TYPE_CHECKING:
    from .llm import LLMClient

logger = logging.getLogger(__name__)

CATALOG_HEADER = "You have access to the following tools. Use them to fulfill the user's request."

_FILE_PATH_DESCRIPTION = "The path of the file {}. Should be relative to the Assets folder."


@dataclass
class ToolExecutionContext:
    """Everything a tool needs for one execution."""

    arguments: dict[str, Any]
    provider: str = ""
    model: str = ""
    settings: ArikoSettings = field(default_factory=ArikoSettings)
    api_keys: Mapping[str, str] = field(default_factory=dict)
    llm_client: LLMClient | None = None
    workspace: ProjectWorkspace | None = None
    scene: SceneGraph | None = None


class BaseTool(ABC):
    """Base class for agent tools.

    ``execute`` never raises: invalid arguments and failures of ``run`` come
    back as ``"Error: ..."`` strings the model can react to.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """JSON Schema for parameters."""
        ...

    @abstractmethod
    async def run(self, context: ToolExecutionContext) -> str:
        ...

    async def execute(self, context: ToolExecutionContext) -> str:
        error = self.validate(context.arguments)
        if error:
            return error
        try:
            return await self.run(context)
        except Exception as e:
            logger.exception("Tool %s failed", self.name)
            return f"Error: {e}"

    def validate(self, arguments: Mapping[str, Any]) -> str | None:
        """Return an error string for the first missing or mistyped required parameter."""
        properties = self.parameters.get("properties", {})
        for name in self.parameters.get("required", []):
            spec = properties.get(name, {})
            expected = spec.get("type", "string")
            if not _matches(arguments.get(name), expected, spec.get("minLength", 0)):
                return f"Error: Missing or invalid required parameter '{name}' (expected {expected})."
        return None

    def to_def(self) -> ToolDef:
        return ToolDef(name=self.name, description=self.description, parameters=self.parameters)

    def to_tool_schema(self) -> dict[str, Any]:
        return self.to_def().to_tool_schema()

    def describe_parameters(self) -> str:
        properties = self.parameters.get("properties", {})
        return ", ".join(f"{name} ({spec.get('description', '')})" for name, spec in properties.items())


def _matches(value: Any, expected: str, min_length: int) -> bool:
    if expected == "string":
        return isinstance(value, str) and len(value.strip()) >= min_length
    return value is not None


def _string(description: str, required: bool = True) -> dict[str, Any]:
    spec: dict[str, Any] = {"type": "string", "description": description}
    if required:
        spec["minLength"] = 1
    return spec


# ---------------------------------------------------------------------------
# File tools
# ---------------------------------------------------------------------------


class _FileTool(BaseTool):
    """Shared path handling: resolve under Assets/, optionally require the file."""

    def _target(self, context: ToolExecutionContext, must_exist: bool) -> tuple[Path | None, str]:
        workspace = context.workspace
        if workspace is None:
            return None, "Error: No project workspace is attached."
        raw = str(context.arguments["filePath"])
        path = workspace.resolve(raw)
        if path is None:
            return None, f"Error: Path '{raw}' is outside the Assets folder."
        display = workspace.relative(path)
        if must_exist and not path.is_file():
            return None, f"Error: File not found at '{display}'."
        return path, display


class CreateFileTool(_FileTool):
    @property
    def name(self) -> str:
        return "CreateFile"

    @property
    def description(self) -> str:
        return "Creates a new file with the given content. Useful for creating new C# scripts."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "filePath": _string(_FILE_PATH_DESCRIPTION.format("to create")),
                "content": _string("The content of the file to create.", required=False),
            },
            "required": ["filePath", "content"],
        }

    async def run(self, context: ToolExecutionContext) -> str:
        path, display = self._target(context, must_exist=False)
        if path is None:
            return display
        path.parent.mkdir(parents=True, exist_ok=True)
        safe_replace(path, context.arguments["content"])
        return f"Success: Created new file at '{display}'."


class ModifyFileTool(_FileTool):
    """Rewrites a file by asking the active model for the complete new content."""

    @property
    def name(self) -> str:
        return "ModifyFile"

    @property
    def description(self) -> str:
        return (
            "Modifies an existing file based on a user prompt. Use this for adding methods, "
            "refactoring, or other code modifications."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "filePath": _string(_FILE_PATH_DESCRIPTION.format("to modify")),
                "prompt": _string("The user's instruction on how to modify the file."),
            },
            "required": ["filePath", "prompt"],
        }

    async def run(self, context: ToolExecutionContext) -> str:
        path, display = self._target(context, must_exist=True)
        if path is None:
            return display
        if context.llm_client is None:
            return "Error: No LLM client is available to modify the file."

        original = path.read_text(encoding="utf-8")
        messages = [
            ChatMessage(role=Role.SYSTEM, content=MODIFY_FILE_SYSTEM_PROMPT),
            ChatMessage(
                role=Role.USER,
                content=build_modify_file_prompt(display, context.arguments["prompt"], original),
            ),
        ]
        result = await context.llm_client.send_chat(
            messages, context.provider, context.model, context.settings, context.api_keys
        )
        if not result.is_success:
            return f"Error: LLM request failed: {result.error_message}"

        safe_replace(path, strip_code_fence(result.data or ""))
        return f"Success: Modified file at '{display}'."


class ReadFileTool(_FileTool):
    @property
    def name(self) -> str:
        return "ReadFile"

    @property
    def description(self) -> str:
        return "Reads the entire content of a file at the specified path."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"filePath": _string(_FILE_PATH_DESCRIPTION.format("to read"))},
            "required": ["filePath"],
        }

    async def run(self, context: ToolExecutionContext) -> str:
        path, display = self._target(context, must_exist=True)
        if path is None:
            return display
        content = path.read_text(encoding="utf-8")
        return f"File '{display}' read successfully. Content:\n```\n{content}\n```"


class DeleteFileTool(_FileTool):
    @property
    def name(self) -> str:
        return "DeleteFile"

    @property
    def description(self) -> str:
        return "Deletes a file at the given path."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"filePath": _string(_FILE_PATH_DESCRIPTION.format("to delete"))},
            "required": ["filePath"],
        }

    async def run(self, context: ToolExecutionContext) -> str:
        path, display = self._target(context, must_exist=True)
        if path is None:
            return display
        path.unlink()
        return f"Success: Deleted file at '{display}'."


# ---------------------------------------------------------------------------
# Scene tools
# ---------------------------------------------------------------------------


class CreateGameObjectTool(BaseTool):
    @property
    def name(self) -> str:
        return "CreateGameObject"

    @property
    def description(self) -> str:
        return "Creates a new GameObject with the given name."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"name": _string("The name of the GameObject to create.")},
            "required": ["name"],
        }

    async def run(self, context: ToolExecutionContext) -> str:
        if context.scene is None:
            return "Error: No scene is attached."
        name = context.arguments["name"]
        context.scene.create_object(name)
        return f"Success: Created new GameObject named '{name}'."


class DeleteGameObjectTool(BaseTool):
    @property
    def name(self) -> str:
        return "DeleteGameObject"

    @property
    def description(self) -> str:
        return "Deletes a GameObject with the given name."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"name": _string("The name of the GameObject to delete.")},
            "required": ["name"],
        }

    async def run(self, context: ToolExecutionContext) -> str:
        if context.scene is None:
            return "Error: No scene is attached."
        name = context.arguments["name"]
        if not context.scene.has_object(name) or not context.scene.delete_object(name):
            return f"Error: GameObject named '{name}' not found."
        return f"Success: Deleted GameObject named '{name}'."


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ToolRegistry:
    """Tools available for one work mode, in registration order."""

    def __init__(self, settings: ArikoSettings, work_mode: WorkMode | None = None) -> None:
        self.work_mode = work_mode or settings.selected_work_mode
        self._tools: dict[str, BaseTool] = {}
        if self.work_mode is not WorkMode.AGENT:
            return
        for tool in (CreateFileTool(), ModifyFileTool(), ReadFileTool(), CreateGameObjectTool()):
            self.register(tool)
        if settings.enable_delete_tools:
            self.register(DeleteFileTool())
            self.register(DeleteGameObjectTool())

    def register(self, tool: BaseTool) -> None:
        self._tools[tool.name] = tool

    def get_tool(self, name: str) -> BaseTool | None:
        return self._tools.get(name)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[BaseTool]:
        return iter(self._tools.values())

    def render_catalog_for_prompt(self) -> str:
        """Describe the tools for the agent system prompt; empty when there are none."""
        if not self._tools:
            return ""
        lines = [CATALOG_HEADER]
        for tool in self._tools.values():
            lines.append(f"Tool: {tool.name}")
            lines.append(f"Description: {tool.description}")
            lines.append(f"Parameters: {tool.describe_parameters()}")
            lines.append("")
        return "\n".join(lines) + "\n"
