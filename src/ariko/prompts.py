"""Prompt assembly and user-facing error phrasing."""

from __future__ import annotations

from .models import ChatMessage, Role
from .results import ErrorKind

CONTEXT_SEPARATOR = "\n--- Context ---\n"

MODIFY_FILE_SYSTEM_PROMPT = (
    "You are an expert C# programmer. The user wants to modify a C# file. "
    "You will be given the full content of the file and the user's request. "
    "You must return the *entire* modified file content. Do not add any extra text "
    "or explanations outside of the code. Preserve the original formatting as much as possible."
)


def format_error_message(message: str | None, kind: ErrorKind) -> str:
    """Turn a failed request into the text shown in the transcript."""
    detail = message or ""
    if kind is ErrorKind.AUTH:
        return f"Authentication Error: {detail}\nPlease check your API key or settings."
    if kind is ErrorKind.NETWORK:
        return f"Network Error: {detail}\nPlease check your internet connection."
    if kind is ErrorKind.HTTP:
        return f"API Error: {detail}"
    if kind is ErrorKind.PARSING:
        return (
            f"Response Parsing Error: {detail}\n"
            "The data from the server was in an unexpected format."
        )
    if kind is ErrorKind.CANCELLATION:
        return "Request was cancelled."
    return f"An unknown error occurred: {detail}"


def build_system_message(system_prompt: str, context: str) -> ChatMessage | None:
    """Ask-mode system message: the prompt plus any editor context, or None if both are empty."""
    if not system_prompt.strip() and not context.strip():
        return None
    content = system_prompt
    if context.strip():
        content += CONTEXT_SEPARATOR + context
    return ChatMessage(role=Role.SYSTEM, content=content)


def build_agent_system_message(agent_prompt: str, catalog: str, context: str) -> ChatMessage:
    content = f"{agent_prompt}\n{catalog}"
    if context.strip():
        content += CONTEXT_SEPARATOR + context
    return ChatMessage(role=Role.SYSTEM, content=content)


def split_console_entry(entry: str) -> tuple[str, str]:
    """Split a console log entry into (error line, stack trace)."""
    lines = entry.strip().splitlines()
    if not lines:
        return "", ""
    return lines[0].strip(), "\n".join(lines[1:]).strip()


def build_error_explanation_prompt(error_text: str, stack_trace: str) -> str:
    return (
        "Explain this Unity error and stack trace. Identify the likely cause. "
        "Provide a corrected C# code snippet.\n\n"
        f"Error:\n```\n{error_text}\n```\n\n"
        f"Stack Trace:\n```\n{stack_trace}\n```"
    )


def build_component_explanation_prompt(component_name: str) -> str:
    return (
        f"Explain the Unity {component_name} component. "
        "Describe its key properties and provide a C# example for its usage."
    )


def build_modify_file_prompt(file_path: str, request: str, original: str) -> str:
    return (
        f"File Path: {file_path}\n\n"
        f"User Request: {request}\n\n"
        f"Original File Content:\n```csharp\n{original}\n```"
    )


def strip_code_fence(text: str) -> str:
    """Remove one surrounding Markdown code fence, language tag included."""
    stripped = text.strip()
    if stripped.startswith("```"):
        newline = stripped.find("\n")
        stripped = "" if newline == -1 else stripped[newline + 1:]
    if stripped.endswith("```"):
        stripped = stripped[: -len("```")]
    return stripped.strip()
