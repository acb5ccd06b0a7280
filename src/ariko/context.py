"""Editor context (current selection and attached assets) rendered for prompts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .project import ProjectWorkspace

logger = logging.getLogger(__name__)

# Unity asset types by file extension, for non-text assets.
_ASSET_TYPES = {
    ".prefab": "GameObject",
    ".unity": "SceneAsset",
    ".mat": "Material",
    ".png": "Texture2D",
    ".jpg": "Texture2D",
    ".jpeg": "Texture2D",
    ".wav": "AudioClip",
    ".mp3": "AudioClip",
    ".fbx": "GameObject",
    ".anim": "AnimationClip",
    ".controller": "AnimatorController",
}


class ContextKind(str, Enum):
    SCRIPT = "Script"
    TEXT = "Text"
    ASSET = "Asset"


@dataclass(frozen=True)
class ContextItem:
    """One selected or attached asset."""

    kind: ContextKind
    name: str
    path: str = ""
    text: str = ""
    asset_type: str = ""

    def render(self) -> str:
        if self.kind is ContextKind.SCRIPT:
            return f"[File: {self.name}.cs]\n```csharp\n{self.text}\n```\n"
        if self.kind is ContextKind.TEXT:
            return f"[File: {self.name}]\n```\n{self.text}\n```\n"
        return f"[Asset: {self.name} ({self.asset_type}) at path {self.path}]\n"


def load_context_item(workspace: ProjectWorkspace, path: str) -> ContextItem | None:
    """Build a context item for a project file; None if it is missing or outside Assets."""
    resolved = workspace.resolve(path)
    if resolved is None or not resolved.is_file():
        return None
    relative = workspace.relative(resolved)
    suffix = resolved.suffix.lower()
    if suffix == ".cs":
        return ContextItem(
            ContextKind.SCRIPT, resolved.stem, relative, resolved.read_text(encoding="utf-8")
        )
    if suffix not in _ASSET_TYPES:
        try:
            text = resolved.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            logger.debug("Treating %s as a binary asset", relative)
        else:
            return ContextItem(ContextKind.TEXT, resolved.stem, relative, text)
    return ContextItem(
        ContextKind.ASSET,
        Path(relative).stem,
        relative,
        asset_type=_ASSET_TYPES.get(suffix, "DefaultAsset"),
    )


class ContextBuilder:
    """Holds the selection and attachments and renders the context block."""

    def __init__(self, auto_context: bool = True) -> None:
        self.auto_context = auto_context
        self.selection: ContextItem | None = None
        self.attached: list[ContextItem] = []

    def attach(self, item: ContextItem) -> None:
        if item not in self.attached:
            self.attached.append(item)

    def attach_file(self, workspace: ProjectWorkspace, path: str) -> ContextItem | None:
        item = load_context_item(workspace, path)
        if item is not None:
            self.attach(item)
        return item

    def select(self, item: ContextItem | None) -> None:
        self.selection = item

    def clear(self) -> None:
        """Drop attachments; the selection belongs to the editor."""
        self.attached.clear()

    def build(self) -> str:
        lines: list[str] = []
        if self.auto_context and self.selection is not None:
            lines.append("--- Current Selection Context ---\n")
            lines.append(self.selection.render() + "\n")
        if self.attached:
            lines.append("--- Manually Attached Context ---\n")
            for item in self.attached:
                lines.append(item.render() + "\n")
        return "".join(lines)
