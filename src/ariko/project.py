"""Host primitives: project-scoped file access, safe replace, and the scene graph."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

CONTENT_DIR = "Assets"


class ProjectWorkspace:
    """Resolves tool paths against ``<root>/Assets`` and refuses anything outside it."""

    def __init__(self, root: Path | str, content_dir: str = CONTENT_DIR) -> None:
        self.root = Path(root).resolve()
        self.content_dir = content_dir
        self.content_root = (self.root / content_dir).resolve()

    def resolve(self, path: str) -> Path | None:
        """Return the absolute path for ``path``, or None if it escapes the content root.

        Both ``Scripts/Foo.cs`` and ``Assets/Scripts/Foo.cs`` name the same file.
        """
        if not path or not path.strip():
            return None
        relative = path.strip().replace("\\", "/")
        prefix = f"{self.content_dir}/"
        if relative.startswith(prefix):
            relative = relative[len(prefix):]
        elif relative == self.content_dir:
            relative = ""
        if Path(relative).is_absolute():
            return None
        candidate = (self.content_root / relative).resolve()
        if candidate != self.content_root and not candidate.is_relative_to(self.content_root):
            return None
        return candidate

    def relative(self, path: Path) -> str:
        """Project-relative display path, e.g. ``Assets/Scripts/Foo.cs``."""
        try:
            return Path(path).resolve().relative_to(self.root).as_posix()
        except ValueError:
            return str(path)


def safe_replace(path: Path, content: str) -> None:
    """Replace the file at ``path`` with ``content`` atomically.

    The original is backed up to a uniquely named sibling first and restored if
    the swap fails; the backup is removed once the new content is in place.
    Errors are re-raised.
    """
    path = Path(path)
    backup: Path | None = None
    if path.exists():
        backup_fd, backup_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".bak", dir=path.parent)
        os.close(backup_fd)
        backup = Path(backup_name)
        shutil.copy2(path, backup)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        os.replace(tmp_name, path)
    except Exception:
        logger.error("Failed to replace %s; restoring original", path)
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
        if backup is not None:
            shutil.copy2(backup, path)
            backup.unlink(missing_ok=True)
        raise
    if backup is not None:
        backup.unlink(missing_ok=True)


@runtime_checkable
class SceneGraph(Protocol):
    """Editor scene collaborator the GameObject tools act on."""

    def create_object(self, name: str) -> None:
        ...

    def has_object(self, name: str) -> bool:
        ...

    def delete_object(self, name: str) -> bool:
        ...

    def list_objects(self) -> list[str]:
        ...


class InMemorySceneGraph:
    """Scene graph used when no editor bridge is attached. Names may repeat."""

    def __init__(self, names: list[str] | None = None) -> None:
        self._objects: list[str] = list(names or [])

    def create_object(self, name: str) -> None:
        self._objects.append(name)

    def has_object(self, name: str) -> bool:
        return name in self._objects

    def delete_object(self, name: str) -> bool:
        """Remove the first object with ``name``; False if none exists."""
        try:
            self._objects.remove(name)
        except ValueError:
            return False
        return True

    def list_objects(self) -> list[str]:
        return list(self._objects)
