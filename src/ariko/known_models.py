"""Known, supported model names per provider.

Model lists returned by the provider APIs are filtered against these so that
new or deprecated API models do not show up until they are added here.
"""

from __future__ import annotations

OPENAI: tuple[str, ...] = (
    "gpt-4.1-nano",
    "gpt-4.1-mini",
    "gpt-4.1",
    "gpt-4o",
    "gpt-o3-mini",
    "gpt-o4-mini",
    "gpt-5-nano",
    "gpt-5-mini",
    "gpt-5",
)

GOOGLE: tuple[str, ...] = (
    "models/gemini-2.5-pro",
    "models/gemini-2.5-flash",
)

# Ollama serves whatever the user pulled locally; an empty allowlist keeps all.
OLLAMA: tuple[str, ...] = ()
