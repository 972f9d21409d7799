"""Bundled system prompts."""

from __future__ import annotations

from functools import lru_cache
from importlib import resources


@lru_cache(maxsize=None)
def load_prompt(name: str) -> str:
    """Load a system prompt from ``appvet/data/prompts/<name>.md``."""
    data_pkg = resources.files("appvet.data.prompts")
    return (data_pkg / f"{name}.md").read_text(encoding="utf-8")
