"""Extracted source file model."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ExtractedFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    relative_path: str
    content: str
    content_hash: str
    size_bytes: int
    extension: str
