"""Append-only JSON store for review results.

Layout: ``<root>/<app_id>/<file_hash>.json``. One record per uploaded
content hash. A record may move from processing to a terminal state once;
after that it is never rewritten.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from ..exceptions import ReviewStoreError
from ..models.review import ReviewResult, ReviewStatus

_SAFE_COMPONENT = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def _component(value: str, label: str) -> str:
    if not _SAFE_COMPONENT.match(value or "") or ".." in value:
        raise ReviewStoreError(f"Invalid {label} for storage: {value!r}")
    return value


class ReviewStore:
    def __init__(self, root: Path):
        self.root = Path(root)

    def path_for(self, app_id: str, file_hash: str) -> Path:
        return self.root / _component(app_id, "app id") / f"{_component(file_hash, 'file hash')}.json"

    def load(self, app_id: str, file_hash: str) -> Optional[ReviewResult]:
        path = self.path_for(app_id, file_hash)
        if not path.exists():
            return None
        try:
            return ReviewResult.model_validate_json(path.read_text(encoding="utf-8"))
        except ValidationError as e:
            raise ReviewStoreError(f"Corrupt review record {path}: {e.error_count()} error(s)") from e

    def save(self, result: ReviewResult) -> Path:
        """Write a record. Refuses to overwrite a terminal record."""
        path = self.path_for(result.app_id, result.file_hash)
        existing = self.load(result.app_id, result.file_hash)
        if existing is not None and existing.is_terminal:
            raise ReviewStoreError(
                f"Review for {result.app_id}/{result.file_hash} is already "
                f"{existing.status.value}"
            )

        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(result.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
        os.replace(tmp, path)
        return path

    def latest_completed(self, app_id: str, file_hash: str) -> Optional[ReviewResult]:
        """The completed review for this content hash, if one exists."""
        result = self.load(app_id, file_hash)
        if result is not None and result.status == ReviewStatus.COMPLETED:
            return result
        return None

    def history(self, app_id: str) -> list[ReviewResult]:
        """All stored reviews for an app, oldest first."""
        app_dir = self.root / _component(app_id, "app id")
        if not app_dir.exists():
            return []
        results = [
            ReviewResult.model_validate_json(p.read_text(encoding="utf-8"))
            for p in sorted(app_dir.glob("*.json"))
        ]
        return sorted(results, key=lambda r: r.created_at)
