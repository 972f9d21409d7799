"""Archive extraction with source-file filtering.

Unpacks an untrusted upload into an isolated temporary directory and reads
back only the text files worth analyzing.
"""

from __future__ import annotations

import hashlib
import os
import shutil
import stat
import tarfile
import tempfile
import zipfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from rich.console import Console

from ..exceptions import ArchiveTooLarge, ExtractionError, TooManyFiles
from ..models.config import ExtractionLimits
from ..models.file import ExtractedFile

console = Console()

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EXCLUDE_DIRS = {
    "node_modules", "vendor", ".git", "dist", "build", "__pycache__",
    "coverage", ".nyc_output", "htmlcov",
}

# Hidden files that are still worth reading.
HIDDEN_ALLOWED = {".env.example", ".env.sample"}

EXCLUDE_SUFFIXES = (
    ".min.js", ".min.css", ".bundle.js", ".map",
    ".lock", ".log", ".svg", ".png", ".jpg", ".jpeg",
    ".gif", ".ico", ".woff", ".woff2", ".ttf", ".eot",
    ".mp3", ".mp4", ".wav", ".avi", ".mov", ".pdf",
    ".zip", ".tar", ".gz", ".tgz", ".rar", ".7z",
    ".exe", ".dll", ".so", ".dylib", ".bin", ".class", ".jar", ".pyc", ".wasm",
)

EXCLUDE_NAMES = {"package-lock.json", "yarn.lock", "pnpm-lock.yaml", "poetry.lock"}

INCLUDE_EXTENSIONS = {
    ".js", ".ts", ".jsx", ".tsx", ".mjs", ".cjs",
    ".py", ".rb", ".go", ".rs", ".java", ".kt",
    ".php", ".cs", ".cpp", ".c", ".h", ".hpp",
    ".swift", ".m", ".vue", ".svelte",
    ".json", ".yaml", ".yml", ".toml", ".xml",
    ".sh", ".bash", ".zsh", ".ps1", ".bat", ".cmd",
    ".sql", ".graphql", ".prisma",
    ".md", ".txt", ".rst",
}

HIGH_PRIORITY_MARKERS = (
    "index.", "main.", "app.", "server.", "api/", "route", "auth",
    "login", "security", "middleware",
)

MEDIUM_PRIORITY_MARKERS = (
    "lib/", "src/", "utils/", "helper", "service", "controller", "model",
)

TEMP_PREFIX = "appvet-extract-"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class ExtractionResult:
    files: list[ExtractedFile]
    extract_dir: Path
    total_size: int


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------

def hash_content(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def compute_file_hash(path: Path, chunk_size: int = 65536) -> str:
    """SHA-256 of an archive on disk, for callers that have no hash yet."""
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


# ---------------------------------------------------------------------------
# File filters
# ---------------------------------------------------------------------------

def _extension(name: str) -> str:
    lower = name.lower()
    if lower in HIDDEN_ALLOWED:
        return lower
    return Path(lower).suffix


def is_code_file(relative_path: str) -> bool:
    """Check the name against the excluded and included extension sets."""
    name = Path(relative_path).name.lower()
    if name in EXCLUDE_NAMES:
        return False
    if name.endswith(EXCLUDE_SUFFIXES):
        return False
    if name in HIDDEN_ALLOWED:
        return True
    return Path(name).suffix in INCLUDE_EXTENSIONS


def is_excluded_path(relative_path: str) -> bool:
    """Deny-listed directories and hidden path components."""
    parts = Path(relative_path).parts
    for part in parts:
        if part in EXCLUDE_DIRS:
            return True
        if part.startswith(".") and part not in HIDDEN_ALLOWED:
            return True
    return False


# ---------------------------------------------------------------------------
# Safe unpacking
# ---------------------------------------------------------------------------

def _ensure_inside(root: Path, name: str) -> None:
    target = (root / name).resolve()
    if target != root and root not in target.parents:
        raise ExtractionError(f"Path traversal in archive entry: {name}")


def _extract_zip(archive_path: Path, dest: Path, max_bytes: int) -> None:
    try:
        with zipfile.ZipFile(archive_path) as zf:
            members = []
            total = 0
            for info in zf.infolist():
                _ensure_inside(dest, info.filename)
                mode = info.external_attr >> 16
                if stat.S_ISLNK(mode):
                    continue
                if not info.is_dir():
                    total += info.file_size
                    if total > max_bytes:
                        raise ArchiveTooLarge(
                            f"Archive expands beyond {max_bytes // 1024}KB"
                        )
                members.append(info)
            zf.extractall(dest, members=members)
    except zipfile.BadZipFile as e:
        raise ExtractionError(f"Corrupt zip archive: {e}") from e


def _extract_tar(archive_path: Path, dest: Path, max_bytes: int) -> None:
    try:
        with tarfile.open(archive_path, "r:*") as tf:
            members = []
            total = 0
            for member in tf.getmembers():
                _ensure_inside(dest, member.name)
                # Links and device nodes never carry reviewable source.
                if not (member.isfile() or member.isdir()):
                    continue
                if member.isfile():
                    total += member.size
                    if total > max_bytes:
                        raise ArchiveTooLarge(
                            f"Archive expands beyond {max_bytes // 1024}KB"
                        )
                members.append(member)
            tf.extractall(dest, members=members, filter="data")
    except tarfile.TarError as e:
        raise ExtractionError(f"Corrupt tar archive: {e}") from e


def unpack_archive(archive_path: Path, dest: Path, max_bytes: int) -> None:
    name = archive_path.name.lower()
    if name.endswith(".zip"):
        _extract_zip(archive_path, dest, max_bytes)
    elif name.endswith((".tar.gz", ".tgz", ".gz", ".tar")):
        _extract_tar(archive_path, dest, max_bytes)
    else:
        raise ExtractionError(f"Unsupported archive format: {archive_path.suffix or name}")


# ---------------------------------------------------------------------------
# Walk
# ---------------------------------------------------------------------------

def read_source_files(extract_dir: Path, max_file_size_kb: int) -> list[ExtractedFile]:
    """Walk the extraction dir and read every eligible text file."""
    max_file_bytes = max_file_size_kb * 1024
    files: list[ExtractedFile] = []

    for root, dirs, names in os.walk(extract_dir):
        rel_root = Path(root).relative_to(extract_dir)
        # Prune excluded dirs
        dirs[:] = sorted(
            d for d in dirs if not is_excluded_path(str(rel_root / d))
        )
        for fname in sorted(names):
            full = Path(root) / fname
            relative = (rel_root / fname).as_posix()
            if is_excluded_path(relative) or not is_code_file(relative):
                continue
            if not full.is_file() or full.is_symlink():
                continue
            size = full.stat().st_size
            if size > max_file_bytes:
                continue

            raw = full.read_bytes()
            if b"\x00" in raw:
                continue
            try:
                content = raw.decode("utf-8")
            except UnicodeDecodeError:
                console.print(f"  [dim]Skipping non-text file: {relative}[/dim]")
                continue

            files.append(
                ExtractedFile(
                    path=str(full),
                    relative_path=relative,
                    content=content,
                    content_hash=hash_content(content),
                    size_bytes=size,
                    extension=_extension(fname),
                )
            )

    files.sort(key=lambda f: f.relative_path)
    return files


def cleanup_temp_dir(path: Optional[Path]) -> None:
    if path is None:
        return
    shutil.rmtree(path, ignore_errors=True)


def extract_archive(
    archive_path: Path,
    limits: Optional[ExtractionLimits] = None,
) -> ExtractionResult:
    """Extract an archive and return its source files.

    The caller owns ``extract_dir`` until it calls ``cleanup_temp_dir``.
    Any failure removes the partially extracted content before raising.
    """
    limits = limits or ExtractionLimits()
    archive_path = Path(archive_path)
    if not archive_path.is_file():
        raise ExtractionError(f"Archive not found: {archive_path}")

    extract_dir = Path(tempfile.mkdtemp(prefix=TEMP_PREFIX)).resolve()
    try:
        unpack_archive(archive_path, extract_dir, limits.max_extract_size_kb * 1024)
        files = read_source_files(extract_dir, limits.max_file_size_kb)

        total_size = sum(f.size_bytes for f in files)
        if total_size > limits.max_total_size_kb * 1024:
            raise ArchiveTooLarge(
                f"Total code size exceeds limit: {round(total_size / 1024)}KB "
                f"> {limits.max_total_size_kb}KB"
            )
        if len(files) > limits.max_files:
            raise TooManyFiles(f"Too many files: {len(files)} > {limits.max_files}")

        return ExtractionResult(files=files, extract_dir=extract_dir, total_size=total_size)
    except BaseException:
        cleanup_temp_dir(extract_dir)
        raise


@contextmanager
def extracted_archive(
    archive_path: Path,
    limits: Optional[ExtractionLimits] = None,
) -> Iterator[ExtractionResult]:
    """Scoped extraction: the temp dir is removed on every exit path."""
    result = extract_archive(archive_path, limits)
    try:
        yield result
    finally:
        cleanup_temp_dir(result.extract_dir)


# ---------------------------------------------------------------------------
# Prioritization & stats
# ---------------------------------------------------------------------------

def get_file_priority(relative_path: str) -> int:
    """Classify a file into a priority group (1=highest, 3=lowest)."""
    path = relative_path.lower()
    if path.endswith(".env.example") or any(m in path for m in HIGH_PRIORITY_MARKERS):
        return 1
    if any(m in path for m in MEDIUM_PRIORITY_MARKERS):
        return 2
    return 3


def group_files_by_priority(
    files: list[ExtractedFile],
) -> tuple[list[ExtractedFile], list[ExtractedFile], list[ExtractedFile]]:
    """Split files into (high, medium, low) priority groups, order preserved."""
    groups: dict[int, list[ExtractedFile]] = {1: [], 2: [], 3: []}
    for f in files:
        groups[get_file_priority(f.relative_path)].append(f)
    return groups[1], groups[2], groups[3]


def get_file_stats(files: list[ExtractedFile]) -> dict:
    by_extension: dict[str, int] = {}
    total_size = 0
    for f in files:
        total_size += f.size_bytes
        by_extension[f.extension] = by_extension.get(f.extension, 0) + 1
    return {
        "total_files": len(files),
        "total_size": total_size,
        "by_extension": by_extension,
        "avg_file_size": round(total_size / len(files)) if files else 0,
    }
