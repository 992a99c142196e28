from __future__ import annotations

import json
import logging
import os
import time
import uuid
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from .config import (
    DOCUMENTS_ROOT,
    FILES_SUBDIR,
    INCOMING_SUBDIR,
    MANIFEST_FILENAME,
    SESSIONS_DIRNAME,
)
from .errors import DirectoryUnwritable
from .models import ManifestEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionWorkspace:
    documents_root: Path
    sessions_dir: Path
    files_dir: Path
    manifest_path: Path
    incoming_dir: Path


def get_workspace(documents_root: Path | None = None) -> SessionWorkspace:
    root = Path(documents_root or DOCUMENTS_ROOT).resolve()
    sessions = root / SESSIONS_DIRNAME
    return SessionWorkspace(
        documents_root=root,
        sessions_dir=sessions,
        files_dir=sessions / FILES_SUBDIR,
        manifest_path=sessions / MANIFEST_FILENAME,
        incoming_dir=root / INCOMING_SUBDIR,
    )


def ensure_directory(path: Path) -> Path:
    """Create ``path`` if needed and check it is writable."""
    path = Path(path)
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise DirectoryUnwritable(f"Failed to create directory: {path} ({exc.strerror or exc})") from exc
    if not path.is_dir():
        raise DirectoryUnwritable(f"Not a directory: {path}")
    if not os.access(path, os.W_OK | os.X_OK):
        raise DirectoryUnwritable(f"Directory is not writable: {path}")
    return path


def iter_regular_files(root: Path) -> Iterator[Path]:
    """Yield every regular file under ``root``, depth-first, in name order."""
    try:
        children = sorted(root.iterdir(), key=lambda p: p.name)
    except OSError:
        return
    for child in children:
        if child.is_dir() and not child.is_symlink():
            yield from iter_regular_files(child)
        elif child.is_file():
            yield child


def load_stored_manifest(manifest_path: Path) -> list[dict]:
    """Read the app's manifest.json; a missing or malformed file reads as empty."""
    try:
        data = json.loads(manifest_path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return []
    return data if isinstance(data, list) else []


def manifest_entries_from_stored(records: list[dict]) -> list[ManifestEntry]:
    entries: list[ManifestEntry] = []
    for record in records:
        if not isinstance(record, dict):
            continue
        if record.get("status") == "staged_delete":
            continue
        absolute_path = record.get("absolutePath")
        original_name = record.get("originalName")
        if not absolute_path or not original_name:
            logger.warning("Stored manifest record without absolutePath/originalName: %r", record.get("layerId"))
            continue
        entries.append(ManifestEntry(absolute_path=str(absolute_path), original_name=str(original_name)))
    return entries


def new_incoming_path(ws: SessionWorkspace) -> Path:
    """Unique path for an uploaded archive awaiting extraction."""
    ensure_directory(ws.incoming_dir)
    return ws.incoming_dir / f"{uuid.uuid4().hex}.zip"


def cleanup_stale_incoming(ws: SessionWorkspace, ttl_seconds: float) -> int:
    """Delete leftover uploads older than ttl_seconds.

    Returns the number of deleted files.
    """
    if not ws.incoming_dir.exists():
        return 0
    deleted = 0
    now = time.time()
    for child in ws.incoming_dir.iterdir():
        if not child.is_file():
            continue
        try:
            if now - child.stat().st_mtime > ttl_seconds:
                child.unlink()
                deleted += 1
        except OSError:
            continue
    return deleted
