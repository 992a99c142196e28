from __future__ import annotations

import re
import uuid
from pathlib import Path, PurePosixPath


_JOB_ID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE)


def normalize_job_id(job_id: str) -> str:
    """Validate a job id and return its canonical form.

    Job ids are handed out as UUID4 strings; anything else is rejected before
    it reaches the registry.
    """
    if not isinstance(job_id, str):
        raise ValueError("Invalid job id")
    job_id = job_id.strip()
    if not _JOB_ID_RE.match(job_id):
        raise ValueError("Invalid job id")
    return str(uuid.UUID(job_id))


def is_safe_basename(name: str) -> bool:
    """Allow only plain filenames (no directories, no dot-only names)."""
    if not isinstance(name, str) or not name or name in (".", ".."):
        return False
    if "/" in name or "\\" in name:
        return False
    return name == Path(name).name


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join parts onto base_dir and refuse results that escape it.

    Entry names come from untrusted archives, so every output path goes
    through here.
    """
    base_dir = base_dir.resolve()
    resolved = base_dir.joinpath(*parts).resolve()
    if resolved != base_dir and base_dir not in resolved.parents:
        raise ValueError("Path traversal attempt")
    return resolved


def entry_basename(entry_name: str) -> str:
    """Last path segment of a zip entry name; embedded folders are dropped."""
    normalized = (entry_name or "").replace("\\", "/").rstrip("/")
    return normalized.rsplit("/", 1)[-1]


def relative_entry_name(root: Path, path: Path) -> str:
    """Forward-slash path of ``path`` relative to ``root``, no leading slash."""
    return PurePosixPath(*path.relative_to(root).parts).as_posix()
