"""Deterministic naming helpers shared by the writer, reader and grouper."""

from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path

from .config import (
    ALLOWED_EXTS,
    ARCHIVE_NAME_PREFIX,
    CONTAINER_EXTS,
    RASTER_EXTS,
    SHAPEFILE_COMPONENT_EXTS,
    VECTOR_EXTS,
)
from .models import FileKind


_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]")


def timestamped_archive_name(now: datetime) -> str:
    """Return ``GIS-DATA MM-dd-yyyy HH-mm-ss.zip`` for the given moment.

    Built from numeric fields so the result never depends on the locale, and
    uses dashes because ``/`` and ``:`` are not valid in filenames.
    """
    return (
        f"{ARCHIVE_NAME_PREFIX} "
        f"{now.month:02d}-{now.day:02d}-{now.year:04d} "
        f"{now.hour:02d}-{now.minute:02d}-{now.second:02d}.zip"
    )


def sanitize_name(raw: str) -> str:
    # Mirrors the file stager's staged-name rule.
    return _UNSAFE_NAME_RE.sub("_", raw or "")


def split_name(name: str) -> tuple[str, str]:
    """Split ``name`` into ``(base, ext)`` at the last dot; ``ext`` keeps the dot.

    A leading dot (``.hidden``) is part of the base, not an extension.
    """
    dot = name.rfind(".")
    if dot <= 0:
        return name, ""
    return name[:dot], name[dot:]


def extension_of(name: str) -> str | None:
    """Lowercase extension without the dot, or None if there is none."""
    _, ext = split_name(name)
    if len(ext) <= 1:
        return None
    return ext[1:].lower()


def resolve_collision(directory: Path, candidate: str) -> str:
    """Return a name that does not yet exist in ``directory``.

    Checked against the directory as it is right now, so call it immediately
    before each write.
    """
    if not (directory / candidate).exists():
        return candidate
    base, ext = split_name(candidate)
    counter = 1
    while True:
        name = f"{base}_{counter}{ext}"
        if not (directory / name).exists():
            return name
        counter += 1


def classify(extension: str | None) -> FileKind | None:
    if not extension:
        return None
    ext = extension.lower()
    if ext not in ALLOWED_EXTS or ext in CONTAINER_EXTS:
        return None
    if ext in RASTER_EXTS:
        return FileKind.TIFF
    if ext in VECTOR_EXTS:
        return FileKind.VECTOR
    if ext in SHAPEFILE_COMPONENT_EXTS:
        return FileKind.SHAPEFILE_COMPONENT
    return None


def is_zip_name(name: str) -> bool:
    return extension_of(name) in CONTAINER_EXTS
