"""Request-level operations: pack a folder, pack a manifest, extract an archive."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

from .config import EXPORT_DIR, MAX_EXTRACT_DEPTH
from .errors import NothingToArchive
from .grouper import group_shapefiles
from .models import ArchiveRequest, ArchiveResult, ExtractedFile, ManifestEntry, ManifestList, WholeFolder
from .naming import timestamped_archive_name
from .workspace import (
    ensure_directory,
    get_workspace,
    load_stored_manifest,
    manifest_entries_from_stored,
)
from .zip_reader import extract
from .zip_writer import ProgressCallback, write_folder_archive, write_manifest_archive

logger = logging.getLogger(__name__)


def _archive_path(export_dir: Path | None, now: datetime | None) -> Path:
    directory = ensure_directory(Path(export_dir or EXPORT_DIR))
    return directory / timestamped_archive_name(now or datetime.now())


def pack_folder(
    source_dir: Path | str | None = None,
    export_dir: Path | str | None = None,
    now: datetime | None = None,
    progress: ProgressCallback | None = None,
) -> ArchiveResult:
    """Zip the whole session folder (HSC-SESSIONS by default)."""
    source = Path(source_dir) if source_dir else get_workspace().sessions_dir
    return write_folder_archive(source, _archive_path(export_dir, now), progress=progress)


def pack_manifest(
    entries: Iterable[ManifestEntry],
    export_dir: Path | str | None = None,
    now: datetime | None = None,
    progress: ProgressCallback | None = None,
) -> ArchiveResult:
    entries = list(entries)
    if not entries:
        raise NothingToArchive("Manifest is empty")
    return write_manifest_archive(entries, _archive_path(export_dir, now), progress=progress)


def pack_stored_manifest(
    documents_root: Path | str | None = None,
    export_dir: Path | str | None = None,
    now: datetime | None = None,
    progress: ProgressCallback | None = None,
) -> ArchiveResult:
    """Pack the files listed in HSC-SESSIONS/manifest.json, minus pending deletions."""
    ws = get_workspace(Path(documents_root) if documents_root else None)
    entries = manifest_entries_from_stored(load_stored_manifest(ws.manifest_path))
    return pack_manifest(entries, export_dir=export_dir, now=now, progress=progress)


def run_request(
    request: ArchiveRequest,
    export_dir: Path | str | None = None,
    now: datetime | None = None,
    progress: ProgressCallback | None = None,
) -> ArchiveResult:
    if isinstance(request, WholeFolder):
        return pack_folder(request.source_dir, export_dir=export_dir, now=now, progress=progress)
    if isinstance(request, ManifestList):
        return pack_manifest(request.entries, export_dir=export_dir, now=now, progress=progress)
    raise TypeError(f"Unsupported archive request: {type(request).__name__}")


def extract_archive(
    zip_path: Path | str,
    dest_dir: Path | str | None = None,
    max_depth: int | None = None,
) -> list[ExtractedFile]:
    """Extract an archive (nested zips included) and bundle shapefiles.

    Defaults to HSC-SESSIONS/FILES as the destination.
    """
    dest = Path(dest_dir) if dest_dir else get_workspace().files_dir
    depth = MAX_EXTRACT_DEPTH if max_depth is None else max_depth
    extracted = extract(zip_path, dest, max_depth=depth)
    files = group_shapefiles(extracted, dest)
    logger.info("Extraction of %s produced %d files", Path(zip_path).name, len(files))
    return files
