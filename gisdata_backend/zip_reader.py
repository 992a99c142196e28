"""Recursive, depth-bounded zip extraction into a flat, typed file list.

Nested ``.zip`` entries are expanded depth-first in place: their flattened
results appear where the nested archive sat in the outer entry order.
Entries are flattened to their basename, filtered against the extension
allow-list and written under collision-free names.
"""

from __future__ import annotations

import atexit
import logging
import threading
import uuid
import zipfile
import zlib
from collections.abc import Iterator
from contextlib import contextmanager, suppress
from pathlib import Path
from typing import BinaryIO

from .config import MAX_EXTRACT_DEPTH, READ_BUFFER_BYTES
from .errors import ArchiveNotFound, ArchiveUnreadable, ArchiveWriteFailed
from .models import ExtractedFile
from .naming import classify, extension_of, is_zip_name, resolve_collision, sanitize_name
from .security import entry_basename, safe_join
from .workspace import ensure_directory

logger = logging.getLogger(__name__)

# What zipfile raises for damaged or unsupported member data.
_CORRUPT_ENTRY_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError)

_deferred_lock = threading.Lock()
_deferred_paths: set[Path] = set()
_atexit_registered = False


def _delete_deferred() -> None:
    with _deferred_lock:
        paths = list(_deferred_paths)
        _deferred_paths.clear()
    for path in paths:
        with suppress(OSError):
            path.unlink(missing_ok=True)


def _defer_delete(path: Path) -> None:
    global _atexit_registered
    with _deferred_lock:
        _deferred_paths.add(path)
        if not _atexit_registered:
            atexit.register(_delete_deferred)
            _atexit_registered = True


def _release_temp(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not delete temp archive %s (%s); retrying at exit", path.name, exc)
        _defer_delete(path)


@contextmanager
def _scoped_temp_archive(dest_dir: Path, entry_name: str) -> Iterator[Path]:
    """Unique temp path for a nested archive, removed on every exit path."""
    path = dest_dir / f".tmp-{uuid.uuid4().hex}-{sanitize_name(entry_name)}"
    try:
        yield path
    finally:
        _release_temp(path)


def _open_unique(dest_dir: Path, name: str) -> tuple[Path, BinaryIO]:
    # Exclusive create: a file that appears between the existence check and
    # the open just pushes us on to the next suffix.
    while True:
        target = safe_join(dest_dir, resolve_collision(dest_dir, name))
        try:
            return target, target.open("xb")
        except FileExistsError:
            continue
        except OSError as exc:
            raise ArchiveWriteFailed(f"Cannot create {target.name}: {exc}") from exc


def _copy_member(zf: zipfile.ZipFile, info: zipfile.ZipInfo, dst: BinaryIO, target: Path) -> None:
    if info.flag_bits & 0x1:
        raise ArchiveUnreadable(f"Encrypted entry not supported: {info.filename}")
    try:
        src = zf.open(info)
    except _CORRUPT_ENTRY_ERRORS as exc:
        raise ArchiveUnreadable(f"Corrupt entry {info.filename}: {exc}") from exc
    with src:
        while True:
            try:
                chunk = src.read(READ_BUFFER_BYTES)
            except (*_CORRUPT_ENTRY_ERRORS, OSError) as exc:
                raise ArchiveUnreadable(f"Corrupt entry {info.filename}: {exc}") from exc
            if not chunk:
                break
            try:
                dst.write(chunk)
            except OSError as exc:
                raise ArchiveWriteFailed(f"Writing {target.name} failed: {exc}") from exc


def _write_member(zf: zipfile.ZipFile, info: zipfile.ZipInfo, target: Path, dst: BinaryIO) -> None:
    try:
        with dst:
            _copy_member(zf, info, dst, target)
    except BaseException:
        with suppress(OSError):
            target.unlink(missing_ok=True)
        raise


def _extract_entry(
    zf: zipfile.ZipFile,
    info: zipfile.ZipInfo,
    dest_dir: Path,
    depth: int,
    max_depth: int,
) -> list[ExtractedFile]:
    name = entry_basename(info.filename)
    if not name:
        return []

    if is_zip_name(name):
        if depth + 1 > max_depth:
            logger.warning("Skipping nested archive %s: depth %d exceeds limit %d", info.filename, depth + 1, max_depth)
            return []
        with _scoped_temp_archive(dest_dir, name) as temp_path:
            try:
                dst = temp_path.open("xb")
            except OSError as exc:
                raise ArchiveWriteFailed(f"Cannot stage nested archive {name}: {exc}") from exc
            _write_member(zf, info, temp_path, dst)
            logger.debug("Expanding nested archive %s at depth %d", info.filename, depth + 1)
            return _extract_archive(temp_path, dest_dir, depth + 1, max_depth, label=info.filename)

    kind = classify(extension_of(name))
    if kind is None:
        logger.debug("Dropping %s: extension not allowed", info.filename)
        return []

    target, dst = _open_unique(dest_dir, name)
    _write_member(zf, info, target, dst)
    return [ExtractedFile.from_path(target, kind)]


def _extract_archive(
    archive_path: Path,
    dest_dir: Path,
    depth: int,
    max_depth: int,
    label: str | None = None,
) -> list[ExtractedFile]:
    label = label or archive_path.name
    try:
        zf = zipfile.ZipFile(archive_path)
    except (zipfile.BadZipFile, OSError, ValueError) as exc:
        raise ArchiveUnreadable(f"{label} is not a readable ZIP archive: {exc}") from exc

    extracted: list[ExtractedFile] = []
    with zf:
        for info in zf.infolist():
            if info.is_dir():
                continue
            extracted.extend(_extract_entry(zf, info, dest_dir, depth, max_depth))
    return extracted


def extract(
    zip_path: Path | str,
    dest_dir: Path | str,
    max_depth: int = MAX_EXTRACT_DEPTH,
) -> list[ExtractedFile]:
    """Extract ``zip_path`` into ``dest_dir``, expanding nested zips.

    The top-level archive is depth 0; a nested archive deeper than
    ``max_depth`` is dropped with its contents. Any corrupt entry aborts the
    whole call with ``ArchiveUnreadable``.
    """
    zip_path = Path(zip_path)
    if not zip_path.exists():
        raise ArchiveNotFound(f"ZIP file does not exist: {zip_path}")
    if not zip_path.is_file():
        raise ArchiveUnreadable(f"Not a file: {zip_path}")

    dest = ensure_directory(Path(dest_dir)).resolve()
    files = _extract_archive(zip_path, dest, depth=0, max_depth=max_depth)
    logger.info("Extracted %d files from %s into %s", len(files), zip_path.name, dest)
    return files
