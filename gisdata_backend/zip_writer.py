from __future__ import annotations

import logging
import time
import zipfile
from collections.abc import Callable, Iterable
from pathlib import Path

from .config import COPY_BUFFER_BYTES, PROGRESS_INTERVAL_SECONDS
from .errors import ArchiveNotFound, ArchiveWriteFailed, NothingToArchive
from .models import ArchiveResult, ManifestEntry, ProgressEvent
from .security import relative_entry_name
from .workspace import ensure_directory, iter_regular_files

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


class ProgressTracker:
    """Running byte total for one archive write.

    Passed explicitly to every copy call. Notifications go to ``callback`` no
    more often than every ``interval`` seconds. ``finish()`` adds one completion
    event, unless the last notification already reported the final total.
    """

    def __init__(
        self,
        total_bytes: int,
        callback: ProgressCallback | None = None,
        interval: float = PROGRESS_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.total_bytes = total_bytes
        self.bytes_written = 0
        self._callback = callback
        self._interval = interval
        self._clock = clock
        self._last_emit: float | None = None
        self._last_reported: int | None = None

    def add(self, count: int) -> None:
        self.bytes_written += count
        if self._callback is None:
            return
        now = self._clock()
        if self._last_emit is None or now - self._last_emit >= self._interval:
            self._emit(now)

    def finish(self) -> None:
        if self._callback is not None and self._last_reported != self.bytes_written:
            self._emit(self._clock())

    def _emit(self, now: float) -> None:
        self._last_emit = now
        self._last_reported = self.bytes_written
        self._callback(ProgressEvent(bytes_written=self.bytes_written, total_bytes=self.total_bytes))


def _prepare_destination(dest_zip_path: Path) -> None:
    ensure_directory(dest_zip_path.parent)
    # Last writer wins for the generated name.
    if dest_zip_path.exists():
        try:
            dest_zip_path.unlink()
        except OSError as exc:
            raise ArchiveWriteFailed(f"Cannot replace existing archive {dest_zip_path.name}: {exc}") from exc


def _copy_file_into(
    zf: zipfile.ZipFile,
    source: Path,
    arcname: str,
    tracker: ProgressTracker,
    buffer_size: int,
) -> int:
    # Source is opened before the entry is started, so a vanished file never
    # leaves a half-written entry behind.
    with source.open("rb") as src:
        info = zipfile.ZipInfo.from_file(source, arcname, strict_timestamps=False)
        info.compress_type = zipfile.ZIP_DEFLATED
        copied = 0
        with zf.open(info, mode="w") as dst:
            while True:
                chunk = src.read(buffer_size)
                if not chunk:
                    break
                dst.write(chunk)
                copied += len(chunk)
                tracker.add(len(chunk))
    return copied


def _result_for(dest_zip_path: Path, added: int, skipped: int) -> ArchiveResult:
    return ArchiveResult(
        absolute_path=str(dest_zip_path.resolve()),
        file_name=dest_zip_path.name,
        size_bytes=dest_zip_path.stat().st_size,
        files_added=added,
        files_skipped=skipped,
    )


def write_folder_archive(
    source_dir: Path | str,
    dest_zip_path: Path | str,
    progress: ProgressCallback | None = None,
    buffer_size: int = COPY_BUFFER_BYTES,
) -> ArchiveResult:
    """Zip every file under ``source_dir``, keyed by its relative POSIX path.

    Directories are not stored as entries. Fails before touching the
    destination if the folder is missing or holds no files.
    """
    source_dir = Path(source_dir)
    dest_zip_path = Path(dest_zip_path)

    if not source_dir.is_dir():
        raise ArchiveNotFound(f"Source folder does not exist: {source_dir}")

    dest_resolved = dest_zip_path.resolve()
    files = [p for p in iter_regular_files(source_dir) if p.resolve() != dest_resolved]
    if not files:
        raise NothingToArchive(f"Nothing to archive in {source_dir.name}")

    total = sum(p.stat().st_size for p in files)
    tracker = ProgressTracker(total, progress)
    _prepare_destination(dest_zip_path)

    logger.info("Packing %d files (%d bytes) from %s into %s", len(files), total, source_dir, dest_zip_path.name)
    try:
        with zipfile.ZipFile(dest_zip_path, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
            for path in files:
                _copy_file_into(zf, path, relative_entry_name(source_dir, path), tracker, buffer_size)
    except OSError as exc:
        raise ArchiveWriteFailed(f"Writing {dest_zip_path.name} failed: {exc}") from exc

    tracker.finish()
    return _result_for(dest_zip_path, added=len(files), skipped=0)


def _packable_source(entry: ManifestEntry) -> Path | None:
    if not entry.absolute_path or not entry.original_name:
        return None
    path = Path(entry.absolute_path)
    return path if path.is_file() else None


def write_manifest_archive(
    entries: Iterable[ManifestEntry],
    dest_zip_path: Path | str,
    progress: ProgressCallback | None = None,
    buffer_size: int = COPY_BUFFER_BYTES,
) -> ArchiveResult:
    """Zip an explicit list of files, each stored under its ``original_name``.

    Missing entries are skipped. Names are used verbatim, so duplicate names
    produce duplicate entries.
    """
    entries = list(entries)
    dest_zip_path = Path(dest_zip_path)

    if not entries:
        raise NothingToArchive("Manifest is empty")

    sources = [_packable_source(entry) for entry in entries]
    present = [s for s in sources if s is not None]
    if not present:
        raise NothingToArchive(f"None of the {len(entries)} manifest files exist")

    total = 0
    for path in present:
        try:
            total += path.stat().st_size
        except OSError:
            continue
    tracker = ProgressTracker(total, progress)
    _prepare_destination(dest_zip_path)

    added = 0
    skipped = 0
    try:
        with zipfile.ZipFile(dest_zip_path, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
            for index, (entry, source) in enumerate(zip(entries, sources)):
                if source is None:
                    logger.warning("Manifest entry %d skipped, not a file: %s", index, entry.absolute_path)
                    skipped += 1
                    continue
                try:
                    size = _copy_file_into(zf, source, entry.original_name, tracker, buffer_size)
                except FileNotFoundError:
                    logger.warning("Manifest entry %d vanished before it could be read: %s", index, source)
                    skipped += 1
                    continue
                logger.debug("Added %s (%d bytes)", entry.original_name, size)
                added += 1
    except OSError as exc:
        raise ArchiveWriteFailed(f"Writing {dest_zip_path.name} failed: {exc}") from exc

    tracker.finish()
    result = _result_for(dest_zip_path, added=added, skipped=skipped)
    logger.info(
        "Manifest archive %s: %d added, %d skipped, %d bytes",
        result.file_name,
        added,
        skipped,
        result.size_bytes,
    )
    return result
