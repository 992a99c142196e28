from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class FileKind(str, Enum):
    """Type tag carried by every extracted file descriptor."""

    TIFF = "tiff"
    VECTOR = "vector"
    SHAPEFILE_COMPONENT = "shapefile_component"
    SHAPEFILE = "shapefile"


@dataclass(frozen=True)
class ExtractedFile:
    """Snapshot of a file written into the destination directory.

    Not kept in sync with the filesystem after creation.
    """

    absolute_path: str
    name: str
    type: FileKind
    size_bytes: int

    @classmethod
    def from_path(cls, path: Path, kind: FileKind) -> "ExtractedFile":
        return cls(
            absolute_path=str(path),
            name=path.name,
            type=kind,
            size_bytes=path.stat().st_size,
        )

    def to_dict(self) -> dict:
        return {
            "absolutePath": self.absolute_path,
            "name": self.name,
            "type": self.type.value,
            "sizeBytes": self.size_bytes,
        }


@dataclass(frozen=True)
class ArchiveResult:
    absolute_path: str
    file_name: str
    size_bytes: int
    files_added: int = 0
    files_skipped: int = 0

    def to_dict(self) -> dict:
        return {
            "absolutePath": self.absolute_path,
            "fileName": self.file_name,
            "sizeBytes": self.size_bytes,
        }


@dataclass(frozen=True)
class ManifestEntry:
    """One file to pack: where it lives and the entry name to store it under."""

    absolute_path: str
    original_name: str


@dataclass(frozen=True)
class WholeFolder:
    source_dir: Path


@dataclass(frozen=True)
class ManifestList:
    entries: tuple[ManifestEntry, ...]


ArchiveRequest = WholeFolder | ManifestList


@dataclass(frozen=True)
class ProgressEvent:
    bytes_written: int
    total_bytes: int

    def to_dict(self) -> dict:
        return {"bytesWritten": self.bytes_written, "totalBytes": self.total_bytes}
