from __future__ import annotations


class ArchiveError(Exception):
    """Base class for whole-request failures.

    ``kind`` is the tag reported to API clients; ``reason`` is the
    human-readable message.
    """

    kind = "ArchiveError"

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason

    def to_dict(self) -> dict:
        return {"kind": self.kind, "reason": self.reason}


class NothingToArchive(ArchiveError):
    """Raised when a source folder or manifest has no files to pack."""

    kind = "NothingToArchive"


class ArchiveNotFound(ArchiveError):
    """Raised when the source folder or archive does not exist."""

    kind = "ArchiveNotFound"


class ArchiveUnreadable(ArchiveError):
    """Raised when an archive (or an entry inside it) is corrupt or unsupported."""

    kind = "ArchiveUnreadable"


class ArchiveWriteFailed(ArchiveError):
    """Raised on an I/O failure while writing an archive or extracted file."""

    kind = "ArchiveWriteFailed"


class DirectoryUnwritable(ArchiveError):
    """Raised when a destination directory cannot be created or written."""

    kind = "DirectoryUnwritable"
