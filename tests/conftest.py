from __future__ import annotations

import io
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path
from zipfile import ZIP_DEFLATED, ZipFile

import pytest

# Must happen before gisdata_backend.config is imported anywhere.
os.environ.setdefault("GISDATA_DOCUMENTS_ROOT", tempfile.mkdtemp(prefix="gisdata-docs-"))


def zip_bytes(entries: Iterable[tuple[str, bytes]]) -> bytes:
    buf = io.BytesIO()
    with ZipFile(buf, mode="w", compression=ZIP_DEFLATED) as archive:
        for name, data in entries:
            archive.writestr(name, data)
    return buf.getvalue()


def create_zip(zip_path: Path, entries: Iterable[tuple[str, bytes]]) -> Path:
    zip_path.write_bytes(zip_bytes(entries))
    return zip_path


@pytest.fixture
def documents_root() -> Path:
    from gisdata_backend.config import DOCUMENTS_ROOT

    DOCUMENTS_ROOT.mkdir(parents=True, exist_ok=True)
    return DOCUMENTS_ROOT
