from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from zipfile import ZipFile

import pytest

from conftest import create_zip, zip_bytes
from gisdata_backend.bundles import (
    extract_archive,
    pack_folder,
    pack_manifest,
    pack_stored_manifest,
    run_request,
)
from gisdata_backend.errors import ArchiveNotFound, DirectoryUnwritable, NothingToArchive
from gisdata_backend.models import FileKind, ManifestEntry, ManifestList, WholeFolder

NOW = datetime(2025, 12, 16, 12, 33, 2)
EXPECTED_NAME = "GIS-DATA 12-16-2025 12-33-02.zip"


def _relative_contents(root: Path) -> dict[str, bytes]:
    return {p.relative_to(root).as_posix(): p.read_bytes() for p in root.rglob("*") if p.is_file()}


def test_pack_folder_then_extract_round_trip(tmp_path: Path) -> None:
    source = tmp_path / "session"
    (source / "FILES").mkdir(parents=True)
    (source / "FILES" / "dem.hgt").write_bytes(b"\x01\x02")
    (source / "FILES" / "lines.kml").write_text("<kml/>")
    (source / "notes.txt").write_text("not allow-listed")
    export = tmp_path / "export"

    result = pack_folder(source, export_dir=export, now=NOW)

    assert result.file_name == EXPECTED_NAME
    assert Path(result.absolute_path) == (export / EXPECTED_NAME).resolve()

    dest = tmp_path / "restored"
    files = extract_archive(result.absolute_path, dest)

    allowed = {k.rsplit("/", 1)[-1]: v for k, v in _relative_contents(source).items() if not k.endswith(".txt")}
    assert {f.name: Path(f.absolute_path).read_bytes() for f in files} == allowed


def test_pack_folder_same_second_replaces_previous(tmp_path: Path) -> None:
    source = tmp_path / "session"
    source.mkdir()
    (source / "a.csv").write_text("1")
    export = tmp_path / "export"

    first = pack_folder(source, export_dir=export, now=NOW)
    (source / "b.csv").write_text("2")
    second = pack_folder(source, export_dir=export, now=NOW)

    assert first.absolute_path == second.absolute_path
    with ZipFile(second.absolute_path) as zf:
        assert sorted(zf.namelist()) == ["a.csv", "b.csv"]


def test_pack_folder_defaults_to_session_dir(documents_root: Path, tmp_path: Path) -> None:
    sessions = documents_root / "HSC-SESSIONS"
    sessions.mkdir(parents=True, exist_ok=True)
    (sessions / "default-marker.csv").write_text("x")

    result = pack_folder(export_dir=tmp_path, now=NOW)

    with ZipFile(result.absolute_path) as zf:
        assert "default-marker.csv" in zf.namelist()


def test_pack_folder_errors_write_nothing(tmp_path: Path) -> None:
    export = tmp_path / "export"
    empty = tmp_path / "empty"
    empty.mkdir()

    with pytest.raises(ArchiveNotFound):
        pack_folder(tmp_path / "missing", export_dir=export, now=NOW)
    with pytest.raises(NothingToArchive):
        pack_folder(empty, export_dir=export, now=NOW)
    assert not (export / EXPECTED_NAME).exists()


def test_pack_folder_unwritable_export_dir(tmp_path: Path) -> None:
    source = tmp_path / "session"
    source.mkdir()
    (source / "a.csv").write_text("1")
    blocker = tmp_path / "blocker"
    blocker.write_text("a file, not a directory")

    with pytest.raises(DirectoryUnwritable):
        pack_folder(source, export_dir=blocker / "sub", now=NOW)


def test_pack_manifest_counts(tmp_path: Path) -> None:
    valid = []
    for i in range(3):
        p = tmp_path / f"staged_{i}.geojson"
        p.write_text("{}")
        valid.append(ManifestEntry(absolute_path=str(p), original_name=f"layer {i}.geojson"))
    missing = [ManifestEntry(absolute_path=str(tmp_path / f"m{i}.tif"), original_name=f"m{i}.tif") for i in range(2)]

    result = pack_manifest(valid[:1] + missing + valid[1:], export_dir=tmp_path / "export", now=NOW)

    with ZipFile(result.absolute_path) as zf:
        assert zf.namelist() == ["layer 0.geojson", "layer 1.geojson", "layer 2.geojson"]
    assert result.files_added == 3
    assert result.files_skipped == 2


@pytest.mark.parametrize("entries", [[], [ManifestEntry(absolute_path="/nonexistent/x.tif", original_name="x.tif")]])
def test_pack_manifest_nothing_to_archive(tmp_path: Path, entries: list[ManifestEntry]) -> None:
    with pytest.raises(NothingToArchive):
        pack_manifest(entries, export_dir=tmp_path, now=NOW)
    assert not (tmp_path / EXPECTED_NAME).exists()


def test_pack_stored_manifest_skips_pending_deletes(tmp_path: Path) -> None:
    docs = tmp_path / "docs"
    sessions = docs / "HSC-SESSIONS"
    (sessions / "FILES").mkdir(parents=True)
    keep = sessions / "FILES" / "keep.csv"
    keep.write_text("k")
    drop = sessions / "FILES" / "drop.csv"
    drop.write_text("d")
    records = [
        {"layerId": "1", "absolutePath": str(keep), "originalName": "Keep.csv", "status": "saved"},
        {"layerId": "2", "absolutePath": str(drop), "originalName": "Drop.csv", "status": "staged_delete"},
        {"layerId": "3", "originalName": "no-path.csv", "status": "staged"},
    ]
    (sessions / "manifest.json").write_text(json.dumps(records))

    result = pack_stored_manifest(documents_root=docs, export_dir=tmp_path / "export", now=NOW)

    with ZipFile(result.absolute_path) as zf:
        assert zf.namelist() == ["Keep.csv"]


def test_pack_stored_manifest_missing_file(tmp_path: Path) -> None:
    with pytest.raises(NothingToArchive):
        pack_stored_manifest(documents_root=tmp_path, export_dir=tmp_path, now=NOW)


def test_run_request_dispatches(tmp_path: Path) -> None:
    source = tmp_path / "session"
    source.mkdir()
    (source / "a.csv").write_text("1")

    folder = run_request(WholeFolder(source_dir=source), export_dir=tmp_path / "f", now=NOW)
    manifest = run_request(
        ManifestList(entries=(ManifestEntry(absolute_path=str(source / "a.csv"), original_name="b.csv"),)),
        export_dir=tmp_path / "m",
        now=NOW,
    )

    with ZipFile(folder.absolute_path) as zf:
        assert zf.namelist() == ["a.csv"]
    with ZipFile(manifest.absolute_path) as zf:
        assert zf.namelist() == ["b.csv"]


def test_extract_archive_groups_nested_shapefiles(tmp_path: Path) -> None:
    shapes = zip_bytes(
        [
            ("roads/roads.shp", b"shp"),
            ("roads/roads.shx", b"shx"),
            ("roads/roads.dbf", b"dbf"),
            ("roads/roads.prj", b"prj"),
            ("rivers.shp", b"shp"),
            ("rivers.shx", b"shx"),
        ]
    )
    src = create_zip(tmp_path / "upload.zip", [("dem.tif", b"t"), ("shapes.zip", shapes), ("virus.exe", b"MZ")])
    dest = tmp_path / "FILES"

    files = extract_archive(src, dest)

    assert [(f.name, f.type) for f in files] == [
        ("roads.zip", FileKind.SHAPEFILE),
        ("rivers.shp", FileKind.VECTOR),
        ("rivers.shx", FileKind.VECTOR),
        ("dem.tif", FileKind.TIFF),
    ]
    assert sorted(p.name for p in dest.iterdir()) == ["dem.tif", "rivers.shp", "rivers.shx", "roads.zip"]


def test_extract_archive_defaults_to_files_dir(documents_root: Path, tmp_path: Path) -> None:
    src = create_zip(tmp_path / "in.zip", [("default-dest-probe.wkt", b"POINT (0 0)")])

    files = extract_archive(src)

    assert Path(files[0].absolute_path).parent == (documents_root / "HSC-SESSIONS" / "FILES").resolve()


def test_reextracting_duplicate_manifest_names(tmp_path: Path) -> None:
    a = tmp_path / "a.csv"
    a.write_text("first")
    b = tmp_path / "b.csv"
    b.write_text("second")
    entries = [
        ManifestEntry(absolute_path=str(a), original_name="layer.csv"),
        ManifestEntry(absolute_path=str(b), original_name="layer.csv"),
    ]
    with pytest.warns(UserWarning):
        result = pack_manifest(entries, export_dir=tmp_path / "export", now=NOW)

    files = extract_archive(result.absolute_path, tmp_path / "out")

    assert [f.name for f in files] == ["layer.csv", "layer_1.csv"]
    assert (tmp_path / "out" / "layer_1.csv").read_text() == "second"
