from __future__ import annotations

import threading
from pathlib import Path

import pytest

from gisdata_backend.errors import NothingToArchive
from gisdata_backend.jobs import JobRegistry, JobStatus, serialize_result, submit
from gisdata_backend.models import ArchiveResult, ExtractedFile, FileKind, ProgressEvent


def test_submit_runs_on_a_worker_thread() -> None:
    caller = threading.get_ident()
    future = submit(threading.get_ident)
    assert future.result(timeout=5) != caller


def test_submit_propagates_exceptions() -> None:
    def boom() -> None:
        raise NothingToArchive("empty")

    with pytest.raises(NothingToArchive):
        submit(boom).result(timeout=5)


def test_registry_records_success_and_progress() -> None:
    registry = JobRegistry()

    def work(progress):
        progress(ProgressEvent(bytes_written=5, total_bytes=10))
        return ArchiveResult(absolute_path="/x/a.zip", file_name="a.zip", size_bytes=22)

    job = registry.start("pack_folder", work)
    job.future.result(timeout=5)

    snap = registry.snapshot(job.id)
    assert snap["status"] == JobStatus.SUCCEEDED.value
    assert snap["result"] == {"absolutePath": "/x/a.zip", "fileName": "a.zip", "sizeBytes": 22}
    assert snap["progress"] == {"bytesWritten": 5, "totalBytes": 10}
    assert snap["error"] is None


def test_registry_records_tagged_failure() -> None:
    registry = JobRegistry()

    def work(progress):
        raise NothingToArchive("NOTHING_TO_DOWNLOAD")

    job = registry.start("pack_manifest", work)
    job.future.result(timeout=5)

    snap = registry.snapshot(job.id)
    assert snap["status"] == "failed"
    assert snap["error"] == {"kind": "NothingToArchive", "reason": "NOTHING_TO_DOWNLOAD"}
    assert snap["result"] is None


def test_registry_records_unexpected_errors() -> None:
    registry = JobRegistry()

    def work(progress):
        raise RuntimeError("disk on fire")

    job = registry.start("extract", work)
    job.future.result(timeout=5)

    error = registry.snapshot(job.id)["error"]
    assert error["kind"] == "Error"
    assert "disk on fire" in error["reason"]


def test_concurrent_jobs_are_independent(tmp_path: Path) -> None:
    registry = JobRegistry()
    gate = threading.Event()

    def slow(progress):
        gate.wait(timeout=5)
        return []

    def fast(progress):
        return [ExtractedFile(absolute_path=str(tmp_path / "a.tif"), name="a.tif", type=FileKind.TIFF, size_bytes=1)]

    slow_job = registry.start("extract", slow)
    fast_job = registry.start("extract", fast)
    fast_job.future.result(timeout=5)

    assert registry.get(fast_job.id).status is JobStatus.SUCCEEDED
    assert registry.get(slow_job.id).status in (JobStatus.PENDING, JobStatus.RUNNING)
    gate.set()
    slow_job.future.result(timeout=5)
    assert registry.snapshot(slow_job.id)["result"] == {"files": []}


def test_prune_forgets_old_finished_jobs() -> None:
    now = [1000.0]
    registry = JobRegistry(clock=lambda: now[0])
    job = registry.start("extract", lambda progress: [])
    job.future.result(timeout=5)

    now[0] += 10
    assert registry.prune(ttl_seconds=60) == 0
    now[0] += 100
    assert registry.prune(ttl_seconds=60) == 1
    assert registry.get(job.id) is None


def test_serialize_result_rejects_unknown_types() -> None:
    with pytest.raises(TypeError):
        serialize_result({"not": "a result"})
