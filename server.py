from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from gisdata_backend.bundles import extract_archive, pack_folder, pack_manifest, pack_stored_manifest
from gisdata_backend.config import (
    CLEANUP_INTERVAL_SECONDS,
    EXPORT_DIR,
    JOB_TTL_SECONDS,
    LOG_LEVEL,
    MAX_ZIP_UPLOAD_BYTES,
)
from gisdata_backend.errors import DirectoryUnwritable
from gisdata_backend.jobs import JobRegistry
from gisdata_backend.models import ManifestEntry
from gisdata_backend.security import is_safe_basename, normalize_job_id, safe_join
from gisdata_backend.workspace import cleanup_stale_incoming, get_workspace, new_incoming_path

logger = logging.getLogger("gisdata_backend.server")

jobs = JobRegistry()

_UPLOAD_CHUNK_BYTES = 1024 * 1024


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class PackFolderRequest(_CamelModel):
    source_dir: Optional[str] = Field(default=None, alias="sourceDir")


class ManifestFile(_CamelModel):
    absolute_path: str = Field(alias="absolutePath")
    original_name: str = Field(alias="originalName")


class PackManifestRequest(_CamelModel):
    files: list[ManifestFile] = Field(default_factory=list)


class ExtractRequest(_CamelModel):
    zip_path: str = Field(alias="zipPath")
    output_dir: Optional[str] = Field(default=None, alias="outputDir")
    max_depth: Optional[int] = Field(default=None, alias="maxDepth", ge=0)


def _accepted(job_id: str) -> JSONResponse:
    return JSONResponse({"jobId": job_id}, status_code=202)


def _resolve_output_dir(output_dir: Optional[str]) -> Optional[Path]:
    # Relative output dirs live under the documents root, like the app's
    # default "HSC-SESSIONS/FILES".
    if not output_dir:
        return None
    path = Path(output_dir)
    if path.is_absolute():
        return path
    ws = get_workspace()
    try:
        return safe_join(ws.documents_root, output_dir)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid output directory")


def _run_cleanup() -> None:
    pruned = jobs.prune(JOB_TTL_SECONDS)
    removed = cleanup_stale_incoming(get_workspace(), JOB_TTL_SECONDS)
    if pruned or removed:
        logger.info("Cleanup: pruned %d jobs, removed %d stale uploads", pruned, removed)


async def _cleanup_worker() -> None:
    # Periodically forget finished jobs and drop abandoned uploads.
    while True:
        try:
            _run_cleanup()
        except OSError:
            logger.exception("Cleanup pass failed")
        await asyncio.sleep(max(30, CLEANUP_INTERVAL_SECONDS))


@asynccontextmanager
async def lifespan(app: FastAPI):
    task = asyncio.create_task(_cleanup_worker())
    app.state._cleanup_task = task
    try:
        yield
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


app = FastAPI(title="GIS Data Bundler", lifespan=lifespan)

# The app's webview calls from a non-http origin.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.post("/api/pack/folder")
async def pack_folder_api(payload: PackFolderRequest) -> JSONResponse:
    source = payload.source_dir
    job = jobs.start("pack_folder", lambda progress: pack_folder(source, progress=progress))
    return _accepted(job.id)


@app.post("/api/pack/manifest")
async def pack_manifest_api(payload: PackManifestRequest) -> JSONResponse:
    entries = [ManifestEntry(absolute_path=f.absolute_path, original_name=f.original_name) for f in payload.files]
    job = jobs.start("pack_manifest", lambda progress: pack_manifest(entries, progress=progress))
    return _accepted(job.id)


@app.post("/api/pack/stored-manifest")
async def pack_stored_manifest_api() -> JSONResponse:
    job = jobs.start("pack_stored_manifest", lambda progress: pack_stored_manifest(progress=progress))
    return _accepted(job.id)


@app.post("/api/extract")
async def extract_api(payload: ExtractRequest) -> JSONResponse:
    if not payload.zip_path.strip():
        raise HTTPException(status_code=400, detail="zipPath is required")
    dest = _resolve_output_dir(payload.output_dir)
    zip_path = payload.zip_path
    max_depth = payload.max_depth
    job = jobs.start("extract", lambda progress: extract_archive(zip_path, dest, max_depth=max_depth))
    return _accepted(job.id)


def _extract_upload(upload_path: Path) -> list:
    try:
        return extract_archive(upload_path)
    finally:
        upload_path.unlink(missing_ok=True)


@app.post("/api/import-zip")
async def import_zip(file: UploadFile = File(...)) -> JSONResponse:
    """Save an uploaded ZIP and extract it into HSC-SESSIONS/FILES."""
    try:
        upload_path = new_incoming_path(get_workspace())
    except DirectoryUnwritable as exc:
        raise HTTPException(status_code=500, detail=exc.reason)
    received = 0
    try:
        with upload_path.open("wb") as out:
            while True:
                chunk = await file.read(_UPLOAD_CHUNK_BYTES)
                if not chunk:
                    break
                received += len(chunk)
                if received > MAX_ZIP_UPLOAD_BYTES:
                    raise HTTPException(status_code=413, detail="ZIP too large")
                out.write(chunk)
    except BaseException:
        upload_path.unlink(missing_ok=True)
        raise

    job = jobs.start("import_zip", lambda progress: _extract_upload(upload_path))
    return _accepted(job.id)


@app.get("/api/jobs/{job_id}")
async def get_job(job_id: str, wait: float = 0.0) -> JSONResponse:
    """Report a job's status; ``wait`` blocks up to that many seconds for completion."""
    try:
        jid = normalize_job_id(job_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Job not found")

    job = jobs.get(jid)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")

    if wait > 0 and job.future is not None and not job.future.done():
        try:
            await asyncio.wait_for(asyncio.shield(asyncio.wrap_future(job.future)), timeout=min(wait, 60.0))
        except asyncio.TimeoutError:
            pass

    snapshot = jobs.snapshot(jid)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return JSONResponse(snapshot)


@app.get("/api/exports/{filename}")
async def get_export(filename: str) -> FileResponse:
    """Download a produced archive by file name (plain basenames only)."""
    if not is_safe_basename(filename) or not filename.lower().endswith(".zip"):
        raise HTTPException(status_code=404, detail="Not found")
    try:
        path = safe_join(EXPORT_DIR, filename)
    except ValueError:
        raise HTTPException(status_code=404, detail="Not found")
    if not path.is_file():
        raise HTTPException(status_code=404, detail="Not found")
    return FileResponse(
        path,
        media_type="application/zip",
        filename=filename,
        headers={"Cache-Control": "no-store", "X-Content-Type-Options": "nosniff"},
    )


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    port = int(os.environ.get("PORT", "8010"))
    uvicorn.run("server:app", host="127.0.0.1", port=port, reload=False)
