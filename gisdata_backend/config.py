from __future__ import annotations

import os
from pathlib import Path


# Root of the device "Documents" area holding the session workspace.
# Default: project-local ./documents for easier inspection and cleanup.
# Override with env var GISDATA_DOCUMENTS_ROOT.
_root_raw = os.environ.get("GISDATA_DOCUMENTS_ROOT")
if _root_raw and _root_raw.strip():
    DOCUMENTS_ROOT = Path(_root_raw)
else:
    # gisdata_backend/ -> project root
    DOCUMENTS_ROOT = Path(__file__).resolve().parent.parent / "documents"
DOCUMENTS_ROOT = DOCUMENTS_ROOT.resolve()

# Where produced "GIS-DATA ..." archives are written.
_export_raw = os.environ.get("GISDATA_EXPORT_DIR")
EXPORT_DIR = Path(_export_raw).resolve() if _export_raw and _export_raw.strip() else DOCUMENTS_ROOT

# Session layout (relative to DOCUMENTS_ROOT).
SESSIONS_DIRNAME = "HSC-SESSIONS"
FILES_SUBDIR = "FILES"
MANIFEST_FILENAME = "manifest.json"
# Uploads awaiting extraction; kept outside the session tree so folder export never picks them up.
INCOMING_SUBDIR = ".gisdata-incoming"

# Nested zip expansion bound; the top-level archive is depth 0.
MAX_EXTRACT_DEPTH = int(os.environ.get("GISDATA_MAX_EXTRACT_DEPTH", "10"))

# Buffer used when copying file bytes into an archive.
COPY_BUFFER_BYTES = int(os.environ.get("GISDATA_COPY_BUFFER_BYTES", str(1024 * 1024)))  # 1MB

# Smaller buffer for streaming entries out of an archive.
READ_BUFFER_BYTES = 64 * 1024

# Minimum spacing between progress notifications.
PROGRESS_INTERVAL_SECONDS = float(os.environ.get("GISDATA_PROGRESS_INTERVAL_SECONDS", "0.25"))

# Upload limits (best-effort; also enforced by proxy typically).
MAX_ZIP_UPLOAD_BYTES = int(os.environ.get("GISDATA_MAX_ZIP_UPLOAD_BYTES", str(512 * 1024 * 1024)))  # 512MB

# How long finished jobs are kept for polling, and how often they are pruned.
JOB_TTL_SECONDS = float(os.environ.get("GISDATA_JOB_TTL_SECONDS", "3600"))
CLEANUP_INTERVAL_SECONDS = int(os.environ.get("GISDATA_CLEANUP_INTERVAL_SECONDS", "600"))

LOG_LEVEL = os.environ.get("GISDATA_LOG_LEVEL", "INFO").upper()

ARCHIVE_NAME_PREFIX = "GIS-DATA"

# Extension allow-list (lowercase, no dot).
RASTER_EXTS = frozenset({"tif", "tiff", "hgt", "dett"})
VECTOR_EXTS = frozenset({"geojson", "json", "csv", "gpx", "kml", "kmz", "wkt"})
SHAPEFILE_COMPONENT_EXTS = frozenset({"shp", "shx", "dbf", "prj"})
CONTAINER_EXTS = frozenset({"zip"})
ALLOWED_EXTS = RASTER_EXTS | VECTOR_EXTS | SHAPEFILE_COMPONENT_EXTS | CONTAINER_EXTS

# A shapefile group is usable only when all of these are present (.prj optional).
SHAPEFILE_REQUIRED_EXTS = frozenset({"shp", "shx", "dbf"})
