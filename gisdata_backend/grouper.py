from __future__ import annotations

import contextlib
import logging
import zipfile
from collections.abc import Iterable
from dataclasses import replace
from pathlib import Path
from typing import BinaryIO

from .config import SHAPEFILE_REQUIRED_EXTS
from .models import ExtractedFile, FileKind
from .naming import extension_of, resolve_collision, split_name
from .security import safe_join

logger = logging.getLogger(__name__)


def shapefile_group_key(name: str) -> str:
    """Case-insensitive base name shared by a shapefile's component files."""
    base, _ = split_name(name)
    return base.lower()


def is_complete_group(components: Iterable[ExtractedFile]) -> bool:
    present = {extension_of(c.name) for c in components}
    return SHAPEFILE_REQUIRED_EXTS <= present


def _create_bundle_file(dest_dir: Path, base: str) -> tuple[Path, BinaryIO]:
    # Exclusive create: a name taken after the existence check moves us on to
    # the next suffix instead of touching someone else's file.
    while True:
        target = safe_join(dest_dir, resolve_collision(dest_dir, f"{base}.zip"))
        try:
            return target, target.open("xb")
        except FileExistsError:
            continue


def _bundle_group(components: list[ExtractedFile], dest_dir: Path) -> ExtractedFile | None:
    base, _ = split_name(components[0].name)
    try:
        target, handle = _create_bundle_file(dest_dir, base)
    except OSError as exc:
        logger.warning("Could not create bundle for shapefile %s (%s); keeping loose components", base, exc)
        return None

    try:
        with handle, zipfile.ZipFile(
            handle, mode="w", compression=zipfile.ZIP_DEFLATED, strict_timestamps=False
        ) as zf:
            for component in components:
                zf.write(component.absolute_path, arcname=component.name)
    except (OSError, ValueError) as exc:
        logger.warning("Could not bundle shapefile %s (%s); keeping loose components", base, exc)
        with contextlib.suppress(OSError):
            target.unlink(missing_ok=True)
        return None

    for component in components:
        try:
            Path(component.absolute_path).unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Bundled %s but could not remove %s: %s", target.name, component.name, exc)

    logger.debug("Bundled %d components into %s", len(components), target.name)
    return ExtractedFile.from_path(target, FileKind.SHAPEFILE)


def group_shapefiles(files: Iterable[ExtractedFile], dest_dir: Path | str) -> list[ExtractedFile]:
    """Replace complete shapefile component sets with one sub-archive each.

    Output order: grouped shapefiles (or their loose components, retyped as
    ``vector`` when a group is incomplete or fails to bundle) in order of
    first appearance, followed by every other descriptor unchanged.
    """
    dest_dir = Path(dest_dir)
    groups: dict[str, list[ExtractedFile]] = {}
    passthrough: list[ExtractedFile] = []

    for item in files:
        if item.type is FileKind.SHAPEFILE_COMPONENT:
            groups.setdefault(shapefile_group_key(item.name), []).append(item)
        else:
            passthrough.append(item)

    result: list[ExtractedFile] = []
    for key, components in groups.items():
        if is_complete_group(components):
            bundled = _bundle_group(components, dest_dir)
            if bundled is not None:
                result.append(bundled)
                continue
        else:
            logger.info("Shapefile %s is incomplete (%d components); keeping files loose", key, len(components))
        result.extend(replace(c, type=FileKind.VECTOR) for c in components)

    result.extend(passthrough)
    return result
