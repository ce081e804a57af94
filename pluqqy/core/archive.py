"""Archive Manager: moves components and pipelines between the live and archive trees."""

from __future__ import annotations

import errno
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

import structlog

from pluqqy.core.registry import TagRegistry
from pluqqy.db.store import ProjectStore, kind_from_path
from pluqqy.errors import IOFailure, NotFound, ValidationError
from pluqqy.utils.security import validate_relative_path

logger = structlog.get_logger()


@dataclass
class ArchiveResult:
    path: str
    archived: bool
    tags: list[str]

    def message(self) -> str:
        verb = "Archived" if self.archived else "Restored"
        return f"✓ {verb} {self.path}"


def move_file(source: Path, destination: Path) -> None:
    """Rename ``source`` to ``destination``, copying across filesystems if needed.

    On the copy path a partially written destination is removed before the
    error is raised, so the source stays the only copy.
    """
    destination.parent.mkdir(parents=True, exist_ok=True)
    try:
        os.rename(source, destination)
        return
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise IOFailure("move", source, e) from e

    try:
        shutil.copy2(source, destination)
    except OSError as e:
        destination.unlink(missing_ok=True)
        raise IOFailure("copy", source, e) from e
    try:
        source.unlink()
    except OSError as e:
        destination.unlink(missing_ok=True)
        raise IOFailure("remove", source, e) from e


class ArchiveManager:
    """Reversible moves between ``<project>/`` and ``<project>/archive/``."""

    def __init__(self, store: ProjectStore, registry: TagRegistry) -> None:
        self.store = store
        self.registry = registry

    def _move(self, path: str, to_archive: bool) -> Path:
        source = self.store.abspath(path, archived=not to_archive)
        destination = self.store.abspath(path, archived=to_archive)
        if not source.is_file():
            where = "live tree" if to_archive else "archive"
            raise NotFound(f"{path} not found in the {where}")
        if destination.exists():
            where = "archive" if to_archive else "live tree"
            raise ValidationError(f"{path} already exists in the {where}")
        move_file(source, destination)
        return destination

    def archive_component(self, path: str) -> ArchiveResult:
        path = validate_relative_path(path)
        kind_from_path(path)
        tags = self.store.read_component(path).tags
        self._move(path, to_archive=True)
        logger.info("archive.component_archived", path=path)
        self.registry.cleanup_orphans_quietly(tags)
        return ArchiveResult(path, True, tags)

    def unarchive_component(self, path: str) -> ArchiveResult:
        path = validate_relative_path(path)
        kind_from_path(path)
        self._move(path, to_archive=False)
        tags = self.store.read_component(path).tags
        self.registry.ensure_tags(tags)
        logger.info("archive.component_restored", path=path)
        return ArchiveResult(path, False, tags)

    def archive_pipeline(self, path: str) -> ArchiveResult:
        path = validate_relative_path(path)
        tags = self.store.read_pipeline(path).tags
        self._move(path, to_archive=True)
        logger.info("archive.pipeline_archived", path=path)
        self.registry.cleanup_orphans_quietly(tags)
        return ArchiveResult(path, True, tags)

    def unarchive_pipeline(self, path: str) -> ArchiveResult:
        path = validate_relative_path(path)
        self._move(path, to_archive=False)
        tags = self.store.read_pipeline(path).tags
        self.registry.ensure_tags(tags)
        logger.info("archive.pipeline_restored", path=path)
        return ArchiveResult(path, False, tags)
