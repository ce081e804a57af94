"""Clone Engine: copies a component or pipeline under a new name.

A clone may land in either tree regardless of where the source lives;
pipeline references are copied as-is and resolve in the target tree.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

import structlog

from pluqqy.core.registry import TagRegistry
from pluqqy.db.models import Pipeline
from pluqqy.db.store import ProjectStore, kind_from_path
from pluqqy.errors import NotFound, ValidationError
from pluqqy.utils.naming import slugify, validate_display_name
from pluqqy.utils.security import validate_relative_path

logger = structlog.get_logger()

COPY_PREFIX = re.compile(r"^\(Copy(?: (\d+))?\) ")


@dataclass
class CloneResult:
    item_type: str
    source_name: str
    new_name: str
    new_path: str
    archived: bool

    def message(self) -> str:
        where = " in the archive" if self.archived else ""
        return f"✓ Cloned {self.item_type} '{self.source_name}' as '{self.new_name}'{where}"


def clone_suggestion(name: str) -> str:
    """Default name for a copy: ``(Copy) X``, then ``(Copy 2) X``, ``(Copy 3) X`` and so on."""
    match = COPY_PREFIX.match(name)
    if match is None:
        return f"(Copy) {name}"
    number = int(match.group(1) or 1) + 1
    return f"(Copy {number}) {name[match.end():]}"


class CloneEngine:
    def __init__(self, store: ProjectStore, registry: TagRegistry) -> None:
        self.store = store
        self.registry = registry

    def validate_component_clone(self, path: str, new_name: str, to_archive: bool) -> tuple[str, str]:
        """Returns (trimmed name, target path) or raises ValidationError."""
        name = validate_display_name(new_name)
        path = validate_relative_path(path)
        kind = kind_from_path(path)
        target = self.store.component_path(kind, slugify(name))
        if self.store.component_exists(target, to_archive):
            where = "archive" if to_archive else "project"
            raise ValidationError(f"a component named '{slugify(name)}' already exists in the {where}")
        return name, target

    def validate_pipeline_clone(self, new_name: str, to_archive: bool) -> tuple[str, str]:
        name = validate_display_name(new_name)
        target = self.store.pipeline_path(slugify(name))
        if self.store.abspath(target, to_archive).exists():
            where = "archive" if to_archive else "project"
            raise ValidationError(f"a pipeline named '{slugify(name)}' already exists in the {where}")
        return name, target

    def clone_component(
        self, path: str, new_name: str, from_archive: bool = False, to_archive: bool = False
    ) -> CloneResult:
        if not self.store.component_exists(path, from_archive):
            raise NotFound(f"component not found: {path}")
        source = self.store.read_component(path, from_archive)
        name, target = self.validate_component_clone(path, new_name, to_archive)
        self.store.write_component(target, source.content, source.tags, archived=to_archive, name=name)
        if not to_archive:
            self.registry.ensure_tags(source.tags)
        logger.info("component.cloned", source=path, target=target, archived=to_archive)
        return CloneResult(source.kind.singular, source.display_name, name, target, to_archive)

    def clone_pipeline(
        self, path: str, new_name: str, from_archive: bool = False, to_archive: bool = False
    ) -> CloneResult:
        source = self.store.read_pipeline(path, from_archive)
        name, target = self.validate_pipeline_clone(new_name, to_archive)
        clone = Pipeline(
            name=name,
            tags=list(source.tags),
            output_path=source.output_path,
            components=[ref.model_copy() for ref in source.components],
            path=target,
            archived=to_archive,
        )
        self.store.write_pipeline(clone)
        if not to_archive:
            self.registry.ensure_tags(clone.tags)
        logger.info("pipeline.cloned", source=path, target=target, archived=to_archive)
        return CloneResult("pipeline", source.name, name, target, to_archive)
