"""Rename Engine: renames a component or pipeline and rewrites what points at it.

A component rename runs validate -> discover -> move -> rewrite. The move
is the commit point: if rewriting a referencing pipeline fails afterwards
the rename stands and the failure is reported as a partial propagation.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from pluqqy.core.references import find_affected, references_to
from pluqqy.core.tasks import ProgressCallback
from pluqqy.db.frontmatter import join_front_matter, replace_first_heading, split_front_matter
from pluqqy.db.models import ComponentKind, Pipeline
from pluqqy.db.store import ProjectStore, atomic_write, kind_from_path, read_text
from pluqqy.errors import IOFailure, NotFound, PartialPropagation, PluqqyError, ValidationError
from pluqqy.utils.naming import slugify, validate_display_name
from pluqqy.utils.security import validate_relative_path

logger = structlog.get_logger()


@dataclass
class RenameSuccess:
    item_type: str
    old_name: str
    new_name: str
    old_path: str
    new_path: str
    archived: bool
    updated_pipelines: list[str] = field(default_factory=list)

    def message(self) -> str:
        suffix = ""
        if self.updated_pipelines:
            suffix = f" ({len(self.updated_pipelines)} pipelines updated)"
        return f"✓ Renamed {self.item_type} '{self.old_name}' to '{self.new_name}'{suffix}"


@dataclass
class RenameError:
    """The failure counterpart of RenameSuccess, as delivered to the list view."""

    error: BaseException

    def message(self) -> str:
        return f"× Rename failed: {self.error}"


def _pipeline_label(pipeline: Pipeline) -> str:
    return f"archive/{pipeline.path}" if pipeline.archived else pipeline.path


def update_display_name(text: str, new_name: str) -> str:
    """Update the in-file display name: the ``name`` key if present, else the first heading."""
    front_matter, body = split_front_matter(text)
    if isinstance(front_matter.get("name"), str):
        front_matter["name"] = new_name
        return join_front_matter(front_matter, body)
    new_body, replaced = replace_first_heading(body, new_name)
    if not replaced:
        return text
    return text[: len(text) - len(body)] + new_body


class RenameEngine:
    """Renames items and keeps pipeline references consistent."""

    def __init__(self, store: ProjectStore) -> None:
        self.store = store

    def validate_component_rename(
        self, old_path: str, new_display_name: str, kind: ComponentKind | str, archived: bool
    ) -> tuple[str, str]:
        """Check a rename without side effects; returns (trimmed name, new path)."""
        name = validate_display_name(new_display_name)
        old_path = validate_relative_path(old_path)
        kind = ComponentKind.parse(kind)
        if kind_from_path(old_path) != kind:
            raise ValidationError(f"{old_path} is not a {kind.singular}")
        if not self.store.component_exists(old_path, archived):
            raise NotFound(f"component not found: {old_path}")
        new_path = self.store.component_path(kind, slugify(name))
        if new_path != old_path and self.store.component_exists(new_path, archived):
            raise ValidationError(f"a {kind.singular} named '{slugify(name)}' already exists")
        return name, new_path

    def rename_component(
        self,
        old_path: str,
        new_display_name: str,
        kind: ComponentKind | str,
        archived: bool = False,
        progress: ProgressCallback | None = None,
    ) -> RenameSuccess:
        name, new_path = self.validate_component_rename(old_path, new_display_name, kind, archived)
        old_path = validate_relative_path(old_path)
        old_component = self.store.read_component(old_path, archived)
        affected = [
            (pipeline, references_to(self.store, pipeline, old_path, archived))
            for pipeline in find_affected(self.store, old_path, archived)
        ]

        old_location = self.store.abspath(old_path, archived)
        new_location = self.store.abspath(new_path, archived)
        atomic_write(new_location, update_display_name(read_text(old_location), name))
        if new_path != old_path:
            try:
                old_location.unlink()
            except OSError as e:
                new_location.unlink(missing_ok=True)
                raise IOFailure("remove", old_location, e) from e
        logger.info(
            "component.renamed",
            old=old_path,
            new=new_path,
            archived=archived,
            pipelines=len(affected),
        )

        result = RenameSuccess(
            item_type=ComponentKind.parse(kind).singular,
            old_name=old_component.display_name,
            new_name=name,
            old_path=old_path,
            new_path=new_path,
            archived=archived,
        )
        if new_path == old_path:
            return result

        failed: list[str] = []
        total = len(affected)
        new_ref = f"../{new_path}"
        for done, (pipeline, indexes) in enumerate(affected, start=1):
            label = _pipeline_label(pipeline)
            if progress is not None:
                progress(label, done, total)
            for index in indexes:
                pipeline.components[index].path = new_ref
            try:
                self.store.write_pipeline(pipeline)
            except PluqqyError as e:
                logger.warning("component.rename_propagation_failed", pipeline=label, error=str(e))
                failed.append(label)
                continue
            result.updated_pipelines.append(label)

        if failed:
            raise PartialPropagation(
                f"renamed to '{name}' but {len(failed)} of {total} pipelines were not updated",
                succeeded=result.updated_pipelines,
                failed=failed,
            )
        return result

    def rename_pipeline(
        self, old_path: str, new_display_name: str, archived: bool = False
    ) -> RenameSuccess:
        """Rename a pipeline: new file name from the slug, ``name`` field updated."""
        name = validate_display_name(new_display_name)
        old_path = validate_relative_path(old_path)
        pipeline = self.store.read_pipeline(old_path, archived)
        new_path = self.store.pipeline_path(slugify(name))
        if new_path != old_path and self.store.abspath(new_path, archived).exists():
            raise ValidationError(f"a pipeline named '{slugify(name)}' already exists")

        old_name = pipeline.name
        pipeline.name = name
        pipeline.path = new_path
        self.store.write_pipeline(pipeline)
        if new_path != old_path:
            old_location = self.store.abspath(old_path, archived)
            try:
                old_location.unlink()
            except OSError as e:
                self.store.abspath(new_path, archived).unlink(missing_ok=True)
                raise IOFailure("remove", old_location, e) from e
        logger.info("pipeline.renamed", old=old_path, new=new_path, archived=archived)
        return RenameSuccess(
            item_type="pipeline",
            old_name=old_name,
            new_name=name,
            old_path=old_path,
            new_path=new_path,
            archived=archived,
        )
