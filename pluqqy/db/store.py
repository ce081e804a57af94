"""Project store: the on-disk layout of components, pipelines and their archive.

Every write is atomic (temporary file in the target directory, fsync,
rename). Paths handed to the store are tree-relative
(``components/prompts/foo.md``, ``pipelines/alpha.yaml``) plus an
``archived`` flag selecting the live tree or ``archive/``.
"""

from __future__ import annotations

import os
import posixpath
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pydantic
import structlog
import yaml

from pluqqy.db.frontmatter import display_name, join_front_matter, normalize_tag_list, split_front_matter
from pluqqy.db.models import (
    ARCHIVE_DIR,
    COMPONENTS_DIR,
    KIND_ORDER,
    PIPELINES_DIR,
    Component,
    ComponentKind,
    ComponentRef,
    Pipeline,
    ProjectSettings,
)
from pluqqy.errors import IOFailure, Malformed, NotFound, UnsafePath, ValidationError
from pluqqy.utils.naming import dedupe_tags
from pluqqy.utils.security import MAX_FILE_SIZE, validate_reference, validate_relative_path

logger = structlog.get_logger()

SETTINGS_FILE = "settings.yaml"
TAGS_FILE = "tags.yaml"
PIPELINE_SUFFIXES = (".yaml", ".yml")


@dataclass(frozen=True)
class ResolvedRef:
    """Where a pipeline reference points.

    ``archived`` names the tree holding the file; ``fallback`` is set when a
    live pipeline's reference was only found in the archive tree.
    """

    path: str
    archived: bool
    exists: bool
    fallback: bool = False


def atomic_write(target: Path, data: str) -> None:
    """Write ``data`` to ``target`` so readers see either the old or new bytes."""
    encoded = data.encode("utf-8")
    if len(encoded) > MAX_FILE_SIZE:
        raise ValidationError(f"file too large: {target} ({len(encoded)} bytes)")
    tmp_name: str | None = None
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
        with os.fdopen(fd, "wb") as f:
            f.write(encoded)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, target)
        tmp_name = None
    except OSError as e:
        raise IOFailure("write", target, e) from e
    finally:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)


def read_text(path: Path) -> str:
    try:
        size = path.stat().st_size
        if size > MAX_FILE_SIZE:
            raise Malformed(path, f"file too large ({size} bytes)")
        return path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise NotFound(f"not found: {path}") from e
    except UnicodeDecodeError as e:
        raise Malformed(path, "not valid UTF-8") from e
    except OSError as e:
        raise IOFailure("read", path, e) from e


def kind_from_path(path: str) -> ComponentKind:
    parts = path.split("/")
    if len(parts) != 3 or parts[0] != COMPONENTS_DIR:
        raise ValidationError(f"not a component path: {path}")
    return ComponentKind.parse(parts[1])


class ProjectStore:
    """Reads and writes project artifacts under a single root directory."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    # --- layout ---

    def tree_root(self, archived: bool = False) -> Path:
        return self.root / ARCHIVE_DIR if archived else self.root

    def abspath(self, path: str, archived: bool = False) -> Path:
        """Absolute location of a tree-relative path; rejects escapes."""
        cleaned = validate_relative_path(path)
        top = cleaned.split("/", 1)[0]
        if top not in (COMPONENTS_DIR, PIPELINES_DIR):
            raise UnsafePath(f"path outside the component and pipeline trees: {path}")
        return self.tree_root(archived) / cleaned

    def is_project(self) -> bool:
        return (self.root / COMPONENTS_DIR).is_dir() and (self.root / PIPELINES_DIR).is_dir()

    def init_project(self) -> None:
        """Create the directory layout and a default settings file."""
        try:
            for archived in (False, True):
                base = self.tree_root(archived)
                for kind in KIND_ORDER:
                    (base / COMPONENTS_DIR / kind.value).mkdir(parents=True, exist_ok=True)
                (base / PIPELINES_DIR).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IOFailure("create", self.root, e) from e
        if not (self.root / SETTINGS_FILE).exists():
            self.write_settings(ProjectSettings())
        logger.info("store.initialized", root=str(self.root))

    @staticmethod
    def component_path(kind: ComponentKind | str, slug: str) -> str:
        return f"{COMPONENTS_DIR}/{ComponentKind.parse(kind).value}/{slug}.md"

    @staticmethod
    def pipeline_path(slug: str) -> str:
        return f"{PIPELINES_DIR}/{slug}.yaml"

    # --- components ---

    def component_exists(self, path: str, archived: bool = False) -> bool:
        return self.abspath(path, archived).is_file()

    def read_component(self, path: str, archived: bool = False) -> Component:
        path = validate_relative_path(path)
        kind = kind_from_path(path)
        location = self.abspath(path, archived)
        text = read_text(location)
        front_matter, body = split_front_matter(text, source=str(location))
        tags = dedupe_tags(normalize_tag_list(front_matter.pop("tags", None)))
        mtime = datetime.fromtimestamp(location.stat().st_mtime, tz=timezone.utc)
        return Component(
            kind=kind,
            path=path,
            display_name=display_name(front_matter, body, location.name),
            content=body,
            tags=tags,
            archived=archived,
            last_modified=mtime,
            front_matter=front_matter,
        )

    def write_component(
        self,
        path: str,
        content: str,
        tags: list[str] | None = None,
        archived: bool = False,
        name: str | None = None,
    ) -> None:
        """Write a component, keeping any front-matter keys other than tags.

        ``name`` sets an explicit display name in the front-matter.
        """
        path = validate_relative_path(path)
        kind_from_path(path)
        location = self.abspath(path, archived)
        front_matter: dict[str, Any] = {}
        if location.exists():
            try:
                front_matter, _ = split_front_matter(read_text(location), source=str(location))
            except Malformed:
                logger.warning("store.front_matter_replaced", path=path)
                front_matter = {}
        if name is not None:
            front_matter["name"] = name
        normalized = dedupe_tags(tags or [])
        if normalized:
            front_matter["tags"] = normalized
        else:
            front_matter.pop("tags", None)
        atomic_write(location, join_front_matter(front_matter, content))
        logger.debug("store.component_written", path=path, archived=archived)

    def component_paths(
        self, archived: bool = False, kind: ComponentKind | str | None = None
    ) -> list[str]:
        """Tree-relative component paths: kinds in declared order, filenames ascending."""
        kinds = [ComponentKind.parse(kind)] if kind else KIND_ORDER
        paths: list[str] = []
        for k in kinds:
            directory = self.tree_root(archived) / COMPONENTS_DIR / k.value
            if not directory.is_dir():
                continue
            for entry in sorted(directory.iterdir(), key=lambda p: p.name):
                if entry.is_file() and entry.suffix == ".md" and not entry.name.startswith("."):
                    paths.append(f"{COMPONENTS_DIR}/{k.value}/{entry.name}")
        return paths

    def list_components(
        self, archived: bool = False, kind: ComponentKind | str | None = None
    ) -> list[Component]:
        """Readable components of one tree; unreadable files are logged and skipped."""
        components: list[Component] = []
        for path in self.component_paths(archived, kind):
            try:
                components.append(self.read_component(path, archived))
            except (Malformed, NotFound, IOFailure) as e:
                logger.warning("store.component_skipped", path=path, archived=archived, error=str(e))
        return components

    def delete_component(self, path: str, archived: bool = False) -> None:
        kind_from_path(validate_relative_path(path))
        self._unlink(self.abspath(path, archived))
        logger.info("store.component_deleted", path=path, archived=archived)

    # --- pipelines ---

    def read_pipeline(self, path: str, archived: bool = False) -> Pipeline:
        path = validate_relative_path(path)
        location = self.abspath(path, archived)
        text = read_text(location)
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise Malformed(location, f"invalid YAML: {e}") from e
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise Malformed(location, "pipeline must be a mapping")
        data.setdefault("name", posixpath.splitext(location.name)[0])
        try:
            pipeline = Pipeline.model_validate(data)
        except (pydantic.ValidationError, ValidationError) as e:
            raise Malformed(location, str(e)) from e
        pipeline.path = path
        pipeline.archived = archived
        pipeline.tags = dedupe_tags(pipeline.tags)
        return pipeline

    def write_pipeline(self, pipeline: Pipeline) -> None:
        if not pipeline.path:
            raise ValidationError("pipeline has no path")
        for ref in pipeline.components:
            validate_reference(ref.path)
        location = self.abspath(pipeline.path, pipeline.archived)
        pipeline.tags = dedupe_tags(pipeline.tags)
        text = yaml.safe_dump(
            pipeline.to_yaml_dict(), sort_keys=False, allow_unicode=True, default_flow_style=False
        )
        atomic_write(location, text)
        logger.debug("store.pipeline_written", path=pipeline.path, archived=pipeline.archived)

    def pipeline_paths(self, archived: bool = False) -> list[str]:
        directory = self.tree_root(archived) / PIPELINES_DIR
        if not directory.is_dir():
            return []
        return [
            f"{PIPELINES_DIR}/{entry.name}"
            for entry in sorted(directory.iterdir(), key=lambda p: p.name)
            if entry.is_file()
            and entry.suffix in PIPELINE_SUFFIXES
            and not entry.name.startswith(".")
        ]

    def list_pipelines(self, archived: bool = False) -> list[Pipeline]:
        pipelines: list[Pipeline] = []
        for path in self.pipeline_paths(archived):
            try:
                pipelines.append(self.read_pipeline(path, archived))
            except (Malformed, NotFound, IOFailure) as e:
                logger.warning("store.pipeline_skipped", path=path, archived=archived, error=str(e))
        return pipelines

    def delete_pipeline(self, path: str, archived: bool = False) -> None:
        self._unlink(self.abspath(path, archived))
        logger.info("store.pipeline_deleted", path=path, archived=archived)

    def resolve_reference(self, pipeline: Pipeline, ref: ComponentRef) -> ResolvedRef:
        """Resolve a reference against the pipeline's own tree.

        A live pipeline whose target has been archived still resolves, to the
        archived copy.
        """
        validate_reference(ref.path)
        target = ref.component_path
        if self.abspath(target, pipeline.archived).is_file():
            return ResolvedRef(target, pipeline.archived, True)
        if not pipeline.archived and self.abspath(target, True).is_file():
            return ResolvedRef(target, True, True, fallback=True)
        return ResolvedRef(target, pipeline.archived, False)

    # --- settings and output ---

    def read_settings(self) -> ProjectSettings:
        location = self.root / SETTINGS_FILE
        if not location.exists():
            return ProjectSettings()
        try:
            data = yaml.safe_load(read_text(location)) or {}
            return ProjectSettings.model_validate(data)
        except (yaml.YAMLError, pydantic.ValidationError, ValidationError) as e:
            raise Malformed(location, str(e)) from e

    def write_settings(self, settings: ProjectSettings) -> None:
        data = settings.model_dump(mode="json")
        atomic_write(
            self.root / SETTINGS_FILE,
            yaml.safe_dump(data, sort_keys=False, allow_unicode=True, default_flow_style=False),
        )

    def output_location(self, output_path: str | None = None) -> Path:
        """Where composed output goes; relative paths are taken from the project root."""
        target = Path(output_path or self.read_settings().output.output_path)
        return target if target.is_absolute() else self.root / target

    def write_output(self, text: str, output_path: str | None = None) -> Path:
        location = self.output_location(output_path)
        atomic_write(location, text)
        logger.info("store.output_written", path=str(location), bytes=len(text))
        return location

    @staticmethod
    def _unlink(location: Path) -> None:
        try:
            location.unlink()
        except FileNotFoundError as e:
            raise NotFound(f"not found: {location}") from e
        except OSError as e:
            raise IOFailure("delete", location, e) from e
