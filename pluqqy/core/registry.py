"""Tag Registry: the shared, colored tag namespace and its maintenance jobs."""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field

import structlog
import yaml

from pluqqy.core.tasks import CancelToken, ProgressCallback
from pluqqy.db.models import TagRegistryEntry
from pluqqy.db.store import TAGS_FILE, ProjectStore, atomic_write, read_text
from pluqqy.errors import Malformed, NotFound, PluqqyError, ValidationError
from pluqqy.utils.naming import normalize_tag, tag_color, validate_tag

logger = structlog.get_logger()

COLOR_PATTERN = re.compile(r"^#[0-9a-fA-F]{6}$")


@dataclass
class TagUsage:
    component_count: int = 0
    pipeline_count: int = 0

    @property
    def total(self) -> int:
        return self.component_count + self.pipeline_count


@dataclass(frozen=True)
class TaggedFile:
    """A component or pipeline file in one of the two trees."""

    path: str
    archived: bool
    is_pipeline: bool

    @property
    def label(self) -> str:
        return f"archive/{self.path}" if self.archived else self.path


@dataclass
class TagDeletionResult:
    tag: str
    files_scanned: int = 0
    files_updated: list[str] = field(default_factory=list)
    errors: list[tuple[str, str]] = field(default_factory=list)
    registry_removed: bool = False

    @property
    def ok(self) -> bool:
        return not self.errors

    def message(self) -> str:
        if self.ok:
            return f"✓ Tag '{self.tag}' deleted from registry and {len(self.files_updated)} files"
        failed = ", ".join(path for path, _ in self.errors)
        return f"× Tag '{self.tag}' partially deleted: {len(self.errors)} errors ({failed})"


@dataclass
class TagReloadResult:
    components_scanned: int = 0
    pipelines_scanned: int = 0
    new_tags: list[str] = field(default_factory=list)
    failed_files: list[str] = field(default_factory=list)
    total_tags: int = 0

    def message(self) -> str:
        if self.new_tags:
            return f"✓ Reloaded tags: {len(self.new_tags)} new ({', '.join(self.new_tags)})"
        return f"✓ Reloaded tags: no new tags ({self.total_tags} total)"


class TagRegistry:
    """Owns tags.yaml; usage counts are derived by scanning both trees."""

    def __init__(self, store: ProjectStore) -> None:
        self.store = store
        self._lock = threading.RLock()
        self._entries: dict[str, TagRegistryEntry] | None = None

    @property
    def path(self):
        return self.store.root / TAGS_FILE

    # --- persistence ---

    def load(self) -> None:
        """(Re)read tags.yaml. A missing file is an empty registry."""
        with self._lock:
            entries: dict[str, TagRegistryEntry] = {}
            if self.path.exists():
                try:
                    data = yaml.safe_load(read_text(self.path))
                except yaml.YAMLError as e:
                    raise Malformed(self.path, f"invalid YAML: {e}") from e
                rows = data.get("tags", []) if isinstance(data, dict) else data
                for row in rows or []:
                    if not isinstance(row, dict) or not row.get("name"):
                        logger.warning("tags.invalid_entry", entry=row)
                        continue
                    name = normalize_tag(str(row["name"]))
                    if not name:
                        continue
                    entries[name] = TagRegistryEntry(
                        name=name,
                        color=str(row.get("color") or tag_color(name)),
                        description=row.get("description"),
                    )
            self._entries = entries

    def save(self) -> None:
        with self._lock:
            rows = [
                entry.model_dump(exclude_none=True)
                for entry in sorted(self._all().values(), key=lambda e: e.name)
            ]
            atomic_write(
                self.path,
                yaml.safe_dump({"tags": rows}, sort_keys=False, allow_unicode=True),
            )

    def _all(self) -> dict[str, TagRegistryEntry]:
        if self._entries is None:
            self.load()
        return self._entries  # type: ignore[return-value]

    # --- queries ---

    def list_tags(self) -> list[TagRegistryEntry]:
        with self._lock:
            return sorted(self._all().values(), key=lambda e: e.name)

    def get_tag(self, name: str) -> TagRegistryEntry | None:
        with self._lock:
            return self._all().get(normalize_tag(name))

    def color_for(self, name: str) -> str:
        """Registry color, or the hashed palette color when tags.yaml is unreadable."""
        try:
            entry = self.get_tag(name)
        except PluqqyError as e:
            logger.warning("tags.color_lookup_failed", tag=name, error=str(e))
            entry = None
        return entry.color if entry else tag_color(normalize_tag(name))

    # --- mutations ---

    def ensure_tag(self, name: str) -> TagRegistryEntry:
        """Register ``name`` if it is new; idempotent."""
        tag = validate_tag(name)
        with self._lock:
            entries = self._all()
            if tag not in entries:
                entries[tag] = TagRegistryEntry(name=tag, color=tag_color(tag))
                self.save()
                logger.info("tags.registered", tag=tag)
            return entries[tag]

    def ensure_tags(self, names: list[str]) -> list[str]:
        """Register several tags with a single write; returns the newly added names."""
        added: list[str] = []
        with self._lock:
            entries = self._all()
            for name in names:
                tag = normalize_tag(name)
                if tag and tag not in entries:
                    entries[tag] = TagRegistryEntry(name=tag, color=tag_color(tag))
                    added.append(tag)
            if added:
                self.save()
                logger.info("tags.registered", tags=added)
        return added

    def set_color(self, name: str, color: str) -> TagRegistryEntry:
        if not COLOR_PATTERN.match(color):
            raise ValidationError(f"invalid color '{color}' (expected #rrggbb)")
        with self._lock:
            entry = self.get_tag(name)
            if entry is None:
                raise NotFound(f"tag '{name}' not found")
            entry.color = color.lower()
            self.save()
            return entry

    def remove_tag(self, name: str) -> bool:
        with self._lock:
            removed = self._all().pop(normalize_tag(name), None)
            if removed is not None:
                self.save()
                logger.info("tags.removed", tag=removed.name)
            return removed is not None

    # --- scanning ---

    def tagged_files(self) -> list[TaggedFile]:
        """Every component and pipeline in scan order: live, then archive."""
        files: list[TaggedFile] = []
        for archived in (False, True):
            files.extend(TaggedFile(p, archived, False) for p in self.store.component_paths(archived))
            files.extend(TaggedFile(p, archived, True) for p in self.store.pipeline_paths(archived))
        return files

    def _tags_of(self, item: TaggedFile) -> list[str]:
        if item.is_pipeline:
            return self.store.read_pipeline(item.path, item.archived).tags
        return self.store.read_component(item.path, item.archived).tags

    def usage_report(self) -> dict[str, TagUsage]:
        """Usage for every registered or in-use tag; each file counts once per tag."""
        with self._lock:
            report: dict[str, TagUsage] = {name: TagUsage() for name in self._all()}
        for item in self.tagged_files():
            try:
                tags = set(self._tags_of(item))
            except PluqqyError as e:
                logger.warning("tags.scan_skipped", path=item.label, error=str(e))
                continue
            for tag in tags:
                usage = report.setdefault(tag, TagUsage())
                if item.is_pipeline:
                    usage.pipeline_count += 1
                else:
                    usage.component_count += 1
        return report

    def count_usage(self, name: str) -> TagUsage:
        tag = normalize_tag(name)
        usage = TagUsage()
        for item in self.tagged_files():
            try:
                tags = self._tags_of(item)
            except PluqqyError as e:
                logger.warning("tags.scan_skipped", path=item.label, error=str(e))
                continue
            if tag in tags:
                if item.is_pipeline:
                    usage.pipeline_count += 1
                else:
                    usage.component_count += 1
        return usage

    def cleanup_orphans(self, candidates: list[str] | None = None) -> list[str]:
        """Remove registry entries that no file uses; returns the removed names.

        Each candidate is re-counted at execution time, so running this after
        a tag has been re-used removes nothing. ``None`` checks every entry.
        """
        if candidates is None:
            candidates = [entry.name for entry in self.list_tags()]
        names = [n for n in dict.fromkeys(normalize_tag(c) for c in candidates) if self.get_tag(n)]
        # Scan unlocked; only the delete below holds the lock.
        unused = [name for name in names if self.count_usage(name).total == 0]
        removed: list[str] = []
        with self._lock:
            entries = self._all()
            for name in unused:
                if name in entries:
                    del entries[name]
                    removed.append(name)
            if removed:
                self.save()
                logger.info("tags.orphans_removed", tags=removed)
        return removed

    def cleanup_orphans_quietly(self, candidates: list[str] | None = None) -> list[str]:
        """Orphan cleanup for background use: failures are logged, never raised."""
        try:
            return self.cleanup_orphans(candidates)
        except (PluqqyError, OSError) as e:
            logger.warning("tags.orphan_cleanup_failed", error=str(e))
            return []

    def delete_tag_everywhere(
        self,
        name: str,
        progress: ProgressCallback | None = None,
        cancel: CancelToken | None = None,
    ) -> TagDeletionResult:
        """Strip a tag from every file in both trees, then drop its registry entry.

        Cancellation is honoured while scanning only; once files start being
        rewritten the job runs to the end. Per-file failures are collected and
        the entry is kept if any file still carries the tag.
        """
        tag = normalize_tag(name)
        if not tag:
            raise ValidationError("tag name cannot be empty")
        result = TagDeletionResult(tag=tag)

        affected: list[TaggedFile] = []
        for item in self.tagged_files():
            if cancel is not None:
                cancel.raise_if_cancelled(f"deleting tag '{tag}'")
            result.files_scanned += 1
            try:
                if tag in self._tags_of(item):
                    affected.append(item)
            except PluqqyError as e:
                result.errors.append((item.label, str(e)))

        total = len(affected)
        for done, item in enumerate(affected, start=1):
            if progress is not None:
                progress(item.label, done, total)
            try:
                self._strip_tag(item, tag)
                result.files_updated.append(item.label)
            except PluqqyError as e:
                logger.warning("tags.strip_failed", tag=tag, path=item.label, error=str(e))
                result.errors.append((item.label, str(e)))

        if result.ok:
            result.registry_removed = self.remove_tag(tag)
        logger.info(
            "tags.deleted",
            tag=tag,
            files_updated=len(result.files_updated),
            errors=len(result.errors),
        )
        return result

    def _strip_tag(self, item: TaggedFile, tag: str) -> None:
        if item.is_pipeline:
            pipeline = self.store.read_pipeline(item.path, item.archived)
            pipeline.tags = [t for t in pipeline.tags if t != tag]
            self.store.write_pipeline(pipeline)
        else:
            component = self.store.read_component(item.path, item.archived)
            self.store.write_component(
                item.path,
                component.content,
                [t for t in component.tags if t != tag],
                archived=item.archived,
            )

    def reload(
        self,
        cancel: CancelToken | None = None,
        progress: ProgressCallback | None = None,
    ) -> TagReloadResult:
        """Rebuild the registry from the files: every tag found gets an entry."""
        result = TagReloadResult()
        found: dict[str, None] = {}
        files = self.tagged_files()
        for done, item in enumerate(files, start=1):
            if cancel is not None:
                cancel.raise_if_cancelled("reloading tags")
            if progress is not None:
                progress(item.label, done, len(files))
            try:
                tags = self._tags_of(item)
            except PluqqyError as e:
                result.failed_files.append(item.label)
                logger.warning("tags.reload_skipped", path=item.label, error=str(e))
                continue
            if item.is_pipeline:
                result.pipelines_scanned += 1
            else:
                result.components_scanned += 1
            for tag in tags:
                found.setdefault(tag, None)

        with self._lock:
            self.load()
            result.new_tags = self.ensure_tags(list(found))
            result.total_tags = len(self._all())
        logger.info("tags.reloaded", new=len(result.new_tags), total=result.total_tags)
        return result
