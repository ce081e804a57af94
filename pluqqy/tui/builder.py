"""Pipeline builder state: two columns, their cursors, ordering ops and preview sync."""

from __future__ import annotations

from enum import Enum

import structlog

from pluqqy.core.composer import CompositionEngine
from pluqqy.core.registry import TagRegistry
from pluqqy.core.search import SearchEngine
from pluqqy.db.models import Component, ComponentKind, ComponentRef, Pipeline, Section
from pluqqy.db.store import ProjectStore
from pluqqy.errors import PluqqyError, ValidationError
from pluqqy.tui.confirmation import Dialog
from pluqqy.utils.naming import slugify, validate_display_name, validate_tag

logger = structlog.get_logger()


class Column(str, Enum):
    AVAILABLE = "available"
    SELECTED = "selected"


def first_content_line(content: str) -> str | None:
    """First line that is neither blank, a heading, nor a front-matter rule."""
    for line in content.split("\n"):
        stripped = line.strip()
        if stripped and not stripped.startswith("#") and stripped != "---":
            return stripped
    return None


def _clamp(value: int, length: int) -> int:
    if length <= 0:
        return 0
    return max(0, min(value, length - 1))


class PipelineBuilder:
    """In-memory pipeline under construction."""

    def __init__(
        self,
        store: ProjectStore,
        search: SearchEngine,
        composer: CompositionEngine,
        registry: TagRegistry,
    ) -> None:
        self.store = store
        self.search = search
        self.composer = composer
        self.registry = registry
        self.layout: list[Section] = store.read_settings().sections
        self.new_pipeline()

    # --- lifecycle ---

    def new_pipeline(self) -> None:
        self.path: str | None = None
        self.name = ""
        self.tags: list[str] = []
        self.output_path: str | None = None
        self.selected: list[ComponentRef] = []
        self._snapshot()
        self._reset_view()

    def load_pipeline(self, path: str) -> None:
        pipeline = self.store.read_pipeline(path)
        self.path = pipeline.path
        self.name = pipeline.name
        self.tags = list(pipeline.tags)
        self.output_path = pipeline.output_path
        self.selected = [ref.model_copy() for ref in pipeline.components]
        self._snapshot()
        self._reset_view()

    def _snapshot(self) -> None:
        self.original_components = [ref.model_copy() for ref in self.selected]
        self.original_name = self.name
        self.original_tags = list(self.tags)

    def _reset_view(self) -> None:
        self.column = Column.AVAILABLE
        self.left_cursor = 0
        self.right_cursor = 0
        self.filter_text = ""
        self.refresh_available()

    def refresh_available(self) -> None:
        self.all_components: list[Component] = self.store.list_components()
        self.available = self.search.filter_components(self.all_components, self.filter_text, self.layout)
        self.left_cursor = _clamp(self.left_cursor, len(self.available))

    def set_filter(self, text: str) -> None:
        self.filter_text = text
        self.available = self.search.filter_components(self.all_components, text, self.layout)
        self.left_cursor = _clamp(self.left_cursor, len(self.available))

    # --- navigation ---

    def switch_column(self) -> None:
        self.column = Column.SELECTED if self.column == Column.AVAILABLE else Column.AVAILABLE

    def move_cursor(self, delta: int, column: Column | None = None) -> None:
        column = column or self.column
        if column == Column.AVAILABLE:
            self.left_cursor = _clamp(self.left_cursor + delta, len(self.available))
        else:
            self.right_cursor = _clamp(self.right_cursor + delta, len(self.selected))

    @property
    def current_available(self) -> Component | None:
        if not self.available:
            return None
        return self.available[self.left_cursor]

    @property
    def current_selected(self) -> ComponentRef | None:
        if not self.selected:
            return None
        return self.selected[self.right_cursor]

    # --- ordering ops ---

    def add_selected(self) -> ComponentRef | None:
        """Append the highlighted available component; duplicates are allowed."""
        component = self.current_available
        if component is None:
            return None
        ref = ComponentRef(type=component.kind, path=component.reference, order=len(self.selected) + 1)
        self.selected.append(ref)
        self.right_cursor = len(self.selected) - 1
        return ref

    def remove_at_cursor(self) -> ComponentRef | None:
        if not self.selected:
            return None
        removed = self.selected.pop(self.right_cursor)
        self.right_cursor = _clamp(self.right_cursor - 1, len(self.selected))
        return removed

    def move_up(self) -> bool:
        i = self.right_cursor
        if not self.selected or i == 0:
            return False
        self.selected[i - 1], self.selected[i] = self.selected[i], self.selected[i - 1]
        self.right_cursor = i - 1
        return True

    def move_down(self) -> bool:
        i = self.right_cursor
        if not self.selected or i >= len(self.selected) - 1:
            return False
        self.selected[i + 1], self.selected[i] = self.selected[i], self.selected[i + 1]
        self.right_cursor = i + 1
        return True

    def clear(self) -> None:
        self.selected = []
        self.right_cursor = 0

    def set_name(self, name: str) -> None:
        self.name = name.strip()

    def set_tags(self, tags: list[str]) -> None:
        normalized = [validate_tag(t) for t in tags if t.strip()]
        self.tags = list(dict.fromkeys(normalized))

    def grouped_view(self) -> list[tuple[ComponentKind, list[tuple[int, ComponentRef]]]]:
        """Selected refs grouped by section layout, keeping sequence indexes."""
        groups: list[tuple[ComponentKind, list[tuple[int, ComponentRef]]]] = []
        kinds = [s.type for s in self.layout]
        kinds += [k for k in ComponentKind if k not in kinds]
        for kind in kinds:
            items = [(i, ref) for i, ref in enumerate(self.selected) if ref.type == kind]
            if items:
                groups.append((kind, items))
        return groups

    # --- dirty tracking and save ---

    def has_unsaved_changes(self) -> bool:
        return (
            [(r.type, r.path) for r in self.selected]
            != [(r.type, r.path) for r in self.original_components]
            or self.name != self.original_name
            or self.tags != self.original_tags
        )

    def request_exit(self) -> Dialog | None:
        if not self.has_unsaved_changes():
            return None
        return Dialog(
            title="Unsaved Changes",
            message=f"Pipeline '{self.name or 'untitled'}' has unsaved changes.",
            warning="Exit without saving?",
            destructive=True,
        )

    def to_pipeline(self) -> Pipeline:
        return Pipeline(
            name=self.name,
            tags=list(self.tags),
            output_path=self.output_path,
            components=[ref.model_copy() for ref in self.selected],
            path=self.path or self.store.pipeline_path(slugify(self.name or "untitled")),
        )

    def save(self) -> Pipeline:
        """Write the pipeline, register its tags and clean up tags it dropped."""
        name = validate_display_name(self.name)
        new_path = self.store.pipeline_path(slugify(name))
        if new_path != self.path and self.store.abspath(new_path).exists():
            raise ValidationError(f"a pipeline named '{slugify(name)}' already exists")

        pipeline = self.to_pipeline()
        pipeline.name = name
        pipeline.path = new_path
        self.registry.ensure_tags(pipeline.tags)
        self.store.write_pipeline(pipeline)
        if self.path and self.path != new_path:
            self.store.delete_pipeline(self.path)

        dropped = [t for t in self.original_tags if t not in pipeline.tags]
        if dropped:
            self.registry.cleanup_orphans_quietly(dropped)

        self.path = new_path
        self.name = name
        for index, ref in enumerate(self.selected, start=1):
            ref.order = index
        self._snapshot()
        logger.info("pipeline.saved", path=new_path, components=len(self.selected))
        return pipeline

    # --- preview ---

    def preview(self) -> str:
        settings = self.store.read_settings()
        return self.composer.compose(self.to_pipeline(), settings.sections, settings.output.show_headings)

    def _marker_for(self, ref: ComponentRef) -> str | None:
        pipeline = self.to_pipeline()
        try:
            resolved = self.store.resolve_reference(pipeline, ref)
            if not resolved.exists:
                return None
            return first_content_line(self.store.read_component(resolved.path, resolved.archived).content)
        except PluqqyError:
            return None

    def preview_offset(self, preview: str, viewport_height: int) -> int:
        """Scroll offset that centers the selected component in the preview.

        With duplicates, the Nth occurrence of the component's first content
        line is used, N being how many earlier refs share its path.
        """
        lines = preview.split("\n")
        ref = self.current_selected
        if ref is None or viewport_height <= 0:
            return 0

        occurrence = sum(1 for r in self.selected[: self.right_cursor] if r.path == ref.path)
        target: int | None = None
        marker = self._marker_for(ref)
        if marker is not None:
            seen = 0
            for index, line in enumerate(lines):
                if line.strip() == marker:
                    if seen == occurrence:
                        target = index
                        break
                    seen += 1

        if target is None:
            per_component = max(1, len(lines) // max(1, len(self.selected)))
            target = min(self.right_cursor * per_component + 5, max(0, len(lines) - 1))

        max_offset = max(0, len(lines) - viewport_height)
        return max(0, min(target - viewport_height // 2, max_offset))
