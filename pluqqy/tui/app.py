"""Interactive list view.

A line-driven browser over the project: one event loop owns the view
state, disk work runs through the TaskRunner, and results come back as
messages that update the status line.
"""

from __future__ import annotations

import asyncio
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog
from rich import box
from rich.console import Console, Group, RenderableType
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from pluqqy.core.archive import ArchiveManager
from pluqqy.core.clone import CloneEngine, clone_suggestion
from pluqqy.core.composer import CompositionEngine
from pluqqy.core.references import find_dangling, remove_references
from pluqqy.core.registry import TagRegistry
from pluqqy.core.renamer import RenameEngine, RenameError
from pluqqy.core.search import SearchEngine, SearchResults, parse_query
from pluqqy.core.tasks import (
    CHECK_KEY,
    TAGS_KEY,
    CancelToken,
    Completed,
    Progress,
    Started,
    TaskMessage,
    TaskRunner,
    component_key,
    pipeline_key,
)
from pluqqy.db.models import Component, Pipeline
from pluqqy.db.store import ProjectStore
from pluqqy.errors import PluqqyError, ValidationError, status_message
from pluqqy.tui.builder import Column, PipelineBuilder
from pluqqy.tui.confirmation import Answer, ConfirmationPrompt, Inline
from pluqqy.utils.security import editor_argv, ensure_safe_argument
from pluqqy.utils.tokens import format_token_count, token_status

logger = structlog.get_logger()

STATUS_COLORS = {"good": "green", "warning": "yellow", "danger": "red"}

LIST_HELP = (
    "/<query> filter   s N set   e N edit   a N archive/restore   r N <name> rename   "
    "d N delete   n new pipeline   p N build pipeline   t tags   td <tag> delete tag   "
    "tr reload tags   k N [name] clone   x cancel   c check   q quit"
)
BUILDER_HELP = (
    "/<query> filter   + N add   - remove   j/k cursor   u/d move   name <text>   "
    "tags a,b   w save   q back"
)


@dataclass
class Services:
    store: ProjectStore
    registry: TagRegistry
    search: SearchEngine
    composer: CompositionEngine
    renamer: RenameEngine
    archive: ArchiveManager
    clone: CloneEngine


@dataclass
class Report:
    """Result of a read-only scan: something to print plus a status line."""

    body: RenderableType | None
    summary: str

    def message(self) -> str:
        return self.summary


def launch_editor(command: str, location: str) -> int:
    """Run the external editor on ``location`` without a shell; blocks until it exits."""
    argv = editor_argv(command)
    ensure_safe_argument(location)
    logger.info("editor.launch", editor=argv[0], path=location)
    return subprocess.run([*argv, location], check=False).returncode


def tag_text(tags: list[str], registry: TagRegistry) -> Text:
    text = Text()
    for index, tag in enumerate(tags):
        if index:
            text.append(" ")
        text.append(tag, style=f"bold {registry.color_for(tag)}")
    return text


class ListView:
    def __init__(
        self,
        services: Services,
        editor_command: str = "",
        console: Console | None = None,
        read_line: Callable[[str], str] | None = None,
    ) -> None:
        self.services = services
        self.editor_command = editor_command
        self.console = console or Console()
        self.read_line = read_line or (lambda prompt: self.console.input(prompt))
        self.query = ""
        self.results = SearchResults()
        self.status = ""
        self.confirm = ConfirmationPrompt()
        self.runner: TaskRunner | None = None
        self.cancel_token: CancelToken | None = None
        self.running = True

    # --- state ---

    @property
    def archived_view(self) -> bool:
        return parse_query(self.query).archived

    @property
    def items(self) -> list[Component | Pipeline]:
        return [*self.results.components, *self.results.pipelines]

    @property
    def tasks(self) -> TaskRunner:
        if self.runner is None:
            self.runner = TaskRunner()
        return self.runner

    def refresh(self) -> None:
        try:
            self.results = self.services.search.search(self.query)
        except PluqqyError as e:
            self.status = status_message(e)

    async def refresh_async(self) -> None:
        """Re-run the current query on a worker thread."""
        await asyncio.to_thread(self.refresh)

    def item(self, number: str) -> Component | Pipeline:
        try:
            index = int(number) - 1
        except ValueError:
            raise ValidationError(f"not an item number: {number}") from None
        items = self.items
        if not 0 <= index < len(items):
            raise ValidationError(f"no item {number}")
        return items[index]

    @staticmethod
    def key_for(item: Component | Pipeline) -> str:
        if isinstance(item, Component):
            return component_key(item.path, item.archived)
        return pipeline_key(item.path, item.archived)

    # --- rendering ---

    def render(self) -> RenderableType:
        title = "Archived" if self.archived_view else "Components & Pipelines"
        table = Table(title=title, box=box.SIMPLE_HEAVY, expand=True)
        table.add_column("#", justify="right", style="dim")
        table.add_column("Type")
        table.add_column("Name", style="bold")
        table.add_column("Tags")
        table.add_column("Tokens", justify="right")
        registry = self.services.registry
        number = 0
        for component in self.results.components:
            number += 1
            status = token_status(component.token_count).value
            table.add_row(
                str(number),
                component.kind.singular,
                component.display_name,
                tag_text(component.tags, registry),
                Text(format_token_count(component.token_count), style=STATUS_COLORS[status]),
            )
        for pipeline in self.results.pipelines:
            number += 1
            table.add_row(
                str(number),
                "pipeline",
                pipeline.name,
                tag_text(pipeline.tags, registry),
                f"{len(pipeline.components)} components",
            )
        parts: list[RenderableType] = [table]
        if self.query:
            parts.append(Text(f"filter: {self.query}", style="cyan"))
        if self.status:
            parts.append(Text(self.status, style="red" if self.status.startswith("×") else "green"))
        if self.confirm.is_active:
            parts.append(self.confirm.render())
        else:
            parts.append(Text(LIST_HELP, style="dim"))
        return Group(*parts)

    # --- task messages ---

    def apply_message(self, message: TaskMessage) -> bool:
        """Update the status line; returns True when the listing is stale."""
        if isinstance(message, Started):
            self.status = f"{message.operation}..."
        elif isinstance(message, Progress):
            self.status = f"{message.operation} {message.done}/{message.total}: {message.current}"
        elif isinstance(message, Completed):
            if message.error is not None:
                error = message.error
                if message.operation == "rename":
                    self.status = RenameError(error).message()
                else:
                    self.status = status_message(error)
            elif isinstance(message.result, Report):
                if message.result.body is not None:
                    self.console.print(message.result.body)
                self.status = message.result.message()
                return False
            elif isinstance(message.result, str):
                self.status = message.result
            elif hasattr(message.result, "message"):
                self.status = message.result.message()
            else:
                self.status = f"✓ {message.operation}"
            return True
        return False

    async def pump_messages(self) -> None:
        if self.runner is None:
            return
        stale = False
        while not self.runner.messages.empty():
            stale = self.apply_message(self.runner.messages.get_nowait()) or stale
        if stale:
            await self.refresh_async()

    def submit(self, key: str, operation: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        self.tasks.submit(key, operation, fn, *args, **kwargs)

    # --- commands ---

    async def handle(self, line: str) -> None:
        line = line.strip()
        if self.confirm.is_active:
            if self.confirm.handle_key(line or "esc") == Answer.PENDING:
                self.status = "Press y to confirm or n to cancel"
            return
        if not line:
            return
        if line.startswith("/"):
            self.query = line[1:].strip()
            await self.refresh_async()
            return
        command, _, rest = line.partition(" ")
        rest = rest.strip()
        try:
            await self.dispatch(command, rest)
        except PluqqyError as e:
            self.status = status_message(e)

    async def dispatch(self, command: str, rest: str) -> None:
        services = self.services
        if command == "q":
            self.running = False
        elif command == "s":
            item = self.item(rest)
            if isinstance(item, Pipeline):
                self.submit(self.key_for(item), "set", self._set_pipeline, item)
            else:
                self.submit(self.key_for(item), "set", self._set_component, item)
        elif command == "e":
            item = self.item(rest)
            if not isinstance(item, Component):
                raise ValidationError("only components can be edited in $EDITOR")
            self.tasks.ensure_idle(self.key_for(item))
            self.tasks.ensure_idle(TAGS_KEY)
            await self._edit_component(item)
        elif command == "a":
            item = self.item(rest)
            self.tasks.ensure_idle(self.key_for(item))
            self.submit(self.key_for(item), "archive", self._toggle_archive, item)
        elif command == "r":
            number, _, new_name = rest.partition(" ")
            item = self.item(number)
            self.tasks.ensure_idle(self.key_for(item))
            if isinstance(item, Component):
                self.submit(
                    self.key_for(item),
                    "rename",
                    services.renamer.rename_component,
                    item.path,
                    new_name,
                    item.kind,
                    item.archived,
                    with_progress=True,
                )
            else:
                self.submit(
                    self.key_for(item), "rename", services.renamer.rename_pipeline, item.path, new_name, item.archived
                )
        elif command == "d":
            item = self.item(rest)
            self.tasks.ensure_idle(self.key_for(item))
            name = item.display_name if isinstance(item, Component) else item.name
            self.confirm.show(
                Inline(f"Delete '{name}'?", destructive=True),
                on_confirm=lambda: self.submit(self.key_for(item), "delete", self._delete, item),
            )
        elif command == "k":
            number, _, new_name = rest.partition(" ")
            item = self.item(number)
            source = item.display_name if isinstance(item, Component) else item.name
            new_name = new_name.strip() or clone_suggestion(source)
            self.tasks.ensure_idle(TAGS_KEY)
            clone = services.clone.clone_component if isinstance(item, Component) else services.clone.clone_pipeline
            self.submit(self.key_for(item), "clone", clone, item.path, new_name, item.archived, item.archived)
        elif command == "t":
            self.submit(TAGS_KEY, "tag usage", self._tags_report)
        elif command == "td":
            tag = rest
            if not tag:
                raise ValidationError("usage: td <tag>")
            self.tasks.ensure_idle(TAGS_KEY)
            self.confirm.show(
                Inline(f"Delete tag '{tag}' from the registry and every file?", destructive=True),
                on_confirm=lambda: self._start_tag_delete(tag),
            )
        elif command == "tr":
            self.tasks.ensure_idle(TAGS_KEY)
            self.cancel_token = CancelToken()
            self.submit(TAGS_KEY, "reload tags", services.registry.reload, self.cancel_token, with_progress=True)
        elif command == "x":
            if self.cancel_token is None:
                self.status = "Nothing to cancel"
            else:
                self.cancel_token.cancel()
        elif command == "c":
            self.submit(CHECK_KEY, "check references", self._dangling_report)
        elif command == "n":
            await self.build(None)
        elif command == "p":
            item = self.item(rest)
            if not isinstance(item, Pipeline) or item.archived:
                raise ValidationError("only live pipelines can be built")
            await self.build(item.path)
        else:
            self.status = f"× Unknown command: {command}"

    def _start_tag_delete(self, tag: str) -> None:
        self.cancel_token = CancelToken()
        self.submit(
            TAGS_KEY,
            "delete tag",
            self.services.registry.delete_tag_everywhere,
            tag,
            cancel=self.cancel_token,
            with_progress=True,
        )

    # --- worker bodies (run on threads) ---

    def _set_pipeline(self, pipeline: Pipeline) -> str:
        location, composition = self.services.composer.set_pipeline(pipeline)
        warning = f" ({len(composition.missing)} missing)" if composition.missing else ""
        return f"✓ Set {pipeline.name} → {location} {format_token_count(composition.token_count)}{warning}"

    def _set_component(self, component: Component) -> str:
        location, composition = self.services.composer.set_component(component)
        return f"✓ Set {component.display_name} → {location} {format_token_count(composition.token_count)}"

    def _toggle_archive(self, item: Component | Pipeline) -> Any:
        archive = self.services.archive
        if isinstance(item, Component):
            return archive.unarchive_component(item.path) if item.archived else archive.archive_component(item.path)
        return archive.unarchive_pipeline(item.path) if item.archived else archive.archive_pipeline(item.path)

    def _delete(self, item: Component | Pipeline) -> str:
        store = self.services.store
        if isinstance(item, Component):
            remove_references(store, item.path, item.archived)
            store.delete_component(item.path, item.archived)
            name = item.display_name
        else:
            store.delete_pipeline(item.path, item.archived)
            name = item.name
        self.services.registry.cleanup_orphans_quietly(item.tags)
        return f"✓ Deleted {name}"

    def _sync_edited_tags(self, before: Component) -> Component:
        updated = self.services.store.read_component(before.path, before.archived)
        self.services.registry.ensure_tags(updated.tags)
        removed = [t for t in before.tags if t not in updated.tags]
        if removed:
            self.services.registry.cleanup_orphans_quietly(removed)
        return updated

    def _tags_report(self) -> Report:
        registry = self.services.registry
        table = Table(title="Tags", box=box.SIMPLE)
        table.add_column("Tag")
        table.add_column("Components", justify="right")
        table.add_column("Pipelines", justify="right")
        report = registry.usage_report()
        for name, usage in sorted(report.items()):
            table.add_row(
                Text(name, style=f"bold {registry.color_for(name)}"),
                str(usage.component_count),
                str(usage.pipeline_count),
            )
        return Report(table, f"✓ {len(report)} tags")

    def _dangling_report(self) -> Report:
        dangling = find_dangling(self.services.store)
        if not dangling:
            return Report(None, "✓ All pipeline references resolve")
        lines = [
            Text.assemble((entry.label, "yellow"), f": {entry.ref} ({entry.reason})") for entry in dangling
        ]
        return Report(Group(*lines), f"× {len(dangling)} dangling references")

    # --- editor ---

    async def _edit_component(self, component: Component) -> None:
        location = self.services.store.abspath(component.path, component.archived)
        launch_editor(self.editor_command, str(location))
        updated = await asyncio.to_thread(self._sync_edited_tags, component)
        self.status = f"✓ Edited {updated.display_name}"
        await self.refresh_async()

    # --- builder ---

    def render_builder(self, builder: PipelineBuilder, height: int = 12) -> RenderableType:
        available = Table(title="Available", box=box.SIMPLE, expand=True)
        available.add_column("#", justify="right", style="dim")
        available.add_column("Component")
        for index, component in enumerate(builder.available, start=1):
            marker = ">" if builder.column == Column.AVAILABLE and index - 1 == builder.left_cursor else " "
            available.add_row(f"{marker}{index}", f"{component.kind.singular}: {component.display_name}")

        selected = Table(title=f"Pipeline: {builder.name or 'untitled'}", box=box.SIMPLE, expand=True)
        selected.add_column("Component")
        for kind, items in builder.grouped_view():
            selected.add_row(Text(kind.value.upper(), style="bold cyan"))
            for index, ref in items:
                marker = ">" if index == builder.right_cursor else " "
                selected.add_row(f"{marker} {ref.path.rsplit('/', 1)[-1]}")

        preview = builder.preview()
        offset = builder.preview_offset(preview, height)
        window = "\n".join(preview.split("\n")[offset : offset + height])
        grid = Table.grid(expand=True)
        grid.add_column(ratio=1)
        grid.add_column(ratio=1)
        grid.add_row(available, selected)
        parts: list[RenderableType] = [grid, Panel(window or "(empty)", title="Preview")]
        if self.status:
            parts.append(Text(self.status))
        parts.append(self.confirm.render() if self.confirm.is_active else Text(BUILDER_HELP, style="dim"))
        return Group(*parts)

    async def build(self, path: str | None) -> None:
        s = self.services
        builder = await asyncio.to_thread(PipelineBuilder, s.store, s.search, s.composer, s.registry)
        if path:
            await asyncio.to_thread(builder.load_pipeline, path)
        editing = True

        def leave() -> None:
            nonlocal editing
            editing = False

        while editing:
            self.console.print(self.render_builder(builder))
            line = await self.read("build> ")
            if line is None:
                # End of input leaves the builder and the list view; nothing is saved.
                self.running = False
                break
            if self.confirm.is_active:
                self.confirm.handle_key(line or "esc")
                continue
            command, _, rest = line.partition(" ")
            try:
                if line.startswith("/"):
                    builder.set_filter(line[1:].strip())
                elif command == "+":
                    if rest:
                        builder.left_cursor = self._available_index(builder, rest)
                    builder.move_cursor(0, Column.AVAILABLE)
                    builder.add_selected()
                elif command == "-":
                    builder.remove_at_cursor()
                elif command in ("j", "k"):
                    builder.move_cursor(1 if command == "j" else -1, Column.SELECTED)
                elif command == "u":
                    builder.move_up()
                elif command == "d":
                    builder.move_down()
                elif command == "name":
                    builder.set_name(rest)
                elif command == "tags":
                    builder.set_tags(rest.split(","))
                elif command == "w":
                    self.tasks.ensure_idle(TAGS_KEY)
                    if builder.path:
                        self.tasks.ensure_idle(pipeline_key(builder.path))
                    saved = await asyncio.to_thread(builder.save)
                    self.status = f"✓ Saved {saved.name}"
                elif command == "q":
                    dialog = builder.request_exit()
                    if dialog is None:
                        leave()
                    else:
                        self.confirm.show(dialog, on_confirm=leave)
                elif command:
                    self.status = f"× Unknown command: {command}"
            except (PluqqyError, ValueError) as e:
                self.status = status_message(e)
        await self.refresh_async()

    @staticmethod
    def _available_index(builder: PipelineBuilder, number: str) -> int:
        try:
            index = int(number) - 1
        except ValueError:
            raise ValidationError(f"not an item number: {number}") from None
        if not 0 <= index < len(builder.available):
            raise ValidationError(f"no item {number}")
        return index

    # --- loop ---

    async def read(self, prompt: str) -> str | None:
        """Next input line, or None once input is closed or interrupted."""
        try:
            line = await asyncio.to_thread(self.read_line, prompt)
        except (EOFError, KeyboardInterrupt):
            logger.info("tui.input_closed")
            return None
        return line.strip()

    async def run(self) -> None:
        self.runner = TaskRunner()
        await self.refresh_async()
        while self.running:
            await self.pump_messages()
            self.console.print(self.render())
            line = await self.read("pluqqy> ")
            if line is None:
                self.running = False
                break
            await self.handle(line)
            # Let freshly submitted tasks post their Started message.
            await asyncio.sleep(0)
        await self.runner.drain()
        await self.pump_messages()
        if self.status:
            self.console.print(self.status)


def run_list_view(services: Services, editor_command: str = "", console: Console | None = None) -> None:
    try:
        asyncio.run(ListView(services, editor_command, console).run())
    except KeyboardInterrupt:
        logger.info("tui.interrupted")
