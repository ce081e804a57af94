"""Pluqqy CLI: pluqqy command."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn

from pluqqy.config import get_settings
from pluqqy.core.archive import ArchiveManager
from pluqqy.core.clone import CloneEngine
from pluqqy.core.composer import CompositionEngine
from pluqqy.core.examples import ALL, example_sets, install_examples
from pluqqy.core.references import find_dangling, references_to, all_pipelines, remove_references
from pluqqy.core.registry import TagRegistry
from pluqqy.core.renamer import RenameEngine
from pluqqy.core.search import SearchEngine
from pluqqy.db.models import COMPONENTS_DIR, PIPELINES_DIR, Component, ComponentKind, Pipeline
from pluqqy.db.store import ProjectStore
from pluqqy.errors import NotFound, PartialPropagation, PluqqyError, ValidationError, status_message
from pluqqy.tui.app import Services, launch_editor, run_list_view
from pluqqy.utils.logging import setup_logging
from pluqqy.utils.naming import slugify, validate_display_name, validate_tag
from pluqqy.utils.tokens import format_token_count

__version__ = "0.1.0"

EXIT_INIT_FAILURE = 1
EXIT_INVALID_PROJECT = 2


def _format_table(rows: list[dict], columns: list[str]) -> str:
    """Simple table formatter."""
    if not rows:
        return "No results."
    widths = {c: len(c) for c in columns}
    for row in rows:
        for c in columns:
            widths[c] = max(widths[c], len(_cell(row.get(c, ""))))

    header = "  ".join(c.upper().ljust(widths[c]) for c in columns)
    separator = "  ".join("-" * widths[c] for c in columns)
    lines = [header, separator]
    for row in rows:
        lines.append("  ".join(_cell(row.get(c, "")).ljust(widths[c]) for c in columns).rstrip())
    return "\n".join(lines)


def _cell(value: Any) -> str:
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    if value is None:
        return ""
    return str(value)


def _output(ctx: click.Context, data: Any, columns: list[str] | None = None) -> None:
    fmt = ctx.meta.get("output_format", "table")
    if fmt == "json":
        click.echo(json.dumps(data, indent=2, default=str))
    elif isinstance(data, list) and columns:
        click.echo(_format_table(data, columns))
    else:
        click.echo(json.dumps(data, indent=2, default=str))


def _services(store: ProjectStore) -> Services:
    registry = TagRegistry(store)
    return Services(
        store=store,
        registry=registry,
        search=SearchEngine(store),
        composer=CompositionEngine(store),
        renamer=RenameEngine(store),
        archive=ArchiveManager(store, registry),
        clone=CloneEngine(store, registry),
    )


def _project(ctx: click.Context) -> Services:
    """Services for the project; exits with status 2 when the directory is not a project."""
    services: Services = ctx.obj
    if not services.store.is_project():
        click.echo(
            f"Error: no project found at {services.store.root}. Run 'pluqqy init' first.",
            err=True,
        )
        ctx.exit(EXIT_INVALID_PROJECT)
    return services


def _fail(error: PluqqyError) -> click.ClickException:
    return click.ClickException(status_message(error).lstrip("× "))


def _component_row(component: Component) -> dict[str, Any]:
    return {
        "type": component.kind.singular,
        "name": component.display_name,
        "path": component.path,
        "tags": component.tags,
        "tokens": component.token_count,
        "archived": component.archived,
    }


def _pipeline_row(pipeline: Pipeline) -> dict[str, Any]:
    return {
        "type": "pipeline",
        "name": pipeline.name,
        "path": pipeline.path,
        "tags": pipeline.tags,
        "components": len(pipeline.components),
        "archived": pipeline.archived,
    }


def find_item(store: ProjectStore, ref: str, archived: bool = False) -> Component | Pipeline:
    """Resolve a user-supplied name to a component or pipeline.

    Accepts ``alpha``, ``alpha.yaml``, ``pipelines/alpha.yaml``, ``prompts/foo``,
    ``prompt/foo``, ``foo.md`` and ``components/prompts/foo.md``.
    """
    ref = ref.strip().replace("\\", "/")
    if ref.startswith(f"{COMPONENTS_DIR}/"):
        ref = ref[len(COMPONENTS_DIR) + 1:]
    if ref.startswith(f"{PIPELINES_DIR}/"):
        return store.read_pipeline(ref, archived)

    kind: ComponentKind | None = None
    name = ref
    if "/" in ref:
        prefix, name = ref.split("/", 1)
        kind = ComponentKind.parse(prefix)
    slug = name[:-3] if name.endswith(".md") else name

    if kind is None:
        pipeline_slug = slug[:-5] if slug.endswith(".yaml") else slug
        pipeline_path = store.pipeline_path(pipeline_slug)
        if store.abspath(pipeline_path, archived).is_file():
            return store.read_pipeline(pipeline_path, archived)

    matches = [
        c
        for c in store.list_components(archived, kind)
        if c.slug == slug or c.slug == slugify(slug) or c.display_name.lower() == slug.lower()
    ]
    if not matches:
        where = "archive" if archived else "project"
        raise NotFound(f"'{ref}' not found in the {where}")
    if len(matches) > 1:
        options = ", ".join(f"{c.kind.value}/{c.slug}" for c in matches)
        raise ValidationError(f"'{ref}' is ambiguous: {options}")
    return matches[0]


def _progress_bar(console: Console) -> Progress:
    return Progress(
        TextColumn("[bold cyan]{task.description}"),
        BarColumn(),
        TextColumn("({task.completed}/{task.total})"),
        TextColumn("[dim]{task.fields[current]}"),
        console=console,
        transient=True,
    )


@click.group(invoke_without_command=True)
@click.option(
    "--project",
    "project_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    envvar="PLUQQY_PROJECT_DIR",
    help="Project directory (default ./.pluqqy)",
)
@click.option("--format", "output_format", type=click.Choice(["table", "json"]), default="table")
@click.version_option(__version__, prog_name="pluqqy")
@click.pass_context
def cli(ctx: click.Context, project_dir: Path | None, output_format: str) -> None:
    """Pluqqy: build prompt pipelines from reusable components."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_file)
    ctx.obj = _services(ProjectStore(project_dir or settings.project_dir))
    ctx.meta["output_format"] = output_format
    if ctx.invoked_subcommand is None:
        services = _project(ctx)
        try:
            editor = services.store.read_settings().editor.command or settings.editor
        except PluqqyError as e:
            click.echo(f"Error: {e}", err=True)
            ctx.exit(EXIT_INIT_FAILURE)
        run_list_view(services, editor)


@cli.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Create the project directory layout."""
    services: Services = ctx.obj
    try:
        services.store.init_project()
    except PluqqyError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(EXIT_INIT_FAILURE)
    click.echo(f"Initialized project in {services.store.root}")


# --- Browsing ---


@cli.command("list")
@click.option("--type", "kind", default=None, help="context, prompt, rule or pipeline")
@click.option("--archived", is_flag=True, help="List the archive instead of the live tree")
@click.pass_context
def list_items(ctx: click.Context, kind: str | None, archived: bool) -> None:
    """List components and pipelines."""
    services = _project(ctx)
    query = "status:archived" if archived else ""
    if kind:
        query += f" type:{kind}"
    results = services.search.search(query)
    rows = [_component_row(c) for c in results.components] + [_pipeline_row(p) for p in results.pipelines]
    _output(ctx, rows, ["type", "name", "path", "tags"])


@cli.command()
@click.argument("query")
@click.pass_context
def search(ctx: click.Context, query: str) -> None:
    """Search with tag:, type:, status:, name:, content: and free words."""
    services = _project(ctx)
    results = services.search.search(query)
    rows = [_component_row(c) for c in results.components] + [_pipeline_row(p) for p in results.pipelines]
    _output(ctx, rows, ["type", "name", "path", "tags"])


@cli.command()
@click.argument("name")
@click.option("--archived", is_flag=True)
@click.option("--composed", is_flag=True, help="Show a pipeline's composed output")
@click.pass_context
def show(ctx: click.Context, name: str, archived: bool, composed: bool) -> None:
    """Show a component or pipeline."""
    services = _project(ctx)
    try:
        item = find_item(services.store, name, archived)
        if isinstance(item, Component):
            if ctx.meta["output_format"] == "json":
                _output(ctx, {**_component_row(item), "content": item.content})
            else:
                click.echo(item.content, nl=not item.content.endswith("\n"))
            return
        if composed:
            settings = services.store.read_settings()
            composition = services.composer.assemble(item, settings.sections, settings.output.show_headings)
            click.echo(composition.text, nl=False)
            for missing in composition.missing:
                click.echo(f"warning: missing component {missing}", err=True)
            return
        data = _pipeline_row(item)
        data["components"] = [ref.model_dump(mode="json") for ref in item.components]
        _output(ctx, data)
    except PluqqyError as e:
        raise _fail(e) from e


@cli.command("set")
@click.argument("name")
@click.option("--output-file", "-f", default=None, help="Write here instead of the configured output")
@click.pass_context
def set_output(ctx: click.Context, name: str, output_file: str | None) -> None:
    """Compose a pipeline (or a single component) into the output file."""
    services = _project(ctx)
    try:
        item = find_item(services.store, name)
        if isinstance(item, Pipeline):
            location, composition = services.composer.set_pipeline(item, output_file)
        else:
            location, composition = services.composer.set_component(item, output_file)
    except PluqqyError as e:
        raise _fail(e) from e
    for missing in composition.missing:
        click.echo(f"warning: missing component {missing}", err=True)
    click.echo(f"✓ Set {name} → {location} ({format_token_count(composition.token_count)})")


@cli.command()
@click.argument("name")
@click.option("--all", "include_archived", is_flag=True, help="Include archived pipelines")
@click.pass_context
def usage(ctx: click.Context, name: str, include_archived: bool) -> None:
    """Show which pipelines use a component."""
    services = _project(ctx)
    store = services.store
    try:
        component = find_item(store, name)
        if not isinstance(component, Component):
            raise ValidationError(f"'{name}' is a pipeline, not a component")
    except PluqqyError as e:
        raise _fail(e) from e
    rows = []
    for pipeline in all_pipelines(store):
        if pipeline.archived and not include_archived:
            continue
        for index in references_to(store, pipeline, component.path, False):
            rows.append(
                {
                    "name": pipeline.name,
                    "path": pipeline.path,
                    "position": index + 1,
                    "total_components": len(pipeline.components),
                    "archived": pipeline.archived,
                }
            )
    _output(ctx, rows, ["name", "path", "position", "total_components", "archived"])


@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """List pipeline references that do not resolve in their own tree."""
    services = _project(ctx)
    rows = [
        {"pipeline": d.label, "reference": d.ref, "reason": d.reason}
        for d in find_dangling(services.store)
    ]
    _output(ctx, rows, ["pipeline", "reference", "reason"])


# --- Authoring ---


@cli.command()
@click.argument("kind")
@click.argument("name")
@click.option("--tags", default="", help="Comma-separated tags")
@click.option("--content", default=None, help="Body text (default: read from stdin)")
@click.pass_context
def create(ctx: click.Context, kind: str, name: str, tags: str, content: str | None) -> None:
    """Create a component: KIND is context, prompt or rule."""
    services = _project(ctx)
    store = services.store
    try:
        display = validate_display_name(name)
        path = store.component_path(ComponentKind.parse(kind), slugify(display))
        if store.component_exists(path):
            raise ValidationError(f"{path} already exists")
        tag_list = [validate_tag(t) for t in tags.split(",") if t.strip()]
        body = content if content is not None else ("" if sys.stdin.isatty() else sys.stdin.read())
        if not body.strip():
            body = f"# {display}\n\n"
        store.write_component(path, body, tag_list)
        services.registry.ensure_tags(tag_list)
    except PluqqyError as e:
        raise _fail(e) from e
    click.echo(f"✓ Created {path}")


@cli.command()
@click.argument("name")
@click.pass_context
def edit(ctx: click.Context, name: str) -> None:
    """Open a component in $EDITOR."""
    services = _project(ctx)
    store = services.store
    try:
        component = find_item(store, name)
        if not isinstance(component, Component):
            raise ValidationError("only components can be edited in $EDITOR")
        command = store.read_settings().editor.command or get_settings().editor
        launch_editor(command, str(store.abspath(component.path)))
        updated = store.read_component(component.path)
        services.registry.ensure_tags(updated.tags)
        dropped = [t for t in component.tags if t not in updated.tags]
        services.registry.cleanup_orphans_quietly(dropped)
    except PluqqyError as e:
        raise _fail(e) from e
    click.echo(f"✓ Edited {updated.display_name}")


@cli.command()
@click.argument("name")
@click.argument("new_name")
@click.option("--archived", is_flag=True)
@click.pass_context
def rename(ctx: click.Context, name: str, new_name: str, archived: bool) -> None:
    """Rename a component or pipeline, updating pipeline references."""
    services = _project(ctx)
    console = Console(stderr=True)
    try:
        item = find_item(services.store, name, archived)
        if isinstance(item, Pipeline):
            result = services.renamer.rename_pipeline(item.path, new_name, archived)
        else:
            with _progress_bar(console) as progress:
                task = progress.add_task("Updating pipelines", total=None, current="")

                def report(current: str, done: int, total: int) -> None:
                    progress.update(task, completed=done, total=total, current=current)

                result = services.renamer.rename_component(
                    item.path, new_name, item.kind, archived, progress=report
                )
    except PartialPropagation as e:
        for failed in e.failed:
            click.echo(f"not updated: {failed}", err=True)
        raise _fail(e) from e
    except PluqqyError as e:
        raise _fail(e) from e
    click.echo(result.message())


@cli.command()
@click.argument("name")
@click.argument("new_name")
@click.option("--archived", is_flag=True, help="Clone from the archive")
@click.option("--to-archive", is_flag=True, help="Write the clone into the archive")
@click.pass_context
def clone(ctx: click.Context, name: str, new_name: str, archived: bool, to_archive: bool) -> None:
    """Copy a component or pipeline under a new name."""
    services = _project(ctx)
    try:
        item = find_item(services.store, name, archived)
        if isinstance(item, Pipeline):
            result = services.clone.clone_pipeline(item.path, new_name, archived, to_archive)
        else:
            result = services.clone.clone_component(item.path, new_name, archived, to_archive)
    except PluqqyError as e:
        raise _fail(e) from e
    click.echo(result.message())


@cli.command()
@click.argument("category", required=False)
@click.option("--category", "-c", "category_option", default=None, help="general, web, ai, claude or all")
@click.option("--list", "-l", "list_only", is_flag=True, help="Show the examples without installing")
@click.option("--force", "-f", is_flag=True, help="Overwrite files that already exist")
@click.pass_context
def examples(
    ctx: click.Context, category: str | None, category_option: str | None, list_only: bool, force: bool
) -> None:
    """Install example components and pipelines."""
    services = _project(ctx)
    chosen = category_option or category or (ALL if list_only else "general")
    try:
        sets = example_sets(chosen)
        if list_only:
            rows = [
                {
                    "category": s.category,
                    "name": s.name,
                    "components": len(s.components),
                    "pipelines": len(s.pipelines),
                    "description": s.description,
                }
                for s in sets
            ]
            _output(ctx, rows, ["category", "name", "components", "pipelines", "description"])
            return
        result = install_examples(services.store, services.registry, chosen, force)
    except PluqqyError as e:
        raise _fail(e) from e
    click.echo(result.message())
    for skipped in result.skipped:
        click.echo(f"  skipped {skipped}", err=True)


@cli.command()
@click.argument("name")
@click.pass_context
def archive(ctx: click.Context, name: str) -> None:
    """Move a component or pipeline to the archive."""
    services = _project(ctx)
    try:
        item = find_item(services.store, name)
        if isinstance(item, Pipeline):
            result = services.archive.archive_pipeline(item.path)
        else:
            result = services.archive.archive_component(item.path)
    except PluqqyError as e:
        raise _fail(e) from e
    click.echo(result.message())


@cli.command()
@click.argument("name")
@click.pass_context
def restore(ctx: click.Context, name: str) -> None:
    """Move an archived component or pipeline back to the live tree."""
    services = _project(ctx)
    try:
        item = find_item(services.store, name, archived=True)
        if isinstance(item, Pipeline):
            result = services.archive.unarchive_pipeline(item.path)
        else:
            result = services.archive.unarchive_component(item.path)
    except PluqqyError as e:
        raise _fail(e) from e
    click.echo(result.message())


@cli.command()
@click.argument("name")
@click.option("--archived", is_flag=True)
@click.option("--prune-references", is_flag=True, help="Also remove the component from pipelines")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def delete(ctx: click.Context, name: str, archived: bool, prune_references: bool, yes: bool) -> None:
    """Delete a component or pipeline."""
    services = _project(ctx)
    store = services.store
    try:
        item = find_item(store, name, archived)
        label = item.display_name if isinstance(item, Component) else item.name
        if not yes:
            click.confirm(f"Delete '{label}'?", abort=True)
        if isinstance(item, Component):
            if prune_references:
                remove_references(store, item.path, archived)
            store.delete_component(item.path, archived)
        else:
            store.delete_pipeline(item.path, archived)
        services.registry.cleanup_orphans_quietly(item.tags)
    except PluqqyError as e:
        raise _fail(e) from e
    click.echo(f"✓ Deleted {label}")


# --- Tags ---


@cli.group()
def tags() -> None:
    """Manage the tag registry."""


@tags.command("list")
@click.pass_context
def tags_list(ctx: click.Context) -> None:
    """List tags with their colors and usage."""
    services = _project(ctx)
    registry = services.registry
    rows = []
    for name, tag_usage in sorted(registry.usage_report().items()):
        entry = registry.get_tag(name)
        rows.append(
            {
                "name": name,
                "color": entry.color if entry else "",
                "components": tag_usage.component_count,
                "pipelines": tag_usage.pipeline_count,
                "registered": entry is not None,
            }
        )
    _output(ctx, rows, ["name", "color", "components", "pipelines"])


@tags.command("delete")
@click.argument("name")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def tags_delete(ctx: click.Context, name: str, yes: bool) -> None:
    """Remove a tag from every file and from the registry."""
    services = _project(ctx)
    if not yes:
        click.confirm(f"Delete tag '{name}' from the registry and every file?", abort=True)
    console = Console(stderr=True)
    try:
        with _progress_bar(console) as progress:
            task = progress.add_task("Deleting tag", total=None, current="")

            def report(current: str, done: int, total: int) -> None:
                progress.update(task, completed=done, total=total, current=current)

            result = services.registry.delete_tag_everywhere(name, progress=report)
    except PluqqyError as e:
        raise _fail(e) from e
    click.echo(result.message())
    if not result.ok:
        for path, error in result.errors:
            click.echo(f"  {path}: {error}", err=True)
        ctx.exit(1)


@tags.command("color")
@click.argument("name")
@click.argument("color")
@click.pass_context
def tags_color(ctx: click.Context, name: str, color: str) -> None:
    """Set a tag's display color (#rrggbb)."""
    services = _project(ctx)
    try:
        entry = services.registry.set_color(name, color)
    except PluqqyError as e:
        raise _fail(e) from e
    click.echo(f"✓ Tag '{entry.name}' is now {entry.color}")


@tags.command("reload")
@click.pass_context
def tags_reload(ctx: click.Context) -> None:
    """Register every tag found in components and pipelines."""
    services = _project(ctx)
    try:
        result = services.registry.reload()
    except PluqqyError as e:
        raise _fail(e) from e
    click.echo(result.message())
    for failed in result.failed_files:
        click.echo(f"  could not read {failed}", err=True)


@tags.command("cleanup")
@click.pass_context
def tags_cleanup(ctx: click.Context) -> None:
    """Remove registry entries that no file uses."""
    services = _project(ctx)
    try:
        removed = services.registry.cleanup_orphans()
    except PluqqyError as e:
        raise _fail(e) from e
    if removed:
        click.echo(f"✓ Removed {len(removed)} unused tags: {', '.join(removed)}")
    else:
        click.echo("No unused tags.")


if __name__ == "__main__":
    cli()
