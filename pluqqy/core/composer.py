"""Composition Engine: assembles a pipeline's components into the output document."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import structlog

from pluqqy.db.models import Component, ComponentKind, Pipeline, Section
from pluqqy.db.store import ProjectStore
from pluqqy.errors import NotFound, PluqqyError
from pluqqy.utils.tokens import TokenStatus, estimate_tokens, token_status

logger = structlog.get_logger()


@dataclass
class Composition:
    """A composed document plus what could not be included."""

    text: str
    missing: list[str] = field(default_factory=list)

    @property
    def token_count(self) -> int:
        return estimate_tokens(self.text)

    @property
    def token_status(self) -> TokenStatus:
        return token_status(self.token_count)


def _body(text: str) -> str:
    return text.rstrip()


def render_sections(
    bodies: list[tuple[ComponentKind, str]],
    layout: list[Section],
    show_headings: bool = True,
) -> str:
    """Group bodies by kind and emit them in layout order.

    Blocks are joined by one blank line; the result ends with a single
    newline, or is empty when nothing is emitted.
    """
    grouped: dict[ComponentKind, list[str]] = {}
    for kind, body in bodies:
        grouped.setdefault(kind, []).append(body)

    blocks: list[str] = []
    for section in layout:
        items = grouped.get(section.type)
        if not items:
            continue
        if show_headings and section.heading:
            blocks.append(section.heading.rstrip())
        blocks.extend(items)
    if not blocks:
        return ""
    return "\n\n".join(blocks) + "\n"


class CompositionEngine:
    """Composes pipelines using component bodies read from the store."""

    def __init__(self, store: ProjectStore) -> None:
        self.store = store

    def assemble(
        self, pipeline: Pipeline, layout: list[Section], show_headings: bool = True
    ) -> Composition:
        """Compose ``pipeline``; unresolvable references are skipped and reported."""
        bodies: list[tuple[ComponentKind, str]] = []
        missing: list[str] = []
        for ref in pipeline.components:
            try:
                resolved = self.store.resolve_reference(pipeline, ref)
                if not resolved.exists:
                    raise NotFound(f"component not found: {ref.path}")
                component = self.store.read_component(resolved.path, resolved.archived)
            except PluqqyError as e:
                logger.warning("compose.missing_component", pipeline=pipeline.name, ref=ref.path, error=str(e))
                missing.append(ref.path)
                continue
            bodies.append((ref.type, _body(component.content)))

        text = render_sections(bodies, layout, show_headings)
        logger.debug(
            "compose.assembled",
            pipeline=pipeline.name,
            components=len(bodies),
            missing=len(missing),
        )
        return Composition(text=text, missing=missing)

    def compose(self, pipeline: Pipeline, layout: list[Section], show_headings: bool = True) -> str:
        return self.assemble(pipeline, layout, show_headings).text

    def compose_component(
        self, component: Component, layout: list[Section], show_headings: bool = True
    ) -> str:
        """A single component under its section heading."""
        return render_sections([(component.kind, _body(component.content))], layout, show_headings)

    def set_pipeline(self, pipeline: Pipeline, output_path: str | None = None) -> tuple[Path, Composition]:
        """Compose with the project's layout and write the output file.

        Destination precedence: ``output_path`` argument, the pipeline's
        ``outputPath``, then the project default.
        """
        settings = self.store.read_settings()
        composition = self.assemble(pipeline, settings.sections, settings.output.show_headings)
        location = self.store.write_output(
            composition.text, output_path or pipeline.output_path
        )
        logger.info(
            "compose.pipeline_set",
            pipeline=pipeline.name,
            output=str(location),
            tokens=composition.token_count,
        )
        return location, composition

    def set_component(self, component: Component, output_path: str | None = None) -> tuple[Path, Composition]:
        settings = self.store.read_settings()
        text = self.compose_component(component, settings.sections, settings.output.show_headings)
        location = self.store.write_output(text, output_path)
        return location, Composition(text=text)
