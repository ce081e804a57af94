"""Search Engine: the filter DSL behind the list view and the builder.

Grammar: whitespace-separated terms, implicitly ANDed; double or single
quotes group words into one value.

    tag:<name>        item carries the tag (or a child of it, ``lang`` matches ``lang/go``)
    type:<kind>       context(s) | prompt(s) | rule(s) | component(s) | pipeline(s)
    status:archived   search the archive tree instead of the live one
    name:<text>       display name contains text
    content:<text>    component body contains text
    <word>            display name contains word

All text matching is case-insensitive.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from pluqqy.db.models import KIND_ORDER, Component, ComponentKind, Pipeline, Section, default_sections
from pluqqy.db.store import ProjectStore
from pluqqy.errors import ValidationError
from pluqqy.utils.naming import normalize_tag

logger = structlog.get_logger()

QUOTES = "\"'"


@dataclass
class Query:
    tags: list[str] = field(default_factory=list)
    kinds: set[ComponentKind] = field(default_factory=set)
    include_components: bool = True
    include_pipelines: bool = True
    archived: bool = False
    words: list[str] = field(default_factory=list)
    contents: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.tags or self.kinds or self.words or self.contents) and (
            self.include_components and self.include_pipelines
        )


def tokenize(text: str) -> list[str]:
    """Split on whitespace outside quotes; quote characters are dropped."""
    tokens: list[str] = []
    current: list[str] = []
    quote: str | None = None
    for char in text:
        if quote:
            if char == quote:
                quote = None
            else:
                current.append(char)
        elif char in QUOTES:
            quote = char
        elif char.isspace():
            if current:
                tokens.append("".join(current))
                current = []
        else:
            current.append(char)
    if current:
        tokens.append("".join(current))
    return tokens


def _apply_type(query: Query, value: str) -> None:
    value = value.strip().lower()
    if value in ("pipeline", "pipelines"):
        query.include_components = False
    elif value in ("component", "components"):
        query.include_pipelines = False
    else:
        try:
            query.kinds.add(ComponentKind.parse(value))
        except ValidationError:
            logger.debug("search.unknown_type", value=value)
            query.include_components = False
        query.include_pipelines = False


def parse_query(text: str) -> Query:
    query = Query()
    for token in tokenize(text):
        prefix, sep, value = token.partition(":")
        prefix = prefix.lower()
        if not sep or prefix not in ("tag", "type", "status", "name", "content"):
            query.words.append(token.lower())
            continue
        if not value:
            continue
        if prefix == "tag":
            tag = normalize_tag(value)
            if tag:
                query.tags.append(tag)
        elif prefix == "type":
            _apply_type(query, value)
        elif prefix == "status":
            query.archived = value.lower() == "archived"
        elif prefix == "name":
            query.words.append(value.lower())
        elif prefix == "content":
            query.contents.append(value.lower())
    return query


def _has_tags(item_tags: list[str], wanted: list[str]) -> bool:
    return all(any(t == w or t.startswith(w + "/") for t in item_tags) for w in wanted)


def matches_component(component: Component, query: Query) -> bool:
    if not query.include_components:
        return False
    if query.kinds and component.kind not in query.kinds:
        return False
    if not _has_tags(component.tags, query.tags):
        return False
    name = component.display_name.lower()
    if not all(word in name for word in query.words):
        return False
    body = component.content.lower()
    return all(text in body for text in query.contents)


def matches_pipeline(pipeline: Pipeline, query: Query) -> bool:
    if not query.include_pipelines or query.contents:
        return False
    if not _has_tags(pipeline.tags, query.tags):
        return False
    name = pipeline.name.lower()
    return all(word in name for word in query.words)


def group_components(components: list[Component], layout: list[Section]) -> list[Component]:
    """Order by section layout (kinds missing from it last), then filename."""
    rank = {section.type: index for index, section in enumerate(layout)}
    fallback = len(layout)

    def key(component: Component) -> tuple[int, int, str]:
        return (rank.get(component.kind, fallback), KIND_ORDER.index(component.kind), component.filename)

    return sorted(components, key=key)


@dataclass
class SearchResults:
    components: list[Component] = field(default_factory=list)
    pipelines: list[Pipeline] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.components) + len(self.pipelines)


class SearchEngine:
    """Filters the items of one tree according to a parsed query."""

    def __init__(self, store: ProjectStore) -> None:
        self.store = store

    def filter_components(
        self, components: list[Component], query: Query | str, layout: list[Section] | None = None
    ) -> list[Component]:
        if isinstance(query, str):
            query = parse_query(query)
        matched = [c for c in components if matches_component(c, query)]
        return group_components(matched, layout or default_sections())

    def filter_pipelines(self, pipelines: list[Pipeline], query: Query | str) -> list[Pipeline]:
        if isinstance(query, str):
            query = parse_query(query)
        return sorted(
            (p for p in pipelines if matches_pipeline(p, query)), key=lambda p: p.filename
        )

    def search(self, query: Query | str, layout: list[Section] | None = None) -> SearchResults:
        if isinstance(query, str):
            query = parse_query(query)
        if layout is None:
            layout = self.store.read_settings().sections
        results = SearchResults()
        if query.include_components:
            results.components = self.filter_components(
                self.store.list_components(archived=query.archived), query, layout
            )
        if query.include_pipelines:
            results.pipelines = self.filter_pipelines(
                self.store.list_pipelines(archived=query.archived), query
            )
        logger.debug("search.executed", archived=query.archived, results=len(results))
        return results
